# firerest/errors.py
from __future__ import annotations

from typing import Optional


class FirerestError(Exception):
    """Base class for errors raised by firerest itself."""


class RequestTimeoutError(FirerestError):
    """
    Connection establishment or the wait for response headers exceeded the
    configured timeout (or the caller's deadline). `cause` keeps the transport
    exception that triggered it.
    """

    def __init__(self, cause: Optional[BaseException] = None, message: str = ""):
        super().__init__(message or (str(cause) if cause else "request timed out"))
        self.cause = cause


class ApplicationError(FirerestError):
    """Non-2xx response. The message is the raw response body, untouched."""

    def __init__(self, body: str, status: int = 0):
        super().__init__(body)
        self.body = body
        self.status = status


class SerializationError(FirerestError):
    pass


class ValueMissingError(FirerestError):
    def __init__(self, message: str = "firebase node missing"):
        super().__init__(message)


class RequestCancelledError(FirerestError):
    def __init__(self, message: str = "request cancelled"):
        super().__init__(message)


class WatchActiveError(FirerestError):
    def __init__(self, message: str = "reference is already being watched"):
        super().__init__(message)
