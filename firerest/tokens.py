# firerest/tokens.py
from __future__ import annotations

import threading
from typing import Callable, Optional, Protocol, Sequence

import google.auth
import google.auth.credentials
import google.auth.exceptions
import google.auth.transport.requests

# Scopes the Realtime Database REST API accepts for OAuth2 access tokens
DATABASE_SCOPES = (
    "https://www.googleapis.com/auth/firebase.database",
    "https://www.googleapis.com/auth/userinfo.email",
)


class TokenSource(Protocol):
    def token(self) -> str:
        """Return a current bearer token, raising on failure."""
        ...


class StaticTokenSource:
    def __init__(self, access_token: str) -> None:
        self._access_token = access_token

    def token(self) -> str:
        return self._access_token


class CallableTokenSource:
    def __init__(self, fn: Callable[[], str]) -> None:
        self._fn = fn

    def token(self) -> str:
        return self._fn()


class GoogleCredentialsTokenSource:
    """
    Wraps google-auth credentials; refreshes them on demand when the cached
    token is missing or expired. Thread-safe.
    """

    def __init__(
        self,
        credentials: google.auth.credentials.Credentials,
        request: Optional[google.auth.transport.requests.Request] = None,
    ) -> None:
        self._credentials = credentials
        self._request = request or google.auth.transport.requests.Request()
        self._lock = threading.Lock()

    @property
    def credentials(self) -> google.auth.credentials.Credentials:
        return self._credentials

    def token(self) -> str:
        with self._lock:
            if not self._credentials.valid:
                self._credentials.refresh(self._request)
            if not self._credentials.token:
                raise google.auth.exceptions.RefreshError("credentials produced no token")
            return self._credentials.token


def default_token_source(
    scopes: Sequence[str] = DATABASE_SCOPES,
) -> GoogleCredentialsTokenSource:
    """Token source backed by Application Default Credentials."""
    credentials, _project = google.auth.default(scopes=list(scopes))
    return GoogleCredentialsTokenSource(credentials)
