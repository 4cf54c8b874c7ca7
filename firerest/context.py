# firerest/context.py
from __future__ import annotations

import threading
import time
from typing import Optional

from firerest.errors import RequestCancelledError


class CancellationToken:
    """One-shot cancellation signal, safe to share between threads."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)


class Context:
    """
    Per-call cancellation/deadline carrier.

      ctx = Context(timeout=5.0)            # deadline 5s from now
      ctx = Context(token=watch_token)      # cancel via a shared token
      ref.read(ctx=ctx)

    Operations called without a Context are bounded only by the transport's
    configured timeout.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        token: Optional[CancellationToken] = None,
    ) -> None:
        self.deadline = None if timeout is None else time.monotonic() + float(timeout)
        self.token = token or CancellationToken()

    def cancel(self) -> None:
        self.token.cancel()

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline (never negative), or None."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def expired(self) -> bool:
        left = self.remaining()
        return left is not None and left <= 0.0

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise RequestCancelledError()
