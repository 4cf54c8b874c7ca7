# firerest/watch.py
from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Optional

from firerest.context import CancellationToken
from firerest.errors import WatchActiveError

logger = logging.getLogger(__name__)


class WatchStatus(str, Enum):
    IDLE = "idle"
    WATCHING = "watching"


class WatchState:
    """
    At most one watch session per Reference instance.

    start(): IDLE -> WATCHING, returns a fresh CancellationToken.
             Raises WatchActiveError when already WATCHING.
    stop():  WATCHING -> IDLE, cancels the token. No-op when IDLE.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._status = WatchStatus.IDLE
        self._token: Optional[CancellationToken] = None

    @property
    def status(self) -> WatchStatus:
        with self._lock:
            return self._status

    @property
    def watching(self) -> bool:
        return self.status is WatchStatus.WATCHING

    def start(self) -> CancellationToken:
        with self._lock:
            if self._status is WatchStatus.WATCHING:
                raise WatchActiveError()
            self._token = CancellationToken()
            self._status = WatchStatus.WATCHING
            logger.debug("watch started")
            return self._token

    def stop(self) -> None:
        with self._lock:
            if self._status is WatchStatus.IDLE:
                return
            if self._token is not None:
                self._token.cancel()
            self._token = None
            self._status = WatchStatus.IDLE
            logger.debug("watch stopped")
