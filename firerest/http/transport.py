# firerest/http/transport.py
from __future__ import annotations

import concurrent.futures
import logging
import threading
from typing import Dict, Optional

import requests

from firerest.config.app_config import TransportConfig, load_config

logger = logging.getLogger(__name__)

# threads that run round trips while the caller waits on its deadline/token
_MAX_WORKERS = 16

# headers that only make sense while the redirected request still carries a body
_BODY_HEADERS = {"content-length", "content-type", "transfer-encoding"}


class HeaderPreservingSession(requests.Session):
    """
    requests.Session that re-applies every header of the original request on
    each redirect hop. Plain requests drops Authorization when the redirect
    crosses hosts; the database REST endpoints redirect between hosts, so the
    credentials have to travel with the request.

    The previous hop's request already carries the original headers, so
    copying from `response.request` preserves them through the whole chain.
    """

    def rebuild_auth(self, prepared_request, response):
        super().rebuild_auth(prepared_request, response)
        previous = response.request
        if previous is None:
            return
        has_body = prepared_request.body is not None
        for key, value in previous.headers.items():
            # a 303 turns POST/PUT into a bodyless GET, so its framing headers go too
            if not has_body and key.lower() in _BODY_HEADERS:
                continue
            prepared_request.headers[key] = value


def build_session(config: TransportConfig) -> HeaderPreservingSession:
    s = HeaderPreservingSession()
    # exceeding this raises requests.TooManyRedirects instead of looping forever
    s.max_redirects = config.max_redirects
    s.headers["User-Agent"] = config.user_agent
    s.headers["Accept"] = "application/json"
    if not config.keep_alive:
        s.headers["Connection"] = "close"
    return s


def _close_late_response(future: "concurrent.futures.Future[requests.Response]") -> None:
    if future.exception() is not None:
        logger.debug("abandoned request ended with %s", type(future.exception()).__name__)
        return
    future.result().close()


class Transport:
    """
    Shared HTTP execution capability. One Transport is shared by every
    Reference derived from a common root; requests.Session is safe to use
    from several threads for plain request/response calls.
    """

    def __init__(
        self,
        config: Optional[TransportConfig] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.config = config or TransportConfig()
        self.session = session if session is not None else build_session(self.config)
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=_MAX_WORKERS, thread_name_prefix="firerest-http"
        )

    def prepare(
        self,
        method: str,
        url: str,
        body: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> requests.PreparedRequest:
        req = requests.Request(method=method.upper(), url=url, data=body, headers=headers or {})
        return self.session.prepare_request(req)

    def perform(self, request: requests.PreparedRequest, timeout: float) -> requests.Response:
        """
        Send `request`, following redirects. `timeout` bounds connecting and
        the wait for response headers; the body is left unread (stream=True)
        for the caller to consume and close.
        """
        settings = self.session.merge_environment_settings(
            request.url, {}, True, None, None
        )
        return self.session.send(
            request,
            timeout=(timeout, timeout),
            allow_redirects=True,
            **settings,
        )

    def submit(
        self, request: requests.PreparedRequest, timeout: float
    ) -> "concurrent.futures.Future[requests.Response]":
        """
        perform() on a worker thread. The caller bounds the wait on the future
        by its own deadline and may walk away from it; see discard().
        """
        return self._executor.submit(self.perform, request, timeout)

    @staticmethod
    def discard(future: "concurrent.futures.Future[requests.Response]") -> None:
        """Give up on a submitted round trip; a response that still arrives is closed."""
        if future.cancel():
            return
        future.add_done_callback(_close_late_response)

    def close(self) -> None:
        self._executor.shutdown(wait=False)
        self.session.close()

    def __enter__(self) -> "Transport":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


_default_transport: Optional[Transport] = None
_default_lock = threading.Lock()


def default_transport() -> Transport:
    """Process-wide transport built from load_config(), created lazily."""
    global _default_transport
    with _default_lock:
        if _default_transport is None:
            _default_transport = Transport(load_config())
            logger.debug("default transport created: %s", _default_transport.config)
        return _default_transport
