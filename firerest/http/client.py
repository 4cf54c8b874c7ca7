# firerest/http/client.py
from __future__ import annotations

import logging
import re
import time
from concurrent import futures
from dataclasses import dataclass
from typing import Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

import requests

from firerest.context import Context
from firerest.errors import ApplicationError, RequestCancelledError, RequestTimeoutError
from firerest.http.transport import Transport
from firerest.logging_utils import correlation_id_ctx, new_correlation_id

logger = logging.getLogger(__name__)

_SECRET_PARAMS = {"auth", "access_token"}

# seconds between cancellation checks while waiting for response headers
_CANCEL_POLL_INTERVAL = 0.05


def detect_charset(content_type: str | None) -> str:
    """Charset from a Content-Type header; the database always speaks utf-8 otherwise."""
    if content_type:
        m = re.search(r"charset=([^\s;]+)", content_type, flags=re.I)
        if m:
            return m.group(1).strip('"').strip("'")
    return "utf-8"


def decode_text(raw: bytes, headers: Dict[str, str]) -> str:
    charset = detect_charset(headers.get("Content-Type"))
    try:
        return raw.decode(charset, errors="replace")
    except LookupError:
        # unknown codec name in the header
        return raw.decode("utf-8", errors="replace")


def redact_url(url: str) -> str:
    """Mask credential query params so URLs are safe to log."""
    p = urlparse(url)
    if not p.query:
        return url
    q = [
        (k, "***" if k in _SECRET_PARAMS else v)
        for k, v in parse_qsl(p.query, keep_blank_values=True)
    ]
    return urlunparse(p._replace(query=urlencode(q, safe="*")))


@dataclass
class HttpResponse:
    status: int
    url: str
    final_url: str
    headers: Dict[str, str]
    body: bytes
    elapsed_ms: int

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def _effective_timeout(transport: Transport, ctx: Optional[Context]) -> float:
    timeout = transport.config.timeout
    if ctx is not None and ctx.deadline is not None:
        timeout = min(timeout, ctx.remaining())
    return timeout


def _await_headers(
    transport: Transport,
    future: "futures.Future[requests.Response]",
    timeout: float,
    ctx: Optional[Context],
) -> requests.Response:
    """
    Wait for the response headers. `timeout` is one budget for connecting and
    the whole header wait, however slowly the server trickles bytes in; the
    socket timeouts inside requests only bound each single read.
    """
    deadline = time.monotonic() + timeout
    while True:
        left = deadline - time.monotonic()
        if left <= 0:
            transport.discard(future)
            raise RequestTimeoutError(message=f"no response headers within {timeout:.2f}s")
        step = left if ctx is None else min(left, _CANCEL_POLL_INTERVAL)
        done, _ = futures.wait([future], timeout=step)
        if done:
            return future.result()
        if ctx is not None and ctx.cancelled:
            transport.discard(future)
            raise RequestCancelledError()


def send(
    transport: Transport,
    method: str,
    url: str,
    body: Optional[bytes] = None,
    ctx: Optional[Context] = None,
) -> HttpResponse:
    """
    One round trip. Raises RequestTimeoutError when connecting plus the
    header wait outlast the timeout, RequestCancelledError when `ctx` is
    cancelled first, re-raises any other requests exception untouched, and
    returns the fully read response otherwise (whatever its status).
    """
    if ctx is not None:
        ctx.raise_if_cancelled()

    headers = {"Content-Type": "application/json"} if body is not None else None
    req = transport.prepare(method, url, body, headers)
    timeout = _effective_timeout(transport, ctx)
    if timeout <= 0:
        raise RequestTimeoutError(message="deadline exceeded before request was sent")

    t0 = time.time()
    logger.debug(">> %s %s", req.method, redact_url(url))
    try:
        resp = _await_headers(transport, transport.submit(req, timeout), timeout, ctx)
    except (RequestCancelledError, RequestTimeoutError) as e:
        logger.debug("!! %s %s %s", req.method, redact_url(url), e)
        raise
    except requests.exceptions.Timeout as e:
        # ConnectTimeout (dial) and ReadTimeout (waiting for headers)
        logger.debug("!! %s %s timed out after %.1fs", req.method, redact_url(url), timeout)
        raise RequestTimeoutError(e) from e
    except requests.exceptions.RequestException as e:
        logger.debug("!! %s %s failed: %s", req.method, redact_url(url), type(e).__name__)
        raise

    try:
        if ctx is not None:
            ctx.raise_if_cancelled()
        raw = resp.content
    finally:
        resp.close()

    out = HttpResponse(
        status=resp.status_code,
        url=url,
        final_url=resp.url or url,
        headers=dict(resp.headers.items()),
        body=raw,
        elapsed_ms=int((time.time() - t0) * 1000),
    )
    logger.debug(
        "<< %s %s %d %dms", req.method, redact_url(url), out.status, out.elapsed_ms
    )
    return out


def execute(
    transport: Transport,
    method: str,
    url: str,
    body: Optional[bytes] = None,
    ctx: Optional[Context] = None,
) -> bytes:
    """
    Perform `method url` and return the response body.

    Errors, in priority order:
      RequestCancelledError      ctx cancelled before the response headers arrived
      RequestTimeoutError        connect + header wait exceeded the timeout/deadline
      requests.RequestException  any other transport failure, passed through
      ApplicationError           status outside [200, 300); message is the raw body
    """
    token = correlation_id_ctx.set(new_correlation_id())
    try:
        resp = send(transport, method, url, body, ctx)
        if not resp.ok:
            raise ApplicationError(decode_text(resp.body, resp.headers), resp.status)
        return resp.body
    finally:
        correlation_id_ctx.reset(token)
