"""Tests for the request executor and the header-preserving transport."""
import socket
import threading
import time
from urllib.parse import parse_qs, urlparse

import pytest
import requests

from firerest.config.app_config import TransportConfig
from firerest.context import Context
from firerest.errors import ApplicationError, RequestCancelledError, RequestTimeoutError
from firerest.http.client import decode_text, execute, redact_url, send

URL = "https://test.firebaseio.com/users/.json"


class _TrickleServer(threading.Thread):
    """Answers one request with a header line every `interval` seconds until stopped."""

    def __init__(self, interval):
        super().__init__(daemon=True)
        self.interval = interval
        self.stopped = threading.Event()
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.listen(1)
        self.sock.settimeout(5)
        self.url = f"http://127.0.0.1:{self.sock.getsockname()[1]}"

    def run(self):
        try:
            conn, _ = self.sock.accept()
        except OSError:
            return
        with conn:
            try:
                conn.sendall(b"HTTP/1.1 200 OK\r\n")
                n = 0
                while not self.stopped.wait(self.interval):
                    conn.sendall(b"X-Slow-%d: 1\r\n" % n)
                    n += 1
                conn.sendall(b"Content-Length: 1\r\nConnection: close\r\n\r\n1")
            except OSError:
                pass

    def stop(self):
        self.stopped.set()
        self.join(5)
        self.sock.close()


class TestExecute:
    def test_success_returns_body(self, mock_transport):
        transport, adapter = mock_transport((200, '{"a": 1}', {}))
        assert execute(transport, "GET", URL) == b'{"a": 1}'
        assert len(adapter.requests) == 1
        assert adapter.requests[0].method == "GET"
        assert adapter.requests[0].url == URL
        assert adapter.requests[0].body is None

    def test_body_sent_as_json(self, mock_transport):
        transport, adapter = mock_transport((200, "null", {}))
        execute(transport, "PUT", URL, b'{"x":1}')
        req = adapter.requests[0]
        assert req.method == "PUT"
        assert req.body == b'{"x":1}'
        assert req.headers["Content-Type"] == "application/json"

    def test_keep_alive_disabled_by_default(self, mock_transport):
        transport, adapter = mock_transport((200, "null", {}))
        execute(transport, "GET", URL)
        assert adapter.requests[0].headers["Connection"] == "close"

    def test_keep_alive_enabled(self, mock_transport):
        transport, adapter = mock_transport(
            (200, "null", {}), config=TransportConfig(keep_alive=True)
        )
        execute(transport, "GET", URL)
        assert adapter.requests[0].headers.get("Connection") != "close"

    def test_timeout_passed_to_transport(self, mock_transport):
        transport, adapter = mock_transport(
            (200, "null", {}), config=TransportConfig(timeout=7.5)
        )
        execute(transport, "GET", URL)
        assert adapter.kwargs[0]["timeout"] == (7.5, 7.5)
        assert adapter.kwargs[0]["stream"] is True

    @pytest.mark.parametrize("status", [400, 401, 404, 500, 503])
    def test_non_2xx_is_application_error(self, mock_transport, status):
        transport, _ = mock_transport((status, "permission denied", {}))
        with pytest.raises(ApplicationError) as excinfo:
            execute(transport, "GET", URL)
        assert str(excinfo.value) == "permission denied"
        assert excinfo.value.body == "permission denied"
        assert excinfo.value.status == status

    def test_json_error_body_is_not_parsed(self, mock_transport):
        body = '{\n  "error" : "Permission denied"\n}\n'
        transport, _ = mock_transport((401, body, {"Content-Type": "application/json"}))
        with pytest.raises(ApplicationError) as excinfo:
            execute(transport, "GET", URL)
        assert str(excinfo.value) == body

    @pytest.mark.parametrize("status", [200, 204, 299])
    def test_2xx_is_success(self, mock_transport, status):
        transport, _ = mock_transport((status, "", {}))
        assert execute(transport, "DELETE", URL) == b""

    def test_response_closed_once_on_success(self, mock_transport):
        transport, adapter = mock_transport((200, '"v"', {}))
        execute(transport, "GET", URL)
        assert adapter.responses[0].close_calls == 1

    def test_response_closed_once_on_application_error(self, mock_transport):
        transport, adapter = mock_transport((500, "boom", {}))
        with pytest.raises(ApplicationError):
            execute(transport, "GET", URL)
        assert adapter.responses[0].close_calls == 1


class TestErrorClassification:
    @pytest.mark.parametrize(
        "error",
        [
            requests.exceptions.ConnectTimeout("connect timed out"),
            requests.exceptions.ReadTimeout("read timed out"),
        ],
    )
    def test_timeouts(self, mock_transport, error):
        transport, _ = mock_transport(error)
        with pytest.raises(RequestTimeoutError) as excinfo:
            execute(transport, "GET", URL)
        assert excinfo.value.cause is error

    @pytest.mark.parametrize(
        "error",
        [
            requests.exceptions.ConnectionError("connection refused"),
            requests.exceptions.SSLError("bad certificate"),
            requests.exceptions.InvalidURL("bad url"),
        ],
    )
    def test_transport_errors_pass_through(self, mock_transport, error):
        transport, _ = mock_transport(error)
        with pytest.raises(requests.exceptions.RequestException) as excinfo:
            execute(transport, "GET", URL)
        assert excinfo.value is error
        assert not isinstance(excinfo.value, RequestTimeoutError)

    def test_header_wait_timeout_against_silent_server(self, silent_server, local_transport):
        transport = local_transport(0.3)
        t0 = time.monotonic()
        with pytest.raises(RequestTimeoutError):
            execute(transport, "GET", f"{silent_server}/.json")
        assert time.monotonic() - t0 < 2.0

    def test_slow_headers_hit_the_total_deadline(self, local_transport):
        server = _TrickleServer(interval=0.1)
        server.start()
        transport = local_transport(0.5)
        t0 = time.monotonic()
        try:
            with pytest.raises(RequestTimeoutError):
                execute(transport, "GET", f"{server.url}/.json")
            assert time.monotonic() - t0 < 2.0
        finally:
            server.stop()


class TestContext:
    def test_cancelled_context_sends_nothing(self, mock_transport):
        transport, adapter = mock_transport((200, "null", {}))
        ctx = Context()
        ctx.cancel()
        with pytest.raises(RequestCancelledError):
            execute(transport, "GET", URL, ctx=ctx)
        assert adapter.requests == []

    def test_expired_deadline_is_timeout(self, mock_transport):
        transport, adapter = mock_transport((200, "null", {}))
        with pytest.raises(RequestTimeoutError):
            execute(transport, "GET", URL, ctx=Context(timeout=0))
        assert adapter.requests == []

    def test_deadline_caps_timeout(self, mock_transport):
        transport, adapter = mock_transport(
            (200, "null", {}), config=TransportConfig(timeout=30.0)
        )
        execute(transport, "GET", URL, ctx=Context(timeout=5.0))
        connect, read = adapter.kwargs[0]["timeout"]
        assert 0 < connect <= 5.0
        assert connect == read

    def test_context_without_deadline_uses_config(self, mock_transport):
        transport, adapter = mock_transport(
            (200, "null", {}), config=TransportConfig(timeout=12.0)
        )
        execute(transport, "GET", URL, ctx=Context())
        assert adapter.kwargs[0]["timeout"] == (12.0, 12.0)

    def test_cancel_while_waiting_for_headers(self, silent_server, local_transport):
        transport = local_transport(5.0)
        ctx = Context()
        threading.Timer(0.2, ctx.cancel).start()
        t0 = time.monotonic()
        with pytest.raises(RequestCancelledError):
            execute(transport, "GET", f"{silent_server}/.json", ctx=ctx)
        assert time.monotonic() - t0 < 2.0

    def test_deadline_bounds_the_header_wait(self, silent_server, local_transport):
        transport = local_transport(5.0)
        t0 = time.monotonic()
        with pytest.raises(RequestTimeoutError):
            execute(transport, "GET", f"{silent_server}/.json", ctx=Context(timeout=0.3))
        assert time.monotonic() - t0 < 2.0

    def test_response_arriving_after_cancel_is_closed(self, mock_transport):
        transport, adapter = mock_transport((200, '"late"', {}))
        gate = threading.Event()
        replay = adapter.send

        def held_send(request, **kwargs):
            gate.wait(5)
            return replay(request, **kwargs)

        adapter.send = held_send
        ctx = Context()
        threading.Timer(0.1, ctx.cancel).start()
        with pytest.raises(RequestCancelledError):
            execute(transport, "GET", URL, ctx=ctx)

        gate.set()
        deadline = time.monotonic() + 2.0
        while time.monotonic() < deadline:
            if adapter.responses and adapter.responses[0].close_calls:
                break
            time.sleep(0.01)
        assert adapter.responses[0].close_calls == 1


class TestRedirects:
    def test_headers_survive_cross_host_redirect(self, mock_transport):
        transport, adapter = mock_transport(
            (307, "", {"Location": "https://other.firebaseio.com/users/.json"}),
            (200, '"done"', {}),
        )
        req = transport.prepare(
            "GET",
            URL,
            headers={"Authorization": "Bearer abc", "X-Firebase-Decoding": "1"},
        )
        resp = transport.perform(req, 2.0)
        resp.close()

        assert len(adapter.requests) == 2
        first, second = adapter.requests
        assert second.url == "https://other.firebaseio.com/users/.json"
        for key, value in first.headers.items():
            assert second.headers[key] == value
        assert second.headers["Authorization"] == "Bearer abc"

    def test_headers_survive_every_hop(self, mock_transport):
        transport, adapter = mock_transport(
            (301, "", {"Location": "https://a.example.com/.json"}),
            (302, "", {"Location": "https://b.example.com/.json"}),
            (200, "1", {}),
        )
        req = transport.prepare("GET", URL, headers={"Authorization": "Bearer abc"})
        transport.perform(req, 2.0).close()
        assert [r.headers["Authorization"] for r in adapter.requests] == ["Bearer abc"] * 3

    def test_body_headers_dropped_with_body(self, mock_transport):
        transport, adapter = mock_transport(
            (303, "", {"Location": "https://other.example.com/.json"}),
            (200, "null", {}),
        )
        execute(transport, "POST", URL, b'{"a":1}')
        second = adapter.requests[1]
        assert second.method == "GET"
        assert second.body is None
        assert "Content-Type" not in second.headers
        assert "Content-Length" not in second.headers

    def test_307_keeps_body(self, mock_transport):
        transport, adapter = mock_transport(
            (307, "", {"Location": "https://other.example.com/.json"}),
            (200, "null", {}),
        )
        execute(transport, "PUT", URL, b'{"a":1}')
        second = adapter.requests[1]
        assert second.method == "PUT"
        assert second.body == b'{"a":1}'
        assert second.headers["Content-Type"] == "application/json"

    def test_chain_at_limit_is_followed(self, mock_transport):
        hop = (307, "", {"Location": URL})
        transport, adapter = mock_transport(*([hop] * 30 + [(200, '"ok"', {})]))
        assert execute(transport, "GET", URL) == b'"ok"'
        assert len(adapter.requests) == 31

    def test_chain_over_limit_is_rejected(self, mock_transport):
        hop = (307, "", {"Location": URL})
        transport, adapter = mock_transport(*([hop] * 31 + [(200, '"ok"', {})]))
        with pytest.raises(requests.exceptions.TooManyRedirects):
            execute(transport, "GET", URL)
        assert len(adapter.requests) == 31

    def test_configured_limit(self, mock_transport):
        hop = (302, "", {"Location": URL})
        transport, adapter = mock_transport(hop, config=TransportConfig(max_redirects=2))
        with pytest.raises(requests.exceptions.TooManyRedirects):
            execute(transport, "GET", URL)
        assert len(adapter.requests) == 3


class TestHelpers:
    def test_send_returns_response_for_errors(self, mock_transport):
        transport, _ = mock_transport((404, "null", {"Content-Type": "application/json"}))
        resp = send(transport, "GET", URL)
        assert resp.status == 404
        assert not resp.ok
        assert resp.body == b"null"
        assert resp.final_url == URL

    def test_redact_url(self):
        url = "https://x.firebaseio.com/a/.json?access_token=tok&auth=sec&shallow=true"
        redacted = redact_url(url)
        q = parse_qs(urlparse(redacted).query)
        assert q["access_token"] == ["***"]
        assert q["auth"] == ["***"]
        assert q["shallow"] == ["true"]
        assert "access_token=***&auth=***" in redacted

    def test_redact_url_without_query(self):
        assert redact_url(URL) == URL

    def test_decode_text_uses_charset(self):
        raw = "café".encode("latin-1")
        assert decode_text(raw, {"Content-Type": "text/plain; charset=latin-1"}) == "café"
        assert decode_text(b"plain", {}) == "plain"
        assert decode_text(b"x", {"Content-Type": "text/plain; charset=bogus"}) == "x"
