import io
import socket

import pytest
from requests import adapters, models

from firerest.config.app_config import TransportConfig
from firerest.http.transport import Transport


class TrackedResponse(models.Response):
    def __init__(self):
        super().__init__()
        self.close_calls = 0

    def close(self):
        self.close_calls += 1
        super().close()


class MockAdapter(adapters.HTTPAdapter):
    """
    Replays a script of canned responses and records every request it sees.

    Script items are either exceptions (raised from send) or
    (status, body, headers) tuples. The last item repeats once the script
    runs out.
    """

    def __init__(self, script):
        super().__init__()
        self._script = list(script)
        self.requests = []
        self.kwargs = []
        self.responses = []

    def send(self, request, **kwargs):
        self.requests.append(request)
        self.kwargs.append(kwargs)
        item = self._script[0] if len(self._script) == 1 else self._script.pop(0)
        if isinstance(item, BaseException):
            raise item
        status, body, headers = item
        resp = TrackedResponse()
        resp.url = request.url
        resp.request = request
        resp.status_code = status
        resp.headers.update(headers or {})
        resp.raw = io.BytesIO(body.encode("utf-8") if isinstance(body, str) else body)
        resp.connection = self
        self.responses.append(resp)
        return resp


def ok(body="null", headers=None):
    return (200, body, headers or {})


@pytest.fixture
def mock_transport():
    """
    mock_transport(*script, config=None) -> (Transport, MockAdapter)
    """

    def _make(*script, config=None):
        transport = Transport(config or TransportConfig(timeout=2.0))
        adapter = MockAdapter(script or [ok()])
        transport.session.mount("https://", adapter)
        transport.session.mount("http://", adapter)
        return transport, adapter

    return _make


@pytest.fixture
def silent_server():
    """Base URL of a local server that accepts connections but never answers."""
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(8)
    try:
        yield f"http://127.0.0.1:{server.getsockname()[1]}"
    finally:
        server.close()


@pytest.fixture
def local_transport():
    """
    local_transport(timeout) -> real Transport for loopback servers, ignoring
    proxy settings from the environment. Closed after the test.
    """
    made = []

    def _make(timeout):
        transport = Transport(TransportConfig(timeout=timeout))
        transport.session.trust_env = False
        made.append(transport)
        return transport

    yield _make
    for transport in made:
        transport.close()
