"""
Brief: Shared pytest configuration and fixtures for pihole-exporter tests.

Inputs:
  - None

Outputs:
  - Per-test 10s timeout, src/ on sys.path, and a local stub Pi-hole API
    server fixture.
"""

import json
import os
import signal
import sys
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import pytest

# Ensure 'src' is on sys.path so 'pihole_exporter' package is importable in tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC_DIR = os.path.join(ROOT, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

FIXTURES = Path(__file__).parent / "fixtures"


def _alarm_handler(signum, frame):
    """
    Brief: Signal handler that raises TimeoutError when alarm triggers.

    Inputs:
      - signum: signal number (int)
      - frame: current frame (ignored)

    Outputs:
      - None: Raises TimeoutError to fail the test
    """
    raise TimeoutError("Test exceeded 10 seconds")


if hasattr(signal, "SIGALRM"):
    signal.signal(signal.SIGALRM, _alarm_handler)


@pytest.fixture(autouse=True)
def enforce_test_timeout():
    """
    Brief: Enforce a hard 10-second timeout for each test.

    Inputs:
      - None

    Outputs:
      - None: Cancels alarm after test
    """
    if hasattr(signal, "SIGALRM"):
        signal.alarm(10)
        try:
            yield
        finally:
            signal.alarm(0)
    else:
        yield


class _StubPiholeHandler(BaseHTTPRequestHandler):
    def do_GET(self):  # noqa: N802
        srv = self.server
        srv.requests.append({"path": self.path, "headers": dict(self.headers)})
        body = srv.body
        self.send_response(srv.status)
        self.send_header("Content-Type", srv.content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):  # noqa: A002
        return


class StubPiholeServer:
    """
    Brief: Minimal Pi-hole API stand-in serving a fixed body on every GET.

    Inputs:
      - body: bytes written for each request.
      - status: HTTP status code (default 200).
      - content_type: Content-Type header value.

    Outputs:
      - Running server; .url is the base endpoint, .requests lists the
        path and headers of every request received.
    """

    def __init__(self, body: bytes, status: int = 200, content_type: str = "application/json"):
        self._httpd = ThreadingHTTPServer(("127.0.0.1", 0), _StubPiholeHandler)
        self._httpd.body = body
        self._httpd.status = status
        self._httpd.content_type = content_type
        self._httpd.requests = []
        self._thread = threading.Thread(target=self._httpd.serve_forever, daemon=True)
        self._thread.start()

    @property
    def url(self) -> str:
        host, port = self._httpd.server_address[:2]
        return f"http://{host}:{port}"

    @property
    def requests(self) -> list:
        return self._httpd.requests

    def close(self) -> None:
        self._httpd.shutdown()
        self._httpd.server_close()
        self._thread.join(timeout=2.0)


@pytest.fixture
def stats_body() -> bytes:
    """
    Brief: Raw bytes of the recorded Pi-hole api.php response fixture.

    Outputs:
      - bytes of tests/fixtures/stats.json
    """
    return (FIXTURES / "stats.json").read_bytes()


@pytest.fixture
def stats_payload(stats_body) -> dict:
    return json.loads(stats_body)


@pytest.fixture
def pihole_server():
    """
    Brief: Factory fixture starting StubPiholeServer instances.

    Inputs:
      - Called as pihole_server(body, status=200, content_type=...)

    Outputs:
      - StubPiholeServer; every server started is shut down after the test.
    """
    servers = []

    def _start(body: bytes, status: int = 200, content_type: str = "application/json"):
        srv = StubPiholeServer(body, status=status, content_type=content_type)
        servers.append(srv)
        return srv

    yield _start
    for srv in servers:
        srv.close()


@pytest.fixture
def unused_endpoint() -> str:
    """
    Brief: http:// URL on a local port that nothing is listening on.

    Outputs:
      - str endpoint whose connections are refused.
    """
    import socket

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        port = s.getsockname()[1]
    return f"http://127.0.0.1:{port}"
