"""Tests for the FastAPI-based exposition server in pihole_exporter.servers.webserver.

Inputs:
  - pytest fixtures and FastAPI TestClient

Outputs:
  - Assertions that /metrics, / and /health behave as expected with fake
    collectors, a stub Pi-hole API and an unreachable upstream.

Most tests exercise create_app() directly without starting a real uvicorn
server, keeping them fast and deterministic.
"""

from __future__ import annotations

import logging
import socket

import pytest
import requests
from fastapi.testclient import TestClient

from pihole_exporter.collector import PiholeCollector
from pihole_exporter.config.config_schema import ExporterConfig
from pihole_exporter.errors import InvalidEndpoint
from pihole_exporter.pihole.models import Snapshot
from pihole_exporter.servers.webserver import (
    WebServerHandle,
    _Suppress2xxAccessFilter,
    build_registry,
    create_app,
    install_uvicorn_2xx_suppression,
    render_landing_page,
    start_webserver,
)


class _FakeClient:
    def __init__(self, snapshot: Snapshot) -> None:
        self.snapshot = snapshot
        self.calls = 0

    def fetch(self) -> Snapshot:
        self.calls += 1
        return self.snapshot


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def test_metrics_endpoint_serves_exposition_text(stats_payload) -> None:
    """Brief: GET /metrics returns Prometheus text for a fresh fetch per scrape.

    Inputs:
      - App with a fake collector returning the recorded fixture.

    Outputs:
      - HTTP 200, Prometheus content type, expected sample lines, one fetch
        per request.
    """

    fake = _FakeClient(Snapshot.model_validate(stats_payload))
    app = create_app(
        ExporterConfig(endpoint="http://pi.hole"), collector=PiholeCollector(fake)
    )
    client = TestClient(app)

    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/plain")
    assert "pihole_domains_being_blocked_total 122074.0" in resp.text
    assert "pihole_dns_queries_today_total 5817.0" in resp.text

    client.get("/metrics")
    assert fake.calls == 2


def test_metrics_endpoint_end_to_end_with_stub_pihole(pihole_server, stats_body) -> None:
    """Brief: The default collector built from config talks to the Pi-hole API."""

    srv = pihole_server(stats_body)
    app = create_app(ExporterConfig(endpoint=srv.url, auth="tok"))
    resp = TestClient(app).get("/metrics")

    assert resp.status_code == 200
    assert "pihole_domains_being_blocked_total 122074.0" in resp.text
    assert srv.requests[0]["path"].endswith("&auth=tok")


def test_upstream_failure_returns_200_with_no_samples(unused_endpoint, caplog) -> None:
    """Brief: An unreachable Pi-hole yields an empty HTTP 200 scrape, not an error.

    Inputs:
      - App pointing at a local port with nothing listening.

    Outputs:
      - HTTP 200, empty body, error logged by the collector.
    """

    app = create_app(ExporterConfig(endpoint=unused_endpoint))
    with caplog.at_level(logging.ERROR, logger="pihole_exporter.collector"):
        resp = TestClient(app).get("/metrics")

    assert resp.status_code == 200
    assert resp.text == ""
    assert "Pihole error" in caplog.text


def test_decode_failure_returns_200_with_no_samples(pihole_server) -> None:
    srv = pihole_server(b"[]")
    resp = TestClient(create_app(ExporterConfig(endpoint=srv.url))).get("/metrics")
    assert resp.status_code == 200
    assert "pihole_" not in resp.text


def test_landing_page_links_to_metrics_path() -> None:
    """Brief: GET / serves HTML with an anchor pointing at the metrics path."""

    app = create_app(
        ExporterConfig(endpoint="http://pi.hole"),
        collector=PiholeCollector(_FakeClient(Snapshot())),
    )
    resp = TestClient(app).get("/")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/html")
    assert "<title>Pihole Exporter</title>" in resp.text
    assert "<a href='/metrics'>Metrics</a>" in resp.text


def test_custom_metrics_path() -> None:
    """Brief: A configured telemetry path replaces /metrics everywhere."""

    cfg = ExporterConfig(endpoint="http://pi.hole", metrics_path="/pihole/metrics")
    client = TestClient(
        create_app(cfg, collector=PiholeCollector(_FakeClient(Snapshot(dns_queries_today=3))))
    )

    assert "<a href='/pihole/metrics'>Metrics</a>" in client.get("/").text
    resp = client.get("/pihole/metrics")
    assert resp.status_code == 200
    assert "pihole_dns_queries_today_total 3.0" in resp.text
    assert client.get("/metrics").status_code == 404


def test_landing_page_escapes_path() -> None:
    page = render_landing_page("/m'x")
    assert "href='/m&#x27;x'" in page


def test_health_endpoint_does_not_scrape() -> None:
    fake = _FakeClient(Snapshot())
    client = TestClient(
        create_app(ExporterConfig(endpoint="http://pi.hole"), collector=PiholeCollector(fake))
    )
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
    assert fake.calls == 0


def test_process_metrics_are_opt_in() -> None:
    collector = PiholeCollector(_FakeClient(Snapshot()))
    off = TestClient(create_app(ExporterConfig(endpoint="http://pi.hole"), collector=collector))
    on = TestClient(
        create_app(
            ExporterConfig(endpoint="http://pi.hole", include_process_metrics=True),
            collector=collector,
        )
    )
    assert "python_info" not in off.get("/metrics").text
    assert "python_info" in on.get("/metrics").text


def test_build_registry_rejects_https_endpoint() -> None:
    with pytest.raises(InvalidEndpoint):
        build_registry(ExporterConfig(endpoint="https://pi.hole"))


def test_post_to_metrics_not_allowed() -> None:
    client = TestClient(
        create_app(
            ExporterConfig(endpoint="http://pi.hole"),
            collector=PiholeCollector(_FakeClient(Snapshot())),
        )
    )
    assert client.post("/metrics").status_code == 405


def test_suppress2xx_filter_handles_status_attribute() -> None:
    """Brief: _Suppress2xxAccessFilter must drop 2xx when status_code attr is set.

    Inputs:
      - Synthetic LogRecord instances with status_code attribute.

    Outputs:
      - Filter returns False for 2xx and True for non-2xx status codes.
    """

    flt = _Suppress2xxAccessFilter()

    rec_200 = logging.LogRecord("uvicorn.access", logging.INFO, __file__, 0, "ok", (), None)
    rec_200.status_code = 200
    rec_404 = logging.LogRecord("uvicorn.access", logging.INFO, __file__, 0, "nf", (), None)
    rec_404.status_code = 404

    assert flt.filter(rec_200) is False
    assert flt.filter(rec_404) is True


def test_suppress2xx_filter_uses_positional_args_and_keeps_unknown() -> None:
    flt = _Suppress2xxAccessFilter()
    rec = logging.LogRecord(
        "uvicorn.access",
        logging.INFO,
        __file__,
        0,
        '%s - "%s %s HTTP/%s" %d',
        ("127.0.0.1:5555", "GET", "/metrics", "1.1", 204),
        None,
    )
    assert flt.filter(rec) is False

    rec_unknown = logging.LogRecord(
        "uvicorn.access", logging.INFO, __file__, 0, "plain", ("x",), None
    )
    assert flt.filter(rec_unknown) is True


def test_install_uvicorn_2xx_suppression_is_idempotent() -> None:
    access_logger = logging.getLogger("uvicorn.access")
    install_uvicorn_2xx_suppression()
    install_uvicorn_2xx_suppression()
    count = sum(isinstance(f, _Suppress2xxAccessFilter) for f in access_logger.filters)
    assert count == 1


def test_start_webserver_serves_and_stops() -> None:
    """Brief: start_webserver runs uvicorn in a thread that stop() ends.

    Inputs:
      - Config bound to a free loopback port, fake collector.

    Outputs:
      - Running handle, reachable landing page, thread gone after stop().
    """

    port = _free_port()
    cfg = ExporterConfig(endpoint="http://pi.hole", listen_address=f"127.0.0.1:{port}")
    app = create_app(cfg, collector=PiholeCollector(_FakeClient(Snapshot(dns_queries_today=9))))

    handle = start_webserver(cfg, app=app)
    try:
        assert isinstance(handle, WebServerHandle)
        assert handle.is_running()
        resp = requests.get(f"http://127.0.0.1:{port}/metrics", timeout=5)
        assert resp.status_code == 200
        assert "pihole_dns_queries_today_total 9.0" in resp.text
    finally:
        handle.stop()
    assert not handle.is_running()


def test_start_webserver_bind_failure_raises() -> None:
    """Brief: An occupied listen address surfaces as RuntimeError from start_webserver."""

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as busy:
        busy.bind(("127.0.0.1", 0))
        busy.listen(1)
        port = busy.getsockname()[1]
        cfg = ExporterConfig(endpoint="http://pi.hole", listen_address=f"127.0.0.1:{port}")
        app = create_app(cfg, collector=PiholeCollector(_FakeClient(Snapshot())))
        with pytest.raises(RuntimeError):
            start_webserver(cfg, app=app)
