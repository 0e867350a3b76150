"""Exposition HTTP server for pihole-exporter (metrics, landing page, health).

This module provides a small FastAPI application and helpers to run it with
uvicorn in a background thread. Every scrape of the metrics path triggers one
Pi-hole API call through the registered PiholeCollector; nothing is cached
between requests.
"""

from __future__ import annotations

import html
import logging
import threading
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI
from fastapi.responses import HTMLResponse, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    GC_COLLECTOR,
    PLATFORM_COLLECTOR,
    PROCESS_COLLECTOR,
    CollectorRegistry,
    generate_latest,
)

from .. import __version__
from ..collector import PiholeCollector
from ..config.config_schema import ExporterConfig
from ..config.logging_config import get_level
from ..pihole.client import PiholeClient

logger = logging.getLogger("pihole_exporter.webserver")

_LANDING_PAGE = """<html>
             <head><title>Pihole Exporter</title></head>
             <body>
             <h1>Pihole Exporter</h1>
             <p><a href='{metrics_path}'>Metrics</a></p>
             </body>
             </html>"""


class _Suppress2xxAccessFilter(logging.Filter):
    """Logging filter that drops uvicorn access records for HTTP 2xx responses.

    Inputs:
      - record: logging.LogRecord instance from uvicorn.access or other loggers.

    Outputs:
      - bool: False for records that clearly correspond to HTTP 2xx status codes,
        True otherwise (including when no status code can be determined).

    Example:
      >>> import logging
      >>> access_logger = logging.getLogger("uvicorn.access")
      >>> access_logger.addFilter(_Suppress2xxAccessFilter())
    """

    def filter(self, record: logging.LogRecord) -> bool:
        status = getattr(record, "status_code", None)

        # uvicorn's access logger passes the status code as the last positional arg
        if status is None:
            args = getattr(record, "args", None)
            if isinstance(args, dict):
                status = args.get("status_code") or args.get("status")
            elif isinstance(args, (tuple, list)) and args:
                status = args[-1]

        try:
            code = int(status)
        except (TypeError, ValueError):
            return True

        return not (200 <= code <= 299)


def install_uvicorn_2xx_suppression() -> None:
    """Attach _Suppress2xxAccessFilter to the uvicorn.access logger once.

    Prometheus scrapes every few seconds; logging each successful scrape
    would drown out everything else.
    """

    access_logger = logging.getLogger("uvicorn.access")
    for f in getattr(access_logger, "filters", []):
        if isinstance(f, _Suppress2xxAccessFilter):
            return
    access_logger.addFilter(_Suppress2xxAccessFilter())


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def render_landing_page(metrics_path: str) -> str:
    """Return the static landing page linking to metrics_path."""

    return _LANDING_PAGE.format(metrics_path=html.escape(metrics_path, quote=True))


def build_registry(
    config: ExporterConfig, collector: Optional[PiholeCollector] = None
) -> CollectorRegistry:
    """Brief: Create the per-app CollectorRegistry.

    Inputs:
      - config: ExporterConfig; endpoint/auth/timeout are used when no
        collector is supplied, include_process_metrics adds the
        prometheus_client process, platform and gc collectors.
      - collector: Optional pre-built collector (tests inject fakes here).

    Outputs:
      - CollectorRegistry with the Pi-hole collector registered.

    Raises:
      - InvalidEndpoint: when a client has to be built from a non-http endpoint.
    """

    if collector is None:
        client = PiholeClient(config.endpoint, auth=config.auth, timeout=config.timeout)
        collector = PiholeCollector(client)

    registry = CollectorRegistry()
    registry.register(collector)
    if config.include_process_metrics:
        for extra in (PROCESS_COLLECTOR, PLATFORM_COLLECTOR, GC_COLLECTOR):
            registry.register(extra)
    return registry


def create_app(
    config: ExporterConfig,
    collector: Optional[PiholeCollector] = None,
    registry: Optional[CollectorRegistry] = None,
) -> FastAPI:
    """Create and configure the FastAPI app exposing exporter endpoints.

    Inputs:
      - config: Validated ExporterConfig.
      - collector: Optional collector; built from config when omitted.
      - registry: Optional registry; built via build_registry() when omitted.

    Outputs:
      - FastAPI application serving GET <metrics_path>, GET / and GET /health.

    Example:
      >>> cfg = ExporterConfig(endpoint="http://pi.hole")
      >>> app = create_app(cfg)
    """

    if registry is None:
        registry = build_registry(config, collector)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        install_uvicorn_2xx_suppression()
        yield

    app = FastAPI(
        title="Pihole Exporter",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.config = config
    app.state.registry = registry

    landing_page = render_landing_page(config.metrics_path)

    # Sync handler: FastAPI runs it in the threadpool, so the blocking
    # upstream call inside generate_latest() does not stall the event loop.
    @app.get(config.metrics_path, include_in_schema=False)
    def metrics() -> Response:
        """Serve the Prometheus text exposition for one fresh upstream fetch.

        Upstream failures are logged by the collector and produce an empty
        exposition with HTTP 200.
        """

        return Response(generate_latest(registry), media_type=CONTENT_TYPE_LATEST)

    @app.get("/", response_class=HTMLResponse, include_in_schema=False)
    async def index() -> HTMLResponse:
        return HTMLResponse(landing_page)

    @app.get("/health", include_in_schema=False)
    async def health() -> Dict[str, Any]:
        """Liveness probe; does not contact the Pi-hole API."""

        return {"status": "ok", "server_time": _utc_now_iso()}

    return app


class WebServerHandle:
    """Handle for a background uvicorn server thread.

    Inputs (constructor):
      - thread: Thread object running the uvicorn server loop.
      - server: Optional uvicorn.Server instance.

    Outputs:
      - WebServerHandle instance with stop() and is_running().

    Example:
      >>> # created via start_webserver() in main
    """

    def __init__(self, thread: threading.Thread, server: Any | None = None) -> None:
        self._thread = thread
        self._server = server

    def is_running(self) -> bool:
        """Return True if the underlying thread is alive."""

        return self._thread.is_alive()

    def stop(self, timeout: float = 5.0) -> None:
        """Ask uvicorn to exit and wait up to timeout seconds for the thread."""

        try:
            if self._server is not None:
                self._server.should_exit = True
            self._thread.join(timeout=timeout)
        except Exception:
            logger.exception("Error while stopping webserver thread")


def start_webserver(
    config: ExporterConfig,
    app: Optional[FastAPI] = None,
    startup_timeout: float = 10.0,
) -> WebServerHandle:
    """Start uvicorn serving the exporter app in a daemon thread.

    Inputs:
      - config: ExporterConfig (listen_address and log_level are used).
      - app: Optional pre-built app; create_app(config) when omitted.
      - startup_timeout: Seconds to wait for the listening socket.

    Outputs:
      - WebServerHandle for the running server.

    Raises:
      - RuntimeError: when uvicorn exits before it starts serving (for
        example because the listen address is already in use) or does not
        start within startup_timeout.

    Example:
      >>> handle = start_webserver(cfg)
      >>> handle.is_running()
      True
    """

    import uvicorn

    host, port = config.listen
    if app is None:
        app = create_app(config)

    # log_config=None keeps uvicorn's loggers on the root handlers set up by
    # init_logging().
    config_uvicorn = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level=get_level(config.log_level),
        log_config=None,
    )
    server = uvicorn.Server(config_uvicorn)

    def _runner() -> None:
        try:
            server.run()
        except SystemExit as exc:
            # uvicorn calls sys.exit(1) when it cannot bind.
            logger.error("Webserver exited with status %s", exc.code)
        except Exception:
            logger.exception("Unhandled exception in webserver thread")

    thread = threading.Thread(target=_runner, name="pihole-exporter-webserver", daemon=True)
    thread.start()

    deadline = time.monotonic() + startup_timeout
    while not server.started:
        if not thread.is_alive():
            raise RuntimeError(f"webserver failed to start on {host}:{port}")
        if time.monotonic() > deadline:
            server.should_exit = True
            raise RuntimeError(
                f"webserver did not start on {host}:{port} within {startup_timeout}s"
            )
        time.sleep(0.05)

    logger.info("Listening on %s", config.listen_address)
    return WebServerHandle(thread, server)
