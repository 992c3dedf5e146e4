"""Prometheus scrape endpoint and health check, served by uvicorn in a background thread."""
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from deployment_tracker.monitoring.metrics import REGISTRY

logger = logging.getLogger(__name__)

SHUTDOWN_TIMEOUT_SECONDS = 5.0


def create_app(is_ready: Optional[Callable[[], bool]] = None) -> FastAPI:
    """
    Build the metrics app.

    is_ready: returns True once the controller can do useful work (informer
    synced). /healthz answers 503 until then.
    """
    app = FastAPI(title="deployment-tracker", docs_url=None, redoc_url=None, openapi_url=None)

    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)

    @app.get("/healthz")
    def healthz():
        if is_ready is not None and not is_ready():
            return JSONResponse(status_code=503, content={"status": "starting"})
        return {"status": "ok"}

    return app


class MetricsServer:
    """Runs the metrics app on its own thread; stop() shuts it down gracefully."""

    def __init__(self, app: FastAPI, port: int, host: str = "0.0.0.0"):
        self.host = host
        self.port = port
        config = uvicorn.Config(app, host=host, port=port, log_level="warning", access_log=False)
        # uvicorn only installs signal handlers on the main thread
        self._server = uvicorn.Server(config)
        self._thread = threading.Thread(target=self._serve, name="metrics-server", daemon=True)

    def _serve(self) -> None:
        try:
            self._server.run()
        except Exception:
            logger.exception("failed to start metrics server")

    def start(self) -> None:
        logger.info("starting Prometheus metrics server url=%s:%s", self.host, self.port)
        self._thread.start()

    def stop(self) -> None:
        self._server.should_exit = True
        self._thread.join(timeout=SHUTDOWN_TIMEOUT_SECONDS)
        if self._thread.is_alive():
            logger.error("failed to shutdown metrics server gracefully")
