"""
Read-only HTTP status API for the upload folder monitor.

Exposes monitor state for operators. This API is STRICTLY READ-ONLY:
no endpoint can trigger, cancel or alter a batch, and nothing about
ingested files is queryable beyond the last batch counters.

Security Warning:
-----------------
Binds to localhost (127.0.0.1) by default. There is no authentication;
only bind to another interface on a trusted network.
"""

import logging
import threading
from typing import Optional

from fastapi import FastAPI
from pydantic import BaseModel, ConfigDict

from .models import BatchSummary, MonitorState
from .monitor import UploadFolderMonitor

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"


class HealthResponse(BaseModel):
    """Response for health check endpoint."""

    model_config = ConfigDict(extra="forbid")

    status: str = "ok"


class StatusResponse(BaseModel):
    """Snapshot of the monitor."""

    model_config = ConfigDict(extra="forbid")

    running: bool
    state: MonitorState
    pending_count: int
    batches_run: int
    last_batch: Optional[BatchSummary] = None
    upload_folder: str
    destination_folder: str


def create_status_app(monitor: UploadFolderMonitor) -> FastAPI:
    """
    Create the read-only status application for a monitor.

    Args:
        monitor: The monitor to observe

    Returns:
        FastAPI application with GET endpoints only
    """
    app = FastAPI(
        title="File Mover Status API",
        description="Read-only view of the upload folder monitor.",
        version="0.1.0",
    )

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        return HealthResponse(status="ok")

    @app.get("/status", response_model=StatusResponse)
    async def status():
        orchestrator = monitor.orchestrator
        return StatusResponse(
            running=monitor.is_running,
            state=orchestrator.state,
            pending_count=orchestrator.pending_count,
            batches_run=orchestrator.batches_run,
            last_batch=orchestrator.last_summary,
            upload_folder=str(monitor.upload_folder),
            destination_folder=str(monitor.destination_folder),
        )

    return app


def start_status_server(
    monitor: UploadFolderMonitor,
    port: int,
    host: str = DEFAULT_HOST,
) -> threading.Thread:
    """
    Serve the status API from a daemon thread.

    The thread dies with the process; there is no separate shutdown.
    """
    import uvicorn

    app = create_status_app(monitor)
    config = uvicorn.Config(app, host=host, port=port, log_level="warning")
    server = uvicorn.Server(config)

    if host not in ("127.0.0.1", "localhost"):
        logger.warning(f"Status API bound to {host}: anyone on the network can read monitor state")

    thread = threading.Thread(target=server.run, daemon=True, name="status-api")
    thread.start()
    logger.info(f"Status API listening on http://{host}:{port}")
    return thread
