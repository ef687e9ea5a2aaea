"""HTTP status and control endpoints for a running collector service."""

import structlog
from fastapi import BackgroundTasks, FastAPI
from fastapi.responses import JSONResponse

from . import __version__
from .scheduler.service import CollectorService

logger = structlog.get_logger(__name__)


def create_app(service: CollectorService) -> FastAPI:
    """Build the API around ``service``; the app starts and stops the service with it."""
    app = FastAPI(title="Event Collector", version=__version__)

    @app.on_event("startup")
    async def startup_event():
        await service.start()

    @app.on_event("shutdown")
    async def shutdown_event():
        await service.stop()

    @app.get("/")
    async def root():
        """Health check endpoint."""
        status = "stopped" if service.fatal_error else "healthy"
        return {"status": status, "service": "event-collector"}

    @app.get("/status")
    async def get_status():
        """Get service status and the last cycle report."""
        return service.get_status()

    @app.get("/history")
    async def get_history():
        """Reports of the most recent cycles, oldest first."""
        return {"reports": list(service.history)}

    @app.post("/run")
    async def run_cycle(background_tasks: BackgroundTasks):
        """Run a collection cycle now for the window since the last one."""
        if service.collector.in_progress:
            return JSONResponse(content={"error": "Collection cycle already running"}, status_code=409)

        background_tasks.add_task(service.tick)
        logger.info("Manual collection cycle requested")
        return {"message": "Collection cycle started", "status": "running"}

    @app.post("/pause")
    async def pause():
        """Pause the periodic collection job."""
        if not service.pause():
            return JSONResponse(content={"error": "Collection job not scheduled"}, status_code=503)
        return {"message": "Collection paused", "paused": True}

    @app.post("/resume")
    async def resume():
        """Resume the periodic collection job."""
        if not service.resume():
            return JSONResponse(content={"error": "Collection job not scheduled"}, status_code=503)
        return {"message": "Collection resumed", "paused": False}

    return app
