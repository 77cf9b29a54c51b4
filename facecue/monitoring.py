"""
Facecue - Status Server
FastAPI app exposing pipeline status, history and camera control.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, Literal

from fastapi import FastAPI, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .constants import STATUS_API_HOST, STATUS_API_PORT
from .matching.cloud import CloudAvailable

if TYPE_CHECKING:
    from .app import PipelineServices

logger = logging.getLogger(__name__)


class CameraModeRequest(BaseModel):
    """Request to change the camera mode."""

    mode: Literal["phone", "glasses", "auto"]


class StatusServer:
    """
    HTTP status API for a running pipeline.

    Provides:
    - GET  /api/status               tracker, arbiter, cloud and cache stats
    - GET  /api/history              recognition events (newest first)
    - GET  /api/history/summaries    per-person summaries
    - POST /api/camera-mode          switch phone/glasses/auto
    - POST /api/recognition/reset    cancel any attempt, return to idle
    - POST /api/recognition/trigger  manual "who is this?"
    """

    def __init__(self, services: PipelineServices) -> None:
        """
        Initialize the status server.

        Args:
            services: The pipeline services to expose
        """
        self._services = services
        self._app = self._create_app()
        self._server: Any = None  # uvicorn.Server

    @property
    def app(self) -> FastAPI:
        """Get the FastAPI application."""
        return self._app

    def get_status(self) -> dict[str, Any]:
        s = self._services
        if isinstance(s.cloud, CloudAvailable):
            cloud: dict[str, Any] = {"available": True, **s.cloud.matcher.get_stats()}
        else:
            cloud = {"available": False, "reason": s.cloud.reason}
        cloud["configured"] = s.pipeline.cloud_configured

        return {
            "timestamp": time.time(),
            "tracker": {**s.tracker.snapshot().to_dict(), **s.tracker.get_stats()},
            "arbiter": s.arbiter.get_stats(),
            "channel": s.channel.get_stats(),
            "cloud": cloud,
            "offline": s.offline.get_stats(),
            "pipeline": s.pipeline.get_stats(),
            "history": s.history.get_stats(),
        }

    def _create_app(self) -> FastAPI:
        """Create and configure the FastAPI application."""
        app = FastAPI(
            title="Facecue Status",
            description="Status and control for the face-recognition pipeline",
            version="1.0.0",
        )

        @app.get("/api/status")
        async def get_status() -> dict[str, Any]:
            """Get full pipeline status."""
            return self.get_status()

        @app.get("/api/history")
        async def get_history(
            person_id: str | None = None,
            limit: int = Query(50, ge=1, le=500),
            include_thumbnails: bool = False,
        ) -> dict[str, Any]:
            """Get recent recognition events."""
            history = self._services.history
            events = history.events_for(person_id) if person_id else history.events
            items = []
            for event in events[:limit]:
                item = event.to_dict()
                if not include_thumbnails:
                    item.pop("thumbnail", None)
                items.append(item)
            return {"events": items, "total": len(events)}

        @app.get("/api/history/summaries")
        async def get_summaries() -> dict[str, Any]:
            """Get per-person recognition summaries."""
            return {"summaries": [s.to_dict() for s in self._services.history.summaries()]}

        @app.post("/api/camera-mode")
        async def set_camera_mode(request: CameraModeRequest) -> JSONResponse:
            """Switch the camera mode."""
            arbiter = self._services.arbiter
            await arbiter.set_mode(request.mode)
            return JSONResponse({
                "success": True,
                "mode": arbiter.mode.value,
                "routed": arbiter.routed.value,
                "status": arbiter.status_message,
            })

        @app.post("/api/recognition/reset")
        async def reset_recognition() -> JSONResponse:
            """Cancel any in-flight attempt and return the tracker to idle."""
            await self._services.pipeline.reset()
            return JSONResponse({"success": True, "phase": self._services.tracker.phase.value})

        @app.post("/api/recognition/trigger")
        async def trigger_recognition() -> JSONResponse:
            """Manually start a recognition attempt on the latest frame."""
            started = await self._services.pipeline.recognize_now()
            if not started:
                return JSONResponse(
                    {"success": False, "message": "No frame available or attempt in flight"},
                    status_code=409,
                )
            return JSONResponse({"success": True})

        return app

    async def serve(self, host: str = STATUS_API_HOST, port: int = STATUS_API_PORT) -> None:
        """Serve the API with uvicorn until stop() is called."""
        import uvicorn

        config = uvicorn.Config(
            self._app,
            host=host,
            port=port,
            log_level="warning",  # Reduce uvicorn log noise
        )
        self._server = uvicorn.Server(config)
        logger.info(f"Status API available at http://{host}:{port}")
        await self._server.serve()

    def stop(self) -> None:
        """Signal uvicorn to shut down."""
        if self._server is not None:
            self._server.should_exit = True
