"""FastAPI application factory for the Clawboard API."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from .. import __version__
from ..config import Settings, load_settings
from ..task_engine.activities import ActivityService, ActivityStore
from ..task_engine.anchor import AnchorResolver
from ..task_engine.db import Database
from ..task_engine.engine import TaskLifecycle
from ..task_engine.projects import ProjectService, ProjectStore
from ..task_engine.store import TaskStore
from .activity_api import create_activity_router
from .errors import register_error_handlers
from .project_api import create_project_router
from .tag_api import create_tag_router
from .task_api import create_task_router
from .ws_hub import ChangeHub


@dataclass
class BoardContext:
    """Everything a request handler needs, built once per app."""

    settings: Settings
    db: Database
    tasks: TaskLifecycle
    projects: ProjectService
    activities: ActivityService
    anchors: AnchorResolver
    hub: ChangeHub

    @classmethod
    def from_settings(cls, settings: Settings, hub: Optional[ChangeHub] = None) -> "BoardContext":
        db = Database(settings.db_path)
        db.migrate()
        projects = ProjectService(ProjectStore(db))
        return cls(
            settings=settings,
            db=db,
            tasks=TaskLifecycle(TaskStore(db)),
            projects=projects,
            activities=ActivityService(ActivityStore(db)),
            anchors=AnchorResolver(projects.lookup),
            hub=hub or ChangeHub(),
        )


def create_app(
    settings: Optional[Settings] = None,
    enable_cors: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Explicit settings; defaults to :func:`load_settings`.
        enable_cors: Whether to enable CORS.

    Returns:
        Configured FastAPI app.
    """
    settings = settings or load_settings()
    ctx = BoardContext.from_settings(settings)
    logger.info("Clawboard database at {}", settings.db_path)

    app = FastAPI(
        title="Clawboard",
        description="Task board API with agent anchor resolution",
        version=__version__,
    )

    if enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.state.ctx = ctx
    register_error_handlers(app)

    app.include_router(create_task_router(ctx))
    app.include_router(create_project_router(ctx))
    app.include_router(create_tag_router(ctx))
    app.include_router(create_activity_router(ctx))

    @app.get("/api/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.websocket("/ws")
    async def changes(websocket: WebSocket) -> None:
        await ctx.hub.handle_connection(websocket)

    return app
