"""Activity log endpoints, mounted under ``/api/activities``."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel

if TYPE_CHECKING:
    from .app import BoardContext


class CreateActivityRequest(BaseModel):
    agent: Optional[str] = None
    activity_type: Optional[str] = None
    description: Optional[str] = None
    details: Optional[str] = None
    session_key: Optional[str] = None
    related_task_id: Optional[int] = None
    source_id: Optional[str] = None


def create_activity_router(ctx: "BoardContext") -> APIRouter:
    router = APIRouter(prefix="/api/activities", tags=["activities"])
    service = ctx.activities

    @router.get("")
    async def list_activities(
        agent: Optional[str] = Query(None),
        since: Optional[str] = Query(None),
        limit: Optional[int] = Query(None),
        offset: Optional[int] = Query(None),
    ) -> list[dict[str, Any]]:
        activities = service.list(agent=agent, since=since, limit=limit, offset=offset)
        return [a.to_dict() for a in activities]

    @router.post("", status_code=201)
    async def create_activity(body: CreateActivityRequest) -> dict[str, Any]:
        activity = service.create(body.model_dump()).to_dict()
        ctx.hub.broadcast("activity_created", activity)
        return activity

    @router.get("/stats")
    async def activity_stats() -> dict[str, Any]:
        return service.stats()

    @router.get("/agent/{agent}")
    async def list_agent_activities(agent: str, limit: Optional[int] = Query(None)) -> list[dict[str, Any]]:
        return [a.to_dict() for a in service.list_by_agent(agent, limit)]

    return router
