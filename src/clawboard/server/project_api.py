"""Project API endpoints, mounted under ``/api/projects``."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel, ConfigDict

if TYPE_CHECKING:
    from .app import BoardContext


class CreateProjectRequest(BaseModel):
    name: Optional[str] = None
    path: Optional[str] = None
    description: Optional[str] = None


class UpdateProjectRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    description: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None


def create_project_router(ctx: "BoardContext") -> APIRouter:
    """Create the project API router bound to *ctx*."""
    router = APIRouter(prefix="/api/projects", tags=["projects"])
    service = ctx.projects

    @router.get("")
    async def list_projects() -> list[dict[str, Any]]:
        return [p.to_dict() for p in service.list()]

    # Registered before ``/{project_id}`` so "stats" is not parsed as an id.
    @router.get("/stats/summary")
    async def summary_stats() -> dict[str, Any]:
        return service.summary_stats()

    @router.post("", status_code=201)
    async def create_project(body: CreateProjectRequest) -> dict[str, Any]:
        project = service.create(body.name, body.path, body.description).to_dict()
        ctx.hub.broadcast("projects_updated", {"created": 1, "project": project})
        return project

    @router.get("/{project_id}")
    async def get_project(project_id: int) -> dict[str, Any]:
        return service.get(project_id).to_dict()

    @router.patch("/{project_id}")
    async def update_project(project_id: int, body: UpdateProjectRequest) -> dict[str, Any]:
        project = service.update(project_id, body.model_dump(exclude_unset=True)).to_dict()
        ctx.hub.broadcast("projects_updated", {"updated": 1, "project": project})
        return project

    @router.delete("/{project_id}")
    async def delete_project(project_id: int, cleanupTasks: bool = Query(False)) -> dict[str, Any]:  # noqa: N803
        service.delete(project_id, cleanup_tasks=cleanupTasks)
        ctx.hub.broadcast(
            "projects_updated",
            {"deleted": 1, "project_id": project_id, "tasks_deleted": cleanupTasks},
        )
        if cleanupTasks:
            # Tasks vanished along with the project.
            ctx.hub.broadcast("tasks_bulk_updated", {"project_deleted": project_id})
        return {
            "success": True,
            "message": "Project and tasks deleted" if cleanupTasks else "Project removed, tasks unlinked",
        }

    @router.post("/{project_id}/assign-unassigned")
    async def assign_unassigned(project_id: int) -> dict[str, int]:
        result = service.assign_unassigned_tasks(project_id)
        ctx.hub.broadcast(
            "tasks_bulk_updated",
            {"project_assigned": result["updated"], "project_id": project_id},
        )
        return result

    @router.get("/{project_id}/stats")
    async def project_stats(project_id: int) -> dict[str, Any]:
        return service.stats(project_id)

    return router
