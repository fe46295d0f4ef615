"""Task API endpoints for the board.

This module provides a FastAPI router with CRUD, bulk operations, reordering
and archival.  It is mounted under ``/api/tasks`` by :func:`create_app`.
Every mutation is followed by a change event on the WebSocket hub.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional, Union

from fastapi import APIRouter, Query, Response
from pydantic import BaseModel, ConfigDict, Field

from ..task_engine.errors import ValidationError
from ..task_engine.model import UNSET, Task

if TYPE_CHECKING:
    from .app import BoardContext


# ---------------------------------------------------------------------------
# Pydantic request models
# ---------------------------------------------------------------------------

TagsInput = Union[list[Any], str, None]


class CreateTaskRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str
    description: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    due_date: Optional[str] = None
    tags: TagsInput = None
    blocked_reason: Optional[str] = None
    assigned_to_type: Optional[str] = None
    assigned_to_id: Optional[str] = None
    non_agent: Optional[bool] = None
    is_someday: Optional[bool] = None
    anchor: Optional[str] = None
    position: Optional[int] = None
    project_id: Optional[int] = None
    context_key: Optional[str] = None
    context_type: Optional[str] = None


class UpdateTaskRequest(BaseModel):
    """Partial update; only fields present in the JSON body are applied."""

    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    due_date: Optional[str] = None
    tags: TagsInput = None
    blocked_reason: Optional[str] = None
    assigned_to_type: Optional[str] = None
    assigned_to_id: Optional[str] = None
    non_agent: Optional[bool] = None
    is_someday: Optional[bool] = None
    anchor: Optional[str] = None
    position: Optional[int] = None
    project_id: Optional[int] = None
    context_key: Optional[str] = None
    context_type: Optional[str] = None
    archived_at: Optional[str] = None


class BulkIdsRequest(BaseModel):
    ids: list[int] = Field(default_factory=list)


class BulkStatusRequest(BulkIdsRequest):
    status: Optional[str] = None


class BulkAssigneeRequest(BulkIdsRequest):
    assigned_to_type: Optional[str] = None
    assigned_to_id: Optional[str] = None


class BulkProjectRequest(BulkIdsRequest):
    project_id: Optional[int] = None


class ReorderItem(BaseModel):
    id: int
    status: str
    position: int


class ArchiveDoneRequest(BaseModel):
    assigned_to: Optional[str] = None


# ---------------------------------------------------------------------------
# Query parsing
# ---------------------------------------------------------------------------

def _parse_bool(raw: Optional[str], field: str) -> Optional[bool]:
    if raw is None:
        return None
    value = raw.strip().lower()
    if value in ("1", "true"):
        return True
    if value in ("0", "false"):
        return False
    raise ValidationError(f"Invalid {field}")


def _assignee_type_filter(raw: Optional[str]) -> Any:
    if raw is None or not raw.strip():
        return UNSET
    return raw


def _assignee_id_filter(raw: Optional[str]) -> Any:
    # ``?assigned_to_id=`` asks for unassigned tasks.
    if raw is None:
        return UNSET
    return raw.strip() or None


# ---------------------------------------------------------------------------
# Router factory
# ---------------------------------------------------------------------------

def create_task_router(ctx: "BoardContext") -> APIRouter:
    """Create the task API router bound to *ctx*."""
    router = APIRouter(prefix="/api/tasks", tags=["tasks"])

    def _render(task: Task, enrich: bool = True) -> dict[str, Any]:
        if not enrich:
            return task.to_dict()
        return ctx.anchors.enrich(task, ctx.settings.anchors)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    @router.get("")
    async def list_tasks(
        status: Optional[str] = Query(None),
        assigned_to_type: Optional[str] = Query(None),
        assigned_to_id: Optional[str] = Query(None),
        non_agent: Optional[str] = Query(None),
        is_someday: Optional[str] = Query(None),
        include_archived: Optional[str] = Query(None),
        project_id: Optional[int] = Query(None),
        context_key: Optional[str] = Query(None),
        context_type: Optional[str] = Query(None),
        limit: Optional[int] = Query(None),
        offset: Optional[int] = Query(None),
        enrich: bool = Query(True),
    ) -> list[dict[str, Any]]:
        tasks = ctx.tasks.list(
            status=status or None,
            assigned_to_type=_assignee_type_filter(assigned_to_type),
            assigned_to_id=_assignee_id_filter(assigned_to_id),
            non_agent=_parse_bool(non_agent, "non_agent"),
            is_someday=_parse_bool(is_someday, "is_someday"),
            project_id=project_id,
            context_key=context_key or None,
            context_type=context_type or None,
            include_archived=bool(_parse_bool(include_archived, "include_archived")),
            limit=limit,
            offset=offset,
        )
        if not enrich:
            return [t.to_dict() for t in tasks]
        return ctx.anchors.enrich_many(tasks, ctx.settings.anchors)

    @router.post("", status_code=201)
    async def create_task(body: CreateTaskRequest) -> dict[str, Any]:
        task = _render(ctx.tasks.create(body.model_dump(exclude_unset=True)))
        ctx.hub.broadcast("task_created", task)
        return task

    # ------------------------------------------------------------------
    # Bulk operations
    # ------------------------------------------------------------------

    @router.post("/bulk/status")
    async def bulk_status(body: BulkStatusRequest) -> dict[str, int]:
        result = ctx.tasks.bulk_update_status(body.ids, body.status)
        status = (body.status or "").strip().lower()
        ctx.hub.broadcast("tasks_bulk_updated", {"status_updated": result["updated"], "status": status})
        return result

    @router.post("/bulk/assignee")
    async def bulk_assignee(body: BulkAssigneeRequest) -> dict[str, int]:
        result = ctx.tasks.bulk_assign(body.ids, body.assigned_to_type, body.assigned_to_id)
        ctx.hub.broadcast(
            "tasks_bulk_updated",
            {
                "assignee_assigned": result["updated"],
                "assigned_to_type": body.assigned_to_type,
                "assigned_to_id": body.assigned_to_id,
            },
        )
        return result

    @router.post("/bulk/project")
    async def bulk_project(body: BulkProjectRequest) -> dict[str, int]:
        result = ctx.tasks.bulk_assign_project(body.ids, body.project_id)
        ctx.hub.broadcast(
            "tasks_bulk_updated",
            {"project_assigned": result["updated"], "project_id": body.project_id},
        )
        return result

    @router.post("/bulk/delete")
    async def bulk_delete(body: BulkIdsRequest) -> dict[str, int]:
        result = ctx.tasks.bulk_delete(body.ids)
        ctx.hub.broadcast("tasks_bulk_updated", {"deleted": result["deleted"]})
        return result

    @router.post("/reorder")
    async def reorder_tasks(body: list[ReorderItem]) -> dict[str, int]:
        result = ctx.tasks.reorder([item.model_dump() for item in body])
        ctx.hub.broadcast("tasks_bulk_updated", {"reordered": result["updated"]})
        return result

    @router.post("/archive_done")
    async def archive_done(body: Optional[ArchiveDoneRequest] = None) -> dict[str, int]:
        assigned_to: Any = UNSET
        if body is not None and "assigned_to" in body.model_fields_set:
            assigned_to = body.assigned_to
        result = ctx.tasks.archive_done(assigned_to)
        ctx.hub.broadcast("tasks_bulk_updated", {"archived_done": result["archived"]})
        return result

    # ------------------------------------------------------------------
    # Single task
    # ------------------------------------------------------------------

    @router.get("/{task_id}")
    async def get_task(task_id: int, enrich: bool = Query(True)) -> dict[str, Any]:
        return _render(ctx.tasks.get(task_id), enrich)

    @router.patch("/{task_id}")
    async def update_task(task_id: int, body: UpdateTaskRequest) -> dict[str, Any]:
        task = _render(ctx.tasks.update(task_id, body.model_dump(exclude_unset=True)))
        ctx.hub.broadcast("task_updated", task)
        return task

    @router.delete("/{task_id}", status_code=204)
    async def delete_task(task_id: int) -> Response:
        ctx.tasks.delete(task_id)
        ctx.hub.broadcast("task_deleted", {"id": task_id})
        return Response(status_code=204)

    return router
