"""Tag registry endpoint, mounted under ``/api/tags``."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter

if TYPE_CHECKING:
    from .app import BoardContext


def create_tag_router(ctx: "BoardContext") -> APIRouter:
    router = APIRouter(prefix="/api/tags", tags=["tags"])

    @router.get("")
    async def list_tags() -> list[str]:
        return ctx.tasks.list_tags()

    return router
