"""Tests for the task API endpoints."""

from __future__ import annotations

import pytest
from pathlib import Path

from httpx import AsyncClient, ASGITransport

from clawboard.config import Settings
from clawboard.server import create_app
from clawboard.task_engine.anchor import AnchorConfig


@pytest.fixture
def app(tmp_path: Path):
    """Create a test app backed by a temp database."""
    anchors = AnchorConfig.from_mapping(
        {
            "category_defaults": {"docs": str(tmp_path / "docs")},
            "scratch_root": str(tmp_path / "scratch"),
            "allow_scratch_fallback": True,
        }
    )
    return create_app(Settings(db_path=tmp_path / "board.db", anchors=anchors), enable_cors=False)


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def _create(client: AsyncClient, **body) -> dict:
    body.setdefault("title", "Task")
    resp = await client.post("/api/tasks", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()


@pytest.mark.anyio
class TestTaskCRUD:
    async def test_health(self, client: AsyncClient) -> None:
        resp = await client.get("/api/health")
        assert resp.json() == {"status": "ok"}

    async def test_list_empty(self, client: AsyncClient) -> None:
        resp = await client.get("/api/tasks")
        assert resp.status_code == 200
        assert resp.json() == []

    async def test_create_and_get(self, client: AsyncClient, tmp_path: Path) -> None:
        task = await _create(client, title="Write docs", tags="docs, api", priority="High")
        assert task["title"] == "Write docs"
        assert task["status"] == "backlog"
        assert task["priority"] == "high"
        assert task["tags"] == ["docs", "api"]
        assert task["resolved_anchor"] == str(tmp_path / "docs")
        assert task["anchor_source"] == "category"

        resp = await client.get(f"/api/tasks/{task['id']}")
        assert resp.status_code == 200
        assert resp.json()["title"] == "Write docs"

    async def test_get_without_enrichment(self, client: AsyncClient) -> None:
        task = await _create(client)
        resp = await client.get(f"/api/tasks/{task['id']}", params={"enrich": "false"})
        assert "resolved_anchor" not in resp.json()

    async def test_scratch_fallback(self, client: AsyncClient, tmp_path: Path) -> None:
        task = await _create(client)
        assert task["resolved_anchor"] == str(tmp_path / "scratch")
        assert task["anchor_source"] == "scratch"

    async def test_create_requires_title(self, client: AsyncClient) -> None:
        resp = await client.post("/api/tasks", json={"title": "   "})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Title is required"}

        resp = await client.post("/api/tasks", json={"description": "no title"})
        assert resp.status_code == 400
        assert "error" in resp.json()

    async def test_create_rejects_unknown_field(self, client: AsyncClient) -> None:
        resp = await client.post("/api/tasks", json={"title": "x", "labels": ["a"]})
        assert resp.status_code == 400

    async def test_create_invalid_status(self, client: AsyncClient) -> None:
        resp = await client.post("/api/tasks", json={"title": "x", "status": "blocked"})
        assert resp.status_code == 400
        assert resp.json()["error"].startswith("Invalid status")

    async def test_get_nonexistent(self, client: AsyncClient) -> None:
        resp = await client.get("/api/tasks/9999")
        assert resp.status_code == 404
        assert resp.json() == {"error": "Task not found"}

    async def test_get_bad_id(self, client: AsyncClient) -> None:
        resp = await client.get("/api/tasks/abc")
        assert resp.status_code == 400

    async def test_patch_only_present_fields(self, client: AsyncClient) -> None:
        task = await _create(client, description="keep me")
        resp = await client.patch(f"/api/tasks/{task['id']}", json={"status": "done"})
        assert resp.status_code == 200
        updated = resp.json()
        assert updated["status"] == "done"
        assert updated["description"] == "keep me"
        assert updated["completed_at"] is not None

    async def test_patch_explicit_null_clears(self, client: AsyncClient) -> None:
        task = await _create(client, description="drop me")
        resp = await client.patch(f"/api/tasks/{task['id']}", json={"description": None})
        assert resp.json()["description"] is None

    async def test_patch_empty(self, client: AsyncClient) -> None:
        task = await _create(client)
        resp = await client.patch(f"/api/tasks/{task['id']}", json={})
        assert resp.status_code == 400
        assert resp.json() == {"error": "No fields to update"}

    async def test_patch_missing(self, client: AsyncClient) -> None:
        resp = await client.patch("/api/tasks/404", json={"title": "x"})
        assert resp.status_code == 404

    async def test_delete(self, client: AsyncClient) -> None:
        task = await _create(client)
        resp = await client.delete(f"/api/tasks/{task['id']}")
        assert resp.status_code == 204
        resp = await client.delete(f"/api/tasks/{task['id']}")
        assert resp.status_code == 404

    async def test_unknown_project(self, client: AsyncClient) -> None:
        resp = await client.post("/api/tasks", json={"title": "x", "project_id": 77})
        assert resp.status_code == 404
        assert resp.json() == {"error": "Project not found"}


@pytest.mark.anyio
class TestTaskListing:
    async def test_filters(self, client: AsyncClient) -> None:
        await _create(client, title="A", assigned_to_type="agent", assigned_to_id="bot")
        await _create(client, title="B", status="review", non_agent=True)
        await _create(client, title="C", context_key="repo", context_type="git")

        async def titles(**params) -> list[str]:
            resp = await client.get("/api/tasks", params=params)
            assert resp.status_code == 200, resp.text
            return sorted(t["title"] for t in resp.json())

        assert await titles(status="review") == ["B"]
        assert await titles(assigned_to_type="agent") == ["A"]
        assert await titles(assigned_to_id="bot") == ["A"]
        assert await titles(assigned_to_id="") == ["B", "C"]
        assert await titles(non_agent="true") == ["B"]
        assert await titles(context_key="repo", context_type="git") == ["C"]

    async def test_someday_filter(self, client: AsyncClient) -> None:
        later = await _create(client, title="Later", is_someday=True)
        await _create(client, title="Now")
        assert later["is_someday"] is True
        resp = await client.get("/api/tasks", params={"is_someday": "true"})
        assert [t["title"] for t in resp.json()] == ["Later"]
        resp = await client.get("/api/tasks", params={"is_someday": "false"})
        assert [t["title"] for t in resp.json()] == ["Now"]

    async def test_paging(self, client: AsyncClient) -> None:
        for i in range(4):
            await _create(client, title=f"T{i}")
        resp = await client.get("/api/tasks", params={"limit": 2, "offset": 1})
        assert [t["title"] for t in resp.json()] == ["T1", "T2"]

    async def test_archived_hidden_by_default(self, client: AsyncClient) -> None:
        task = await _create(client, status="done")
        await client.post("/api/tasks/archive_done")
        assert (await client.get("/api/tasks")).json() == []
        resp = await client.get("/api/tasks", params={"include_archived": "true"})
        assert [t["id"] for t in resp.json()] == [task["id"]]

    async def test_invalid_filter(self, client: AsyncClient) -> None:
        resp = await client.get("/api/tasks", params={"status": "nope"})
        assert resp.status_code == 400
        resp = await client.get("/api/tasks", params={"non_agent": "maybe"})
        assert resp.status_code == 400

    async def test_tags_endpoint(self, client: AsyncClient) -> None:
        await _create(client, tags=["zeta", "alpha"])
        await _create(client, tags='["mid"]')
        resp = await client.get("/api/tags")
        assert resp.json() == ["alpha", "mid", "zeta"]


@pytest.mark.anyio
class TestBulkEndpoints:
    async def test_bulk_status(self, client: AsyncClient) -> None:
        a = await _create(client)
        b = await _create(client, status="in_progress")
        resp = await client.post("/api/tasks/bulk/status", json={"ids": [a["id"], b["id"]], "status": "done"})
        assert resp.status_code == 200
        assert resp.json() == {"updated": 2}
        for task_id in (a["id"], b["id"]):
            task = (await client.get(f"/api/tasks/{task_id}")).json()
            assert task["status"] == "done"
            assert task["completed_at"] is not None

    async def test_bulk_requires_ids(self, client: AsyncClient) -> None:
        resp = await client.post("/api/tasks/bulk/status", json={"status": "done"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "No task ids provided"}

    async def test_bulk_assignee_rejects_non_agent(self, client: AsyncClient) -> None:
        a = await _create(client)
        b = await _create(client, non_agent=True)
        resp = await client.post(
            "/api/tasks/bulk/assignee",
            json={"ids": [a["id"], b["id"]], "assigned_to_type": "agent", "assigned_to_id": "bot"},
        )
        assert resp.status_code == 400
        assert (await client.get(f"/api/tasks/{a['id']}")).json()["assigned_to_id"] is None

    async def test_bulk_assignee(self, client: AsyncClient) -> None:
        a = await _create(client)
        resp = await client.post(
            "/api/tasks/bulk/assignee",
            json={"ids": [a["id"]], "assigned_to_type": "human", "assigned_to_id": "ana"},
        )
        assert resp.json() == {"updated": 1}

    async def test_bulk_project(self, client: AsyncClient, tmp_path: Path) -> None:
        project = (await client.post("/api/projects", json={"name": "P", "path": str(tmp_path / "p")})).json()
        a = await _create(client)
        resp = await client.post("/api/tasks/bulk/project", json={"ids": [a["id"]], "project_id": project["id"]})
        assert resp.json() == {"updated": 1}
        task = (await client.get(f"/api/tasks/{a['id']}")).json()
        assert task["project_id"] == project["id"]
        assert task["resolved_anchor"] == str(tmp_path / "p")
        assert task["anchor_source"] == "project"

    async def test_bulk_delete(self, client: AsyncClient) -> None:
        a = await _create(client)
        resp = await client.post("/api/tasks/bulk/delete", json={"ids": [a["id"], 12345]})
        assert resp.json() == {"deleted": 1}

    async def test_reorder(self, client: AsyncClient) -> None:
        a = await _create(client, title="A")
        b = await _create(client, title="B")
        resp = await client.post(
            "/api/tasks/reorder",
            json=[
                {"id": b["id"], "status": "backlog", "position": 0},
                {"id": a["id"], "status": "backlog", "position": 1},
            ],
        )
        assert resp.json() == {"updated": 2}
        listed = (await client.get("/api/tasks", params={"status": "backlog"})).json()
        assert [t["title"] for t in listed] == ["B", "A"]

    async def test_reorder_missing_task(self, client: AsyncClient) -> None:
        resp = await client.post("/api/tasks/reorder", json=[{"id": 999, "status": "done", "position": 0}])
        assert resp.status_code == 404

    async def test_archive_done_scoped(self, client: AsyncClient) -> None:
        await _create(client, status="done", assigned_to_type="human", assigned_to_id="ana")
        await _create(client, status="done")
        resp = await client.post("/api/tasks/archive_done", json={"assigned_to": None})
        assert resp.json() == {"archived": 1}
        resp = await client.post("/api/tasks/archive_done", json={"assigned_to": "ana"})
        assert resp.json() == {"archived": 1}
        resp = await client.post("/api/tasks/archive_done")
        assert resp.json() == {"archived": 0}

    async def test_unknown_route(self, client: AsyncClient) -> None:
        resp = await client.get("/api/nowhere")
        assert resp.status_code == 404
        assert "error" in resp.json()
