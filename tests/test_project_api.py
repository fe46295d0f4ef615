"""Tests for the project API endpoints."""

from __future__ import annotations

import pytest
from pathlib import Path

from fastapi.testclient import TestClient

from clawboard.config import Settings
from clawboard.server import create_app


@pytest.fixture
def client(tmp_path: Path):
    app = create_app(Settings(db_path=tmp_path / "board.db"), enable_cors=False)
    with TestClient(app) as c:
        yield c


def _project(client: TestClient, name: str, path: str) -> dict:
    resp = client.post("/api/projects", json={"name": name, "path": path})
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestProjectAPI:
    def test_create_list_get(self, client: TestClient, tmp_path: Path) -> None:
        project = _project(client, "My App", str(tmp_path / "app"))
        assert project["slug"] == "my-app"
        assert project["path"] == str(tmp_path / "app")

        assert [p["id"] for p in client.get("/api/projects").json()] == [project["id"]]
        assert client.get(f"/api/projects/{project['id']}").json()["name"] == "My App"

    def test_create_validation(self, client: TestClient, tmp_path: Path) -> None:
        resp = client.post("/api/projects", json={"path": str(tmp_path)})
        assert resp.status_code == 400
        assert resp.json() == {"error": "name is required"}

    def test_duplicate_path_conflicts(self, client: TestClient, tmp_path: Path) -> None:
        _project(client, "One", str(tmp_path / "x"))
        resp = client.post("/api/projects", json={"name": "Two", "path": str(tmp_path / "x")})
        assert resp.status_code == 409

    def test_get_missing(self, client: TestClient) -> None:
        resp = client.get("/api/projects/42")
        assert resp.status_code == 404
        assert resp.json() == {"error": "Project not found"}

    def test_patch(self, client: TestClient, tmp_path: Path) -> None:
        project = _project(client, "A", str(tmp_path / "a"))
        resp = client.patch(f"/api/projects/{project['id']}", json={"color": "#123456"})
        assert resp.status_code == 200
        assert resp.json()["color"] == "#123456"
        assert resp.json()["name"] == "A"

        resp = client.patch(f"/api/projects/{project['id']}", json={"path": "/elsewhere"})
        assert resp.status_code == 400

    def test_delete_unlinks_tasks(self, client: TestClient, tmp_path: Path) -> None:
        project = _project(client, "A", str(tmp_path / "a"))
        task = client.post("/api/tasks", json={"title": "T", "project_id": project["id"]}).json()

        resp = client.delete(f"/api/projects/{project['id']}")
        assert resp.json() == {"success": True, "message": "Project removed, tasks unlinked"}
        assert client.get(f"/api/tasks/{task['id']}").json()["project_id"] is None

    def test_delete_with_cleanup(self, client: TestClient, tmp_path: Path) -> None:
        project = _project(client, "A", str(tmp_path / "a"))
        task = client.post("/api/tasks", json={"title": "T", "project_id": project["id"]}).json()

        resp = client.delete(f"/api/projects/{project['id']}", params={"cleanupTasks": "true"})
        assert resp.json()["message"] == "Project and tasks deleted"
        assert client.get(f"/api/tasks/{task['id']}").status_code == 404
        assert client.delete(f"/api/projects/{project['id']}").status_code == 404

    def test_assign_unassigned(self, client: TestClient, tmp_path: Path) -> None:
        project = _project(client, "A", str(tmp_path / "a"))
        client.post("/api/tasks", json={"title": "loose"})
        resp = client.post(f"/api/projects/{project['id']}/assign-unassigned")
        assert resp.json() == {"updated": 1}

    def test_stats(self, client: TestClient, tmp_path: Path) -> None:
        project = _project(client, "A", str(tmp_path / "a"))
        client.post("/api/tasks", json={"title": "T", "project_id": project["id"], "status": "done"})

        stats = client.get(f"/api/projects/{project['id']}/stats").json()
        assert stats["project_name"] == "A"
        assert stats["tasks"]["total"] == 1
        assert stats["tasks"]["completed_last_7d"] == 1

        summary = client.get("/api/projects/stats/summary").json()
        assert summary["projects"] == {"total": 1}
        assert summary["tasks"]["by_project"][0]["count"] == 1

    def test_stats_missing(self, client: TestClient) -> None:
        assert client.get("/api/projects/3/stats").status_code == 404
