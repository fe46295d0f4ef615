"""Projects: named directories that tasks can be grouped under.

:class:`ProjectStore` owns the ``projects`` rows; :class:`ProjectService`
layers the creation policy (path expansion, unique path, slug derivation)
and turns missing rows into :class:`NotFoundError`.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from typing import Any, Mapping, Optional

from ..utils import iso_days_ago, now_iso, today_iso
from .anchor import normalize_path
from .db import Database
from .errors import ConflictError, NotFoundError, ValidationError
from .model import Project

logger = logging.getLogger(__name__)

SLUG_MAX_LENGTH = 80
UPDATABLE_FIELDS = ("name", "description", "icon", "color")


def slugify(name: str) -> str:
    """Lowercase *name*, collapse non-alphanumerics to ``-`` and trim.

    >>> slugify("My Cool Project!")
    'my-cool-project'
    """
    base = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")[:SLUG_MAX_LENGTH]
    return base or "project"


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


# ---------------------------------------------------------------------------
# ProjectStore
# ---------------------------------------------------------------------------

class ProjectStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    def list(self) -> list[Project]:
        with self._db.read() as conn:
            rows = conn.execute("SELECT * FROM projects ORDER BY name ASC, id ASC").fetchall()
        return [Project.from_row(row) for row in rows]

    def get(self, project_id: int) -> Optional[Project]:
        return self._get_by("id", project_id)

    def get_by_slug(self, slug: str) -> Optional[Project]:
        return self._get_by("slug", slug)

    def get_by_path(self, path: str) -> Optional[Project]:
        return self._get_by("path", path)

    def _get_by(self, column: str, value: Any) -> Optional[Project]:
        with self._db.read() as conn:
            row = conn.execute(f"SELECT * FROM projects WHERE {column} = ?", (value,)).fetchone()
        return Project.from_row(row) if row is not None else None

    def create(self, name: str, slug: str, path: str, description: Optional[str] = None) -> Project:
        now = now_iso()
        with self._db.transaction() as conn:
            cur = conn.execute(
                "INSERT INTO projects (name, slug, path, description, created_at, updated_at)"
                " VALUES (?, ?, ?, ?, ?, ?)",
                (name, slug, path, description, now, now),
            )
            row = conn.execute("SELECT * FROM projects WHERE id = ?", (cur.lastrowid,)).fetchone()
        return Project.from_row(row)

    def update(self, project_id: int, changes: Mapping[str, Any]) -> Optional[Project]:
        with self._db.transaction() as conn:
            if changes:
                assignments = ", ".join(f"{column} = ?" for column in changes)
                conn.execute(
                    f"UPDATE projects SET {assignments}, updated_at = ? WHERE id = ?",
                    [*changes.values(), now_iso(), project_id],
                )
            row = conn.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
        return Project.from_row(row) if row is not None else None

    def delete(self, project_id: int, cleanup_tasks: bool) -> bool:
        """Delete a project, then either its tasks or just their link to it.

        Returns ``False`` (with nothing changed) when the project is missing.
        """
        with self._db.transaction() as conn:
            if conn.execute("SELECT 1 FROM projects WHERE id = ?", (project_id,)).fetchone() is None:
                return False
            if cleanup_tasks:
                conn.execute("DELETE FROM tasks WHERE project_id = ?", (project_id,))
            else:
                conn.execute(
                    "UPDATE tasks SET project_id = NULL, updated_at = ? WHERE project_id = ?",
                    (now_iso(), project_id),
                )
            conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
        return True

    def assign_unassigned(self, project_id: int) -> int:
        with self._db.transaction() as conn:
            cur = conn.execute(
                "UPDATE tasks SET project_id = ?, updated_at = ? WHERE project_id IS NULL",
                (project_id, now_iso()),
            )
            return cur.rowcount

    # -- statistics ---------------------------------------------------------

    def stats(self, project_id: int) -> Optional[dict[str, Any]]:
        project = self.get(project_id)
        if project is None:
            return None
        scope = "project_id = ? AND archived_at IS NULL"
        with self._db.read() as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM tasks WHERE {scope}", (project_id,)).fetchone()[0]
            by_status = _grouped(conn, "status", scope, (project_id,))
            by_priority = _grouped(conn, "priority", scope, (project_id,))
            by_assignee = _grouped(conn, "assigned_to_id", scope, (project_id,), label="assigned_to")
            overdue = conn.execute(
                f"SELECT COUNT(*) FROM tasks WHERE {scope} AND status != 'done'"
                " AND due_date IS NOT NULL AND due_date < ?",
                (project_id, today_iso()),
            ).fetchone()[0]
            completed_recently = conn.execute(
                "SELECT COUNT(*) FROM tasks WHERE project_id = ? AND status = 'done' AND completed_at >= ?",
                (project_id, iso_days_ago(7)),
            ).fetchone()[0]
        return {
            "project_id": project.id,
            "project_name": project.name,
            "tasks": {
                "total": total,
                "by_status": by_status,
                "by_priority": by_priority,
                "by_assignee": by_assignee,
                "overdue": overdue,
                "completed_last_7d": completed_recently,
            },
        }

    def summary_stats(self) -> dict[str, Any]:
        scope = "archived_at IS NULL"
        with self._db.read() as conn:
            projects_total = conn.execute("SELECT COUNT(*) FROM projects").fetchone()[0]
            total = conn.execute(f"SELECT COUNT(*) FROM tasks WHERE {scope}").fetchone()[0]
            by_status = _grouped(conn, "status", scope, ())
            by_project = [
                {"project_name": row["project_name"], "project_id": row["project_id"], "count": row["count"]}
                for row in conn.execute(
                    "SELECT p.name AS project_name, p.id AS project_id, COUNT(t.id) AS count"
                    " FROM projects p"
                    " LEFT JOIN tasks t ON t.project_id = p.id AND t.archived_at IS NULL"
                    " GROUP BY p.id ORDER BY count DESC, p.name ASC"
                )
            ]
            overdue = conn.execute(
                f"SELECT COUNT(*) FROM tasks WHERE {scope} AND status != 'done'"
                " AND due_date IS NOT NULL AND due_date < ?",
                (today_iso(),),
            ).fetchone()[0]
        return {
            "projects": {"total": projects_total},
            "tasks": {
                "total": total,
                "by_status": by_status,
                "by_project": by_project,
                "overdue": overdue,
            },
        }


def _grouped(
    conn: sqlite3.Connection,
    column: str,
    where: str,
    params: tuple[Any, ...],
    *,
    label: Optional[str] = None,
) -> list[dict[str, Any]]:
    rows = conn.execute(
        f"SELECT {column} AS key, COUNT(*) AS count FROM tasks WHERE {where}"
        f" GROUP BY {column} ORDER BY {column}",
        params,
    )
    return [{label or column: row["key"], "count": row["count"]} for row in rows]


# ---------------------------------------------------------------------------
# ProjectService
# ---------------------------------------------------------------------------

class ProjectService:
    """Project policy on top of :class:`ProjectStore`.

    Parameters
    ----------
    store:
        Backing :class:`ProjectStore`.
    env, home:
        Overrides used when expanding project paths (tests).
    """

    def __init__(
        self,
        store: ProjectStore,
        *,
        env: Optional[Mapping[str, str]] = None,
        home: Optional[str] = None,
    ) -> None:
        self.store = store
        self._env = env
        self._home = home

    def list(self) -> list[Project]:
        return self.store.list()

    def lookup(self, project_id: int) -> Optional[Project]:
        return self.store.get(project_id)

    def get(self, project_id: int) -> Project:
        project = self.store.get(project_id)
        if project is None:
            raise NotFoundError("Project not found")
        return project

    def create(self, name: Any, path: Any, description: Any = None) -> Project:
        clean_name = name.strip() if isinstance(name, str) else ""
        raw_path = path.strip() if isinstance(path, str) else ""
        if not clean_name:
            raise ValidationError("name is required")
        if not raw_path:
            raise ValidationError("path is required")

        resolved = normalize_path(raw_path, self._env, self._home)
        if resolved is None:
            raise ValidationError("path contains unresolved environment variables")
        if self.store.get_by_path(resolved) is not None:
            raise ConflictError("Project path already registered")

        base = slugify(clean_name)
        slug = base
        suffix = 2
        while self.store.get_by_slug(slug) is not None:
            slug = f"{base}-{suffix}"
            suffix += 1

        try:
            project = self.store.create(clean_name, slug, resolved, _clean(description))
        except sqlite3.IntegrityError as exc:
            raise ConflictError("Project already exists") from exc
        logger.info("Created project %s (%s) at %s", project.id, project.slug, project.path)
        return project

    def update(self, project_id: int, patch: Mapping[str, Any]) -> Project:
        unknown = set(patch) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown project fields: {', '.join(sorted(unknown))}")
        changes: dict[str, Any] = {}
        for key, value in patch.items():
            changes[key] = _clean(value)
        if "name" in changes and changes["name"] is None:
            raise ValidationError("name cannot be blank")
        project = self.store.update(project_id, changes)
        if project is None:
            raise NotFoundError("Project not found")
        return project

    def delete(self, project_id: int, cleanup_tasks: bool = False) -> None:
        if not self.store.delete(project_id, cleanup_tasks):
            raise NotFoundError("Project not found")
        logger.info("Deleted project %s (cleanup_tasks=%s)", project_id, cleanup_tasks)

    def assign_unassigned_tasks(self, project_id: int) -> dict[str, int]:
        self.get(project_id)
        return {"updated": self.store.assign_unassigned(project_id)}

    def stats(self, project_id: int) -> dict[str, Any]:
        stats = self.store.stats(project_id)
        if stats is None:
            raise NotFoundError("Project not found")
        return stats

    def summary_stats(self) -> dict[str, Any]:
        return self.store.summary_stats()
