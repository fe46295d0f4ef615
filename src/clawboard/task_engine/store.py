"""SQLite-backed task store.

All writes go through :meth:`TaskStore.transaction`, which opens one
``BEGIN IMMEDIATE`` transaction and yields a :class:`_TaskTx` bound to it.
Callers that need several reads and writes to be all-or-nothing (bulk
operations, reorders) do all of them on the same ``_TaskTx``.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Iterator, Optional

from ..utils import now_iso
from .db import Database
from .errors import NotFoundError, ValidationError
from .model import UNSET, AssigneeType, Task, TaskStatus, completion_timestamp
from .tags import TagRegistry, encode_tags, normalize_tags

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Columns a caller may set on create or through a patch.
WRITABLE_FIELDS: tuple[str, ...] = (
    "title",
    "description",
    "status",
    "priority",
    "due_date",
    "tags",
    "blocked_reason",
    "assigned_to_type",
    "assigned_to_id",
    "non_agent",
    "is_someday",
    "anchor",
    "position",
    "project_id",
    "context_key",
    "context_type",
    "archived_at",
)

_ORDER_BY = "ORDER BY position ASC, created_at DESC, id DESC"


@dataclass
class TaskFilter:
    """Listing predicates, ANDed together.

    ``assigned_to_type`` and ``assigned_to_id`` distinguish "not filtered"
    (:data:`UNSET`) from "must be null" (``None``).
    """

    status: Optional[TaskStatus] = None
    assigned_to_type: Any = UNSET
    assigned_to_id: Any = UNSET
    non_agent: Optional[bool] = None
    is_someday: Optional[bool] = None
    project_id: Optional[int] = None
    context_key: Optional[str] = None
    context_type: Optional[str] = None
    include_archived: bool = False
    limit: Optional[int] = None
    offset: Optional[int] = None

    def to_sql(self) -> tuple[str, list[Any]]:
        conditions: list[str] = []
        values: list[Any] = []
        if not self.include_archived:
            conditions.append("archived_at IS NULL")
        if self.status is not None:
            conditions.append("status = ?")
            values.append(_db_value(self.status))
        for column in ("assigned_to_type", "assigned_to_id"):
            wanted = getattr(self, column)
            if wanted is UNSET:
                continue
            if wanted is None:
                conditions.append(f"{column} IS NULL")
            else:
                conditions.append(f"{column} = ?")
                values.append(_db_value(wanted))
        if self.non_agent is not None:
            conditions.append("non_agent = ?")
            values.append(1 if self.non_agent else 0)
        if self.is_someday is not None:
            conditions.append("is_someday = ?")
            values.append(1 if self.is_someday else 0)
        if self.project_id is not None:
            conditions.append("project_id = ?")
            values.append(self.project_id)
        if self.context_key:
            conditions.append("context_key = ?")
            values.append(self.context_key)
        if self.context_type:
            conditions.append("context_type = ?")
            values.append(self.context_type)

        sql = "SELECT * FROM tasks"
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        sql += " " + _ORDER_BY
        if self.limit is not None or self.offset is not None:
            sql += " LIMIT ?"
            values.append(self.limit if self.limit is not None else -1)
            if self.offset is not None:
                sql += " OFFSET ?"
                values.append(self.offset)
        return sql, values


def _db_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return 1 if value else 0
    return value


# ---------------------------------------------------------------------------
# TaskStore
# ---------------------------------------------------------------------------

class TaskStore:
    """Persistence for :class:`Task` rows.

    Parameters
    ----------
    db:
        The migrated :class:`Database` to read and write.
    """

    def __init__(self, db: Database) -> None:
        self._db = db
        self.tags = TagRegistry(db)

    @property
    def db(self) -> Database:
        return self._db

    @contextmanager
    def transaction(self) -> Iterator[_TaskTx]:
        """Open a write transaction and yield a :class:`_TaskTx` over it.

        Usage::

            with store.transaction() as tx:
                task = tx.get(42)
                tx.update(42, {"status": TaskStatus.DONE})
                # committed on exit, rolled back on any exception
        """
        with self._db.transaction() as conn:
            yield _TaskTx(conn)

    # -- reads (no write lock) ----------------------------------------------

    def list(self, flt: Optional[TaskFilter] = None) -> list[Task]:
        sql, values = (flt or TaskFilter()).to_sql()
        with self._db.read() as conn:
            return [Task.from_row(row) for row in conn.execute(sql, values)]

    def get_one(self, task_id: int) -> Optional[Task]:
        with self._db.read() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return Task.from_row(row) if row is not None else None

    # -- single-row conveniences --------------------------------------------

    def create(self, fields: dict[str, Any]) -> Task:
        with self.transaction() as tx:
            return tx.add(fields)

    def update(self, task_id: int, changes: dict[str, Any]) -> Task:
        with self.transaction() as tx:
            return tx.update(task_id, changes)

    def delete(self, task_id: int) -> bool:
        with self.transaction() as tx:
            return tx.hard_remove(task_id)


class _TaskTx:
    """Task operations bound to one open transaction.

    Values handed to :meth:`add` and :meth:`update` are expected to be
    validated already (enums coerced, strings trimmed); tags may be any
    shape :func:`normalize_tags` accepts.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn
        self.now = now_iso()

    # -- lookups ------------------------------------------------------------

    def get(self, task_id: int) -> Optional[Task]:
        row = self.conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return Task.from_row(row) if row is not None else None

    def require(self, task_id: int) -> Task:
        task = self.get(task_id)
        if task is None:
            raise NotFoundError("Task not found")
        return task

    def find(self, flt: Optional[TaskFilter] = None) -> list[Task]:
        sql, values = (flt or TaskFilter()).to_sql()
        return [Task.from_row(row) for row in self.conn.execute(sql, values)]

    def get_many(self, task_ids: Iterable[int]) -> dict[int, Task]:
        ids = list(task_ids)
        if not ids:
            return {}
        marks = ",".join("?" for _ in ids)
        rows = self.conn.execute(f"SELECT * FROM tasks WHERE id IN ({marks})", ids)
        return {int(row["id"]): Task.from_row(row) for row in rows}

    def project_exists(self, project_id: int) -> bool:
        row = self.conn.execute("SELECT 1 FROM projects WHERE id = ?", (project_id,)).fetchone()
        return row is not None

    def next_position(self, status: TaskStatus) -> int:
        """End-of-column position among non-archived tasks (``0`` when empty)."""
        row = self.conn.execute(
            "SELECT COALESCE(MAX(position), -1) + 1 FROM tasks WHERE status = ? AND archived_at IS NULL",
            (_db_value(status),),
        ).fetchone()
        return int(row[0])

    # -- single-row mutations -----------------------------------------------

    def add(self, fields: dict[str, Any]) -> Task:
        unknown = set(fields) - set(WRITABLE_FIELDS)
        if unknown:
            raise KeyError(f"Unknown task fields: {', '.join(sorted(unknown))}")

        values = dict(fields)
        status = TaskStatus(_db_value(values.get("status") or TaskStatus.BACKLOG))
        values["status"] = status
        if values.get("position") is None:
            values["position"] = self.next_position(status)
        if status == TaskStatus.DONE:
            values["completed_at"] = self.now
        if "tags" in values:
            values["tags"] = self._persist_tags(values["tags"])
        values["non_agent"] = bool(values.get("non_agent"))
        values["is_someday"] = bool(values.get("is_someday"))
        values["created_at"] = self.now
        values["updated_at"] = self.now

        columns = list(values)
        marks = ", ".join("?" for _ in columns)
        cur = self.conn.execute(
            f"INSERT INTO tasks ({', '.join(columns)}) VALUES ({marks})",
            [_db_value(values[c]) for c in columns],
        )
        return self.require(int(cur.lastrowid))

    def update(self, task_id: int, changes: dict[str, Any]) -> Task:
        """Apply *changes* to one task and return it.

        A ``status`` change re-derives ``completed_at``; ``updated_at`` is
        always bumped.  Raises :class:`NotFoundError` for a missing task and
        :class:`ValidationError` when no field is left to write.
        """
        existing = self.require(task_id)
        unknown = set(changes) - set(WRITABLE_FIELDS)
        if unknown:
            raise KeyError(f"Unknown task fields: {', '.join(sorted(unknown))}")

        values = dict(changes)
        if "position" in values and values["position"] is None:
            del values["position"]
        if not values:
            raise ValidationError("No fields to update")

        status = existing.status
        if "status" in values:
            status = TaskStatus(_db_value(values["status"]))
            values["status"] = status
            values["completed_at"] = completion_timestamp(
                existing.status, existing.completed_at, status, self.now
            )
            if status != existing.status and "position" not in values:
                values["position"] = self.next_position(status)
        # Unarchiving rejoins the column at its end.
        if (
            "archived_at" in values
            and values["archived_at"] is None
            and existing.archived_at is not None
            and "position" not in values
        ):
            values["position"] = self.next_position(status)
        if "tags" in values:
            values["tags"] = self._persist_tags(values["tags"])
        values["updated_at"] = self.now

        assignments = ", ".join(f"{column} = ?" for column in values)
        params = [_db_value(v) for v in values.values()]
        self.conn.execute(f"UPDATE tasks SET {assignments} WHERE id = ?", [*params, task_id])
        return self.require(task_id)

    def hard_remove(self, task_id: int) -> bool:
        cur = self.conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        return cur.rowcount > 0

    # -- bulk primitives ----------------------------------------------------

    def set_status_many(self, task_ids: Iterable[int], status: TaskStatus) -> int:
        """Move each task to *status*, applying the completion rule per row.

        Tasks that change column are appended to the end of the new column.
        """
        ids = list(task_ids)
        existing = self.get_many(ids)
        changed = 0
        tail = self.next_position(status)
        for task_id in ids:
            task = existing.get(task_id)
            if task is None:
                continue
            completed_at = completion_timestamp(task.status, task.completed_at, status, self.now)
            position = task.position
            if task.status != status:
                position = tail
                tail += 1
            cur = self.conn.execute(
                "UPDATE tasks SET status = ?, completed_at = ?, position = ?, updated_at = ? WHERE id = ?",
                (status.value, completed_at, position, self.now, task_id),
            )
            changed += cur.rowcount
        return changed

    def set_assignee_many(
        self,
        task_ids: Iterable[int],
        assigned_to_type: Optional[AssigneeType],
        assigned_to_id: Optional[str],
    ) -> int:
        params = [
            (_db_value(assigned_to_type), assigned_to_id, self.now, task_id)
            for task_id in task_ids
        ]
        return self._run_many(
            "UPDATE tasks SET assigned_to_type = ?, assigned_to_id = ?, updated_at = ? WHERE id = ?",
            params,
        )

    def set_project_many(self, task_ids: Iterable[int], project_id: Optional[int]) -> int:
        params = [(project_id, self.now, task_id) for task_id in task_ids]
        return self._run_many("UPDATE tasks SET project_id = ?, updated_at = ? WHERE id = ?", params)

    def delete_many(self, task_ids: Iterable[int]) -> int:
        return self._run_many("DELETE FROM tasks WHERE id = ?", [(task_id,) for task_id in task_ids])

    def apply_positions(self, moves: Iterable[tuple[int, TaskStatus, int]]) -> int:
        """Write ``(id, status, position)`` triples; status changes obey the completion rule."""
        changed = 0
        for task_id, status, position in moves:
            task = self.get(task_id)
            if task is None:
                continue
            completed_at = completion_timestamp(task.status, task.completed_at, status, self.now)
            cur = self.conn.execute(
                "UPDATE tasks SET status = ?, position = ?, completed_at = ?, updated_at = ? WHERE id = ?",
                (status.value, position, completed_at, self.now, task_id),
            )
            changed += cur.rowcount
        return changed

    def archive_done(self, assigned_to_id: Any = UNSET) -> int:
        """Archive every non-archived ``done`` task.

        *assigned_to_id* narrows the set: :data:`UNSET` archives all, ``None``
        only unassigned tasks, a string only that assignee's tasks.
        """
        sql = "UPDATE tasks SET archived_at = ?, updated_at = ? WHERE status = 'done' AND archived_at IS NULL"
        params: list[Any] = [self.now, self.now]
        if assigned_to_id is None:
            sql += " AND assigned_to_id IS NULL"
        elif assigned_to_id is not UNSET:
            sql += " AND assigned_to_id = ?"
            params.append(assigned_to_id)
        return self.conn.execute(sql, params).rowcount

    # -- internals ----------------------------------------------------------

    def _run_many(self, sql: str, params: list[tuple[Any, ...]]) -> int:
        changed = 0
        for row in params:
            changed += self.conn.execute(sql, row).rowcount
        return changed

    def _persist_tags(self, raw: Any) -> str:
        names = normalize_tags(raw)
        TagRegistry.ensure(self.conn, names)
        return encode_tags(names)
