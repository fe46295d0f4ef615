"""Task lifecycle: validation and board operations above :class:`TaskStore`.

This is the primary entry-point for task manipulation.  Every public method
validates its whole input before touching storage and then runs inside a
single store transaction, so a rejected bulk call leaves no partial update
behind.

The status state machine is deliberately permissive: any status may move to
any other.  The only coupled behavior is ``completed_at``, which is stamped
on entering ``done``, kept when ``done`` is re-affirmed and cleared on
leaving it.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Mapping, Optional

from ..utils import parse_iso
from .errors import NotFoundError, ValidationError
from .model import UNSET, AssigneeType, Task, TaskPriority, TaskStatus, coerce_enum
from .store import WRITABLE_FIELDS, TaskFilter, TaskStore, _TaskTx

logger = logging.getLogger(__name__)

CREATE_FIELDS = frozenset(WRITABLE_FIELDS) - {"archived_at"}
UPDATE_FIELDS = frozenset(WRITABLE_FIELDS)

# Free-text fields: trimmed, blank stored as null.
_TEXT_FIELDS = ("description", "blocked_reason", "anchor", "context_key", "context_type")


# ---------------------------------------------------------------------------
# Field validation
# ---------------------------------------------------------------------------

def _clean_text(value: Any, field_name: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, (str, int, float)) or isinstance(value, bool):
        raise ValidationError(f"Invalid {field_name}")
    text = str(value).strip()
    return text or None


def _coerce_int(raw: Any, label: str) -> int:
    if isinstance(raw, bool):
        raise ValidationError(f"Invalid {label}")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float) and raw.is_integer():
        return int(raw)
    if isinstance(raw, str):
        try:
            return int(raw.strip())
        except ValueError:
            pass
    raise ValidationError(f"Invalid {label}")


def coerce_task_id(raw: Any) -> int:
    return _coerce_int(raw, "task id")


def _non_negative(raw: Any, label: str = "position") -> int:
    value = _coerce_int(raw, label)
    if value < 0:
        raise ValidationError(f"Invalid {label}")
    return value


def _coerce_status(raw: Any) -> TaskStatus:
    if raw is None:
        raise ValidationError("Invalid status")
    return coerce_enum(TaskStatus, raw, "status")


def _coerce_priority(raw: Any) -> Optional[TaskPriority]:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return None
    return coerce_enum(TaskPriority, raw, "priority")


def _coerce_assignee_type(raw: Any) -> Optional[AssigneeType]:
    if raw is None or raw == "":
        return None
    if not isinstance(raw, (str, AssigneeType)):
        raise ValidationError("Invalid assigned_to_type")
    return coerce_enum(AssigneeType, raw, "assigned_to_type")


def _coerce_due_date(raw: Any) -> Optional[str]:
    text = _clean_text(raw, "due_date")
    if text is None:
        return None
    try:
        return date.fromisoformat(text).isoformat()
    except ValueError:
        raise ValidationError("Invalid due_date: expected YYYY-MM-DD") from None


def _coerce_archived_at(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    parsed = parse_iso(raw) if isinstance(raw, str) else None
    if parsed is None:
        raise ValidationError("Invalid archived_at")
    return parsed.isoformat()


def _coerce_bool(raw: Any, field_name: str) -> bool:
    if isinstance(raw, bool):
        return raw
    raise ValidationError(f"Invalid {field_name}: expected a boolean")


def _coerce_project_id(raw: Any) -> Optional[int]:
    if raw is None:
        return None
    return _coerce_int(raw, "project id")


def _check_assignee(
    assigned_to_type: Optional[AssigneeType],
    assigned_to_id: Optional[str],
    non_agent: bool,
) -> None:
    if assigned_to_type is None and assigned_to_id is not None:
        raise ValidationError("assigned_to_id requires assigned_to_type")
    if assigned_to_type is not None and assigned_to_id is None:
        raise ValidationError("assigned_to_id is required when assigned_to_type is set")
    if non_agent and assigned_to_type == AssigneeType.AGENT:
        raise ValidationError("non_agent tasks cannot be assigned to agents")


def _coerce_fields(data: Mapping[str, Any]) -> dict[str, Any]:
    """Validate and normalize each present field independently."""
    out: dict[str, Any] = {}
    for key, value in data.items():
        if key == "title":
            if not isinstance(value, str) or not value.strip():
                raise ValidationError("Title is required")
            out[key] = value.strip()
        elif key == "status":
            out[key] = _coerce_status(value)
        elif key == "priority":
            out[key] = _coerce_priority(value)
        elif key == "due_date":
            out[key] = _coerce_due_date(value)
        elif key == "tags":
            out[key] = value
        elif key == "assigned_to_type":
            out[key] = _coerce_assignee_type(value)
        elif key == "assigned_to_id":
            out[key] = _clean_text(value, key)
        elif key in ("non_agent", "is_someday"):
            out[key] = _coerce_bool(value, key)
        elif key == "position":
            out[key] = None if value is None else _non_negative(value)
        elif key == "project_id":
            out[key] = _coerce_project_id(value)
        elif key == "archived_at":
            out[key] = _coerce_archived_at(value)
        elif key in _TEXT_FIELDS:
            out[key] = _clean_text(value, key)
    return out


def normalize_ids(ids: Any) -> list[int]:
    """Validate a bulk id list and deduplicate it, keeping first-seen order."""
    if not isinstance(ids, (list, tuple)) or not ids:
        raise ValidationError("No task ids provided")
    return list(dict.fromkeys(coerce_task_id(raw) for raw in ids))


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

class TaskLifecycle:
    """Board rules for creating, editing, moving and removing tasks.

    Parameters
    ----------
    store:
        The :class:`TaskStore` to operate on.
    """

    def __init__(self, store: TaskStore) -> None:
        self.store = store

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list(
        self,
        *,
        status: Any = None,
        assigned_to_type: Any = UNSET,
        assigned_to_id: Any = UNSET,
        non_agent: Optional[bool] = None,
        is_someday: Optional[bool] = None,
        project_id: Any = None,
        context_key: Optional[str] = None,
        context_type: Optional[str] = None,
        include_archived: bool = False,
        limit: Any = None,
        offset: Any = None,
    ) -> list[Task]:
        flt = TaskFilter(
            status=_coerce_status(status) if status is not None else None,
            assigned_to_type=(
                assigned_to_type if assigned_to_type is UNSET else _coerce_assignee_type(assigned_to_type)
            ),
            assigned_to_id=(
                assigned_to_id if assigned_to_id is UNSET else _clean_text(assigned_to_id, "assigned_to_id")
            ),
            non_agent=non_agent,
            is_someday=is_someday,
            project_id=_coerce_project_id(project_id),
            context_key=context_key,
            context_type=context_type,
            include_archived=include_archived,
            limit=_non_negative(limit, "limit") if limit is not None else None,
            offset=_non_negative(offset, "offset") if offset is not None else None,
        )
        return self.store.list(flt)

    def get(self, task_id: Any) -> Task:
        task = self.store.get_one(coerce_task_id(task_id))
        if task is None:
            raise NotFoundError("Task not found")
        return task

    def list_tags(self) -> list[str]:
        return self.store.tags.list()

    # ------------------------------------------------------------------
    # Single-task mutations
    # ------------------------------------------------------------------

    def create(self, body: Mapping[str, Any]) -> Task:
        """Validate *body* and persist a new task, returning it."""
        unknown = set(body) - CREATE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown task fields: {', '.join(sorted(unknown))}")
        if not isinstance(body.get("title"), str) or not body["title"].strip():
            raise ValidationError("Title is required")

        # On create an explicit null is the same as leaving the field out.
        fields = _coerce_fields({k: v for k, v in body.items() if v is not None})
        _check_assignee(
            fields.get("assigned_to_type"),
            fields.get("assigned_to_id"),
            bool(fields.get("non_agent", False)),
        )

        with self.store.transaction() as tx:
            self._require_project(tx, fields.get("project_id"))
            task = tx.add(fields)

        logger.info("Created task %s: %s", task.id, task.title)
        return task

    def update(self, task_id: Any, patch: Mapping[str, Any]) -> Task:
        """Apply a partial update; only keys present in *patch* change."""
        task_id = coerce_task_id(task_id)
        if not patch:
            raise ValidationError("No fields to update")
        unknown = set(patch) - UPDATE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown task fields: {', '.join(sorted(unknown))}")
        changes = _coerce_fields(patch)

        with self.store.transaction() as tx:
            existing = tx.require(task_id)

            has_type = "assigned_to_type" in changes
            has_id = "assigned_to_id" in changes
            if has_type and not has_id and changes["assigned_to_type"] is None:
                changes["assigned_to_id"] = None
            _check_assignee(
                changes["assigned_to_type"] if has_type else existing.assigned_to_type,
                changes["assigned_to_id"] if "assigned_to_id" in changes else existing.assigned_to_id,
                changes.get("non_agent", existing.non_agent),
            )
            self._require_project(tx, changes.get("project_id"))

            return tx.update(task_id, changes)

    def delete(self, task_id: Any) -> None:
        if not self.store.delete(coerce_task_id(task_id)):
            raise NotFoundError("Task not found")

    # ------------------------------------------------------------------
    # Bulk operations
    # ------------------------------------------------------------------

    def bulk_update_status(self, ids: Any, status: Any) -> dict[str, int]:
        task_ids = normalize_ids(ids)
        target = _coerce_status(status)
        with self.store.transaction() as tx:
            updated = tx.set_status_many(task_ids, target)
        return {"updated": updated}

    def bulk_assign(self, ids: Any, assigned_to_type: Any, assigned_to_id: Any) -> dict[str, int]:
        task_ids = normalize_ids(ids)
        kind = _coerce_assignee_type(assigned_to_type)
        assignee = _clean_text(assigned_to_id, "assigned_to_id")
        _check_assignee(kind, assignee, non_agent=False)

        with self.store.transaction() as tx:
            if kind == AssigneeType.AGENT:
                for task in tx.get_many(task_ids).values():
                    if task.non_agent:
                        raise ValidationError("Cannot assign agents to non_agent tasks")
            updated = tx.set_assignee_many(task_ids, kind, assignee)
        return {"updated": updated}

    def bulk_assign_project(self, ids: Any, project_id: Any) -> dict[str, int]:
        task_ids = normalize_ids(ids)
        target = _coerce_project_id(project_id)
        with self.store.transaction() as tx:
            self._require_project(tx, target)
            updated = tx.set_project_many(task_ids, target)
        return {"updated": updated}

    def bulk_delete(self, ids: Any) -> dict[str, int]:
        task_ids = normalize_ids(ids)
        with self.store.transaction() as tx:
            deleted = tx.delete_many(task_ids)
        logger.info("Bulk deleted %d of %d requested tasks", deleted, len(task_ids))
        return {"deleted": deleted}

    def reorder(self, items: Any) -> dict[str, int]:
        """Persist a drag-and-drop batch of ``{id, status, position}`` moves.

        Every entry is validated and every id checked for existence before
        anything is written.  When an id repeats, its last entry wins.
        """
        if not isinstance(items, (list, tuple)) or not items:
            raise ValidationError("No reorder items provided")
        latest: dict[int, tuple[TaskStatus, int]] = {}
        for item in items:
            if not isinstance(item, Mapping):
                raise ValidationError("Invalid reorder item")
            latest[coerce_task_id(item.get("id"))] = (
                _coerce_status(item.get("status")),
                _non_negative(item.get("position")),
            )
        moves = [(task_id, status, position) for task_id, (status, position) in latest.items()]

        with self.store.transaction() as tx:
            found = tx.get_many(task_id for task_id, _, _ in moves)
            missing = [task_id for task_id, _, _ in moves if task_id not in found]
            if missing:
                raise NotFoundError(f"Task not found: {missing[0]}")
            updated = tx.apply_positions(moves)
        return {"updated": updated}

    def archive_done(self, assigned_to_id: Any = UNSET) -> dict[str, int]:
        """Archive every visible ``done`` task, optionally for one assignee.

        ``UNSET``, ``""`` and ``"all"`` archive everything; ``None`` archives
        only unassigned tasks.
        """
        if isinstance(assigned_to_id, str):
            assigned_to_id = assigned_to_id.strip()
            if assigned_to_id in ("", "all"):
                assigned_to_id = UNSET
        elif assigned_to_id is not None and assigned_to_id is not UNSET:
            raise ValidationError("Invalid assigned_to")

        with self.store.transaction() as tx:
            archived = tx.archive_done(assigned_to_id)
        logger.info("Archived %d done tasks", archived)
        return {"archived": archived}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_project(tx: _TaskTx, project_id: Optional[int]) -> None:
        if project_id is not None and not tx.project_exists(project_id):
            raise NotFoundError("Project not found")
