"""Task, project and activity model for the Clawboard task board.

Rows come out of SQLite as ``sqlite3.Row`` objects and are hydrated into the
dataclasses below.  Status, priority and assignee type are closed enums at
this boundary; free strings never reach the store without passing through
:func:`coerce_enum`.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, TypeVar

from .errors import ValidationError
from .tags import decode_tags


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TaskStatus(str, Enum):
    """Board-level status used for Kanban columns."""

    BACKLOG = "backlog"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    DONE = "done"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class AssigneeType(str, Enum):
    """Who a task is assigned to: an automated agent or a person."""

    AGENT = "agent"
    HUMAN = "human"


class AnchorSource(str, Enum):
    """Which precedence level produced a task's resolved anchor."""

    TASK = "task"
    PROJECT = "project"
    CATEGORY = "category"
    SCRATCH = "scratch"


class _Unset:
    """Marker for "filter not given", distinct from an explicit ``None``."""

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()

E = TypeVar("E", bound=Enum)


def coerce_enum(enum_cls: type[E], raw: Any, field_name: str) -> E:
    """Map *raw* onto *enum_cls*, raising :class:`ValidationError` otherwise."""
    if isinstance(raw, enum_cls):
        return raw
    if isinstance(raw, str):
        try:
            return enum_cls(raw.strip().lower())
        except ValueError:
            pass
    allowed = ", ".join(e.value for e in enum_cls)  # type: ignore[attr-defined]
    raise ValidationError(f"Invalid {field_name}: expected one of {allowed}")


def completion_timestamp(
    previous_status: Optional[TaskStatus],
    previous_completed_at: Optional[str],
    new_status: TaskStatus,
    now: str,
) -> Optional[str]:
    """Return the ``completed_at`` a task should carry after moving to *new_status*.

    Entering ``done`` stamps *now*; re-affirming ``done`` keeps the earlier
    stamp; any other status clears it.
    """
    if new_status != TaskStatus.DONE:
        return None
    if previous_status == TaskStatus.DONE and previous_completed_at:
        return previous_completed_at
    return now


def _enum_or_none(enum_cls: type[E], raw: Any) -> Optional[E]:
    if raw is None:
        return None
    try:
        return enum_cls(str(raw))
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------

@dataclass
class Task:
    """A task on the board, as stored (derived anchor fields excluded)."""

    id: int
    title: str
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.BACKLOG
    priority: Optional[TaskPriority] = None
    due_date: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    blocked_reason: Optional[str] = None

    assigned_to_type: Optional[AssigneeType] = None
    assigned_to_id: Optional[str] = None
    non_agent: bool = False
    is_someday: bool = False

    anchor: Optional[str] = None
    position: int = 0
    project_id: Optional[int] = None
    context_key: Optional[str] = None
    context_type: Optional[str] = None

    created_at: str = ""
    updated_at: str = ""
    completed_at: Optional[str] = None
    archived_at: Optional[str] = None

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain JSON-friendly dict."""
        data: dict[str, Any] = {}
        for k, v in asdict(self).items():
            data[k] = v.value if isinstance(v, Enum) else v
        return data

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Task":
        status = _enum_or_none(TaskStatus, row["status"]) or TaskStatus.BACKLOG
        project_id = row["project_id"]
        return cls(
            id=int(row["id"]),
            title=str(row["title"]),
            description=row["description"],
            status=status,
            priority=_enum_or_none(TaskPriority, row["priority"]),
            due_date=row["due_date"],
            tags=decode_tags(row["tags"]),
            blocked_reason=row["blocked_reason"],
            assigned_to_type=_enum_or_none(AssigneeType, row["assigned_to_type"]),
            assigned_to_id=row["assigned_to_id"],
            non_agent=bool(row["non_agent"]),
            is_someday=bool(row["is_someday"]),
            anchor=row["anchor"],
            position=int(row["position"] or 0),
            project_id=int(project_id) if project_id is not None else None,
            context_key=row["context_key"],
            context_type=row["context_type"],
            created_at=str(row["created_at"]),
            updated_at=str(row["updated_at"]),
            completed_at=row["completed_at"],
            archived_at=row["archived_at"],
        )


@dataclass
class Project:
    id: int
    name: str
    slug: str
    path: str
    description: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Project":
        return cls(
            id=int(row["id"]),
            name=str(row["name"]),
            slug=str(row["slug"]),
            path=str(row["path"]),
            description=row["description"],
            icon=row["icon"],
            color=row["color"],
            created_at=str(row["created_at"]),
            updated_at=str(row["updated_at"]),
        )


@dataclass
class Activity:
    """One entry in the agent activity log."""

    id: int
    agent: str
    activity_type: str
    description: str
    details: Optional[str] = None
    session_key: Optional[str] = None
    timestamp: str = ""
    related_task_id: Optional[int] = None
    source_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Activity":
        related = row["related_task_id"]
        return cls(
            id=int(row["id"]),
            agent=str(row["agent"]),
            activity_type=str(row["activity_type"]),
            description=str(row["description"]),
            details=row["details"],
            session_key=row["session_key"],
            timestamp=str(row["timestamp"]),
            related_task_id=int(related) if related is not None else None,
            source_id=row["source_id"],
        )
