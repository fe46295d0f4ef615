"""Task engine for the Clawboard task board.

This package holds the SQLite-backed task store, the tag registry, the
lifecycle façade that enforces board rules, project bookkeeping, the agent
activity log, and the anchor resolver that tells agents where to work.
"""

from .activities import ActivityService, ActivityStore
from .anchor import AnchorConfig, AnchorResolution, AnchorResolver, normalize_path, resolve_anchor
from .db import Database
from .engine import TaskLifecycle
from .errors import ConflictError, NotFoundError, TaskEngineError, ValidationError
from .model import Activity, AnchorSource, AssigneeType, Project, Task, TaskPriority, TaskStatus
from .projects import ProjectService, ProjectStore
from .store import TaskFilter, TaskStore
from .tags import TagRegistry, normalize_tags

__all__ = [
    "Activity",
    "ActivityService",
    "ActivityStore",
    "AnchorConfig",
    "AnchorResolution",
    "AnchorResolver",
    "AnchorSource",
    "AssigneeType",
    "ConflictError",
    "Database",
    "NotFoundError",
    "Project",
    "ProjectService",
    "ProjectStore",
    "TagRegistry",
    "Task",
    "TaskEngineError",
    "TaskFilter",
    "TaskLifecycle",
    "TaskPriority",
    "TaskStatus",
    "TaskStore",
    "ValidationError",
    "normalize_path",
    "normalize_tags",
    "resolve_anchor",
]
