"""Typed failures raised by the task engine.

Validation and not-found errors are expected outcomes that callers branch on;
anything else escaping the engine is a storage fault.
"""

from __future__ import annotations


class TaskEngineError(Exception):
    """Base class for expected task engine failures."""


class ValidationError(TaskEngineError, ValueError):
    """The request carries a value the engine will not accept."""


class NotFoundError(TaskEngineError, LookupError):
    """A referenced task or project does not exist."""


class ConflictError(TaskEngineError):
    """A write would break a uniqueness rule (project slug or path)."""
