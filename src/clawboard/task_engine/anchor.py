"""Anchor resolution: which directory an agent should work in for a task.

Resolution walks a fixed precedence chain and the first step that yields a
usable absolute path wins:

1. ``non_agent`` tasks never get an anchor;
2. the task's own ``anchor``;
3. the path of the task's project;
4. a category default keyed by one of the task's tags (in tag order);
5. the scratch root, when the config allows falling back to it.

Every candidate goes through :func:`normalize_path`.  A candidate that still
carries an unresolved ``$VAR`` after substitution is rejected rather than
used literally, so resolution falls through to the next step.  Nothing in
this module raises on bad input.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping, Optional

from .model import AnchorSource, Project, Task

logger = logging.getLogger(__name__)

_ENV_VAR = re.compile(r"\$\{([A-Z0-9_]+)\}|\$([A-Z0-9_]+)", re.IGNORECASE)

ProjectLookup = Callable[[int], Optional[Project]]


# ---------------------------------------------------------------------------
# Configuration and result values
# ---------------------------------------------------------------------------

def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


@dataclass(frozen=True)
class AnchorConfig:
    """Immutable inputs for the category and scratch steps."""

    category_defaults: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    scratch_root: Optional[str] = None
    allow_scratch_fallback: bool = False
    scratch_per_task: bool = False

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "AnchorConfig":
        """Build a config from loosely-typed data (a parsed YAML block).

        Category keys are trimmed and lowercased; entries with blank keys or
        non-string paths are dropped.
        """
        data = data or {}
        defaults: dict[str, str] = {}
        raw_defaults = data.get("category_defaults")
        if isinstance(raw_defaults, Mapping):
            for key, value in raw_defaults.items():
                name = str(key).strip().lower()
                if name and isinstance(value, str) and value.strip():
                    defaults[name] = value
        scratch_root = data.get("scratch_root")
        return cls(
            category_defaults=MappingProxyType(defaults),
            scratch_root=scratch_root if isinstance(scratch_root, str) and scratch_root.strip() else None,
            allow_scratch_fallback=_truthy(data.get("allow_scratch_fallback", False)),
            scratch_per_task=_truthy(data.get("scratch_per_task", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "category_defaults": dict(self.category_defaults),
            "scratch_root": self.scratch_root,
            "allow_scratch_fallback": self.allow_scratch_fallback,
            "scratch_per_task": self.scratch_per_task,
        }


@dataclass(frozen=True)
class AnchorResolution:
    resolved_anchor: Optional[str] = None
    anchor_source: Optional[AnchorSource] = None

    def as_dict(self) -> dict[str, Optional[str]]:
        return {
            "resolved_anchor": self.resolved_anchor,
            "anchor_source": self.anchor_source.value if self.anchor_source else None,
        }


_UNRESOLVED = AnchorResolution()


# ---------------------------------------------------------------------------
# Path normalization
# ---------------------------------------------------------------------------

def normalize_path(
    raw: Any,
    env: Optional[Mapping[str, str]] = None,
    home: Optional[str] = None,
) -> Optional[str]:
    """Expand ``~`` and ``$VAR``/``${VAR}`` in *raw* and return an absolute path.

    Returns ``None`` for non-strings, blank input, and any value that still
    holds a placeholder once the environment has been applied.
    """
    if not isinstance(raw, str):
        return None
    value = raw.strip()
    if not value:
        return None

    environ = os.environ if env is None else env
    if value.startswith("~"):
        home_dir = home if home is not None else os.path.expanduser("~")
        value = os.path.join(home_dir, value[1:].lstrip("/\\"))

    def _substitute(match: "re.Match[str]") -> str:
        key = match.group(1) or match.group(2) or ""
        resolved = environ.get(key)
        return match.group(0) if resolved is None else resolved

    value = _ENV_VAR.sub(_substitute, value)
    if _ENV_VAR.search(value):
        return None

    try:
        resolved_path = os.path.abspath(value)
    except (TypeError, ValueError):
        return None
    if not os.path.isabs(resolved_path):
        return None
    return resolved_path


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

def resolve_anchor(
    task: Task,
    project_lookup: Optional[ProjectLookup],
    config: AnchorConfig,
    *,
    env: Optional[Mapping[str, str]] = None,
    home: Optional[str] = None,
) -> AnchorResolution:
    """Walk the precedence chain for *task* and return the first usable anchor."""
    if task.non_agent:
        return _UNRESOLVED

    explicit = normalize_path(task.anchor, env, home)
    if explicit:
        return AnchorResolution(explicit, AnchorSource.TASK)

    if task.project_id is not None and project_lookup is not None:
        project = _lookup_project(project_lookup, task.project_id)
        project_path = normalize_path(project.path if project else None, env, home)
        if project_path:
            return AnchorResolution(project_path, AnchorSource.PROJECT)

    for tag in task.tags:
        key = str(tag).strip().lower()
        if not key:
            continue
        category_path = normalize_path(config.category_defaults.get(key), env, home)
        if category_path:
            return AnchorResolution(category_path, AnchorSource.CATEGORY)

    if config.allow_scratch_fallback:
        scratch_root = normalize_path(config.scratch_root, env, home)
        if scratch_root:
            candidate = scratch_root
            if config.scratch_per_task:
                candidate = os.path.join(scratch_root, "tasks", str(task.id))
            scratch = normalize_path(candidate, env, home)
            if scratch:
                return AnchorResolution(scratch, AnchorSource.SCRATCH)

    return _UNRESOLVED


def _lookup_project(project_lookup: ProjectLookup, project_id: int) -> Optional[Project]:
    try:
        return project_lookup(project_id)
    except Exception:
        logger.exception("Project lookup failed for project %s", project_id)
        return None


class AnchorResolver:
    """Attach ``resolved_anchor``/``anchor_source`` to serialized tasks.

    Parameters
    ----------
    project_lookup:
        Callable returning the :class:`Project` for an id, or ``None``.
    env, home:
        Overrides for the process environment and home directory.
    """

    def __init__(
        self,
        project_lookup: Optional[ProjectLookup] = None,
        *,
        env: Optional[Mapping[str, str]] = None,
        home: Optional[str] = None,
    ) -> None:
        self._project_lookup = project_lookup
        self._env = env
        self._home = home

    def resolve(self, task: Task, config: AnchorConfig) -> AnchorResolution:
        return self._resolve(task, config, self._project_lookup)

    def enrich(self, task: Task, config: AnchorConfig) -> dict[str, Any]:
        data = task.to_dict()
        data.update(self.resolve(task, config).as_dict())
        return data

    def enrich_many(self, tasks: Iterable[Task], config: AnchorConfig) -> list[dict[str, Any]]:
        # One project lookup per distinct project id for the whole batch.
        cache: dict[int, Optional[Project]] = {}

        def cached_lookup(project_id: int) -> Optional[Project]:
            if project_id not in cache:
                cache[project_id] = (
                    _lookup_project(self._project_lookup, project_id)
                    if self._project_lookup is not None
                    else None
                )
            return cache[project_id]

        out: list[dict[str, Any]] = []
        for task in tasks:
            data = task.to_dict()
            data.update(self._resolve(task, config, cached_lookup).as_dict())
            out.append(data)
        return out

    def _resolve(
        self, task: Task, config: AnchorConfig, lookup: Optional[ProjectLookup]
    ) -> AnchorResolution:
        return resolve_anchor(task, lookup, config, env=self._env, home=self._home)
