"""Load Clawboard settings from ``~/.clawboard/config.yaml`` and the environment.

The config file is optional.  Recognized keys::

    db_path: ~/boards/clawboard.db
    anchors:
      category_defaults:
        backend: ~/code/api
      scratch_root: ~/.clawboard/scratch
      allow_scratch_fallback: true
      scratch_per_task: false

The anchor keys may also appear at the top level; the ``anchors`` block wins
when both are present.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

import yaml
from loguru import logger

from .task_engine.anchor import AnchorConfig

CONFIG_ENV = "CLAWBOARD_CONFIG"
DB_PATH_ENV = "CLAWBOARD_DB_PATH"
DEFAULT_CONFIG_PATH = Path("~/.clawboard/config.yaml")
DEFAULT_DB_PATH = Path("~/.local/share/clawboard/clawboard.db")

ANCHOR_KEYS = ("category_defaults", "scratch_root", "allow_scratch_fallback", "scratch_per_task")


@dataclass(frozen=True)
class Settings:
    """Resolved runtime settings."""

    db_path: Path
    anchors: AnchorConfig = field(default_factory=AnchorConfig)
    config_path: Path | None = None
    config_error: str | None = None


def _load_data_with_error(path: Path) -> tuple[dict[str, Any], str | None]:
    """Load JSON/YAML and return ``(data, error_message)``."""
    if not path.exists():
        return {}, None
    try:
        with open(path, "r", encoding="utf-8") as handle:
            if path.suffix in {".yaml", ".yml"}:
                data = yaml.safe_load(handle)
            else:
                data = json.load(handle)
    except OSError as exc:
        return {}, f"{path.name}: {exc.__class__.__name__}: {exc}"
    except json.JSONDecodeError as exc:
        return {}, f"{path.name}: JSONDecodeError: {exc}"
    except yaml.YAMLError as exc:
        return {}, f"{path.name}: YAMLError: {exc}"
    if data is None:
        return {}, None
    if not isinstance(data, dict):
        return {}, f"{path.name}: expected object, got {type(data).__name__}"
    return data, None


def config_file_path(env: Mapping[str, str] | None = None) -> Path:
    environ = os.environ if env is None else env
    raw = (environ.get(CONFIG_ENV) or "").strip()
    return Path(raw).expanduser() if raw else DEFAULT_CONFIG_PATH.expanduser()


def load_config_file(path: Path) -> tuple[dict[str, Any], str | None]:
    """Load the optional config file.

    Args:
        path: Location of the YAML (or JSON) file.

    Returns:
        A tuple of ``(config, error_message)``. If the file is missing, returns ``({}, None)``.
    """
    return _load_data_with_error(path)


def get_anchor_config(config: dict[str, Any]) -> AnchorConfig:
    """Build the :class:`AnchorConfig` from top-level keys overlaid by the ``anchors`` block."""
    merged: dict[str, Any] = {key: config[key] for key in ANCHOR_KEYS if key in config}
    block = config.get("anchors")
    if isinstance(block, dict):
        merged.update(block)
    return AnchorConfig.from_mapping(merged)


def resolve_db_path(
    config: dict[str, Any],
    config_path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> Path:
    """Pick the database file: environment, then config file, then the default.

    A relative ``db_path`` in the config file is taken relative to the file.
    """
    environ = os.environ if env is None else env
    raw_env = (environ.get(DB_PATH_ENV) or "").strip()
    if raw_env:
        return Path(raw_env).expanduser().resolve()
    raw = config.get("db_path")
    if isinstance(raw, str) and raw.strip():
        candidate = Path(raw.strip()).expanduser()
        if not candidate.is_absolute() and config_path is not None:
            candidate = config_path.parent / candidate
        return candidate.resolve()
    return DEFAULT_DB_PATH.expanduser()


def build_settings(env: Mapping[str, str] | None = None) -> Settings:
    path = config_file_path(env)
    data, err = load_config_file(path)
    if err:
        logger.warning("Ignoring config file {}: {}", path, err)
    return Settings(
        db_path=resolve_db_path(data, path, env),
        anchors=get_anchor_config(data),
        config_path=path if path.exists() else None,
        config_error=err,
    )


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    """Return process-wide settings, loading them on first use."""
    return build_settings()


def reset_settings_cache() -> None:
    """Forget cached settings so the next :func:`load_settings` re-reads them."""
    load_settings.cache_clear()
