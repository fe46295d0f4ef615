"""Tag normalization and the distinct-tag registry.

Tags arrive in several legacy shapes (a list, a JSON-array string, or a
comma-separated string).  :func:`normalize_tags` folds all of them into one
trimmed, blank-free list; the store always persists that list as a JSON
array string.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable, Sequence

logger = logging.getLogger(__name__)


def _clean(items: Iterable[Any]) -> list[str]:
    out: list[str] = []
    for item in items:
        value = str(item).strip()
        if value:
            out.append(value)
    return out


def _split_csv(text: str) -> list[str]:
    return _clean(text.split(","))


def normalize_tags(raw: Any) -> list[str]:
    """Normalize tag input of unknown shape into an ordered list of names.

    Recognized shapes, in order:

    1. ``None`` → ``[]``
    2. a list or tuple → each element stringified, trimmed, blanks dropped
    3. a string starting with ``[`` that parses as a JSON array → as (2);
       a parse failure falls through to (4)
    4. any other string → split on commas, trimmed, blanks dropped

    Anything else normalizes to ``[]``.
    """
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        return _clean(raw)
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return []
        if text.startswith("["):
            try:
                parsed = json.loads(text)
            except ValueError:
                parsed = None
            if isinstance(parsed, list):
                return _clean(parsed)
        return _split_csv(text)
    return []


def encode_tags(tags: Sequence[str]) -> str:
    return json.dumps(list(tags), ensure_ascii=False)


def decode_tags(stored: Any) -> list[str]:
    """Decode a persisted tags column; anything but a JSON array reads as ``[]``."""
    if not isinstance(stored, str) or not stored.strip():
        return []
    try:
        parsed = json.loads(stored)
    except ValueError:
        return []
    if not isinstance(parsed, list):
        return []
    return _clean(parsed)


_INSERT_TAG = "INSERT INTO tags (name) VALUES (?) ON CONFLICT(name) DO NOTHING"


class TagRegistry:
    """Distinct-tag index backed by the ``tags`` table.

    Parameters
    ----------
    db:
        The :class:`~clawboard.task_engine.db.Database` holding the table.
    """

    def __init__(self, db: Any) -> None:
        self._db = db

    @staticmethod
    def ensure(conn: Any, names: Iterable[str]) -> None:
        """Insert *names* inside the caller's transaction, skipping known ones."""
        conn.executemany(_INSERT_TAG, [(name,) for name in names])

    def list(self) -> list[str]:
        """Return every registered tag name alphabetically.

        An empty registry is backfilled from the tags carried by task rows
        before returning, in a single transaction.
        """
        with self._db.read() as conn:
            rows = conn.execute("SELECT name FROM tags ORDER BY name ASC").fetchall()
        if rows:
            return [row["name"] for row in rows]

        with self._db.transaction() as conn:
            # Re-check under the write lock; another writer may have seeded it.
            if conn.execute("SELECT 1 FROM tags LIMIT 1").fetchone() is None:
                names: list[str] = []
                for row in conn.execute("SELECT tags FROM tasks WHERE tags IS NOT NULL"):
                    names.extend(decode_tags(row["tags"]))
                if names:
                    self.ensure(conn, dict.fromkeys(names))
                    logger.info("Backfilled tag registry with %d tags", len(set(names)))
            rows = conn.execute("SELECT name FROM tags ORDER BY name ASC").fetchall()
        return [row["name"] for row in rows]
