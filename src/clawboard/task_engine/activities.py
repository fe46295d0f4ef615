"""Agent activity log.

Agents and integrations append short entries describing what they did; the
board reads them back newest-first, per agent, or as aggregate counts.
Entries are append-only.  An optional ``source_id`` makes an append
idempotent for callers replaying an external feed.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Mapping, Optional

from ..utils import iso_days_ago, now_iso, parse_iso
from .db import Database
from .errors import ConflictError, ValidationError
from .model import Activity

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50
TOP_TYPES = 10


class ActivityStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    def list(
        self,
        *,
        agent: Optional[str] = None,
        since: Optional[str] = None,
        limit: int = DEFAULT_LIMIT,
        offset: int = 0,
    ) -> list[Activity]:
        conditions: list[str] = []
        values: list[Any] = []
        if agent:
            conditions.append("agent = ?")
            values.append(agent)
        if since:
            conditions.append("timestamp >= ?")
            values.append(since)
        sql = "SELECT * FROM activities"
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        sql += " ORDER BY timestamp DESC, id DESC LIMIT ? OFFSET ?"
        values.extend((limit, offset))
        with self._db.read() as conn:
            return [Activity.from_row(row) for row in conn.execute(sql, values)]

    def create(self, fields: Mapping[str, Any]) -> Activity:
        with self._db.transaction() as conn:
            cur = conn.execute(
                "INSERT INTO activities"
                " (agent, activity_type, description, details, session_key, timestamp, related_task_id, source_id)"
                " VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    fields["agent"],
                    fields["activity_type"],
                    fields["description"],
                    fields.get("details"),
                    fields.get("session_key"),
                    now_iso(),
                    fields.get("related_task_id"),
                    fields.get("source_id"),
                ),
            )
            row = conn.execute("SELECT * FROM activities WHERE id = ?", (cur.lastrowid,)).fetchone()
        return Activity.from_row(row)

    def stats(self) -> dict[str, Any]:
        with self._db.read() as conn:
            total = conn.execute("SELECT COUNT(*) FROM activities").fetchone()[0]
            by_agent = [
                {"agent": row["agent"], "count": row["count"]}
                for row in conn.execute(
                    "SELECT agent, COUNT(*) AS count FROM activities GROUP BY agent ORDER BY agent"
                )
            ]
            by_type = [
                {"activity_type": row["activity_type"], "count": row["count"]}
                for row in conn.execute(
                    "SELECT activity_type, COUNT(*) AS count FROM activities"
                    " GROUP BY activity_type ORDER BY count DESC, activity_type ASC LIMIT ?",
                    (TOP_TYPES,),
                )
            ]
            recent = conn.execute(
                "SELECT COUNT(*) FROM activities WHERE timestamp >= ?", (iso_days_ago(1),)
            ).fetchone()[0]
        return {"total": total, "by_agent": by_agent, "by_type": by_type, "recent_24h": recent}


def _text(value: Any, field_name: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"Invalid {field_name}")
    return value.strip() or None


def _count(raw: Any, label: str, default: int) -> int:
    if raw is None:
        return default
    if isinstance(raw, bool) or not isinstance(raw, int) or raw < 0:
        raise ValidationError(f"Invalid {label}")
    return raw


class ActivityService:
    """Validation in front of :class:`ActivityStore`."""

    def __init__(self, store: ActivityStore) -> None:
        self.store = store

    def list(
        self,
        *,
        agent: Optional[str] = None,
        since: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> list[Activity]:
        since_iso = None
        if since:
            parsed = parse_iso(since)
            if parsed is None:
                raise ValidationError("Invalid since")
            since_iso = parsed.isoformat()
        return self.store.list(
            agent=_text(agent, "agent"),
            since=since_iso,
            limit=_count(limit, "limit", DEFAULT_LIMIT),
            offset=_count(offset, "offset", 0),
        )

    def list_by_agent(self, agent: str, limit: Optional[int] = None) -> list[Activity]:
        name = _text(agent, "agent")
        if name is None:
            raise ValidationError("agent is required")
        return self.store.list(agent=name, limit=_count(limit, "limit", DEFAULT_LIMIT))

    def create(self, body: Mapping[str, Any]) -> Activity:
        fields = {
            "agent": _text(body.get("agent"), "agent"),
            "activity_type": _text(body.get("activity_type"), "activity_type"),
            "description": _text(body.get("description"), "description"),
        }
        if not all(fields.values()):
            raise ValidationError("agent, activity_type, and description are required")
        for key in ("details", "session_key", "source_id"):
            fields[key] = _text(body.get(key), key)
        related = body.get("related_task_id")
        if related is not None and (isinstance(related, bool) or not isinstance(related, int)):
            raise ValidationError("Invalid related_task_id")
        fields["related_task_id"] = related

        try:
            activity = self.store.create(fields)
        except sqlite3.IntegrityError as exc:
            raise ConflictError("Activity already recorded") from exc
        logger.debug("Recorded %s activity for %s", activity.activity_type, activity.agent)
        return activity

    def stats(self) -> dict[str, Any]:
        return self.store.stats()
