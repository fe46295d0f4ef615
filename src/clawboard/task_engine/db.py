"""SQLite connection handling, schema and migrations.

Every operation opens its own connection (WAL journal, busy timeout) so the
store is safe to use from FastAPI's worker threads.  Writes go through
:meth:`Database.transaction`, which takes the write lock up front with
``BEGIN IMMEDIATE`` and commits or rolls back as a unit.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

BUSY_TIMEOUT = 30.0  # seconds

# Each entry moves the database from ``user_version == index`` to ``index + 1``.
MIGRATIONS: tuple[tuple[str, ...], ...] = (
    (
        """
        CREATE TABLE IF NOT EXISTS projects (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            slug TEXT NOT NULL UNIQUE,
            path TEXT NOT NULL,
            description TEXT,
            icon TEXT,
            color TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS tasks (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            title TEXT NOT NULL,
            description TEXT,
            status TEXT NOT NULL DEFAULT 'backlog'
                CHECK (status IN ('backlog', 'in_progress', 'review', 'done')),
            priority TEXT CHECK (priority IN ('low', 'medium', 'high', 'urgent')),
            due_date TEXT,
            tags TEXT,
            blocked_reason TEXT,
            assigned_to_type TEXT CHECK (assigned_to_type IN ('agent', 'human')),
            assigned_to_id TEXT,
            non_agent INTEGER NOT NULL DEFAULT 0,
            anchor TEXT,
            position INTEGER NOT NULL DEFAULT 0,
            project_id INTEGER REFERENCES projects(id),
            context_key TEXT,
            context_type TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            completed_at TEXT,
            archived_at TEXT
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS tags (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL UNIQUE
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_tasks_column ON tasks(status, archived_at, position)",
        "CREATE INDEX IF NOT EXISTS idx_tasks_archived_at ON tasks(archived_at)",
        "CREATE INDEX IF NOT EXISTS idx_tasks_project ON tasks(project_id)",
    ),
    (
        "CREATE INDEX IF NOT EXISTS idx_tasks_assignee ON tasks(assigned_to_type, assigned_to_id)",
        "CREATE INDEX IF NOT EXISTS idx_tasks_context ON tasks(context_key, context_type)",
    ),
    (
        "ALTER TABLE tasks ADD COLUMN is_someday INTEGER NOT NULL DEFAULT 0",
        """
        CREATE TABLE IF NOT EXISTS activities (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            agent TEXT NOT NULL,
            activity_type TEXT NOT NULL,
            description TEXT NOT NULL,
            details TEXT,
            session_key TEXT,
            timestamp TEXT NOT NULL,
            related_task_id INTEGER,
            source_id TEXT
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_activities_agent ON activities(agent, timestamp)",
        "CREATE INDEX IF NOT EXISTS idx_activities_timestamp ON activities(timestamp)",
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_activities_source_id ON activities(source_id)",
    ),
)

SCHEMA_VERSION = len(MIGRATIONS)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

class Database:
    """Thin wrapper over an SQLite file.

    Parameters
    ----------
    path:
        Location of the database file.  Parent directories are created.
    """

    def __init__(self, path: Union[str, Path], *, busy_timeout: float = BUSY_TIMEOUT) -> None:
        self.path = Path(path).expanduser()
        self._busy_timeout = busy_timeout
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def connect(self) -> sqlite3.Connection:
        # isolation_level=None: autocommit, transactions are opened explicitly.
        conn = sqlite3.connect(str(self.path), timeout=self._busy_timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextmanager
    def read(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection for reads; no transaction is held."""
        conn = self.connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the body inside one ``BEGIN IMMEDIATE`` transaction.

        Usage::

            with db.transaction() as conn:
                conn.execute("UPDATE tasks SET ...")
                # committed on exit, rolled back on any exception
        """
        conn = self.connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    def user_version(self) -> int:
        with self.read() as conn:
            return int(conn.execute("PRAGMA user_version").fetchone()[0])

    def migrate(self) -> int:
        """Apply pending migrations and return the resulting schema version."""
        with self.transaction() as conn:
            current = int(conn.execute("PRAGMA user_version").fetchone()[0])
            for version in range(current, SCHEMA_VERSION):
                for statement in MIGRATIONS[version]:
                    conn.execute(statement)
                conn.execute(f"PRAGMA user_version = {version + 1}")
                logger.info("Migrated %s to schema version %d", self.path, version + 1)
        return max(current, SCHEMA_VERSION)
