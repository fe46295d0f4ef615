"""Tests for tag normalization and the tag registry (task_engine/tags.py)."""

from __future__ import annotations

import pytest
from pathlib import Path

from clawboard.task_engine.db import Database
from clawboard.task_engine.store import TaskStore
from clawboard.task_engine.tags import TagRegistry, decode_tags, encode_tags, normalize_tags


@pytest.fixture
def db(tmp_path: Path) -> Database:
    database = Database(tmp_path / "board.db")
    database.migrate()
    return database


class TestNormalizeTags:
    @pytest.mark.parametrize("raw", [["a", "b"], '["a","b"]', "a, b"])
    def test_equivalent_shapes(self, raw) -> None:
        assert normalize_tags(raw) == ["a", "b"]

    def test_none_and_blank(self) -> None:
        assert normalize_tags(None) == []
        assert normalize_tags("") == []
        assert normalize_tags("   ") == []

    def test_sequence_items_are_stringified_and_trimmed(self) -> None:
        assert normalize_tags([" x ", "", 3, "  "]) == ["x", "3"]

    def test_bad_json_falls_back_to_csv(self) -> None:
        assert normalize_tags("[oops, b") == ["[oops", "b"]

    def test_json_numbers_are_stringified(self) -> None:
        assert normalize_tags("[1, 2]") == ["1", "2"]

    def test_order_is_preserved(self) -> None:
        assert normalize_tags("zeta,alpha,mid") == ["zeta", "alpha", "mid"]

    def test_unknown_shape_is_empty(self) -> None:
        assert normalize_tags(42) == []
        assert normalize_tags({"a": 1}) == []


class TestEncoding:
    def test_round_trip(self) -> None:
        assert decode_tags(encode_tags(["a", "ü"])) == ["a", "ü"]

    def test_decode_garbage_is_empty(self) -> None:
        assert decode_tags("not json") == []
        assert decode_tags('{"a": 1}') == []
        assert decode_tags(None) == []
        assert decode_tags("") == []


class TestTagRegistry:
    def test_empty_registry(self, db: Database) -> None:
        assert TagRegistry(db).list() == []

    def test_tags_recorded_on_create_and_update(self, db: Database) -> None:
        store = TaskStore(db)
        task = store.create({"title": "One", "tags": "beta, alpha"})
        store.update(task.id, {"tags": ["gamma", "alpha"]})
        assert TagRegistry(db).list() == ["alpha", "beta", "gamma"]

    def test_backfill_from_task_rows(self, db: Database) -> None:
        with db.transaction() as conn:
            conn.execute(
                "INSERT INTO tasks (title, tags, created_at, updated_at) VALUES (?, ?, ?, ?)",
                ("Legacy", '["ops", "infra", "ops"]', "2024-01-01T00:00:00+00:00", "2024-01-01T00:00:00+00:00"),
            )
            conn.execute(
                "INSERT INTO tasks (title, tags, created_at, updated_at) VALUES (?, ?, ?, ?)",
                ("Broken", "not-json", "2024-01-01T00:00:00+00:00", "2024-01-01T00:00:00+00:00"),
            )
        registry = TagRegistry(db)
        assert registry.list() == ["infra", "ops"]
        with db.read() as conn:
            count = conn.execute("SELECT COUNT(*) FROM tags").fetchone()[0]
        assert count == 2

    def test_ensure_is_idempotent(self, db: Database) -> None:
        with db.transaction() as conn:
            TagRegistry.ensure(conn, ["a", "b"])
            TagRegistry.ensure(conn, ["b", "c"])
        assert TagRegistry(db).list() == ["a", "b", "c"]
