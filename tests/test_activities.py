"""Tests for the agent activity log (task_engine/activities.py)."""

from __future__ import annotations

import pytest
from pathlib import Path

from clawboard.task_engine.activities import ActivityService, ActivityStore
from clawboard.task_engine.db import Database
from clawboard.task_engine.errors import ConflictError, ValidationError


@pytest.fixture
def service(tmp_path: Path) -> ActivityService:
    database = Database(tmp_path / "board.db")
    database.migrate()
    return ActivityService(ActivityStore(database))


def _record(service: ActivityService, agent: str = "bot", activity_type: str = "commit", **extra):
    return service.create({"agent": agent, "activity_type": activity_type, "description": "did a thing", **extra})


class TestCreate:
    def test_fields_trimmed_and_stamped(self, service: ActivityService) -> None:
        activity = service.create(
            {
                "agent": " bot ",
                "activity_type": "commit",
                "description": "  pushed  ",
                "details": "   ",
                "related_task_id": 3,
            }
        )
        assert activity.id > 0
        assert activity.agent == "bot"
        assert activity.description == "pushed"
        assert activity.details is None
        assert activity.related_task_id == 3
        assert activity.timestamp

    @pytest.mark.parametrize("missing", ["agent", "activity_type", "description"])
    def test_required_fields(self, service: ActivityService, missing: str) -> None:
        body = {"agent": "bot", "activity_type": "commit", "description": "x", missing: "  "}
        with pytest.raises(ValidationError, match="are required"):
            service.create(body)

    def test_related_task_id_must_be_integer(self, service: ActivityService) -> None:
        with pytest.raises(ValidationError, match="related_task_id"):
            _record(service, related_task_id="7")

    def test_source_id_is_unique(self, service: ActivityService) -> None:
        _record(service, source_id="feed-1")
        with pytest.raises(ConflictError):
            _record(service, source_id="feed-1")
        _record(service)
        _record(service)
        assert len(service.list()) == 3


class TestList:
    def test_newest_first_with_agent_filter(self, service: ActivityService) -> None:
        first = _record(service, agent="a")
        second = _record(service, agent="b")
        third = _record(service, agent="a")
        assert [x.id for x in service.list()] == [third.id, second.id, first.id]
        assert [x.id for x in service.list(agent="a")] == [third.id, first.id]

    def test_paging(self, service: ActivityService) -> None:
        made = [_record(service) for _ in range(4)]
        page = service.list(limit=2, offset=1)
        assert [x.id for x in page] == [made[2].id, made[1].id]

    def test_since(self, service: ActivityService) -> None:
        _record(service)
        assert len(service.list(since="2000-01-01T00:00:00Z")) == 1
        assert service.list(since="2999-01-01T00:00:00+00:00") == []

    def test_invalid_since(self, service: ActivityService) -> None:
        with pytest.raises(ValidationError, match="since"):
            service.list(since="last week")

    def test_invalid_limit(self, service: ActivityService) -> None:
        with pytest.raises(ValidationError, match="limit"):
            service.list(limit=-1)

    def test_list_by_agent(self, service: ActivityService) -> None:
        for _ in range(3):
            _record(service, agent="a")
        _record(service, agent="b")
        assert len(service.list_by_agent("a", 2)) == 2
        assert {x.agent for x in service.list_by_agent(" a ")} == {"a"}
        with pytest.raises(ValidationError, match="agent is required"):
            service.list_by_agent("  ")


class TestStats:
    def test_empty(self, service: ActivityService) -> None:
        assert service.stats() == {"total": 0, "by_agent": [], "by_type": [], "recent_24h": 0}

    def test_counts(self, service: ActivityService) -> None:
        _record(service, agent="b", activity_type="commit")
        _record(service, agent="a", activity_type="commit")
        _record(service, agent="a", activity_type="review")
        stats = service.stats()
        assert stats["total"] == 3
        assert stats["recent_24h"] == 3
        assert stats["by_agent"] == [{"agent": "a", "count": 2}, {"agent": "b", "count": 1}]
        assert stats["by_type"] == [
            {"activity_type": "commit", "count": 2},
            {"activity_type": "review", "count": 1},
        ]
