from __future__ import annotations

from agent_dispatch.core.config import TrackingSettings
from agent_dispatch.orchestration.tracking import TaskTracker, TrackedStatus


def test_create_log_and_complete_task() -> None:
    tracker = TaskTracker()
    task_id = tracker.create(mode="query", agent_id="a", provider="claude", prompt="hello")

    tracker.add_log(task_id, level="info", message="started")
    record = tracker.complete(task_id, result="answer", success=True)

    assert record is not None
    assert record.status is TrackedStatus.COMPLETED
    assert record.result == "answer"
    assert record.duration_ms is not None and record.duration_ms >= 0
    assert [entry.message for entry in record.logs] == ["started"]
    assert record.to_dict()["status"] == "completed"


def test_failed_completion_and_filters() -> None:
    tracker = TaskTracker()
    ok = tracker.create(mode="execute", provider="claude")
    bad = tracker.create(mode="execute", provider="gemini")

    tracker.complete(ok, result=None, success=True)
    tracker.complete(bad, result=None, success=False)

    assert [record.task_id for record in tracker.list(status=TrackedStatus.FAILED)] == [bad]
    assert [record.task_id for record in tracker.list(provider="claude")] == [ok]


def test_unknown_task_is_ignored() -> None:
    tracker = TaskTracker()

    tracker.add_log("missing", level="warn", message="nothing")

    assert tracker.complete("missing", result=None, success=False) is None
    assert tracker.get("missing") is None


def test_oldest_records_are_evicted() -> None:
    tracker = TaskTracker(max_records=2)
    first = tracker.create(mode="query")
    tracker.create(mode="query")
    tracker.create(mode="query")

    assert len(tracker) == 2
    assert tracker.get(first) is None


def test_from_settings_respects_enabled_flag() -> None:
    assert TaskTracker.from_settings(TrackingSettings(enabled=False)) is None
    tracker = TaskTracker.from_settings(TrackingSettings(max_records=3))
    assert tracker is not None
