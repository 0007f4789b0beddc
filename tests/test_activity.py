"""Unit tests for the activity log."""

import json

import pytest

from priority_engine import activity
from priority_engine.config import MAX_ACTIVITY_EVENTS


@pytest.fixture(autouse=True)
def reset_activity():
    activity.clear()
    yield
    activity.clear()


class TestLocalLog:
    def test_recent_events_oldest_first(self):
        activity.emit("config_replaced", {"version": 1})
        activity.emit("ordering_published", {"sequence": 4})
        events = activity.get_recent()
        assert [e["type"] for e in events] == ["config_replaced", "ordering_published"]
        assert events[1]["data"] == {"sequence": 4}
        assert events[0]["ts"] <= events[1]["ts"]

    def test_limit(self):
        for n in range(5):
            activity.emit("stale_data", {"n": n})
        assert [e["data"]["n"] for e in activity.get_recent(limit=2)] == [3, 4]

    def test_log_is_bounded(self):
        for n in range(MAX_ACTIVITY_EVENTS + 10):
            activity.emit("ordering_published", {"sequence": n})
        events = activity.get_recent(limit=MAX_ACTIVITY_EVENTS * 2)
        assert len(events) == MAX_ACTIVITY_EVENTS
        assert events[0]["data"]["sequence"] == 10


class TestWorkerMessages:
    def test_worker_event_is_recorded(self):
        activity.record_worker_message(json.dumps({"type": "ordering_published", "data": {"sequence": 9}}))
        event = activity.get_recent()[-1]
        assert (event["type"], event["data"]) == ("ordering_published", {"sequence": 9})

    @pytest.mark.parametrize("raw", ["{oops", "[1, 2]", json.dumps({"data": {}})])
    def test_unusable_messages_are_dropped(self, raw):
        activity.record_worker_message(raw)
        assert activity.get_recent() == []
