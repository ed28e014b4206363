"""
Unit tests for click tracking.
"""

from unittest.mock import MagicMock

from linkgate.analytics import MAX_CLICKS_PER_PAGE, ClickTracker, analytics_key


class TestClickTracker:
    def test_record_and_read_newest_first(self, memory_store, clock):
        tracker = ClickTracker(memory_store, clock=clock)

        tracker.record_click("alice", "open-1", False)
        clock.advance(1)
        tracker.record_click("alice", "gated-1", True)

        clicks = tracker.recent_clicks("alice")

        assert [c["itemId"] for c in clicks] == ["gated-1", "open-1"]
        assert clicks[0] == {"itemId": "gated-1", "isGated": True, "timestamp": int(clock.now * 1000)}

    def test_same_millisecond_clicks_are_distinct(self, memory_store, clock):
        tracker = ClickTracker(memory_store, clock=clock)

        tracker.record_click("alice", "open-1", False)
        tracker.record_click("alice", "open-1", False)

        assert memory_store.zcard(analytics_key("alice")) == 2

    def test_history_is_trimmed(self, memory_store, clock):
        tracker = ClickTracker(memory_store, clock=clock)

        for _ in range(MAX_CLICKS_PER_PAGE + 5):
            tracker.record_click("alice", "open-1", False)
            clock.advance(0.01)

        assert memory_store.zcard(analytics_key("alice")) == MAX_CLICKS_PER_PAGE

    def test_limit(self, memory_store, clock):
        tracker = ClickTracker(memory_store, clock=clock)
        for i in range(5):
            tracker.record_click("alice", f"link-{i}", False)
            clock.advance(1)

        clicks = tracker.recent_clicks("alice", limit=2)

        assert [c["itemId"] for c in clicks] == ["link-4", "link-3"]
        assert tracker.recent_clicks("alice", limit=0) == []

    def test_store_failure_is_swallowed(self):
        store = MagicMock()
        store.zadd.side_effect = ConnectionError("redis gone")
        tracker = ClickTracker(store)

        tracker.record_click("alice", "open-1", False)

        store.zadd.assert_called_once()
