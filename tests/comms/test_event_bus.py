"""Unit tests for EventBus: topic filtering and drop-oldest overflow."""
from __future__ import annotations

import queue
import threading

import pytest

from cloudsim.comms.event_bus import EventBus


@pytest.mark.unit
class TestEventBus:
    def test_publish_delivers_to_subscriber(self):
        bus = EventBus()
        q = bus.subscribe()
        bus.publish("node_placed", {"node_id": "svc-1"})
        msg = q.get_nowait()
        assert msg == {"type": "node_placed", "data": {"node_id": "svc-1"}}

    def test_publish_without_data(self):
        bus = EventBus()
        q = bus.subscribe()
        bus.publish("spike_ended")
        assert "data" not in q.get_nowait()

    def test_topic_filter(self):
        bus = EventBus()
        q = bus.subscribe("game_over")
        bus.publish("request_completed", {})
        bus.publish("game_over", {"reason": "reputation"})
        assert q.get_nowait()["type"] == "game_over"
        assert q.empty()

    def test_unsubscribe(self):
        bus = EventBus()
        q = bus.subscribe()
        bus.unsubscribe(q)
        bus.publish("request_failed", {})
        assert q.empty()

    def test_full_queue_drops_oldest(self):
        bus = EventBus(maxsize=3)
        q = bus.subscribe()
        for i in range(5):
            bus.publish("tick", {"i": i})
        seen = [q.get_nowait()["data"]["i"] for _ in range(3)]
        assert seen == [2, 3, 4]
        with pytest.raises(queue.Empty):
            q.get_nowait()

    def test_concurrent_publishers(self):
        bus = EventBus(maxsize=10_000)
        q = bus.subscribe()

        def publish_many():
            for _ in range(200):
                bus.publish("request_completed", {})

        threads = [threading.Thread(target=publish_many) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert q.qsize() == 800
