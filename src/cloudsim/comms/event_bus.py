"""EventBus: thread-safe pub/sub for simulation cues.

The simulation core publishes outcome, warning and game-state events here;
renderers, HUDs and audio players subscribe and react.  The core never
waits on a subscriber: each subscriber gets its own bounded queue and a
full queue drops its oldest message.
"""

from __future__ import annotations

import queue
import threading


class EventBus:
    """Simple thread-safe pub/sub for pushing events to subscribers."""

    def __init__(self, maxsize: int = 1000) -> None:
        self._lock = threading.Lock()
        self._maxsize = maxsize
        self._subscribers: list[tuple[queue.Queue, frozenset[str] | None]] = []

    def subscribe(self, *topics: str) -> queue.Queue:
        """Subscribe to events.  With no topics, receives every event.

        Each message is a dict ``{"type": topic, "data": payload}``.
        """
        q: queue.Queue = queue.Queue(maxsize=self._maxsize)
        with self._lock:
            self._subscribers.append((q, frozenset(topics) if topics else None))
        return q

    def unsubscribe(self, q: queue.Queue) -> None:
        with self._lock:
            self._subscribers = [(s, t) for s, t in self._subscribers if s is not q]

    def publish(self, event_type: str, data: dict | None = None) -> None:
        msg = {"type": event_type}
        if data is not None:
            msg["data"] = data
        with self._lock:
            for q, topics in self._subscribers:
                if topics is not None and event_type not in topics:
                    continue
                try:
                    q.put_nowait(msg)
                except queue.Full:
                    # Drop oldest so fresh cues (game over, warnings) are kept.
                    try:
                        q.get_nowait()
                    except queue.Empty:
                        pass
                    try:
                        q.put_nowait(msg)
                    except queue.Full:
                        pass
