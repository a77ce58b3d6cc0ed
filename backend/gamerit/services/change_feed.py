"""In-process change feed with per-topic subscriber reference counting.

Services publish after their transaction commits. Topics mirror table names
(game_rounds, players, meme_stocks). The upstream listener for a topic is
attached on the first subscription and detached when the last subscriber
leaves, so repeated subscribe/unsubscribe cycles never stack duplicates.
"""

import logging
import threading
from collections import defaultdict
from typing import Callable, Optional

logger = logging.getLogger(__name__)

Callback = Callable[[dict], None]


class ChangeFeed:
    def __init__(
        self,
        on_attach: Optional[Callable[[str], None]] = None,
        on_detach: Optional[Callable[[str], None]] = None,
    ):
        self._subscribers: dict[str, list[Callback]] = defaultdict(list)
        self._lock = threading.RLock()
        self._on_attach = on_attach
        self._on_detach = on_detach

    def subscribe(self, topic: str, callback: Callback) -> Callable[[], None]:
        """Register a callback; returns an unsubscribe function."""
        with self._lock:
            first = not self._subscribers[topic]
            self._subscribers[topic].append(callback)
            if first:
                logger.debug(f"Attaching change feed listener for {topic}")
                if self._on_attach:
                    self._on_attach(topic)
        return lambda: self.unsubscribe(topic, callback)

    def unsubscribe(self, topic: str, callback: Callback) -> None:
        with self._lock:
            subscribers = self._subscribers.get(topic)
            if not subscribers or callback not in subscribers:
                return
            subscribers.remove(callback)
            if not subscribers:
                del self._subscribers[topic]
                logger.debug(f"Detaching change feed listener for {topic}")
                if self._on_detach:
                    self._on_detach(topic)

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._subscribers.get(topic, []))

    def publish(self, topic: str, event: dict) -> None:
        """Deliver an event to every subscriber of a topic.

        A failing subscriber is logged and skipped; publishing never raises
        into the caller, whose transaction has already committed.
        """
        with self._lock:
            subscribers = list(self._subscribers.get(topic, []))
        for callback in subscribers:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Change feed subscriber failed on {topic}: {e}", exc_info=True)


feed = ChangeFeed()
