"""
Bounded alert ingestion queue.

Ingestion never blocks: when the queue is full the oldest unclassified
event is dropped and counted, so a burst degrades classification instead
of stalling the alert feed.
"""
import logging
import threading
from collections import deque
from typing import List, Optional

from ..metrics import track_alert_dropped, track_alert_ingested
from .models import AlertEvent

logger = logging.getLogger(__name__)


class AlertQueue:
    """
    Thread-safe, drop-oldest queue of alert events.

    Producers (webhook handlers, the evaluator) call put(); the control
    loop drains the queue once per tick.
    """

    def __init__(self, maxsize: int = 1000):
        """
        Initialize queue.

        Args:
            maxsize: Maximum number of pending events
        """
        if maxsize <= 0:
            raise ValueError("maxsize must be positive")
        self.maxsize = maxsize
        self._events: deque = deque()
        self._lock = threading.Lock()
        self.dropped = 0

    def put(self, event: AlertEvent) -> bool:
        """
        Enqueue an event.

        Returns:
            False if an older event had to be dropped to make room
        """
        with self._lock:
            overflow = len(self._events) >= self.maxsize
            if overflow:
                dropped = self._events.popleft()
                self.dropped += 1
            self._events.append(event)

        track_alert_ingested(event.name)
        if overflow:
            track_alert_dropped()
            logger.warning(
                f"Alert queue full ({self.maxsize}), dropped oldest event "
                f"'{dropped.name}' (total dropped: {self.dropped})"
            )
        return not overflow

    def drain(self, limit: Optional[int] = None) -> List[AlertEvent]:
        """Remove and return pending events in arrival order."""
        with self._lock:
            count = len(self._events) if limit is None else min(limit, len(self._events))
            return [self._events.popleft() for _ in range(count)]

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
