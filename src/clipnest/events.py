"""Multi-subscriber broadcast of clipboard entries.

Each subscriber owns a bounded queue. Publishing never blocks: a subscriber
that falls behind loses its oldest pending entries.
"""

import logging
import queue
import threading

from clipnest.models import ClipboardEntry

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 100


class Subscription:
    def __init__(self, broadcaster: "EntryBroadcaster", maxsize: int):
        self._broadcaster = broadcaster
        self._queue: queue.Queue[ClipboardEntry] = queue.Queue(maxsize=maxsize)
        self.closed = False

    def _deliver(self, entry: ClipboardEntry) -> None:
        while True:
            try:
                self._queue.put_nowait(entry)
                return
            except queue.Full:
                try:
                    dropped = self._queue.get_nowait()
                except queue.Empty:
                    continue
                logger.warning("Subscriber lagging, dropped entry %s", dropped.id)

    def get(self, timeout: float | None = None) -> ClipboardEntry | None:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        self.closed = True
        self._broadcaster.unsubscribe(self)


class EntryBroadcaster:
    def __init__(self):
        self._lock = threading.Lock()
        self._subscriptions: list[Subscription] = []

    def subscribe(self, maxsize: int = DEFAULT_CAPACITY) -> Subscription:
        subscription = Subscription(self, maxsize)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def publish(self, entry: ClipboardEntry) -> int:
        """Deliver ``entry`` to every subscriber; returns how many received it."""
        with self._lock:
            subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            subscription._deliver(entry)
        return len(subscriptions)
