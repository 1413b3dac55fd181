import logging
import sqlite3
import threading
from collections.abc import Callable

from clipnest.events import EntryBroadcaster, Subscription
from clipnest.models import ClipboardEntry
from clipnest.storage import StorageManager

logger = logging.getLogger(__name__)

Listener = Callable[[ClipboardEntry], None]


class EntryAggregator:
    """Folds entry drafts into the store by content hash and notifies listeners.

    A draft whose hash is already stored becomes a repeat: the existing row
    gains one copy and takes the draft's timestamp. Anything else is inserted
    with a copy count of one.
    """

    def __init__(self, storage: StorageManager, keep_count: int | None = None):
        self._storage = storage
        self._keep_count = keep_count
        self._listeners: list[Listener] = []
        self._listeners_lock = threading.Lock()
        self._subscription: Subscription | None = None
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()

    def add_listener(self, listener: Listener) -> None:
        with self._listeners_lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        with self._listeners_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def upsert(self, draft: ClipboardEntry) -> ClipboardEntry | None:
        try:
            entry = self._store(draft)
        except sqlite3.Error:
            logger.exception("Failed to store clipboard entry %s", draft.id)
            return None
        if entry is None:
            logger.error("Entry %s vanished after write", draft.id)
            return None
        self._notify(entry)
        return entry

    def _store(self, draft: ClipboardEntry) -> ClipboardEntry | None:
        existing = self._storage.find_by_hash(draft.content_hash)
        if existing is not None:
            self._storage.bump_entry(existing.id, draft.created_at)
            logger.debug("Repeat copy of %s", existing.id)
            return self._storage.get_entry(existing.id)

        draft.copy_count = 1
        self._storage.add_entry(draft)
        purged = self._storage.purge_old(self._keep_count)
        if purged:
            logger.info("Purged %d old entries", purged)
        return self._storage.get_entry(draft.id)

    def _notify(self, entry: ClipboardEntry) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(entry)
            except Exception:
                logger.exception("Entry listener failed")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, broadcaster: EntryBroadcaster) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._subscription = broadcaster.subscribe()
        self._thread = threading.Thread(target=self._consume, name="clipnest-aggregator", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop_event.set()
        thread = self._thread
        self._thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

    def _consume(self) -> None:
        subscription = self._subscription
        while not self._stop_event.is_set() and subscription is not None:
            draft = subscription.get(timeout=0.2)
            if draft is not None:
                self.upsert(draft)
        # drain drafts published before stop()
        while subscription is not None and subscription.pending():
            draft = subscription.get(timeout=0)
            if draft is not None:
                self.upsert(draft)
