import json
import logging
import re
import threading
from collections import deque
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import TypeVar

from clipnest.classifier import classify
from clipnest.config import POLL_INTERVAL, READ_TIMEOUT, SELF_APP_BACKOFF_FACTOR, CapturePolicy
from clipnest.events import EntryBroadcaster
from clipnest.images import ImageError, ImageIngester
from clipnest.models import (
    AppInfo,
    ClipboardEntry,
    ContentType,
    FileListSnapshot,
    ImageSnapshot,
    NormalizedImage,
    TextSnapshot,
)
from clipnest.sources import ClipboardSource
from clipnest.utils import truncate_text

logger = logging.getLogger(__name__)

T = TypeVar("T")

DATA_IMAGE_URI = re.compile(r"^data:image/[^;]*;base64,")


class NoveltyTracker:
    """Remembers the most recently dispatched content hashes.

    With ``history=1`` only an immediate repeat is suppressed; a payload that
    comes back after something else was seen is reported again.
    """

    def __init__(self, history: int = 1):
        if history < 1:
            raise ValueError("history must be at least 1")
        self._seen: deque[str] = deque(maxlen=history)
        self._lock = threading.Lock()

    def check_and_remember(self, content_hash: str) -> bool:
        """Return True and remember the hash if it has not been seen recently."""
        with self._lock:
            if content_hash in self._seen:
                return False
            self._seen.append(content_hash)
            return True

    def reset(self) -> None:
        with self._lock:
            self._seen.clear()


class ClipboardMonitor:
    def __init__(
        self,
        source: ClipboardSource,
        broadcaster: EntryBroadcaster,
        ingester: ImageIngester,
        policy: CapturePolicy | None = None,
        novelty: NoveltyTracker | None = None,
        interval: float = POLL_INTERVAL,
    ):
        self._source = source
        self._broadcaster = broadcaster
        self._ingester = ingester
        self._policy = policy or CapturePolicy()
        self._novelty = novelty or NoveltyTracker()
        self._interval = interval
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="clipnest-read")
        self._tick_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._running = False
        self.backing_off = False

    @property
    def is_running(self) -> bool:
        with self._state_lock:
            return self._running

    def start(self) -> None:
        with self._state_lock:
            if self._running:
                return
            self._running = True
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._run, name="clipnest-monitor", daemon=True)
            self._thread.start()
        logger.info("Clipboard monitor started (interval %.2fs)", self._interval)

    def stop(self, timeout: float | None = None) -> None:
        with self._state_lock:
            if not self._running:
                return
            self._running = False
            self._stop_event.set()
            thread = self._thread
            self._thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        logger.info("Clipboard monitor stopped")

    def shutdown(self) -> None:
        self.stop()
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.check_clipboard()
            except Exception:
                logger.exception("Error checking clipboard")
            wait = self._interval * SELF_APP_BACKOFF_FACTOR if self.backing_off else self._interval
            self._stop_event.wait(wait)

    def _read(self, fn: Callable[[], T]) -> T | None:
        try:
            return self._executor.submit(fn).result(timeout=READ_TIMEOUT)
        except FutureTimeout:
            logger.warning("Clipboard read %s timed out", getattr(fn, "__name__", fn))
            return None
        except Exception:
            logger.exception("Clipboard read failed")
            return None

    def check_clipboard(self) -> ClipboardEntry | None:
        """Run one poll tick; returns the dispatched draft, if any."""
        with self._tick_lock:
            app = self._read(self._source.active_app)
            if self._policy.is_self(app):
                if not self.backing_off:
                    logger.debug("Own window is frontmost, backing off")
                self.backing_off = True
                return None
            self.backing_off = False

            entry = self._tick(app)
            if entry is not None:
                self._broadcaster.publish(entry)
            return entry

    def _tick(self, app: AppInfo | None) -> ClipboardEntry | None:
        text = self._read(self._source.read_text)
        if text and text.strip():
            trimmed = text.strip()
            if DATA_IMAGE_URI.match(trimmed):
                logger.debug("Skipping image data URI")
                return None
            snapshot = TextSnapshot(trimmed)
            content_hash = snapshot.content_hash
            if self._novelty.check_and_remember(content_hash):
                return self._text_entry(trimmed, content_hash, app)

        image = self._read(self._source.read_image)
        if image is not None and image.data:
            content_hash = image.content_hash
            if self._novelty.check_and_remember(content_hash):
                return self._image_entry(image, content_hash, app)
            return None

        if text and text.strip():
            return None

        paths = self._read(self._source.read_files)
        if paths:
            snapshot = FileListSnapshot(tuple(paths))
            content_hash = snapshot.content_hash
            if self._novelty.check_and_remember(content_hash):
                return self._file_entry(snapshot, content_hash, app)
        return None

    def _text_entry(self, text: str, content_hash: str, app: AppInfo | None) -> ClipboardEntry | None:
        if not self._policy.allows_text(text, app):
            logger.info("Text from %s not captured (excluded app or too large)", app.name if app else "unknown app")
            return None

        subtype, metadata = classify(text)
        entry = ClipboardEntry.new(ContentType.TEXT, text, content_hash, app)
        entry.content_subtype = subtype
        entry.metadata = metadata.to_json() if metadata else None
        logger.info("Captured %s: %s", subtype.value, truncate_text(text, 50))
        return entry

    def _image_entry(self, image: ImageSnapshot, content_hash: str, app: AppInfo | None) -> ClipboardEntry | None:
        if not self._policy.allows_image(len(image.data), app):
            logger.info("Image (%d bytes) not captured (excluded app or too large)", len(image.data))
            return None

        normalized = self._ingest(image)
        if normalized is None:
            return None

        entry = ClipboardEntry.new(
            ContentType.IMAGE,
            normalized.relative_path,
            content_hash,
            app,
            file_path=normalized.relative_path,
        )
        entry.metadata = json.dumps(
            {
                "image_metadata": {
                    "width": normalized.width,
                    "height": normalized.height,
                    "file_size": normalized.byte_size,
                    "format": normalized.format,
                }
            }
        )
        logger.info("Captured image %dx%d", normalized.width, normalized.height)
        return entry

    def _ingest(self, image: ImageSnapshot) -> NormalizedImage | None:
        try:
            return self._ingester.ingest(image.data, image.width, image.height)
        except ImageError as exc:
            if image.width is None and image.height is None:
                logger.error("Failed to ingest image: %s", exc)
                return None
            logger.warning("Ingest with reported size failed (%s), inferring dimensions", exc)
        try:
            return self._ingester.ingest(image.data)
        except ImageError as exc:
            logger.error("Failed to ingest image: %s", exc)
            return None

    def _file_entry(self, snapshot: FileListSnapshot, content_hash: str, app: AppInfo | None) -> ClipboardEntry | None:
        if not self._policy.allows_files(app):
            logger.info("File list not captured (excluded app)")
            return None

        joined = "\n".join(snapshot.paths)
        entry = ClipboardEntry.new(ContentType.FILE, joined, content_hash, app, file_path=joined)
        logger.info("Captured %d file path(s)", len(snapshot.paths))
        return entry
