import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from clipnest.models import AppInfo

DATA_DIR = Path(os.environ.get("CLIPNEST_DATA_DIR", Path.home() / ".local" / "share" / "clipnest"))
DB_PATH = DATA_DIR / "clipnest.db"
IMAGE_DIR = DATA_DIR / "images"
LOG_PATH = DATA_DIR / "clipnest.log"

POLL_INTERVAL = 0.5  # seconds between clipboard checks
SELF_APP_BACKOFF_FACTOR = 4  # interval multiplier while our own window is frontmost
READ_TIMEOUT = 2.0  # seconds to wait on a single native clipboard read
MAX_ENTRIES = 1000  # auto-purge threshold for non-favorite entries
MAX_IMAGE_SIZE = 50_000_000  # 50MB raw image limit

SELF_APP_NAMES = ("clipnest", "Clipnest")
SELF_BUNDLE_ID = "com.clipnest.app"

DEFAULT_EXCLUDED_APPS = (
    "com.1password.1password7",
    "com.apple.keychainaccess",
)


def _parse_max_text_size() -> int:
    raw = os.environ.get("CLIPNEST_MAX_TEXT_SIZE_MB")
    if raw is None:
        return 1_000_000
    try:
        value = float(raw)
    except ValueError:
        return 1_000_000
    return int(max(0.01, min(100.0, value)) * 1_000_000)


def _parse_excluded_apps() -> tuple[str, ...]:
    raw = os.environ.get("CLIPNEST_EXCLUDED_APPS")
    if raw is None:
        return DEFAULT_EXCLUDED_APPS
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def _parse_expiry_days(name: str) -> int | None:
    """Days to keep entries of one kind; None means they never expire."""
    raw = os.environ.get(name)
    if raw is None or raw.strip().lower() in ("", "never"):
        return None
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value > 0 else None


MAX_TEXT_SIZE = _parse_max_text_size()
EXCLUDED_APPS = _parse_excluded_apps()
TEXT_EXPIRY_DAYS = _parse_expiry_days("CLIPNEST_TEXT_EXPIRY_DAYS")
IMAGE_EXPIRY_DAYS = _parse_expiry_days("CLIPNEST_IMAGE_EXPIRY_DAYS")


@dataclass
class CapturePolicy:
    """Decides whether a detected change may be recorded.

    The exclusion list matches bundle identifiers exactly. Size limits are
    measured in UTF-8 bytes for text and raw payload bytes for images.
    """

    excluded_bundle_ids: tuple[str, ...] = field(default_factory=lambda: EXCLUDED_APPS)
    max_text_size: int = field(default_factory=lambda: MAX_TEXT_SIZE)
    max_image_size: int = MAX_IMAGE_SIZE
    self_names: tuple[str, ...] = SELF_APP_NAMES
    self_bundle_id: str = SELF_BUNDLE_ID

    def is_self(self, app: "AppInfo | None") -> bool:
        if app is None:
            return False
        if app.bundle_id and app.bundle_id == self.self_bundle_id:
            return True
        return any(name in app.name for name in self.self_names)

    def is_excluded(self, app: "AppInfo | None") -> bool:
        if app is None or not app.bundle_id:
            return False
        return app.bundle_id in self.excluded_bundle_ids

    def allows_text(self, text: str, app: "AppInfo | None") -> bool:
        if self.is_excluded(app):
            return False
        return len(text.encode("utf-8")) <= self.max_text_size

    def allows_image(self, size: int, app: "AppInfo | None") -> bool:
        if self.is_excluded(app):
            return False
        return size <= self.max_image_size

    def allows_files(self, app: "AppInfo | None") -> bool:
        return not self.is_excluded(app)
