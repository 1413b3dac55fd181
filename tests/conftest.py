import pytest

from clipnest.events import EntryBroadcaster
from clipnest.images import ImageIngester
from clipnest.models import AppInfo, ClipboardEntry, ContentType, ImageSnapshot
from clipnest.storage import StorageManager
from clipnest.utils import compute_hash, now_ms


@pytest.fixture
def storage(tmp_path):
    mgr = StorageManager(db_path=":memory:", data_dir=tmp_path)
    yield mgr
    mgr.close()


@pytest.fixture
def ingester(tmp_path):
    return ImageIngester(tmp_path / "images")


@pytest.fixture
def broadcaster():
    return EntryBroadcaster()


@pytest.fixture
def make_entry():
    """Factory fixture to create ClipboardEntry instances for testing."""

    def _make_entry(
        text: str = "hello world",
        content_type: ContentType = ContentType.TEXT,
        content_hash: str | None = None,
        created_at: int | None = None,
        source_app: str | None = "Terminal",
        file_path: str | None = None,
        is_favorite: bool = False,
        copy_count: int = 1,
    ) -> ClipboardEntry:
        entry = ClipboardEntry.new(
            content_type,
            text,
            content_hash or compute_hash(text),
            AppInfo(source_app) if source_app else None,
            file_path=file_path,
        )
        entry.created_at = created_at if created_at is not None else now_ms()
        entry.is_favorite = is_favorite
        entry.copy_count = copy_count
        return entry

    return _make_entry


class FakeSource:
    """In-memory clipboard; any attribute set to an Exception is raised on read."""

    def __init__(self):
        self.text: str | None = None
        self.image: ImageSnapshot | None = None
        self.files: list[str] | None = None
        self.app: AppInfo | None = AppInfo("Terminal", "com.apple.Terminal")
        self.reads: list[str] = []

    def _get(self, name, value):
        self.reads.append(name)
        if isinstance(value, Exception):
            raise value
        return value

    def read_text(self):
        return self._get("text", self.text)

    def read_image(self):
        return self._get("image", self.image)

    def read_files(self):
        return self._get("files", self.files)

    def active_app(self):
        return self._get("app", self.app)


@pytest.fixture
def source():
    return FakeSource()
