import json
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum

from clipnest.utils import compute_hash, now_ms


class ContentType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"


class ContentSubtype(str, Enum):
    PLAIN_TEXT = "plain_text"
    URL = "url"
    IP_ADDRESS = "ip_address"
    EMAIL = "email"
    COLOR = "color"
    CODE = "code"
    COMMAND = "command"
    TIMESTAMP = "timestamp"
    JSON = "json"
    MARKDOWN = "markdown"
    BASE64 = "base64"


@dataclass
class UrlParts:
    protocol: str
    host: str
    path: str
    query_params: list[tuple[str, str]] = field(default_factory=list)


@dataclass
class ColorFormats:
    hex: str | None = None
    rgb: str | None = None
    rgba: str | None = None
    hsl: str | None = None


@dataclass
class TimestampFormats:
    unix_ms: int | None = None
    iso8601: str | None = None
    date_string: str | None = None


@dataclass
class Base64Metadata:
    estimated_original_size: int
    encoded_size: int
    content_hint: str | None
    encoding_efficiency: float


@dataclass
class ContentMetadata:
    """Typed classifier output; at most one slot is populated per subtype."""

    detected_language: str | None = None
    url_parts: UrlParts | None = None
    color_formats: ColorFormats | None = None
    timestamp_formats: TimestampFormats | None = None
    base64_metadata: Base64Metadata | None = None

    def to_dict(self) -> dict:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


@dataclass(frozen=True)
class AppInfo:
    name: str
    bundle_id: str | None = None


@dataclass(frozen=True)
class TextSnapshot:
    text: str

    def canonical_bytes(self) -> bytes:
        return self.text.strip().encode("utf-8")

    @property
    def content_hash(self) -> str:
        return compute_hash(self.canonical_bytes())


@dataclass(frozen=True)
class ImageSnapshot:
    data: bytes
    width: int | None = None
    height: int | None = None

    def canonical_bytes(self) -> bytes:
        return self.data

    @property
    def content_hash(self) -> str:
        return compute_hash(self.data)


@dataclass(frozen=True)
class FileListSnapshot:
    paths: tuple[str, ...]

    def canonical_bytes(self) -> bytes:
        return "\n".join(self.paths).encode("utf-8")

    @property
    def content_hash(self) -> str:
        return compute_hash(self.canonical_bytes())


@dataclass(frozen=True)
class NormalizedImage:
    width: int
    height: int
    byte_size: int
    relative_path: str
    format: str = "png"


@dataclass
class ClipboardEntry:
    id: str
    content_hash: str
    content_type: ContentType
    content_data: str | None
    source_app: str | None
    created_at: int  # unix milliseconds of the most recent copy
    copy_count: int = 1
    file_path: str | None = None
    is_favorite: bool = False
    content_subtype: ContentSubtype | None = None
    metadata: str | None = None
    app_bundle_id: str | None = None

    @classmethod
    def new(
        cls,
        content_type: ContentType,
        content_data: str | None,
        content_hash: str,
        app: AppInfo | None = None,
        file_path: str | None = None,
    ) -> "ClipboardEntry":
        return cls(
            id=str(uuid.uuid4()),
            content_hash=content_hash,
            content_type=content_type,
            content_data=content_data,
            source_app=app.name if app else None,
            created_at=now_ms(),
            file_path=file_path,
            app_bundle_id=app.bundle_id if app else None,
        )

    def metadata_dict(self) -> dict | None:
        if not self.metadata:
            return None
        return json.loads(self.metadata)


@dataclass
class AppUsage:
    app_name: str
    count: int


@dataclass
class Statistics:
    total_entries: int
    total_copies: int
    most_copied: list[ClipboardEntry]
    recent_apps: list[AppUsage]


@dataclass
class CleanupResult:
    entries_removed: int = 0
    images_removed: int = 0
    size_freed_bytes: int = 0
