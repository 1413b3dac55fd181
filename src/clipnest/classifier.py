"""Semantic classification of clipboard text.

``classify`` runs an ordered cascade of heuristics; the first rule that
matches decides the subtype and later rules are never evaluated. The order
runs from the most specific structural patterns to the free-text fallback.
"""

import base64
import binascii
import ipaddress
import json
import logging
import re
from urllib.parse import parse_qsl, urlsplit

from clipnest.models import (
    Base64Metadata,
    ColorFormats,
    ContentMetadata,
    ContentSubtype,
    TimestampFormats,
    UrlParts,
)

logger = logging.getLogger(__name__)

URL_SCHEMES = ("http://", "https://", "ftp://")
DEFAULT_PORTS = {"http": 80, "https": 443, "ftp": 21}

BARE_DOMAIN_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9-]{1,61}[a-zA-Z0-9]\.[a-zA-Z]{2,}")
EMAIL_PATTERN = re.compile(r"^[\w.%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")

HEX_COLOR_PATTERN = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")
RGB_COLOR_PATTERN = re.compile(
    r"^(rgba?)\(\s*(\d{1,3})\s*,\s*(\d{1,3})\s*,\s*(\d{1,3})\s*(?:,\s*([\d.]+))?\s*\)$",
    re.ASCII,
)
HSL_COLOR_PATTERN = re.compile(
    r"^hsl\(\s*(\d{1,3})\s*,\s*(\d{1,3})%\s*,\s*(\d{1,3})%\s*\)$", re.ASCII
)

# Thirteen digits cover every millisecond value in range.
INTEGER_PATTERN = re.compile(r"^[+-]?\d{1,13}$", re.ASCII)
ISO8601_PATTERN = re.compile(
    r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d{1,9})?(?:Z|[+-]\d{2}:?\d{2})?$", re.ASCII
)
LOOSE_DATE_PATTERN = re.compile(
    r"^\d{4}[-/]\d{2}[-/]\d{2}(?:\s+\d{2}:\d{2}(?::\d{2})?)?$", re.ASCII
)

# Plausible epoch ranges: [2000-01-01, 2100-01-01) for seconds and
# [2000-01-01, 2200-01-01) for milliseconds.
UNIX_SECONDS_RANGE = (946_684_800, 4_102_444_800)
UNIX_MILLIS_RANGE = (946_684_800_000, 7_258_118_400_000)

COMMAND_PREFIXES = (
    # version control and package managers
    "git ", "npm ", "npx ", "yarn ", "pnpm ", "cargo ", "pip ", "pip3 ", "python ", "python3 ",
    "brew ", "apt ", "apt-get ", "yum ", "dnf ", "gem ",
    # containers and orchestration
    "docker ", "docker-compose ", "kubectl ", "helm ",
    # filesystem
    "ls ", "cd ", "mkdir ", "rm ", "cp ", "mv ", "cat ", "chmod ", "chown ",
    "grep ", "sed ", "awk ", "tar ",
    # network
    "curl ", "wget ", "ssh ", "scp ", "ping ", "sudo ",
)
BARE_COMMANDS = frozenset({"ls", "pwd", "whoami"})

# Character classes exclude their own opening delimiter so a scan never runs
# past the next candidate; this keeps every search linear in the text length.
MARKDOWN_PATTERNS = (
    re.compile(r"^#{1,6}\s+\S", re.MULTILINE),  # heading
    re.compile(r"\*\*[^*\n]+\*\*"),  # bold
    re.compile(r"(?<![*\w])\*[^*\s][^*\n]*\*(?![*\w])"),  # italic
    re.compile(r"!\[[^\[\]\n]*\]\([^()\n]+\)"),  # image
    re.compile(r"\[[^\[\]\n]+\]\([^()\n]+\)"),  # link
    re.compile(r"^[-*+]\s+\S", re.MULTILINE),  # bullet list
    re.compile(r"^\d+\.\s+\S", re.MULTILINE),  # ordered list
    re.compile(r"^>\s+", re.MULTILINE),  # blockquote
    re.compile(r"^```", re.MULTILINE),  # fenced code block
    re.compile(r"`[^`\n]+`"),  # inline code
)

CODE_SIGNATURES = (
    (
        "javascript",
        re.compile(
            r"\bfunction\s*\w*\s*\(|\b(?:const|let|var)\s+\w+\s*=|=>|\bconsole\.log\(|"
            r"\bawait\s+\w|\brequire\(['\"]|\bexport\s+(?:default|const|function)\b"
        ),
    ),
    (
        "python",
        re.compile(
            r"^[ \t]*def\s+\w+\s*\(|^[ \t]*class[ \t]+\w+[^\n]*:[ \t]*$|^[ \t]*from\s+[\w.]+\s+import\s+\w|"
            r"^[ \t]*import[ \t]+[\w.]+(?:[ \t]+as[ \t]+\w+)?[ \t]*$|if __name__ ==|\bprint\(",
            re.MULTILINE,
        ),
    ),
    (
        "rust",
        re.compile(
            r"\bfn\s+\w+\s*[(<]|\blet\s+mut\b|\bimpl\b[^\n{;]{0,100}\{|\bpub\s+(?:fn|struct|enum|mod|trait)\b|"
            r"\buse\s+\w+::|\bmatch\s+\w+\s*\{"
        ),
    ),
    (
        "java",
        re.compile(
            r"\bpublic\s+(?:static\s+)?(?:final\s+)?(?:class|void|interface)\b|"
            r"\b(?:private|protected)\s+\w+\s+\w+|\bstatic\s+void\b|\bimport\s+java\.|System\.out\.print"
        ),
    ),
    ("c", re.compile(r"#include\s*[<\"]|\bint\s+main\s*\(|\bprintf\s*\(|\bscanf\s*\(")),
    (
        "sql",
        # A SELECT only pairs with a FROM before the next SELECT or semicolon.
        re.compile(
            r"\bSELECT\b(?:(?!\bSELECT\b)[^;]){1,500}?\bFROM\b|\bINSERT\s+INTO\b|"
            r"\bUPDATE\s+\w+\s+SET\b|\bDELETE\s+FROM\b|\bCREATE\s+TABLE\b"
        ),
    ),
    ("html", re.compile(r"<!DOCTYPE\s+html|<(?:html|head|body|div|span|script|style|p|a|ul|li|table)\b[^<>]*>", re.IGNORECASE)),
    (
        "css",
        re.compile(
            r"^[ \t]*[.#][\w-]+\s*\{|\b(?:color|background|margin|padding|font-size|display)\s*:\s*[^;\n]{1,100};",
            re.MULTILINE,
        ),
    ),
)

# Short lowercase words that happen to be valid base64.
COMMON_WORDS = frozenset("""
the and for are but not you all can had her was one our out day get has him his how its may new
now old see two who boy did man car run way use yes too big end far off own say she try ask job
let put sit top win cut lot eat god hit son got red hot air bit box buy eye few fix key lay leg
low map mix oil pay pop raw row sad sea set six sky tax tea ten tie tip war wet add bad bag bar
bat bed bid bus cat cop cup die dig dog dot dry ear egg fan fly fun gap gas gun hat ice kid lab
lap lie lip log mad mom mud net pan pen pet pie pin pot rat rid rip rob rod sun tap toy van web
zip test this that with from have will your what when then them than
""".split())

BASE64_SHORT_LENGTH = 40  # strings at or below this length get the strict checks
BASE64_LONG_LENGTH = 100  # strings above this length must use more than 3 distinct chars
BASE64_CHARS = frozenset("ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/=")

CONTENT_SIGNATURES = (
    (b"\x89PNG", "PNG image"),
    (b"\xff\xd8\xff", "JPEG image"),
    (b"%PDF", "PDF document"),
    (b"GIF8", "GIF image"),
    (b"PK\x03\x04", "ZIP archive"),
    (b"PK\x05\x06", "ZIP archive"),
)


def classify(text: str) -> tuple[ContentSubtype, ContentMetadata | None]:
    """Classify already-trimmed clipboard text.

    Args:
        text: The trimmed clipboard text.

    Returns:
        A ``(subtype, metadata)`` pair. ``metadata`` is None for subtypes that
        carry no typed data. Never raises.
    """
    if is_url(text):
        logger.debug("Detected URL")
        return ContentSubtype.URL, parse_url_metadata(text)

    if is_ip_address(text):
        logger.debug("Detected IP address")
        return ContentSubtype.IP_ADDRESS, None

    if is_email(text):
        logger.debug("Detected email address")
        return ContentSubtype.EMAIL, None

    color = detect_color(text)
    if color is not None:
        logger.debug("Detected color: %s", color)
        return ContentSubtype.COLOR, ContentMetadata(color_formats=color)

    if is_json(text):
        logger.debug("Detected JSON")
        return ContentSubtype.JSON, None

    if is_command(text):
        logger.debug("Detected shell command")
        return ContentSubtype.COMMAND, None

    timestamp = detect_timestamp(text)
    if timestamp is not None:
        logger.debug("Detected timestamp: %s", timestamp)
        return ContentSubtype.TIMESTAMP, ContentMetadata(timestamp_formats=timestamp)

    if is_markdown(text):
        logger.debug("Detected Markdown")
        return ContentSubtype.MARKDOWN, None

    b64 = detect_base64(text)
    if b64 is not None:
        logger.debug(
            "Detected base64: %d -> %d bytes (%s)",
            b64.encoded_size,
            b64.estimated_original_size,
            b64.content_hint,
        )
        return ContentSubtype.BASE64, ContentMetadata(base64_metadata=b64)

    language = detect_code_language(text)
    if language is not None:
        logger.debug("Detected code: %s", language)
        return ContentSubtype.CODE, ContentMetadata(detected_language=language)

    return ContentSubtype.PLAIN_TEXT, None


def is_url(text: str) -> bool:
    for scheme in URL_SCHEMES:
        if text.startswith(scheme):
            return len(text) > len(scheme)

    # Bare domains: a leading domain is enough, but an @ means an email address.
    if "@" in text:
        return False
    return BARE_DOMAIN_PATTERN.match(text) is not None


def parse_url_metadata(url: str) -> ContentMetadata | None:
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError:
        logger.debug("URL parse failed: %s", url)
        return None

    if not parts.scheme or not parts.hostname:
        return None

    host = parts.hostname
    if port is not None and port != DEFAULT_PORTS.get(parts.scheme):
        host = f"{host}:{port}"

    return ContentMetadata(
        url_parts=UrlParts(
            protocol=parts.scheme,
            host=host,
            path=parts.path or "/",
            query_params=parse_qsl(parts.query, keep_blank_values=True),
        )
    )


def is_ip_address(text: str) -> bool:
    if not text or text != text.strip():
        return False
    try:
        ipaddress.ip_address(text)
    except ValueError:
        return False
    return True


def is_email(text: str) -> bool:
    return EMAIL_PATTERN.match(text) is not None


def detect_color(text: str) -> ColorFormats | None:
    if HEX_COLOR_PATTERN.match(text):
        return ColorFormats(hex=text)

    match = RGB_COLOR_PATTERN.match(text)
    if match:
        func, r, g, b, alpha = match.groups()
        if any(int(channel) > 255 for channel in (r, g, b)):
            return None
        if alpha is not None:
            try:
                alpha_value = float(alpha)
            except ValueError:
                return None
            if not 0.0 <= alpha_value <= 1.0:
                return None
        if func == "rgba":
            return ColorFormats(rgba=text)
        return ColorFormats(rgb=text)

    if HSL_COLOR_PATTERN.match(text):
        return ColorFormats(hsl=text)

    return None


def _reject_constant(name: str):
    raise ValueError(f"non-standard JSON constant: {name}")


def is_json(text: str) -> bool:
    if not ((text.startswith("{") and text.endswith("}")) or (text.startswith("[") and text.endswith("]"))):
        return False
    try:
        json.loads(text, parse_constant=_reject_constant)
    except (ValueError, RecursionError):
        return False
    return True


def is_command(text: str) -> bool:
    if text in BARE_COMMANDS:
        return True
    return any(text.startswith(prefix) for prefix in COMMAND_PREFIXES)


def detect_timestamp(text: str) -> TimestampFormats | None:
    if INTEGER_PATTERN.match(text):
        value = int(text)
        if UNIX_SECONDS_RANGE[0] <= value < UNIX_SECONDS_RANGE[1]:
            return TimestampFormats(unix_ms=value * 1000)
        if UNIX_MILLIS_RANGE[0] <= value < UNIX_MILLIS_RANGE[1]:
            return TimestampFormats(unix_ms=value)

    if ISO8601_PATTERN.match(text):
        return TimestampFormats(iso8601=text)

    if LOOSE_DATE_PATTERN.match(text):
        return TimestampFormats(date_string=text)

    return None


def is_markdown(text: str) -> bool:
    return any(pattern.search(text) for pattern in MARKDOWN_PATTERNS)


def detect_code_language(text: str) -> str | None:
    for language, pattern in CODE_SIGNATURES:
        if pattern.search(text):
            return language
    return None


def detect_base64(text: str) -> Base64Metadata | None:
    """Return base64 metadata when ``text`` is plausibly base64-encoded data.

    A series of cheap gates runs before any decode so that ordinary short
    words are not mistaken for encodings. After decoding, the encoded length
    must be close to the length a real encoder would produce for the decoded
    size.
    """
    length = len(text)
    if length < 4:
        return None
    if text.startswith(("http://", "https://", "data:")):
        return None

    is_short = length <= BASE64_SHORT_LENGTH
    ratio = sum(1 for c in text if c in BASE64_CHARS) / length
    if ratio < (1.0 if is_short else 0.95):
        return None

    if is_short:
        if text.lower() in COMMON_WORDS:
            return None
        if length >= 3 and text.isascii() and text.isalpha() and text.islower():
            return None
        if length <= 8 and len(set(text)) <= 2:
            return None
    elif length > BASE64_LONG_LENGTH and len(set(text)) <= 3:
        return None

    if text.count("\n") > length // 50:
        return None

    cleaned = "".join(text.split())
    if len(cleaned.rstrip("=")) % 4 == 1:
        return None

    try:
        decoded = base64.b64decode(cleaned, validate=True)
    except (binascii.Error, ValueError):
        return None
    if not decoded:
        return None

    encoded_size = len(cleaned)
    expected_size = 4 * ((len(decoded) + 2) // 3)
    size_ratio = encoded_size / expected_size
    tolerance = 0.5 if len(decoded) <= 10 else 0.2
    if not (1.0 - tolerance) <= size_ratio <= (1.0 + tolerance):
        return None

    return Base64Metadata(
        estimated_original_size=len(decoded),
        encoded_size=encoded_size,
        content_hint=describe_decoded(decoded),
        encoding_efficiency=size_ratio,
    )


def describe_decoded(data: bytes) -> str:
    """Guess what a decoded base64 payload contains."""
    for signature, hint in CONTENT_SIGNATURES:
        if data.startswith(signature):
            return hint

    try:
        decoded_text = data.decode("utf-8")
    except UnicodeDecodeError:
        decoded_text = None
    if (
        decoded_text is not None
        and len(data) > 10
        and all(c.isascii() and (c.isprintable() or c.isspace()) for c in decoded_text)
    ):
        return "text"

    if len(data) > 100 and data.count(0) / len(data) > 0.1:
        return "binary data"

    return "unknown format"
