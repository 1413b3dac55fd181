"""Normalization of clipboard image payloads into stored PNG files.

Clipboard images arrive either as container formats (PNG, TIFF, ...) or as
headerless packed pixel buffers. Containers are decoded with Pillow; raw
buffers have their dimensions inferred from the pixel count.
"""

import base64
import io
import logging
import math
import uuid
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from clipnest.config import IMAGE_DIR
from clipnest.models import NormalizedImage
from clipnest.utils import get_image_dimensions

logger = logging.getLogger(__name__)

BYTES_PER_PIXEL = 4
MIN_RAW_BUFFER_BYTES = 1024
ALPHA_SAMPLE_PIXELS = 100

# (leading bytes, Pillow format, file extension)
CONTAINER_SIGNATURES = (
    (b"\x89PNG", "PNG", "png"),
    (b"\xff\xd8\xff", "JPEG", "jpg"),
    (b"GIF8", "GIF", "gif"),
    (b"II*\x00", "TIFF", "tiff"),
    (b"MM\x00*", "TIFF", "tiff"),
    (b"BM", "BMP", "bmp"),
)
CODEC_ORDER = ("PNG", "JPEG", "GIF", "BMP", "TIFF", "WEBP")
DECODE_ERRORS = (UnidentifiedImageError, OSError, ValueError, SyntaxError, EOFError)
PNG_MODES = frozenset({"1", "L", "LA", "P", "RGB", "RGBA", "I", "I;16"})

COMMON_RESOLUTIONS = (
    (1920, 1080), (2560, 1440), (3840, 2160), (1366, 768), (1440, 900), (1536, 864),
    (1680, 1050), (1280, 720), (1280, 800), (1280, 1024), (1600, 900), (1024, 768),
    (800, 600), (640, 480), (2560, 1600), (2880, 1800), (3024, 1964), (3456, 2234),
    (5120, 2880), (1080, 1920), (1170, 2532), (1179, 2556), (1284, 2778), (750, 1334),
    (1080, 2400), (2048, 1536),
)
RESOLUTION_MULTIPLIERS = (2, 3)
RESOLUTION_DIVISORS = (2, 4)

PREFERRED_ASPECT_RATIOS = (16 / 9, 4 / 3, 3 / 2, 1.0, 9 / 16, 3 / 4, 2 / 3)
MIN_ASPECT_RATIO = 0.1
MAX_ASPECT_RATIO = 10.0

# (low, high) multiples of sqrt(pixel count) to scan for widths, and the
# smallest side a candidate may have.
NARROW_SEARCH = (0.7, 1.4, 32)
WIDE_SEARCH = (0.5, 2.0, 10)

OUTPUT_FORMATS = {
    "png": ("PNG", "image/png"),
    "jpeg": ("JPEG", "image/jpeg"),
    "jpg": ("JPEG", "image/jpeg"),
    "webp": ("WEBP", "image/webp"),
}


class ImageError(Exception):
    """Base class for image ingestion failures."""


class BufferSizeMismatch(ImageError):
    """Reported dimensions do not match the pixel buffer length."""


class UnrecognizedFormat(ImageError):
    """No codec and no raw-buffer shape matched the payload."""


class DecodeFailure(ImageError):
    """A known signature was found but the payload could not be decoded."""


def sniff_format(data: bytes) -> tuple[str, str] | None:
    """Identify a container format by its magic number.

    Returns:
        ``(pillow_format, extension)`` or None when nothing matched.
    """
    for signature, fmt, ext in CONTAINER_SIGNATURES:
        if data.startswith(signature):
            return fmt, ext
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "WEBP", "webp"
    return None


def is_raw_pixel_buffer(data: bytes) -> bool:
    return len(data) >= MIN_RAW_BUFFER_BYTES and len(data) % BYTES_PER_PIXEL == 0


def _aspect_distance(width: int, height: int) -> float:
    ratio = width / height
    return min(abs(ratio - preferred) for preferred in PREFERRED_ASPECT_RATIOS)


def _match_common_resolution(pixel_count: int) -> tuple[int, int] | None:
    for width, height in COMMON_RESOLUTIONS:
        if width * height == pixel_count:
            return width, height
    for factor in RESOLUTION_MULTIPLIERS:
        for width, height in COMMON_RESOLUTIONS:
            if width * height * factor * factor == pixel_count:
                return width * factor, height * factor
    for divisor in RESOLUTION_DIVISORS:
        for width, height in COMMON_RESOLUTIONS:
            if width % divisor or height % divisor:
                continue
            if (width // divisor) * (height // divisor) == pixel_count:
                return width // divisor, height // divisor
    return None


def _factor_search(pixel_count: int, low: float, high: float, min_side: int) -> tuple[int, int] | None:
    root = math.sqrt(pixel_count)
    best = None
    best_key = None
    for width in range(max(min_side, int(root * low)), int(root * high) + 1):
        if pixel_count % width:
            continue
        height = pixel_count // width
        if height < min_side:
            continue
        if not MIN_ASPECT_RATIO <= width / height <= MAX_ASPECT_RATIO:
            continue
        key = (_aspect_distance(width, height), -width)
        if best_key is None or key < best_key:
            best, best_key = (width, height), key
    return best


def infer_dimensions(pixel_count: int) -> tuple[int, int]:
    """Guess ``(width, height)`` for a headerless buffer of ``pixel_count`` pixels.

    Tries, in order: the common resolution table (and small multiples and
    divisors of it), a perfect square, a factor search near the square root
    that prefers standard aspect ratios, a wider factor search with a smaller
    minimum side, and finally a single row.
    """
    if pixel_count <= 0:
        raise ValueError("pixel count must be positive")

    match = _match_common_resolution(pixel_count)
    if match:
        return match

    side = math.isqrt(pixel_count)
    if side * side == pixel_count:
        return side, side

    for low, high, min_side in (NARROW_SEARCH, WIDE_SEARCH):
        match = _factor_search(pixel_count, low, high, min_side)
        if match:
            return match

    return pixel_count, 1


def needs_channel_swap(data: bytes) -> bool:
    """True when sampled alpha bytes look like color data rather than opacity.

    Packed RGBA from a screenshot almost always has alpha 0 or 255. When most
    sampled "alpha" bytes are something else the buffer is assumed to be in
    the swapped blue/red order.
    """
    alphas = data[3 : ALPHA_SAMPLE_PIXELS * BYTES_PER_PIXEL : BYTES_PER_PIXEL]
    if not alphas:
        return False
    partial = sum(1 for alpha in alphas if alpha not in (0, 255))
    return partial > len(alphas) / 2


def swap_red_blue(data: bytes) -> bytes:
    swapped = bytearray(data)
    swapped[0::4] = data[2::4]
    swapped[2::4] = data[0::4]
    return bytes(swapped)


class ImageIngester:
    """Writes normalized clipboard images into a managed directory."""

    def __init__(self, image_dir: str | Path | None = None):
        self._image_dir = Path(image_dir) if image_dir else IMAGE_DIR
        self._image_dir.mkdir(parents=True, exist_ok=True)

    def relative_path(self, path: Path) -> str:
        return f"{self._image_dir.name}/{path.name}"

    def resolve(self, relative_path: str) -> Path:
        return self._image_dir.parent / relative_path

    def ingest(self, data: bytes, width: int | None = None, height: int | None = None) -> NormalizedImage:
        """Normalize an image payload and store it as PNG.

        Args:
            data: Container bytes or a headerless RGBA pixel buffer.
            width: Width reported by the clipboard, if any.
            height: Height reported by the clipboard, if any.

        Returns:
            The stored image description.

        Raises:
            UnrecognizedFormat: The payload is neither a known container nor a
                plausible pixel buffer.
        """
        if not data:
            raise UnrecognizedFormat("Empty image payload")

        if width and height and len(data) == width * height * BYTES_PER_PIXEL:
            return self.ingest_pixels(data, width, height)

        sniffed = sniff_format(data)
        if sniffed is None and is_raw_pixel_buffer(data):
            return self._ingest_raw(data)

        try:
            image = self.decode(data)
        except DecodeFailure:
            logger.warning("Could not decode %s payload, storing raw bytes", sniffed[0])
            return self._store_verbatim(data, sniffed[1])
        return self._store_png(image)

    def ingest_pixels(self, data: bytes, width: int, height: int) -> NormalizedImage:
        expected = width * height * BYTES_PER_PIXEL
        if len(data) != expected:
            raise BufferSizeMismatch(
                f"{width}x{height} RGBA needs {expected} bytes, got {len(data)}"
            )
        image = Image.frombytes("RGBA", (width, height), data)
        return self._store_png(image)

    def decode(self, data: bytes) -> Image.Image:
        """Decode container bytes, retrying each known codec explicitly.

        Raises:
            DecodeFailure: A signature matched but no codec could decode it.
            UnrecognizedFormat: No signature matched and no codec decoded it.
        """
        try:
            return self._open(data)
        except DECODE_ERRORS as exc:
            logger.debug("Automatic image detection failed: %s", exc)

        for codec in CODEC_ORDER:
            try:
                return self._open(data, codec)
            except DECODE_ERRORS:
                continue

        sniffed = sniff_format(data)
        if sniffed:
            raise DecodeFailure(f"Payload looks like {sniffed[0]} but could not be decoded")
        raise UnrecognizedFormat("Unrecognized image format")

    @staticmethod
    def _open(data: bytes, codec: str | None = None) -> Image.Image:
        formats = [codec] if codec else None
        image = Image.open(io.BytesIO(data), formats=formats)
        image.load()
        return image

    def _ingest_raw(self, data: bytes) -> NormalizedImage:
        pixel_count = len(data) // BYTES_PER_PIXEL
        width, height = infer_dimensions(pixel_count)
        logger.info("Treating %d byte payload as raw %dx%d pixels", len(data), width, height)

        swap = needs_channel_swap(data)
        pixels = swap_red_blue(data) if swap else data
        attempts = [(pixels, width, height), (pixels, height, width)]
        if swap:
            attempts.append((data, width, height))

        for payload, w, h in attempts:
            try:
                image = Image.frombytes("RGBA", (w, h), payload)
            except ValueError as exc:
                logger.debug("Raw buffer rejected as %dx%d: %s", w, h, exc)
                continue
            return self._store_png(image)
        raise DecodeFailure(f"Could not build a {width}x{height} image from raw pixels")

    def _new_path(self, extension: str) -> Path:
        return self._image_dir / f"{uuid.uuid4()}.{extension}"

    def _store_png(self, image: Image.Image) -> NormalizedImage:
        if image.mode not in PNG_MODES:
            image = image.convert("RGBA")
        path = self._new_path("png")
        image.save(path, format="PNG")
        return NormalizedImage(
            width=image.width,
            height=image.height,
            byte_size=path.stat().st_size,
            relative_path=self.relative_path(path),
        )

    def _store_verbatim(self, data: bytes, extension: str | None) -> NormalizedImage:
        path = self._new_path(extension or "bin")
        path.write_bytes(data)
        width, height = get_image_dimensions(data)
        return NormalizedImage(
            width=width,
            height=height,
            byte_size=len(data),
            relative_path=self.relative_path(path),
            format=extension or "bin",
        )


def convert_image(path: str | Path, target_format: str = "png", scale: float = 1.0) -> bytes:
    """Re-encode a stored image, optionally rescaled.

    JPEG output drops transparency. Unknown target formats fall back to PNG.
    """
    if scale <= 0:
        raise ValueError("scale must be positive")

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Image not found: {path}")

    pil_format, _ = OUTPUT_FORMATS.get(target_format.lower(), OUTPUT_FORMATS["png"])
    try:
        image = Image.open(path)
        image.load()
    except DECODE_ERRORS as exc:
        raise DecodeFailure(f"Could not decode {path}: {exc}") from exc

    if scale != 1.0:
        size = (max(1, int(image.width * scale)), max(1, int(image.height * scale)))
        logger.info("Scaling %s from %dx%d to %dx%d", path, image.width, image.height, *size)
        image = image.resize(size, Image.Resampling.LANCZOS)

    if pil_format == "JPEG":
        image = image.convert("RGB")
    elif image.mode not in PNG_MODES:
        image = image.convert("RGBA")

    buffer = io.BytesIO()
    image.save(buffer, format=pil_format)
    return buffer.getvalue()


def to_data_url(data: bytes, target_format: str = "png") -> str:
    _, mime = OUTPUT_FORMATS.get(target_format.lower(), OUTPUT_FORMATS["png"])
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"
