import argparse
import json
import logging
import signal
import sys
import threading
from datetime import datetime
from pathlib import Path

from clipnest import __version__
from clipnest.aggregator import EntryAggregator
from clipnest.classifier import classify
from clipnest.config import IMAGE_DIR, IMAGE_EXPIRY_DAYS, LOG_PATH, TEXT_EXPIRY_DAYS
from clipnest.events import EntryBroadcaster
from clipnest.images import ImageError, ImageIngester, convert_image, to_data_url
from clipnest.models import ClipboardEntry, ContentType
from clipnest.storage import StorageManager
from clipnest.utils import ensure_dirs, resolve_data_path, truncate_text

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 60


def setup_logging(verbose: bool = False) -> None:
    ensure_dirs()
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(LOG_PATH),
            logging.StreamHandler(sys.stderr),
        ],
    )


def format_entry(entry: ClipboardEntry) -> str:
    when = datetime.fromtimestamp(entry.created_at / 1000).strftime("%Y-%m-%d %H:%M:%S")
    kind = entry.content_subtype.value if entry.content_subtype else entry.content_type.value
    star = "*" if entry.is_favorite else " "
    preview = truncate_text(entry.content_data or "", PREVIEW_LENGTH)
    return f"{star} {entry.id[:8]}  {when}  x{entry.copy_count:<3} {kind:<11} {preview}"


def run_monitor(interval: float | None = None) -> int:
    """Run the monitor and aggregator in the foreground until interrupted."""
    from clipnest.monitor import ClipboardMonitor
    from clipnest.sources import PasteboardSource

    try:
        source = PasteboardSource()
    except ImportError:
        print("Clipboard access requires macOS with pyobjc-framework-Cocoa installed.", file=sys.stderr)
        return 1

    storage = StorageManager()
    broadcaster = EntryBroadcaster()
    aggregator = EntryAggregator(storage)
    aggregator.add_listener(lambda entry: logger.info("Stored %s", format_entry(entry)))

    kwargs = {"interval": interval} if interval else {}
    monitor = ClipboardMonitor(source, broadcaster, ImageIngester(IMAGE_DIR), **kwargs)

    stopped = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stopped.set())

    aggregator.start(broadcaster)
    monitor.start()
    logger.info("clipnest %s watching the clipboard (Ctrl-C to stop)", __version__)
    try:
        while not stopped.wait(1.0):
            pass
    except KeyboardInterrupt:
        pass
    finally:
        monitor.shutdown()
        aggregator.stop()
        storage.close()
    return 0


def classify_text(text: str | None) -> int:
    if text is None:
        text = sys.stdin.read()
    trimmed = text.strip()
    if not trimmed:
        print("Nothing to classify.", file=sys.stderr)
        return 1
    subtype, metadata = classify(trimmed)
    print(subtype.value)
    if metadata is not None:
        print(json.dumps(metadata.to_dict(), indent=2, ensure_ascii=False))
    return 0


def show_history(
    storage: StorageManager,
    limit: int = 20,
    search: str | None = None,
    content_type: str | None = None,
) -> int:
    ctype = ContentType(content_type) if content_type else None
    entries = storage.get_history(limit=limit, search=search, content_type=ctype)
    if not entries:
        print("No clipboard history.")
        return 0
    for entry in entries:
        print(format_entry(entry))
    return 0


def show_stats(storage: StorageManager) -> int:
    stats = storage.get_statistics()
    print(f"Entries: {stats.total_entries}")
    print(f"Copies:  {stats.total_copies}")
    if stats.most_copied:
        print("\nMost copied:")
        for entry in stats.most_copied:
            print(f"  x{entry.copy_count:<4} {truncate_text(entry.content_data or '', PREVIEW_LENGTH)}")
    if stats.recent_apps:
        print("\nSource apps:")
        for usage in stats.recent_apps:
            print(f"  {usage.count:<5} {usage.app_name}")
    return 0


def run_cleanup(storage: StorageManager) -> int:
    if TEXT_EXPIRY_DAYS is None and IMAGE_EXPIRY_DAYS is None:
        print("No expiry configured; nothing to clean up.")
        return 0
    result = storage.cleanup_expired(TEXT_EXPIRY_DAYS, IMAGE_EXPIRY_DAYS)
    print(
        f"Removed {result.entries_removed} entries, {result.images_removed} images "
        f"({result.size_freed_bytes} bytes freed)."
    )
    return 0


def clear_history(storage: StorageManager) -> int:
    removed = storage.count()
    storage.clear_all()
    print(f"Cleared {removed} entries.")
    return 0


def convert_entry(
    storage: StorageManager,
    entry_id: str,
    target_format: str = "png",
    scale: float = 1.0,
    output: str | None = None,
) -> int:
    entry = storage.get_entry(entry_id)
    if entry is None:
        print(f"No entry with id {entry_id}", file=sys.stderr)
        return 1
    if entry.content_type != ContentType.IMAGE or not entry.file_path:
        print(f"Entry {entry_id} is not an image", file=sys.stderr)
        return 1

    try:
        data = convert_image(resolve_data_path(entry.file_path), target_format, scale)
    except (FileNotFoundError, ImageError, ValueError) as exc:
        print(f"Conversion failed: {exc}", file=sys.stderr)
        return 1

    if output:
        Path(output).write_bytes(data)
        print(f"Wrote {len(data)} bytes to {output}")
    else:
        print(to_data_url(data, target_format))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="clipnest",
        description="clipnest - clipboard history collector",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command")

    run = sub.add_parser("run", help="Watch the clipboard in the foreground (default)")
    run.add_argument("--interval", type=float, help="Seconds between clipboard checks")

    cls = sub.add_parser("classify", help="Print the detected content type of TEXT (or stdin)")
    cls.add_argument("text", nargs="?")

    history = sub.add_parser("history", help="List recent entries")
    history.add_argument("--limit", type=int, default=20)
    history.add_argument("--search")
    history.add_argument("--type", choices=[t.value for t in ContentType])

    sub.add_parser("stats", help="Show usage statistics")
    sub.add_parser("cleanup", help="Delete entries past their configured expiry")
    sub.add_parser("clear", help="Delete all entries and stored images")

    convert = sub.add_parser("convert", help="Re-encode a stored image entry")
    convert.add_argument("entry_id")
    convert.add_argument("--format", default="png", choices=["png", "jpeg", "jpg", "webp"])
    convert.add_argument("--scale", type=float, default=1.0)
    convert.add_argument("--output", help="Write to a file instead of printing a data URL")
    return parser


def main(argv: list[str] | None = None):
    args = build_parser().parse_args(argv)
    command = args.command or "run"

    if command == "classify":
        sys.exit(classify_text(args.text))

    setup_logging(args.verbose)
    if command == "run":
        sys.exit(run_monitor(getattr(args, "interval", None)))

    with StorageManager() as storage:
        if command == "history":
            code = show_history(storage, args.limit, args.search, args.type)
        elif command == "stats":
            code = show_stats(storage)
        elif command == "cleanup":
            code = run_cleanup(storage)
        elif command == "clear":
            code = clear_history(storage)
        else:
            code = convert_entry(storage, args.entry_id, args.format, args.scale, args.output)
    sys.exit(code)


if __name__ == "__main__":
    main()
