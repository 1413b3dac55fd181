"""Clipboard and frontmost-application access.

Every read is best effort: absence and native failures both come back as
None so the monitor never has to handle platform exceptions.
"""

import logging
from typing import Protocol

from clipnest.models import AppInfo, ImageSnapshot
from clipnest.utils import get_image_dimensions

logger = logging.getLogger(__name__)


class ClipboardSource(Protocol):
    def read_text(self) -> str | None: ...

    def read_image(self) -> ImageSnapshot | None: ...

    def read_files(self) -> list[str] | None: ...

    def active_app(self) -> AppInfo | None: ...


class PasteboardSource:
    """macOS implementation over NSPasteboard and NSWorkspace."""

    def __init__(self):
        import AppKit

        self._appkit = AppKit
        self._pasteboard = AppKit.NSPasteboard.generalPasteboard()
        self._workspace = AppKit.NSWorkspace.sharedWorkspace()

    def _types(self) -> list:
        types = self._pasteboard.types()
        return list(types) if types is not None else []

    def read_text(self) -> str | None:
        try:
            if self._appkit.NSPasteboardTypeString not in self._types():
                return None
            text = self._pasteboard.stringForType_(self._appkit.NSPasteboardTypeString)
            return str(text) if text else None
        except Exception:
            logger.exception("Error reading text from pasteboard")
            return None

    def read_image(self) -> ImageSnapshot | None:
        try:
            types = self._types()
            for img_type in (self._appkit.NSPasteboardTypePNG, self._appkit.NSPasteboardTypeTIFF):
                if img_type not in types:
                    continue
                data = self._pasteboard.dataForType_(img_type)
                if data is None:
                    continue
                img_bytes = bytes(data)
                width, height = get_image_dimensions(img_bytes)
                return ImageSnapshot(data=img_bytes, width=width or None, height=height or None)
            return None
        except Exception:
            logger.exception("Error reading image from pasteboard")
            return None

    def read_files(self) -> list[str] | None:
        try:
            if self._appkit.NSFilenamesPboardType not in self._types():
                return None
            filenames = self._pasteboard.propertyListForType_(self._appkit.NSFilenamesPboardType)
            if not filenames:
                return None
            return [str(name) for name in filenames]
        except Exception:
            logger.exception("Error reading file list from pasteboard")
            return None

    def active_app(self) -> AppInfo | None:
        try:
            app = self._workspace.frontmostApplication()
            if app is None:
                return None
            name = app.localizedName()
            if not name:
                return None
            bundle_id = app.bundleIdentifier()
            return AppInfo(name=str(name), bundle_id=str(bundle_id) if bundle_id else None)
        except Exception:
            logger.exception("Error reading frontmost application")
            return None
