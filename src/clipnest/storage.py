import sqlite3
import threading
from pathlib import Path

from clipnest.config import DATA_DIR, DB_PATH, MAX_ENTRIES
from clipnest.models import (
    AppUsage,
    CleanupResult,
    ClipboardEntry,
    ContentSubtype,
    ContentType,
    Statistics,
)
from clipnest.utils import now_ms, resolve_data_path

DAY_MS = 24 * 60 * 60 * 1000

SCHEMA = """
CREATE TABLE IF NOT EXISTS clipboard_entries (
    id             TEXT PRIMARY KEY,
    content_hash   TEXT NOT NULL,
    content_type   TEXT NOT NULL CHECK(content_type IN ('text', 'image', 'file')),
    content_data   TEXT,
    source_app     TEXT,
    created_at     INTEGER NOT NULL,
    copy_count     INTEGER NOT NULL DEFAULT 1,
    file_path      TEXT,
    is_favorite    INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_created_at ON clipboard_entries(created_at DESC);
CREATE UNIQUE INDEX IF NOT EXISTS idx_content_hash ON clipboard_entries(content_hash);

CREATE VIRTUAL TABLE IF NOT EXISTS clipboard_fts USING fts5(
    content_data,
    source_app,
    content='clipboard_entries',
    content_rowid='rowid'
);

CREATE TRIGGER IF NOT EXISTS clipboard_ai AFTER INSERT ON clipboard_entries BEGIN
    INSERT INTO clipboard_fts(rowid, content_data, source_app)
    VALUES (new.rowid, new.content_data, new.source_app);
END;

CREATE TRIGGER IF NOT EXISTS clipboard_ad AFTER DELETE ON clipboard_entries BEGIN
    INSERT INTO clipboard_fts(clipboard_fts, rowid, content_data, source_app)
    VALUES ('delete', old.rowid, old.content_data, old.source_app);
END;
"""


class StorageManager:
    def __init__(self, db_path: str | Path | None = None, data_dir: str | Path | None = None):
        self._db_path = str(db_path) if db_path else str(DB_PATH)
        self._data_dir = Path(data_dir) if data_dir else DATA_DIR
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self.init_db()

    def init_db(self) -> None:
        with self._lock:
            self._conn.executescript(SCHEMA)
            self._migrate_schema()
            self._conn.commit()

    def _migrate_schema(self) -> None:
        """Add classifier and provenance columns to existing databases."""
        cursor = self._conn.execute("PRAGMA table_info(clipboard_entries)")
        columns = {row[1] for row in cursor.fetchall()}
        if "content_subtype" not in columns:
            self._conn.execute("ALTER TABLE clipboard_entries ADD COLUMN content_subtype TEXT")
        if "metadata" not in columns:
            self._conn.execute("ALTER TABLE clipboard_entries ADD COLUMN metadata TEXT")
        if "app_bundle_id" not in columns:
            self._conn.execute("ALTER TABLE clipboard_entries ADD COLUMN app_bundle_id TEXT")
        self._conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_content_subtype ON clipboard_entries(content_subtype)"
        )
        self._conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_app_bundle_id ON clipboard_entries(app_bundle_id)"
        )

    def _delete_file(self, file_path: str | None) -> int:
        """Remove a stored image file; returns the number of bytes freed."""
        if not file_path:
            return 0
        p = resolve_data_path(file_path, self._data_dir)
        if not p.is_file():
            return 0
        size = p.stat().st_size
        p.unlink()
        return size

    def add_entry(self, entry: ClipboardEntry) -> str:
        with self._lock:
            self._conn.execute(
                """INSERT INTO clipboard_entries
                   (id, content_hash, content_type, content_data, source_app, created_at, copy_count,
                    file_path, is_favorite, content_subtype, metadata, app_bundle_id)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    entry.id,
                    entry.content_hash,
                    entry.content_type.value,
                    entry.content_data,
                    entry.source_app,
                    entry.created_at,
                    entry.copy_count,
                    entry.file_path,
                    int(entry.is_favorite),
                    entry.content_subtype.value if entry.content_subtype else None,
                    entry.metadata,
                    entry.app_bundle_id,
                ),
            )
            self._conn.commit()
        return entry.id

    def find_by_hash(self, content_hash: str) -> ClipboardEntry | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM clipboard_entries WHERE content_hash = ?", (content_hash,)
            ).fetchone()
        return self._row_to_entry(row) if row else None

    def bump_entry(self, entry_id: str, created_at: int) -> None:
        """Record a repeat copy: one more copy, last seen at ``created_at``."""
        with self._lock:
            self._conn.execute(
                "UPDATE clipboard_entries SET copy_count = copy_count + 1, created_at = ? WHERE id = ?",
                (created_at, entry_id),
            )
            self._conn.commit()

    def get_entry(self, entry_id: str) -> ClipboardEntry | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM clipboard_entries WHERE id = ?", (entry_id,)
            ).fetchone()
        return self._row_to_entry(row) if row else None

    def get_history(
        self,
        limit: int = 50,
        offset: int = 0,
        search: str | None = None,
        content_type: ContentType | None = None,
    ) -> list[ClipboardEntry]:
        clauses = []
        params: list = []
        join = ""
        if search:
            sanitized = self._sanitize_fts_query(search)
            if not sanitized:
                return []
            join = "JOIN clipboard_fts f ON e.rowid = f.rowid"
            clauses.append("clipboard_fts MATCH ?")
            params.append(sanitized)
        if content_type is not None:
            clauses.append("e.content_type = ?")
            params.append(content_type.value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.extend([limit, offset])
        with self._lock:
            rows = self._conn.execute(
                f"""SELECT e.* FROM clipboard_entries e {join} {where}
                    ORDER BY e.created_at DESC LIMIT ? OFFSET ?""",
                params,
            ).fetchall()
        return [self._row_to_entry(r) for r in rows]

    def delete_entry(self, entry_id: str) -> bool:
        with self._lock:
            entry = self.get_entry(entry_id)
            if entry is None:
                return False
            if entry.content_type == ContentType.IMAGE:
                self._delete_file(entry.file_path)
            self._conn.execute("DELETE FROM clipboard_entries WHERE id = ?", (entry_id,))
            self._conn.commit()
        return True

    def toggle_favorite(self, entry_id: str) -> bool:
        with self._lock:
            entry = self.get_entry(entry_id)
            if not entry:
                return False
            new_favorite = not entry.is_favorite
            self._conn.execute(
                "UPDATE clipboard_entries SET is_favorite = ? WHERE id = ?",
                (int(new_favorite), entry_id),
            )
            self._conn.commit()
        return new_favorite

    def purge_old(self, keep_count: int | None = None) -> int:
        keep = keep_count if keep_count is not None else MAX_ENTRIES
        with self._lock:
            rows = self._conn.execute(
                """SELECT id, content_type, file_path FROM clipboard_entries
                   WHERE is_favorite = 0
                   ORDER BY created_at DESC
                   LIMIT -1 OFFSET ?""",
                (keep,),
            ).fetchall()

            for row in rows:
                if row["content_type"] == ContentType.IMAGE.value:
                    self._delete_file(row["file_path"])
                self._conn.execute("DELETE FROM clipboard_entries WHERE id = ?", (row["id"],))

            if rows:
                self._conn.commit()
        return len(rows)

    def clear_all(self) -> None:
        with self._lock:
            rows = self._conn.execute(
                "SELECT file_path FROM clipboard_entries WHERE content_type = 'image'"
            ).fetchall()
            for row in rows:
                self._delete_file(row["file_path"])
            self._conn.execute("DELETE FROM clipboard_entries")
            self._conn.commit()

    def count(self) -> int:
        with self._lock:
            row = self._conn.execute("SELECT COUNT(*) as cnt FROM clipboard_entries").fetchone()
        return row["cnt"]

    def get_statistics(self) -> Statistics:
        with self._lock:
            totals = self._conn.execute(
                "SELECT COUNT(*) AS entries, COALESCE(SUM(copy_count), 0) AS copies FROM clipboard_entries"
            ).fetchone()
            most_copied = self._conn.execute(
                "SELECT * FROM clipboard_entries ORDER BY copy_count DESC, created_at DESC LIMIT 10"
            ).fetchall()
            apps = self._conn.execute(
                """SELECT source_app, COUNT(*) AS cnt FROM clipboard_entries
                   WHERE source_app IS NOT NULL
                   GROUP BY source_app
                   ORDER BY cnt DESC, source_app
                   LIMIT 10"""
            ).fetchall()
        return Statistics(
            total_entries=totals["entries"],
            total_copies=totals["copies"],
            most_copied=[self._row_to_entry(r) for r in most_copied],
            recent_apps=[AppUsage(app_name=r["source_app"], count=r["cnt"]) for r in apps],
        )

    def cleanup_expired(
        self,
        text_days: int | None,
        image_days: int | None,
        now: int | None = None,
    ) -> CleanupResult:
        """Delete non-image entries older than ``text_days`` and images older than ``image_days``.

        A None limit means that kind never expires. Favorites are kept.
        """
        now = now if now is not None else now_ms()
        result = CleanupResult()
        plans = []
        if text_days is not None:
            plans.append(("content_type != 'image'", now - text_days * DAY_MS))
        if image_days is not None:
            plans.append(("content_type = 'image'", now - image_days * DAY_MS))

        with self._lock:
            for condition, cutoff in plans:
                rows = self._conn.execute(
                    f"""SELECT id, content_type, file_path FROM clipboard_entries
                        WHERE {condition} AND is_favorite = 0 AND created_at < ?""",
                    (cutoff,),
                ).fetchall()
                for row in rows:
                    if row["content_type"] == ContentType.IMAGE.value:
                        freed = self._delete_file(row["file_path"])
                        if freed:
                            result.images_removed += 1
                            result.size_freed_bytes += freed
                    self._conn.execute("DELETE FROM clipboard_entries WHERE id = ?", (row["id"],))
                    result.entries_removed += 1
            if result.entries_removed:
                self._conn.commit()
        return result

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    @staticmethod
    def _sanitize_fts_query(query: str) -> str:
        # Quote each token to prevent FTS5 syntax errors from special chars
        tokens = query.split()
        if not tokens:
            return ""
        quoted = ['"' + token.replace('"', '""') + '"' for token in tokens]
        return " ".join(quoted)

    def _row_to_entry(self, row: sqlite3.Row) -> ClipboardEntry:
        subtype = row["content_subtype"]
        return ClipboardEntry(
            id=row["id"],
            content_hash=row["content_hash"],
            content_type=ContentType(row["content_type"]),
            content_data=row["content_data"],
            source_app=row["source_app"],
            created_at=row["created_at"],
            copy_count=row["copy_count"],
            file_path=row["file_path"],
            is_favorite=bool(row["is_favorite"]),
            content_subtype=ContentSubtype(subtype) if subtype else None,
            metadata=row["metadata"],
            app_bundle_id=row["app_bundle_id"],
        )
