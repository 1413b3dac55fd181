import sqlite3

import pytest

from clipnest.models import ContentSubtype, ContentType
from clipnest.storage import DAY_MS, StorageManager

NOW = 1_700_000_000_000


class TestAddAndRetrieve:
    def test_add_entry(self, storage, make_entry):
        entry = make_entry("test text")
        entry_id = storage.add_entry(entry)
        assert entry_id == entry.id

    def test_get_history_newest_first(self, storage, make_entry):
        storage.add_entry(make_entry("first", created_at=NOW))
        storage.add_entry(make_entry("second", created_at=NOW + 1))
        entries = storage.get_history()
        assert [e.content_data for e in entries] == ["second", "first"]

    def test_get_history_limit_and_offset(self, storage, make_entry):
        for i in range(10):
            storage.add_entry(make_entry(f"item {i}", created_at=NOW + i))
        page = storage.get_history(limit=3, offset=2)
        assert [e.content_data for e in page] == ["item 7", "item 6", "item 5"]

    def test_get_history_by_type(self, storage, make_entry):
        storage.add_entry(make_entry("some text"))
        storage.add_entry(make_entry("images/a.png", content_type=ContentType.IMAGE, file_path="images/a.png"))
        images = storage.get_history(content_type=ContentType.IMAGE)
        assert len(images) == 1
        assert images[0].content_type == ContentType.IMAGE

    def test_get_entry_by_id(self, storage, make_entry):
        entry_id = storage.add_entry(make_entry("find me"))
        found = storage.get_entry(entry_id)
        assert found is not None
        assert found.content_data == "find me"

    def test_get_entry_not_found(self, storage):
        assert storage.get_entry("missing") is None

    def test_classifier_fields_round_trip(self, storage, make_entry):
        entry = make_entry("https://example.com")
        entry.content_subtype = ContentSubtype.URL
        entry.metadata = '{"detected_language": null}'
        entry.app_bundle_id = "com.apple.Safari"
        storage.add_entry(entry)
        found = storage.get_entry(entry.id)
        assert found.content_subtype == ContentSubtype.URL
        assert found.metadata == '{"detected_language": null}'
        assert found.app_bundle_id == "com.apple.Safari"
        assert found.source_app == "Terminal"


class TestDeduplication:
    def test_find_by_hash(self, storage, make_entry):
        storage.add_entry(make_entry("dup test", content_hash="unique_hash"))
        found = storage.find_by_hash("unique_hash")
        assert found is not None
        assert found.content_data == "dup test"

    def test_find_by_hash_not_found(self, storage):
        assert storage.find_by_hash("nonexistent") is None

    def test_hash_is_unique(self, storage, make_entry):
        storage.add_entry(make_entry("one", content_hash="same"))
        with pytest.raises(sqlite3.IntegrityError):
            storage.add_entry(make_entry("two", content_hash="same"))

    def test_bump_entry(self, storage, make_entry):
        entry_id = storage.add_entry(make_entry("old", created_at=NOW))
        storage.bump_entry(entry_id, NOW + 5000)
        bumped = storage.get_entry(entry_id)
        assert bumped.copy_count == 2
        assert bumped.created_at == NOW + 5000


class TestSearch:
    def test_search_text(self, storage, make_entry):
        storage.add_entry(make_entry("python programming"))
        storage.add_entry(make_entry("javascript coding"))
        results = storage.get_history(search="python")
        assert len(results) == 1
        assert results[0].content_data == "python programming"

    def test_search_source_app(self, storage, make_entry):
        storage.add_entry(make_entry("copied text", source_app="Safari"))
        storage.add_entry(make_entry("other text", source_app="Terminal"))
        results = storage.get_history(search="Safari")
        assert [r.content_data for r in results] == ["copied text"]

    def test_search_no_results(self, storage, make_entry):
        storage.add_entry(make_entry("hello world"))
        assert storage.get_history(search="nonexistent") == []

    def test_search_combined_with_type(self, storage, make_entry):
        storage.add_entry(make_entry("match text"))
        storage.add_entry(make_entry("match /tmp/file", content_type=ContentType.FILE))
        results = storage.get_history(search="match", content_type=ContentType.FILE)
        assert len(results) == 1
        assert results[0].content_type == ContentType.FILE

    def test_search_special_characters_no_crash(self, storage, make_entry):
        storage.add_entry(make_entry("hello world"))
        results = storage.get_history(search='test "quotes" AND OR NOT')
        assert isinstance(results, list)

    def test_search_parentheses_no_crash(self, storage, make_entry):
        storage.add_entry(make_entry("function(arg)"))
        results = storage.get_history(search="function(arg)")
        assert isinstance(results, list)

    def test_search_whitespace_only(self, storage, make_entry):
        storage.add_entry(make_entry("hello"))
        assert storage.get_history(search="   ") == []

    def test_deleted_entry_not_found(self, storage, make_entry):
        entry_id = storage.add_entry(make_entry("ephemeral note"))
        storage.delete_entry(entry_id)
        assert storage.get_history(search="ephemeral") == []


class TestDelete:
    def test_delete_entry(self, storage, make_entry):
        entry_id = storage.add_entry(make_entry("to delete"))
        assert storage.delete_entry(entry_id) is True
        assert storage.get_entry(entry_id) is None

    def test_delete_missing(self, storage):
        assert storage.delete_entry("missing") is False

    def test_clear_all(self, storage, make_entry):
        for i in range(5):
            storage.add_entry(make_entry(f"item {i}"))
        assert storage.count() == 5
        storage.clear_all()
        assert storage.count() == 0


class TestPurge:
    def test_purge_old_entries(self, storage, make_entry):
        for i in range(10):
            storage.add_entry(make_entry(f"item {i}", created_at=NOW + i))
        deleted = storage.purge_old(keep_count=5)
        assert deleted == 5
        assert storage.count() == 5
        assert storage.get_history(limit=1)[0].content_data == "item 9"

    def test_purge_skips_favorites(self, storage, make_entry):
        storage.add_entry(make_entry("favorite item", created_at=NOW - 1000, is_favorite=True))
        for i in range(5):
            storage.add_entry(make_entry(f"item {i}", created_at=NOW + i))

        storage.purge_old(keep_count=3)
        remaining = storage.get_history(limit=100)
        assert len(remaining) == 4
        assert any(e.is_favorite and e.content_data == "favorite item" for e in remaining)


class TestFavorite:
    def test_toggle_favorite(self, storage, make_entry):
        entry_id = storage.add_entry(make_entry("star me"))
        assert storage.toggle_favorite(entry_id) is True
        assert storage.get_entry(entry_id).is_favorite is True

    def test_toggle_favorite_off(self, storage, make_entry):
        entry_id = storage.add_entry(make_entry("star me", is_favorite=True))
        assert storage.toggle_favorite(entry_id) is False

    def test_toggle_favorite_nonexistent(self, storage):
        assert storage.toggle_favorite("missing") is False


class TestStatistics:
    def test_empty(self, storage):
        stats = storage.get_statistics()
        assert stats.total_entries == 0
        assert stats.total_copies == 0
        assert stats.most_copied == []
        assert stats.recent_apps == []

    def test_totals_and_rankings(self, storage, make_entry):
        storage.add_entry(make_entry("a", copy_count=5, source_app="Safari"))
        storage.add_entry(make_entry("b", copy_count=2, source_app="Safari"))
        storage.add_entry(make_entry("c", copy_count=1, source_app="Terminal"))
        storage.add_entry(make_entry("d", source_app=None))

        stats = storage.get_statistics()
        assert stats.total_entries == 4
        assert stats.total_copies == 9
        assert stats.most_copied[0].content_data == "a"
        assert [(u.app_name, u.count) for u in stats.recent_apps] == [("Safari", 2), ("Terminal", 1)]

    def test_most_copied_capped_at_ten(self, storage, make_entry):
        for i in range(15):
            storage.add_entry(make_entry(f"item {i}", copy_count=i + 1))
        stats = storage.get_statistics()
        assert len(stats.most_copied) == 10
        assert stats.most_copied[0].copy_count == 15


class TestCleanupExpired:
    def test_text_expiry(self, storage, make_entry):
        storage.add_entry(make_entry("stale", created_at=NOW - 10 * DAY_MS))
        storage.add_entry(make_entry("fresh", created_at=NOW - DAY_MS))
        result = storage.cleanup_expired(text_days=7, image_days=None, now=NOW)
        assert result.entries_removed == 1
        assert [e.content_data for e in storage.get_history()] == ["fresh"]

    def test_never_expire(self, storage, make_entry):
        storage.add_entry(make_entry("ancient", created_at=0))
        result = storage.cleanup_expired(text_days=None, image_days=None, now=NOW)
        assert result.entries_removed == 0
        assert storage.count() == 1

    def test_favorites_survive(self, storage, make_entry):
        storage.add_entry(make_entry("kept", created_at=0, is_favorite=True))
        storage.cleanup_expired(text_days=1, image_days=1, now=NOW)
        assert storage.count() == 1

    def test_image_expiry_removes_files(self, storage, make_entry, tmp_path):
        image_dir = tmp_path / "images"
        image_dir.mkdir()
        (image_dir / "old.png").write_bytes(b"x" * 100)
        storage.add_entry(
            make_entry(
                "images/old.png",
                content_type=ContentType.IMAGE,
                file_path="images/old.png",
                created_at=NOW - 40 * DAY_MS,
            )
        )
        storage.add_entry(make_entry("old text", created_at=NOW - 40 * DAY_MS))

        result = storage.cleanup_expired(text_days=None, image_days=30, now=NOW)
        assert result.entries_removed == 1
        assert result.images_removed == 1
        assert result.size_freed_bytes == 100
        assert not (image_dir / "old.png").exists()
        assert storage.count() == 1


class TestContextManager:
    def test_context_manager_usage(self):
        with StorageManager(db_path=":memory:") as mgr:
            assert mgr.count() == 0

    def test_context_manager_closes_on_exit(self):
        mgr = StorageManager(db_path=":memory:")
        mgr.__enter__()
        result = mgr.__exit__(None, None, None)
        assert result is False


class TestMigration:
    def test_migrate_adds_classifier_columns(self, tmp_path):
        """Databases created before subtypes were stored gain the new columns."""
        db_file = tmp_path / "old_db.sqlite"
        conn = sqlite3.connect(str(db_file))
        conn.executescript("""
            CREATE TABLE clipboard_entries (
                id TEXT PRIMARY KEY,
                content_hash TEXT NOT NULL,
                content_type TEXT NOT NULL,
                content_data TEXT,
                source_app TEXT,
                created_at INTEGER NOT NULL,
                copy_count INTEGER NOT NULL DEFAULT 1,
                file_path TEXT,
                is_favorite INTEGER NOT NULL DEFAULT 0
            );
        """)
        conn.commit()
        conn.close()

        mgr = StorageManager(db_path=str(db_file))

        cursor = mgr._conn.execute("PRAGMA table_info(clipboard_entries)")
        columns = {row[1] for row in cursor.fetchall()}
        assert {"content_subtype", "metadata", "app_bundle_id"} <= columns

        mgr.close()


class TestFileCleanup:
    def test_delete_entry_removes_image_file(self, storage, make_entry, tmp_path):
        image_file = tmp_path / "images" / "test_image.png"
        image_file.parent.mkdir()
        image_file.write_bytes(b"fake png data")

        entry = make_entry("images/test_image.png", content_type=ContentType.IMAGE, file_path="images/test_image.png")
        entry_id = storage.add_entry(entry)

        storage.delete_entry(entry_id)
        assert not image_file.exists()

    def test_absolute_paths_supported(self, storage, make_entry, tmp_path):
        image_file = tmp_path / "elsewhere.png"
        image_file.write_bytes(b"data")
        entry_id = storage.add_entry(
            make_entry(str(image_file), content_type=ContentType.IMAGE, file_path=str(image_file))
        )
        storage.delete_entry(entry_id)
        assert not image_file.exists()

    def test_file_entries_do_not_delete_paths(self, storage, make_entry, tmp_path):
        copied = tmp_path / "report.pdf"
        copied.write_bytes(b"%PDF")
        entry_id = storage.add_entry(make_entry(str(copied), content_type=ContentType.FILE, file_path=str(copied)))
        storage.delete_entry(entry_id)
        assert copied.exists()

    def test_clear_all_removes_image_files(self, storage, make_entry, tmp_path):
        image1 = tmp_path / "img1.png"
        image2 = tmp_path / "img2.png"
        image1.write_bytes(b"data1")
        image2.write_bytes(b"data2")

        storage.add_entry(make_entry("img1", content_type=ContentType.IMAGE, file_path="img1.png"))
        storage.add_entry(make_entry("img2", content_type=ContentType.IMAGE, file_path="img2.png"))

        storage.clear_all()

        assert not image1.exists()
        assert not image2.exists()

    def test_purge_old_removes_image_files(self, storage, make_entry, tmp_path):
        for i in range(5):
            img = tmp_path / f"old_img_{i}.png"
            img.write_bytes(f"data_{i}".encode())
            storage.add_entry(
                make_entry(
                    f"img{i}",
                    content_type=ContentType.IMAGE,
                    file_path=img.name,
                    created_at=NOW + i,
                )
            )

        deleted = storage.purge_old(keep_count=2)
        assert deleted == 3
        assert sorted(p.name for p in tmp_path.glob("*.png")) == ["old_img_3.png", "old_img_4.png"]
