"""
Tests for the field translation cache.
"""

import sqlite3
from contextlib import closing

import pytest

from simplify.services.translation_cache import TranslationCache, content_hash

UUID = "page://abc123"


@pytest.fixture
def cache(tmp_path):
    return TranslationCache(tmp_path / "translation-cache.sqlite")


class TestTranslationCache:
    def test_miss_on_empty_cache(self, cache):
        assert cache.get(UUID, "de-x-ls", "headline", "Hello") is None

    def test_hit_requires_same_source_and_prompt(self, cache):
        cache.set(UUID, "de-x-ls", "headline", "text", "Hello", "Hallo", prompt_hash="p1")

        assert cache.get(UUID, "de-x-ls", "headline", "Hello", prompt_hash="p1") == "Hallo"
        assert cache.get(UUID, "de-x-ls", "headline", "Hello!", prompt_hash="p1") is None
        assert cache.get(UUID, "de-x-ls", "headline", "Hello", prompt_hash="p2") is None
        assert cache.get(UUID, "fr-x-fal", "headline", "Hello", prompt_hash="p1") is None

    def test_entries_without_prompt_hash_match_any_prompt(self, cache):
        cache.set(UUID, "de-x-ls", "headline", "text", "Hello", "Hallo")

        assert cache.get(UUID, "de-x-ls", "headline", "Hello", prompt_hash="anything") == "Hallo"

    def test_set_replaces_existing_entry(self, cache):
        cache.set(UUID, "de-x-ls", "headline", "text", "Hello", "Hallo", prompt_hash="p1")
        cache.set(UUID, "de-x-ls", "headline", "text", "Hello there", "Hallo du", prompt_hash="p1")

        assert cache.get(UUID, "de-x-ls", "headline", "Hello", prompt_hash="p1") is None
        assert cache.get(UUID, "de-x-ls", "headline", "Hello there", prompt_hash="p1") == "Hallo du"
        assert cache.get_stats()["total_entries"] == 1

    def test_clear_page(self, cache):
        cache.set(UUID, "de-x-ls", "headline", "text", "a", "b")
        cache.set(UUID, "de-x-ls", "text", "textarea", "c", "d")
        cache.set(UUID, "fr-x-fal", "headline", "text", "a", "e")
        cache.set("page://other", "de-x-ls", "headline", "text", "a", "f")

        assert cache.clear_page(UUID, "de-x-ls") == 2
        assert cache.get(UUID, "fr-x-fal", "headline", "a") == "e"
        assert cache.clear_page(UUID) == 1
        assert cache.get("page://other", "de-x-ls", "headline", "a") == "f"

    def test_clear_language(self, cache):
        cache.set(UUID, "de-x-ls", "headline", "text", "a", "b")
        cache.set("page://other", "de-x-ls", "headline", "text", "a", "c")
        cache.set(UUID, "fr-x-fal", "headline", "text", "a", "d")

        assert cache.clear_language("de-x-ls") == 2
        assert cache.get_stats()["total_entries"] == 1

    def test_stats(self, cache):
        cache.set(UUID, "de-x-ls", "headline", "text", "ab", "cde")
        cache.set("page://other", "fr-x-fal", "headline", "text", "a", "b")

        assert cache.get_stats() == {
            "total_entries": 2,
            "unique_pages": 2,
            "unique_languages": 2,
            "total_size": 7,
        }

    def test_content_hash_is_md5(self):
        assert content_hash("") == "d41d8cd98f00b204e9800998ecf8427e"


class TestCacheMigration:
    def test_adds_prompt_hash_column_to_old_database(self, tmp_path):
        db_path = tmp_path / "old.sqlite"
        with closing(sqlite3.connect(str(db_path))) as conn, conn:
            conn.execute(
                "CREATE TABLE translation_cache ("
                "id INTEGER PRIMARY KEY AUTOINCREMENT, page_uuid TEXT NOT NULL, "
                "language_code TEXT NOT NULL, field_name TEXT NOT NULL, field_type TEXT, "
                "source_hash TEXT NOT NULL, source_content TEXT, translated_content TEXT, "
                "created_at TEXT, updated_at TEXT, "
                "UNIQUE(page_uuid, language_code, field_name))"
            )
            conn.execute(
                "INSERT INTO translation_cache (page_uuid, language_code, field_name, source_hash, "
                "translated_content) VALUES (?, ?, ?, ?, ?)",
                (UUID, "de-x-ls", "headline", content_hash("Hello"), "Hallo"),
            )

        cache = TranslationCache(db_path)

        assert cache.get(UUID, "de-x-ls", "headline", "Hello", prompt_hash="p1") == "Hallo"
