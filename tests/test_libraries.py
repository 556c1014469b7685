"""Tests for knowledge library resolution."""

import pytest

from ebook_publisher.libraries import load_library_map, resolve_library
from ebook_publisher.models import NodeKey


class TestLoadLibraryMap:
    """Test load_library_map."""

    def test_legacy_keys(self):
        """Legacy string keys are parsed into structured keys."""
        library_map = load_library_map({"chapter-0": "lib-A", "lesson-0-0-0": " lib-B "})

        assert library_map == {NodeKey(0): "lib-A", NodeKey(0, 0, 0): "lib-B"}

    def test_structured_keys_and_blanks(self):
        """Structured keys pass through; blank ids are dropped."""
        library_map = load_library_map({NodeKey(1): "lib-C", "chapter-2": "  ", "chapter-3": None})

        assert library_map == {NodeKey(1): "lib-C"}

    def test_none(self):
        assert load_library_map(None) == {}

    def test_invalid_key(self):
        with pytest.raises(ValueError):
            load_library_map({"chapter": "lib-A"})


class TestResolveLibrary:
    """Test resolve_library."""

    def test_lesson_overrides_chapter(self):
        """A lesson's own library wins over the chapter's."""
        library_map = load_library_map({"chapter-0": "lib-A", "lesson-0-0-0": "lib-B"})

        assert resolve_library(library_map, 0, 0, 0) == "lib-B"
        assert resolve_library(library_map, 0, 0, 1) == "lib-A"

    def test_chapter_applies_to_every_lesson(self):
        """Without lesson overrides every lesson of a chapter shares its library."""
        library_map = load_library_map({"chapter-1": "lib-C"})

        assert {resolve_library(library_map, 1, t, k) for t in range(3) for k in range(3)} == {
            "lib-C"
        }
        assert resolve_library(library_map, 0, 0, 0) is None

    def test_topic_ignored_by_default(self):
        """Topic assignments are skipped unless inheritance is enabled."""
        library_map = load_library_map({"topic-0-0": "lib-T", "chapter-0": "lib-A"})

        assert resolve_library(library_map, 0, 0, 0) == "lib-A"

    def test_topic_inheritance(self):
        """With inheritance enabled, lesson > topic > chapter."""
        library_map = load_library_map(
            {"topic-0-0": "lib-T", "chapter-0": "lib-A", "lesson-0-0-1": "lib-L"}
        )

        assert resolve_library(library_map, 0, 0, 0, topic_inheritance=True) == "lib-T"
        assert resolve_library(library_map, 0, 0, 1, topic_inheritance=True) == "lib-L"
        assert resolve_library(library_map, 0, 1, 0, topic_inheritance=True) == "lib-A"

    def test_empty_map(self):
        assert resolve_library({}, 0, 0, 0) is None
