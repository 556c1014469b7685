"""Knowledge library assignment and resolution."""

import logging
from collections.abc import Mapping

from .models import NodeKey

logger = logging.getLogger(__name__)

LibraryMap = dict[NodeKey, str]


def load_library_map(mapping: Mapping[NodeKey | str, str | None] | None) -> LibraryMap:
    """Normalize a library assignment mapping to ``NodeKey`` keys.

    Accepts structured keys or the legacy ``chapter-{i}`` / ``topic-{i}-{j}`` /
    ``lesson-{i}-{j}-{k}`` strings. Blank library ids are dropped.

    Raises:
        ValueError: If a string key cannot be parsed
    """
    library_map: LibraryMap = {}
    for key, library_id in (mapping or {}).items():
        if not library_id or not str(library_id).strip():
            continue
        node_key = key if isinstance(key, NodeKey) else NodeKey.parse(str(key))
        library_map[node_key] = str(library_id).strip()
    return library_map


def resolve_library(
    library_map: Mapping[NodeKey, str],
    chapter_index: int,
    topic_index: int,
    lesson_index: int,
    topic_inheritance: bool = False,
) -> str | None:
    """Return the effective knowledge library for a lesson.

    The lesson's own assignment wins, then the chapter's. Topic assignments
    are only consulted when ``topic_inheritance`` is enabled.
    """
    lesson_key = NodeKey(chapter_index, topic_index, lesson_index)
    topic_key = NodeKey(chapter_index, topic_index)
    chapter_key = NodeKey(chapter_index)

    if library_map.get(lesson_key):
        return library_map[lesson_key]

    if topic_inheritance:
        if library_map.get(topic_key):
            return library_map[topic_key]
    elif library_map.get(topic_key):
        logger.debug(
            f"Ignoring topic-level library for {topic_key} "
            "(topic inheritance disabled)"
        )

    return library_map.get(chapter_key) or None
