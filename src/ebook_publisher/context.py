"""User-supplied context lookup for outline nodes."""

from html import escape

from .models import Outline


def resolve_user_context(
    outline: Outline,
    chapter_index: int,
    topic_index: int | None = None,
    lesson_index: int | None = None,
) -> str | None:
    """Return the trimmed free-text context the user attached to a node."""
    try:
        chapter = outline.chapters[chapter_index]
        if topic_index is None:
            node = chapter
        elif lesson_index is None:
            node = chapter.topics[topic_index]
        else:
            node = chapter.topics[topic_index].lessons[lesson_index]
    except IndexError:
        return None

    text = (node.user_added_context or "").strip()
    return text or None


def format_context_block(context: str | None) -> str:
    """Render user context as an HTML block appended to a node body."""
    if not context:
        return ""
    paragraphs = "".join(
        f"<p>{escape(line.strip())}</p>" for line in context.splitlines() if line.strip()
    )
    return f'<div class="user-context"><h4>Additional Context</h4>{paragraphs}</div>'
