"""Tests for user context lookup."""

from ebook_publisher.context import format_context_block, resolve_user_context
from fixtures.sample_outline import get_sample_outline


class TestUserContext:
    """Test resolve_user_context and format_context_block."""

    def test_resolves_each_level(self):
        """Context is looked up on the addressed node only."""
        outline = get_sample_outline()
        outline.chapters[0].user_added_context = "chapter notes"
        outline.chapters[0].topics[0].user_added_context = "topic notes"
        outline.chapters[0].topics[0].lessons[1].user_added_context = "lesson notes"

        assert resolve_user_context(outline, 0) == "chapter notes"
        assert resolve_user_context(outline, 0, 0) == "topic notes"
        assert resolve_user_context(outline, 0, 0, 0) is None
        assert resolve_user_context(outline, 0, 0, 1) == "lesson notes"

    def test_whitespace_is_absent(self):
        outline = get_sample_outline()
        outline.chapters[0].user_added_context = " \n\t "

        assert resolve_user_context(outline, 0) is None

    def test_out_of_range(self):
        """Indexes outside the outline resolve to None."""
        outline = get_sample_outline()

        assert resolve_user_context(outline, 5) is None
        assert resolve_user_context(outline, 0, 0, 9) is None

    def test_format_block(self):
        """Each non-blank line becomes an escaped paragraph."""
        block = format_context_block("First line\n\n<b>Second</b>")

        assert block == (
            '<div class="user-context"><h4>Additional Context</h4>'
            "<p>First line</p><p>&lt;b&gt;Second&lt;/b&gt;</p></div>"
        )

    def test_format_empty(self):
        assert format_context_block(None) == ""
        assert format_context_block("") == ""
