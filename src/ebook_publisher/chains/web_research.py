"""Perplexity Sonar web research: research briefs, web context and references.

Perplexity exposes an OpenAI-compatible chat completions endpoint. Search
knobs that the SDK does not model (recency, mode, domain filter, location)
travel in ``extra_body``; the search results come back as response extras.
"""

import html
import logging
import re
from datetime import datetime, timezone
from typing import Any

import openai

from ..models import EnrichmentError, SharedTopicContext, WebReferences, WebSource
from ..options import (
    DEFAULT_SEARCH_OPTIONS,
    RESEARCH_BRIEF_SEARCH_OPTIONS,
    SearchOptions,
    build_search_payload,
    merge_options,
)
from ..utils.llm_factory import create_perplexity_client

logger = logging.getLogger(__name__)

MAX_REFERENCES = 3
SNIPPET_WORDS = 20

RESEARCH_SYSTEM_PROMPT = (
    "You are an expert market researcher and content strategist. Provide "
    "comprehensive, actionable research insights for ebook creation based on "
    "current web data and trends."
)

CONTEXT_SYSTEM_PROMPT = (
    "You are a research assistant providing current web context for content "
    "creation. Focus on recent, actionable insights from web sources."
)

REFERENCES_SYSTEM_PROMPT = (
    "You are a research assistant finding relevant web sources for educational "
    "content. Focus on authoritative, recent sources with practical value."
)

# Headings the shared topic prompt asks for, one per lesson
_LESSON_HEADING = re.compile(r"^\s*#{1,4}\s*Lesson(?:\s+\d+)?\s*:\s*(.+?)\s*#*\s*$", re.MULTILINE)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _normalize_title(title: str) -> str:
    return re.sub(r"\s+", " ", title.strip().strip("\"'*").lower())


def parse_lesson_sections(content: str) -> dict[str, str]:
    """Split a shared topic answer into per-lesson sections keyed by heading title."""
    matches = list(_LESSON_HEADING.finditer(content))
    sections: dict[str, str] = {}
    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(content)
        body = content[match.end():end].strip()
        title = match.group(1).strip().strip("\"'*")
        if body:
            sections[title] = body
    return sections


def extract_lesson_slice(context: SharedTopicContext | None, lesson_title: str) -> str | None:
    """Return the part of a shared topic context that covers ``lesson_title``.

    Matching is case-insensitive: an exact title match wins, then a section
    whose title contains (or is contained in) the lesson title. No match
    returns None.
    """
    if context is None or not context.lesson_sections or not lesson_title:
        return None

    wanted = _normalize_title(lesson_title)
    normalized = {_normalize_title(title): body for title, body in context.lesson_sections.items()}

    body = normalized.get(wanted)
    if body is None:
        for title, candidate in normalized.items():
            if title and (wanted in title or title in wanted):
                body = candidate
                break

    if body is None:
        logger.debug(f"No shared web context section for lesson: {lesson_title}")
        return None

    return f'Web Research Context for "{lesson_title}":\n{body}'


def format_web_references(refs: WebReferences | None) -> str:
    """Render topic references as an HTML block; empty when there are no sources."""
    if refs is None or not refs.web_sources:
        return ""

    items = []
    for source in refs.web_sources:
        date = (
            f'<br><small style="color: #868e96;">Published: {html.escape(source.date)}</small>'
            if source.date
            else ""
        )
        items.append(
            '<li style="margin-bottom: 0.5rem;">'
            f'<a href="{html.escape(source.url, quote=True)}" target="_blank" '
            'rel="noopener noreferrer" style="color: #007bff; text-decoration: none; '
            f'font-weight: 500;">{html.escape(source.title)}</a><br>'
            f'<span style="color: #6c757d; font-size: 0.8rem;">{html.escape(source.snippet)}</span>'
            f"{date}</li>"
        )

    try:
        generated = datetime.fromisoformat(refs.generated_at).strftime("%Y-%m-%d")
    except ValueError:
        generated = refs.generated_at

    return (
        '<div class="web-references" style="margin-top: 2rem; padding: 1rem; '
        "background-color: #f8f9fa; border-left: 4px solid #007bff; "
        'border-radius: 4px;">'
        '<h4 style="margin-bottom: 0.75rem; color: #495057; font-size: 0.9rem; '
        'font-weight: 600;">📚 Additional Web Resources:</h4>'
        '<ul style="margin: 0; padding-left: 1.25rem; font-size: 0.85rem; '
        f'line-height: 1.5;">{"".join(items)}</ul>'
        '<p style="margin-top: 0.75rem; margin-bottom: 0; font-size: 0.75rem; '
        'color: #868e96; font-style: italic;">Sources found via Perplexity Sonar '
        f"web search • Generated: {html.escape(generated)}</p></div>"
    )


def _web_sources(response: Any) -> list[WebSource]:
    """Top search results from a Perplexity response."""
    extras = response.model_extra or {}
    results = extras.get("search_results") or []

    sources = []
    for result in results[:MAX_REFERENCES]:
        if not isinstance(result, dict) or not result.get("url"):
            continue
        title = result.get("title") or result["url"]
        snippet = (
            " ".join(title.split()[:SNIPPET_WORDS]) + "..."
            if result.get("title")
            else "Relevant resource for this topic..."
        )
        sources.append(
            WebSource(title=title, url=result["url"], date=result.get("date"), snippet=snippet)
        )

    if not sources:
        # Older responses only carry bare citation URLs.
        for url in (extras.get("citations") or [])[:MAX_REFERENCES]:
            sources.append(
                WebSource(title=url, url=url, snippet="Relevant resource for this topic...")
            )
    return sources


class WebResearcher:
    """Perplexity-backed web research bound to one API key."""

    def __init__(self, api_key: str):
        if not api_key:
            raise EnrichmentError("Perplexity API key is required", node="web_research")
        self.client = create_perplexity_client(api_key)

    async def __aenter__(self) -> "WebResearcher":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.close()

    async def _complete(self, payload: dict[str, Any]) -> Any:
        body = dict(payload)
        request = {key: body.pop(key) for key in ("model", "messages", "max_tokens", "temperature")}
        logger.debug(f"Perplexity request with model: {request['model']}")
        return await self.client.chat.completions.create(**request, extra_body=body or None)

    @staticmethod
    def _content(response: Any) -> str | None:
        if not response.choices or response.choices[0].message is None:
            return None
        content = response.choices[0].message.content
        if not content or not content.strip():
            return None
        return content

    async def generate_research_brief(
        self, topic: str, must_haves: str, other: str | None = None
    ) -> str:
        """
        Research brief from current web data, always with fixed search settings.

        Raises:
            EnrichmentError: With a specific message for rate limits,
                authentication and model availability failures
        """
        logger.info(f"Generating Perplexity research brief for: {topic}")
        prompt = f"""Conduct comprehensive market research for an ebook on: "{topic}"

Key Requirements:
- Must-have content: {must_haves}
- Additional considerations: {other or 'None specified'}

Please provide a detailed research brief that includes:
1. Target audience analysis and ideal reader profile
2. Current market trends and developments (focus on recent data)
3. Key pain points and emotional triggers for the target audience
4. Recommended content structure and chapter topics
5. Market positioning and competitive landscape
6. Reader transformation goals and desired outcomes

Format the response as a comprehensive research brief that can guide ebook creation."""

        payload = build_search_payload(
            RESEARCH_BRIEF_SEARCH_OPTIONS,
            [
                {"role": "system", "content": RESEARCH_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            default_max_tokens=2000,
            default_temperature=0.7,
        )

        try:
            response = await self._complete(payload)
        except openai.RateLimitError as e:
            raise EnrichmentError(
                f"Perplexity rate limit exceeded: {e}. Please try again later or use fallback API key.",
                node="web_research",
            ) from e
        except openai.AuthenticationError as e:
            raise EnrichmentError(
                f"Perplexity authentication failed: {e}. Please check your API key in settings.",
                node="web_research",
            ) from e
        except openai.NotFoundError as e:
            raise EnrichmentError(
                f"Perplexity model not available: {e}. The service may be temporarily unavailable.",
                node="web_research",
            ) from e
        except openai.OpenAIError as e:
            raise EnrichmentError(f"Perplexity research failed: {e}", node="web_research") from e

        content = self._content(response)
        if content is None:
            raise EnrichmentError("Empty response from Perplexity API", node="web_research")

        return (
            f'ebookTitle: "{topic} - Complete Professional Guide"\n'
            f"Market Research Brief: {content}\n"
            "Research Method: Perplexity Sonar with fixed defaults "
            "(model: sonar, recency: month, mode: web, tokens: 2000)\n"
            f"Generated: {_now()}"
        )

    async def generate_section_context(
        self,
        book_title: str,
        section_title: str,
        options: SearchOptions | dict | None = None,
    ) -> str | None:
        """Current web context for one section, or None on any failure."""
        prompt = f"""Provide current web research context for the section "{section_title}" in the ebook "{book_title}".

Include:
- 3-5 key current trends and insights
- 2-4 actionable takeaways
- Recent statistics or examples (last 1-3 months if available)
- Relevant industry developments

Keep the response focused and practical for content creation."""

        opts = merge_options(DEFAULT_SEARCH_OPTIONS, options)
        payload = build_search_payload(
            opts,
            [
                {"role": "system", "content": CONTEXT_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
        )
        try:
            response = await self._complete(payload)
        except openai.OpenAIError as e:
            logger.warning(f"Web context failed for section {section_title}: {e}")
            return None

        content = self._content(response)
        if content is None:
            return None

        return (
            f'Web Research Context for "{section_title}":\n{content}\n\n'
            "Note: This context is based on recent web research and should be used "
            "to enhance the content with current trends and data.\n"
            f"Generated: {_now()}"
        )

    async def generate_shared_topic_web_context(
        self,
        book_title: str,
        chapter_title: str,
        topic_title: str,
        lessons: list[dict[str, str]],
        options: SearchOptions | dict | None = None,
    ) -> SharedTopicContext | None:
        """
        Web research covering every lesson of a topic in a single call.

        The answer is split into one section per lesson so lessons can pick
        their slice with ``extract_lesson_slice`` without another request.

        Returns:
            SharedTopicContext, or None on any failure
        """
        logger.info(f"Generating shared web context for topic: {topic_title}")
        lesson_lines = "\n".join(
            f"- {lesson.get('title', '')}: {lesson.get('description', '')}" for lesson in lessons
        )
        prompt = f"""Provide current web research context for the topic "{topic_title}" in the chapter "{chapter_title}" of the ebook "{book_title}".

The topic contains these lessons:
{lesson_lines}

For EACH lesson, write a section that starts with a heading line in exactly this form:
## Lesson: <lesson title>

Under each heading include:
- 2-3 key current trends or insights
- 1-2 actionable takeaways
- Recent statistics or examples (last 1-3 months if available)

Keep each section focused and practical for content creation."""

        opts = merge_options(DEFAULT_SEARCH_OPTIONS, options)
        payload = build_search_payload(
            opts,
            [
                {"role": "system", "content": CONTEXT_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            default_max_tokens=max(800, 400 * len(lessons)),
        )
        try:
            response = await self._complete(payload)
        except openai.OpenAIError as e:
            logger.warning(f"Shared web context failed for topic {topic_title}: {e}")
            return None

        content = self._content(response)
        if content is None:
            return None

        sections = parse_lesson_sections(content)
        logger.info(
            f"Shared web context for {topic_title}: {len(sections)} lesson sections"
        )
        return SharedTopicContext(
            topic_title=topic_title,
            content=content,
            lesson_sections=sections,
            generated_at=_now(),
        )

    async def generate_topic_references(
        self,
        book_title: str,
        topic_title: str,
        options: SearchOptions | dict | None = None,
    ) -> WebReferences | None:
        """Recent web sources for a topic, or None on any failure."""
        prompt = f"""Find current web sources and references for the topic "{topic_title}" in the context of "{book_title}".

Please provide:
- 2-3 most relevant and recent web sources
- Brief description (first 20 words) for each source
- Focus on authoritative, recent content (last 3-6 months preferred)
- Include practical resources, case studies, or expert insights

Format for easy integration into content."""

        opts = merge_options(DEFAULT_SEARCH_OPTIONS, options)
        payload = build_search_payload(
            opts,
            [
                {"role": "system", "content": REFERENCES_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            default_max_tokens=600,
            default_temperature=0.3,
        )
        try:
            response = await self._complete(payload)
        except openai.OpenAIError as e:
            logger.warning(f"Web references failed for topic {topic_title}: {e}")
            return None

        content = self._content(response)
        if content is None:
            return None

        return WebReferences(
            content=content,
            web_sources=_web_sources(response),
            topic_title=topic_title,
            generated_at=_now(),
        )
