"""OpenAI content chains: research brief, topic introductions and lesson sections."""

import json
import logging
import re
from typing import Any

from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate

from ..models import EnrichmentError
from ..options import DEFAULT_GENERATION_OPTIONS, GenerationOptions, merge_options
from ..utils.llm_factory import create_openai_llm, create_rag_llm

logger = logging.getLogger(__name__)

DEFAULT_INSTRUCTION_METHOD = "Step-by-step guide with examples"
DEFAULT_GENERATION_APPROACH = "Practical and actionable"


RESEARCH_BRIEF_PROMPT = """Act as a Senior Content Strategist and bestselling non-fiction ghostwriter. I am commissioning an authoritative ebook in the professional niche of: {niche}.

Some of the initial considerations for the ebook as per the commissioning editor are:

Must-have content and themes: {must_haves}

Additional content and structural considerations: {other}

Your mission is to conduct a deep market and audience analysis to uncover the most potent professional drivers, emotional triggers, and desired outcomes of the target readership for this ebook.

The final output MUST be a single text paragraph string titled "ebook_research_brief". The ebook_research_brief will include: "ebookTitle", "readerTransformationPillars", "idealReaderProfile", "marketRelevance", "hardHittingPainPoints", "keyEmotionalTriggers", "tangibleReaderResults", "assumedReaderKnowledge", and "recommendedContentStructure".

Generate the "ebook_research_brief" paragraph now."""


TOPIC_INTRODUCTION_PROMPT = """Write the introductory and activity-focused content for a single topic.

CONTEXT:
Overall context: {research_brief}
Course title: {chapter_title}
Course description: {chapter_description}

Current Topic: {topic_title}
Learning objective: {objective}
Lessons in this Topic: {lessons}{extra_context}

TASK:
Generate the topic introduction in plain text format:
"topicIntroduction": A compelling introductory paragraph (150-200 words) for the topic."""


SECTION_SYSTEM_PROMPT = """Focus on actionable strategies that readers can implement immediately. Address emotional triggers. Emphasize benefits. Include common mistakes and how to avoid them. Use case studies or examples from real businesses to make content relatable. Provide templates and actionable checklists if applicable. Keep the text as action focused as possible. Quote recent research on this topic if any. Keep the tone motivating and supportive.

The full content for this section will include:
readingContent: The main text content (~1000-1500 words) in HTML format.

Generate the content for the section using the context below in HTML formatting.

Context: {full_context}
Instruction Method suggested by creator: {instruction_method}
Topic content generation approach: {generation_approach}{extra_context}"""


SECTION_USER_PROMPT = """TASK: Develop a practical, step-by-step section on section title {lesson_title} with section description as {lesson_description} for the target audience from context. Generate the readingContent: The main text content (~1500-2000 words). Generate in HTML format."""


_TOPIC_INTRO_JSON = re.compile(r'"topicIntroduction"\s*:\s*"((?:[^"\\]|\\.)*)"', re.DOTALL)


def extract_topic_introduction(content: str) -> str:
    """Unwrap a ``"topicIntroduction": "..."`` answer; otherwise return as-is."""
    if '"topicIntroduction"' not in content:
        return content.strip()

    match = _TOPIC_INTRO_JSON.search(content)
    if not match:
        return content.strip()
    try:
        return json.loads(f'"{match.group(1)}"').strip()
    except ValueError:
        return match.group(1).strip()


def strip_code_fences(text: str) -> str:
    """Remove a markdown code fence wrapping the whole answer (```html ... ```)."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.split("\n", 1)[1] if "\n" in cleaned else ""
        if cleaned.rstrip().endswith("```"):
            cleaned = cleaned.rstrip()[:-3]
    return cleaned.strip()


class ContentGenerator:
    """OpenAI-backed content generation bound to one API key.

    A new generator is created per credential so ``with_fallback`` can retry
    the same call with the fallback key.
    """

    def __init__(self, api_key: str, trace: Any | None = None):
        if not api_key:
            raise EnrichmentError("OpenAI API key is required", node="content")
        self.api_key = api_key
        self.trace = trace

    async def _invoke(
        self,
        prompt: ChatPromptTemplate,
        variables: dict[str, Any],
        options: GenerationOptions,
        label: str,
        library_id: str | None = None,
    ) -> str:
        if library_id:
            llm = create_rag_llm(self.api_key, options, library_id, trace=self.trace)
        else:
            llm = create_openai_llm(self.api_key, options, trace=self.trace)

        chain = prompt | llm | StrOutputParser()
        try:
            content = await chain.ainvoke(variables)
        except Exception as e:
            raise EnrichmentError(
                f"Failed to generate {label}: {e}",
                node="content",
                context={"model": options.model, "library_id": library_id},
            ) from e

        if not content or not content.strip():
            raise EnrichmentError(f"Empty {label} returned by {options.model}", node="content")

        logger.info(f"{label.capitalize()} generated successfully with {options.model}")
        return content

    async def generate_research_brief(
        self,
        niche: str,
        must_haves: str,
        other: str | None = None,
        options: GenerationOptions | dict | None = None,
    ) -> str:
        """Generate the ebook research brief for a niche."""
        logger.info(f"Generating research brief for niche: {niche}")
        opts = merge_options(
            merge_options(DEFAULT_GENERATION_OPTIONS, {"temperature": 0.7}), options
        )
        prompt = ChatPromptTemplate.from_messages([("user", RESEARCH_BRIEF_PROMPT)])
        return await self._invoke(
            prompt,
            {"niche": niche, "must_haves": must_haves, "other": other or "None specified"},
            opts,
            "research brief",
        )

    async def generate_topic_introduction(
        self,
        research_brief: str,
        chapter_title: str,
        chapter_description: str,
        topic_title: str,
        objective: str,
        lessons: list[dict[str, str]],
        options: GenerationOptions | dict | None = None,
        user_context: str | None = None,
        web_context: str | None = None,
    ) -> str:
        """
        Generate the introductory paragraph for a chapter topic.

        Args:
            research_brief: Full upstream research context
            chapter_title: Title of the enclosing chapter
            chapter_description: Description of the enclosing chapter
            topic_title: Topic title
            objective: Topic learning objective
            lessons: Lesson stubs (title and description) under the topic
            options: Generation option overrides
            user_context: Author-supplied context for the topic
            web_context: Shared web research for the topic

        Returns:
            Plain-text introduction

        Raises:
            EnrichmentError: If the model call fails or returns nothing
        """
        logger.info(f"Generating topic introduction for: {topic_title}")
        opts = merge_options(DEFAULT_GENERATION_OPTIONS, options)

        extra = ""
        if user_context:
            extra += f"\nAuthor's additional context: {user_context}"
        if web_context:
            extra += f"\nCurrent web research for this topic:\n{web_context}"

        prompt = ChatPromptTemplate.from_messages([("user", TOPIC_INTRODUCTION_PROMPT)])
        content = await self._invoke(
            prompt,
            {
                "research_brief": research_brief,
                "chapter_title": chapter_title,
                "chapter_description": chapter_description,
                "topic_title": topic_title,
                "objective": objective,
                "lessons": json.dumps(lessons, ensure_ascii=False),
                "extra_context": extra,
            },
            opts,
            "topic introduction",
        )
        return extract_topic_introduction(content)

    async def generate_section_content(
        self,
        full_context: str,
        lesson_title: str,
        lesson_description: str,
        instruction_method: str = DEFAULT_INSTRUCTION_METHOD,
        generation_approach: str = DEFAULT_GENERATION_APPROACH,
        user_context: str | None = None,
        library_id: str | None = None,
        web_context: str | None = None,
        options: GenerationOptions | dict | None = None,
    ) -> str:
        """
        Generate the HTML body of a lesson section.

        When ``library_id`` is set the model searches that vector store
        through the Responses API ``file_search`` tool.

        Raises:
            EnrichmentError: If the model call fails or returns nothing
        """
        logger.info(
            f"Generating section content for: {lesson_title}"
            f"{' with RAG' if library_id else ''}"
            f"{' with web context' if web_context else ''}"
        )
        opts = merge_options(DEFAULT_GENERATION_OPTIONS, options)

        extra = ""
        if user_context:
            extra += f"\nUser's Additional Context: {user_context}"
        if web_context:
            extra += (
                "\n\nCurrent web research for this section (cite it where relevant):\n"
                f"{web_context}"
            )
        if library_id:
            extra += (
                "\n\nUse the attached files from vector store library as reference "
                "material and use it as relevant."
            )

        prompt = ChatPromptTemplate.from_messages(
            [("system", SECTION_SYSTEM_PROMPT), ("user", SECTION_USER_PROMPT)]
        )
        content = await self._invoke(
            prompt,
            {
                "full_context": full_context,
                "instruction_method": instruction_method,
                "generation_approach": generation_approach,
                "extra_context": extra,
                "lesson_title": lesson_title,
                "lesson_description": lesson_description,
            },
            opts,
            "section content",
            library_id=library_id,
        )
        return strip_code_fences(content)
