"""Publishing orchestrator: walks the outline and builds the remote tree.

A ``Publisher`` drives one run. It creates the book, then every chapter,
topic and lesson in outline order, linking each child to its parent through
the relationship webhooks and enriching topics and lessons on the way.

Failure policy:
- configuration, preflight and root creation failures are fatal;
- a chapter, topic or lesson whose creation fails is skipped together with
  its subtree and the walk continues;
- link failures and enrichment failures never stop the walk;
- cancellation unwinds everything and is never treated as a node failure.
"""

import asyncio
import logging
import traceback
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Any

import httpx

from .cancellation import CancellationToken
from .chains.content import (
    DEFAULT_GENERATION_APPROACH,
    DEFAULT_INSTRUCTION_METHOD,
    ContentGenerator,
)
from .chains.web_research import WebResearcher, extract_lesson_slice, format_web_references
from .clients.webhooks import WebhookLinker
from .clients.wordpress import WordPressClient
from .config import Settings, settings
from .context import format_context_block, resolve_user_context
from .fallback import FallbackOutcome, with_fallback
from .libraries import LibraryMap, load_library_map, resolve_library
from .models import (
    Chapter,
    ContentGenerationMethod,
    EnrichmentError,
    NodeFailure,
    NodeKey,
    Outline,
    PublishAborted,
    PublishedChapter,
    PublishedLesson,
    PublishedStructure,
    PublishedTopic,
    PublishError,
    PublishResult,
    PublishStep,
    RemoteObject,
    RemoteObjectKind,
    SharedTopicContext,
    Topic,
    WebReferences,
)
from .options import GenerationOptions, SearchOptions
from .preflight import run_preflight, validate_configuration
from .progress import ProgressTracker

logger = logging.getLogger(__name__)

AuditCallback = Callable[[dict[str, Any]], Any]


def topic_placeholder(topic_title: str, chapter_title: str) -> str:
    return (
        f"An introduction to {topic_title}. This topic will help you understand "
        f"important concepts related to {chapter_title}."
    )


def lesson_placeholder(title: str, description: str) -> str:
    return f"<h2>{title}</h2><p>{description}</p><p>Content will be available soon.</p>"


def root_body(outline: Outline) -> str:
    body = f"{outline.preface or ''}{outline.introduction or ''}"
    if outline.research_brief:
        body += f'<div class="research-brief">{outline.research_brief}</div>'
    return body


def lesson_context(outline: Outline, chapter: Chapter, topic: Topic) -> str:
    """Upstream context passed to every lesson of a topic."""
    return "\n".join(
        [
            outline.research_brief,
            f"Chapter: {chapter.title}",
            f"Chapter Description: {chapter.description}",
            f"Topic: {topic.title}",
            f"Topic Objective: {topic.learning_objective}",
        ]
    )


def ordered_keys(primary: str | None, fallback: str | None) -> tuple[str | None, str | None]:
    """Use the fallback key as the first attempt when no primary key is set."""
    if primary:
        return primary, fallback
    return fallback, None


class Publisher:
    """Publishes one outline to WordPress.

    Holds the per-run state: progress tracker, cancellation token, shared
    topic context cache and the list of non-fatal failures. Create a new
    instance for every run.
    """

    def __init__(
        self,
        wordpress: WordPressClient,
        linker: WebhookLinker,
        content_factory: Callable[[str], ContentGenerator] = ContentGenerator,
        research_factory: Callable[[str], WebResearcher] = WebResearcher,
        config: Settings | None = None,
        generation_options: GenerationOptions | None = None,
        search_options: SearchOptions | None = None,
        tracker: ProgressTracker | None = None,
        token: CancellationToken | None = None,
        audit: AuditCallback | None = None,
        preflight: bool = True,
    ):
        self.wordpress = wordpress
        self.linker = linker
        self.content_factory = content_factory
        self.research_factory = research_factory
        self.config = config or settings
        self.generation_options = generation_options
        self.search_options = search_options
        self.tracker = tracker or ProgressTracker(remote_url=self.config.wordpress_url or "")
        self.token = token or CancellationToken()
        self.audit = audit
        self.preflight = preflight

        self.failures: list[NodeFailure] = []
        self._shared_contexts: dict[tuple[int, int], SharedTopicContext | None] = {}
        self._researchers: dict[str, WebResearcher] = {}
        self._started = False

        self.token.on_cancel(self.tracker.mark_aborting)

    def cancel(self) -> bool:
        """Request cancellation; safe to call from any thread."""
        return self.token.cancel()

    async def publish(
        self,
        outline: Outline,
        libraries: Mapping[NodeKey | str, str] | None = None,
    ) -> PublishResult:
        """
        Publish ``outline`` and return the created structure.

        Args:
            outline: Outline to publish; a deep copy is walked
            libraries: Knowledge library assignments (NodeKeys or legacy keys)

        Returns:
            PublishResult with the root object and published structure

        Raises:
            ConfigurationError: Missing credentials or empty outline
            PreflightError: Connection, REST API or credential check failed
            RemoteObjectError: The root object could not be created
            PublishAborted: The run was cancelled
        """
        if self._started:
            raise RuntimeError("Publisher instances are single-use; create one per run")
        self._started = True
        self.token.bind()

        try:
            validate_configuration(
                outline, {} if libraries is None else libraries, self.config
            )
            outline = outline.model_copy(deep=True)
            library_map = load_library_map(libraries)

            if self.preflight:
                await run_preflight(self.wordpress, self.token, self.tracker)

            return await self._walk(outline, library_map)

        except (PublishAborted, asyncio.CancelledError):
            logger.warning("🛑 Publishing was aborted by user")
            self.tracker.abort(
                error="User aborted process",
                abortedAt=datetime.now(timezone.utc).isoformat(),
            )
            self._record({"action": "publish_aborted"})
            raise
        except Exception as e:
            logger.error(f"Error publishing to WordPress: {e}")
            self.tracker.fail(str(e), error=str(e), stack=traceback.format_exc())
            self._record({"action": "publish_failed", "error": str(e), "type": type(e).__name__})
            raise
        finally:
            await self._close_researchers()

    async def _walk(self, outline: Outline, library_map: LibraryMap) -> PublishResult:
        _, topic_count, lesson_count = outline.count_items()
        self.tracker.start(
            outline.total_items(),
            step=PublishStep.BOOK,
            message="Creating book in WordPress...",
            current_item=outline.title,
        )
        self.tracker.set_debug(topicCount=topic_count, lessonCount=lesson_count)

        self.token.raise_if_cancelled()
        logger.info(f"Creating book in WordPress: {outline.title}")
        root = await self.token.run(
            self.wordpress.create_root_object(outline.title, root_body(outline))
        )
        self.tracker.set_debug(bookId=root.id, bookUrl=root.url)
        self._record({"action": "root_created", "id": root.id, "url": root.url})
        self.tracker.advance(
            PublishStep.CHAPTERS,
            outline.title,
            message="Creating chapters and nested content...",
        )

        structure = PublishedStructure(root=root)
        for chapter_index, chapter in enumerate(outline.chapters):
            await self._publish_chapter(outline, library_map, structure, chapter_index, chapter)

        return self._finish(structure)

    async def _publish_chapter(
        self,
        outline: Outline,
        library_map: LibraryMap,
        structure: PublishedStructure,
        chapter_index: int,
        chapter: Chapter,
    ) -> None:
        self.token.raise_if_cancelled()

        key = NodeKey(chapter_index)
        title = f"Chapter {chapter.number}: {chapter.title}"
        self.tracker.update(
            step=PublishStep.CHAPTERS,
            message=f"Creating chapter {chapter_index + 1} of {len(outline.chapters)}...",
            current_item=title,
        )

        user_context = resolve_user_context(outline, chapter_index)
        body = f"<p>{chapter.description}</p>{format_context_block(user_context)}"

        remote = await self._create(key, title, RemoteObjectKind.CHAPTER, body, structure.root.id)
        if remote is None:
            self.tracker.advance(PublishStep.CHAPTERS, title)
            descendants = len(chapter.topics) + sum(len(t.lessons) for t in chapter.topics)
            self.tracker.skip(descendants, f"chapter '{title}' was not created")
            return

        linked = await self._link(key, title, RemoteObjectKind.CHAPTER, structure.root.id, remote.id)
        self.tracker.advance(PublishStep.CHAPTERS, title)

        published = PublishedChapter(
            index=chapter_index,
            title=title,
            remote=remote,
            linked=linked,
            user_context=user_context is not None,
        )
        structure.chapters.append(published)

        for topic_index, topic in enumerate(chapter.topics):
            await self._publish_topic(
                outline, library_map, chapter_index, chapter, published, topic_index, topic
            )

    async def _publish_topic(
        self,
        outline: Outline,
        library_map: LibraryMap,
        chapter_index: int,
        chapter: Chapter,
        published_chapter: PublishedChapter,
        topic_index: int,
        topic: Topic,
    ) -> None:
        self.token.raise_if_cancelled()

        key = NodeKey(chapter_index, topic_index)
        self.tracker.update(
            step=PublishStep.TOPICS,
            message=(
                f"Creating topic {topic_index + 1} of {len(chapter.topics)} "
                f"for chapter {chapter_index + 1}..."
            ),
            current_item=f"Generating content for: {topic.title}",
        )

        shared = None
        if (
            outline.content_generation_method is ContentGenerationMethod.HYBRID
            and topic.lessons
        ):
            shared = await self._shared_context(outline, chapter_index, chapter, topic_index, topic)

        user_context = resolve_user_context(outline, chapter_index, topic_index)
        lesson_stubs = [
            {"title": lesson.title, "description": lesson.description} for lesson in topic.lessons
        ]

        primary, fallback = ordered_keys(
            self.config.openai_primary_key, self.config.openai_fallback_key
        )
        intro = await with_fallback(
            lambda api_key: self.content_factory(api_key).generate_topic_introduction(
                outline.research_brief,
                chapter.title,
                chapter.description,
                topic.title,
                topic.learning_objective,
                lesson_stubs,
                self.generation_options,
                user_context=user_context,
                web_context=shared.content if shared else None,
            ),
            primary,
            fallback,
            lambda: topic_placeholder(topic.title, chapter.title),
            self.token,
            f"topic introduction for {topic.title}",
        )
        if intro.used_placeholder:
            self._fail(key, topic.title, "enrich", "; ".join(intro.errors))

        references = None
        if outline.include_web_references:
            references = await self._references(outline, topic)

        body = (
            f"<p>{topic.learning_objective}</p>"
            f'<div class="topic-introduction">{intro.value}</div>'
            f"{format_context_block(user_context)}"
            f"{format_web_references(references)}"
        )

        remote = await self._create(
            key, topic.title, RemoteObjectKind.TOPIC, body, published_chapter.remote.id
        )
        if remote is None:
            self.tracker.advance(PublishStep.TOPICS, topic.title)
            self.tracker.skip(len(topic.lessons), f"topic '{topic.title}' was not created")
            return

        linked = await self._link(
            key, topic.title, RemoteObjectKind.TOPIC, published_chapter.remote.id, remote.id
        )
        self.tracker.advance(PublishStep.TOPICS, topic.title)

        published = PublishedTopic(
            index=topic_index,
            title=topic.title,
            remote=remote,
            linked=linked,
            introduction_fallback=intro.used_placeholder,
            shared_web_context=shared is not None,
            web_references=bool(references and references.web_sources),
            user_context=user_context is not None,
        )
        published_chapter.topics.append(published)

        full_context = lesson_context(outline, chapter, topic)
        for lesson_index in range(len(topic.lessons)):
            await self._publish_lesson(
                outline,
                library_map,
                full_context,
                shared,
                chapter_index,
                topic_index,
                lesson_index,
                published,
            )

    async def _publish_lesson(
        self,
        outline: Outline,
        library_map: LibraryMap,
        full_context: str,
        shared: SharedTopicContext | None,
        chapter_index: int,
        topic_index: int,
        lesson_index: int,
        published_topic: PublishedTopic,
    ) -> None:
        self.token.raise_if_cancelled()

        topic = outline.chapters[chapter_index].topics[topic_index]
        lesson = topic.lessons[lesson_index]
        key = NodeKey(chapter_index, topic_index, lesson_index)

        library_id = resolve_library(
            library_map,
            chapter_index,
            topic_index,
            lesson_index,
            topic_inheritance=self.config.library_topic_inheritance,
        )
        web_context = extract_lesson_slice(shared, lesson.title)
        user_context = resolve_user_context(outline, chapter_index, topic_index, lesson_index)

        self.tracker.update(
            step=PublishStep.LESSONS,
            message=(
                f"Creating lesson {lesson_index + 1} of {len(topic.lessons)} "
                f"for topic {topic_index + 1}..."
            ),
            current_item=(
                f"Generating content for: {lesson.title}{' (with RAG)' if library_id else ''}"
            ),
        )

        primary, fallback = ordered_keys(
            self.config.openai_primary_key, self.config.openai_fallback_key
        )
        content = await with_fallback(
            lambda api_key: self.content_factory(api_key).generate_section_content(
                full_context,
                lesson.title,
                lesson.description,
                DEFAULT_INSTRUCTION_METHOD,
                DEFAULT_GENERATION_APPROACH,
                user_context,
                library_id,
                web_context,
                self.generation_options,
            ),
            primary,
            fallback,
            lambda: lesson_placeholder(lesson.title, lesson.description),
            self.token,
            f"section content for {lesson.title}",
        )
        if content.used_placeholder:
            self._fail(key, lesson.title, "enrich", "; ".join(content.errors))

        body = (
            f'<div class="lesson-description">{lesson.description}</div>'
            f'<div class="lesson-content">{content.value}</div>'
            f"{format_context_block(user_context)}"
        )

        remote = await self._create(
            key, lesson.title, RemoteObjectKind.SECTION, body, published_topic.remote.id
        )
        if remote is None:
            self.tracker.advance(PublishStep.LESSONS, lesson.title)
            return

        linked = await self._link(
            key, lesson.title, RemoteObjectKind.SECTION, published_topic.remote.id, remote.id
        )
        self.tracker.advance(PublishStep.LESSONS, lesson.title)

        published = PublishedLesson(
            index=lesson_index,
            title=lesson.title,
            remote=remote,
            linked=linked,
            library_id=library_id,
            used_rag=library_id is not None,
            used_web_context=web_context is not None,
            has_user_context=user_context is not None,
            content_fallback=content.used_placeholder,
        )
        published_topic.lessons.append(published)
        self.tracker.append_debug(
            "lessonFlags",
            {
                "key": str(key),
                "usedRAG": published.used_rag,
                "usedWebContext": published.used_web_context,
                "hasUserContext": published.has_user_context,
            },
        )

    async def _shared_context(
        self,
        outline: Outline,
        chapter_index: int,
        chapter: Chapter,
        topic_index: int,
        topic: Topic,
    ) -> SharedTopicContext | None:
        """Shared web context for a topic, fetched at most once per run."""
        cache_key = (chapter_index, topic_index)
        if cache_key in self._shared_contexts:
            return self._shared_contexts[cache_key]

        primary, fallback = ordered_keys(
            self.config.perplexity_primary_key, self.config.perplexity_fallback_key
        )
        if not primary:
            self._shared_contexts[cache_key] = None
            return None

        stubs = [
            {"title": lesson.title, "description": lesson.description} for lesson in topic.lessons
        ]

        async def generate(api_key: str) -> SharedTopicContext:
            context = await self._researcher(api_key).generate_shared_topic_web_context(
                outline.title, chapter.title, topic.title, stubs, self.search_options
            )
            if context is None:
                raise EnrichmentError(f"No shared web context for {topic.title}")
            return context

        outcome: FallbackOutcome[SharedTopicContext] = await with_fallback(
            generate,
            primary,
            fallback,
            lambda: None,
            self.token,
            f"shared web context for {topic.title}",
        )
        if outcome.value is None:
            logger.warning(f"Proceeding without shared web context for topic: {topic.title}")

        self._shared_contexts[cache_key] = outcome.value
        return outcome.value

    async def _references(self, outline: Outline, topic: Topic) -> WebReferences | None:
        """Web references for a topic; failures are absorbed."""
        primary, fallback = ordered_keys(
            self.config.perplexity_primary_key, self.config.perplexity_fallback_key
        )
        if not primary:
            return None

        async def generate(api_key: str) -> WebReferences:
            references = await self._researcher(api_key).generate_topic_references(
                outline.title, topic.title, self.search_options
            )
            if references is None:
                raise EnrichmentError(f"No web references for {topic.title}")
            return references

        outcome = await with_fallback(
            generate, primary, fallback, lambda: None, self.token, f"web references for {topic.title}"
        )
        return outcome.value

    def _researcher(self, api_key: str) -> WebResearcher:
        """Research client for ``api_key``, shared by every topic of the run."""
        if api_key not in self._researchers:
            self._researchers[api_key] = self.research_factory(api_key)
        return self._researchers[api_key]

    async def _close_researchers(self) -> None:
        researchers = list(self._researchers.values())
        self._researchers.clear()
        for researcher in researchers:
            try:
                await researcher.aclose()
            except Exception as e:
                logger.warning(f"Failed to close Perplexity client: {e}")

    async def _create(
        self,
        key: NodeKey,
        title: str,
        kind: RemoteObjectKind,
        body: str,
        parent_id: int,
    ) -> RemoteObject | None:
        """Create a child object; None (and a recorded failure) if it fails."""
        self.token.raise_if_cancelled()
        try:
            remote = await self.token.run(
                self.wordpress.create_child_object(kind, title, body, parent_id)
            )
        except (PublishError, httpx.HTTPError) as e:
            logger.error(f"Failed to create {kind.value} '{title}', skipping: {e}")
            self._fail(key, title, "create", str(e))
            return None

        self._record({"action": "node_created", "key": str(key), "kind": kind.value, "id": remote.id})
        return remote

    async def _link(
        self,
        key: NodeKey,
        title: str,
        kind: RemoteObjectKind,
        parent_id: int,
        child_id: int,
    ) -> bool:
        self.token.raise_if_cancelled()
        result = await self.token.run(self.linker.link(kind, parent_id, child_id))
        if not result.success:
            logger.warning(f"⚠️ Linking {kind.value} '{title}' failed: {result.error}")
            self._fail(key, title, "link", result.error or "link failed")
        return result.success

    def _fail(self, key: NodeKey, title: str, stage: str, error: str) -> None:
        failure = NodeFailure(key=str(key), title=title, stage=stage, error=error)
        self.failures.append(failure)
        self.tracker.append_debug("failures", failure.model_dump())
        self._record({"action": "node_failed", **failure.model_dump()})

    def _record(self, entry: dict[str, Any]) -> None:
        if self.audit is None:
            return
        try:
            self.audit(entry)
        except Exception as e:
            logger.warning(f"Audit log write failed: {e}")

    def _finish(self, structure: PublishedStructure) -> PublishResult:
        skipped = [f for f in self.failures if f.stage in ("create", "link")]
        placeholders = [f for f in self.failures if f.stage == "enrich"]

        if skipped:
            message = f"Publishing completed with {len(skipped)} skipped or unlinked items"
        elif placeholders:
            message = f"Publishing completed with {len(placeholders)} placeholder items"
        else:
            message = "Publishing completed successfully!"

        self.tracker.set_debug(
            totalCreated=1
            + structure.count_chapters()
            + structure.count_topics()
            + structure.count_lessons(),
            hierarchicalStructure="Book -> Chapters -> Topics -> Sections",
        )
        self.tracker.complete(message)
        logger.info(f"✅ {message} (book ID {structure.root.id})")
        self._record({"action": "publish_completed", "message": message})

        return PublishResult(
            root_id=structure.root.id,
            root_url=structure.root.url,
            structure=structure,
            partial=bool(self.failures),
            failures=list(self.failures),
        )
