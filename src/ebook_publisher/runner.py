"""Publish runner: wires clients, storage and tracing around a ``Publisher``."""

import asyncio
import logging
import re
import time
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Any, Literal

from .cancellation import CancellationToken
from .chains.content import ContentGenerator
from .chains.web_research import WebResearcher
from .clients.webhooks import WebhookLinker
from .clients.wordpress import WordPressClient
from .config import Settings, ensure_directories, get_config
from .fallback import with_fallback
from .models import (
    ConfigurationError,
    EnrichmentError,
    NodeKey,
    Outline,
    PreflightError,
    ProgressState,
    PublishAborted,
    PublishError,
    RemoteObjectError,
)
from .options import GenerationOptions, SearchOptions
from .preflight import run_preflight, validate_configuration
from .progress import ProgressTracker
from .publisher import Publisher, ordered_keys
from .storage import append_log_entry, save_progress, save_published_structure
from .utils.langfuse_tracer import flush_langfuse, trace_publish, track_error

logger = logging.getLogger(__name__)


def new_run_id(title: str) -> str:
    """Run id from the outline title and the current UTC time."""
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")[:40] or "ebook"
    return f"{slug}-{datetime.now(timezone.utc).strftime('%Y%m%d-%H%M%S')}"


def describe_failure(error: BaseException) -> str:
    """Best-effort hint telling the user what to do about a failed run."""
    if isinstance(error, PublishAborted):
        return (
            "The run was cancelled. Objects created before the cancellation "
            "remain in WordPress."
        )
    if isinstance(error, PreflightError):
        return error.hint
    if isinstance(error, ConfigurationError):
        missing = error.context.get("missing")
        if missing:
            return (
                "Set the missing settings in the environment or .env file: "
                + ", ".join(name.upper() for name in missing)
            )
        return "Check the outline and the publishing configuration."
    if isinstance(error, RemoteObjectError):
        if error.status_code in (401, 403):
            return "Check that the WordPress user may create book, chapter, topic and section posts."
        if error.status_code == 404:
            return "Register the book, chapter, chaptertopic and topicsection custom post types."
        return "The book could not be created in WordPress. Check the site and try again."
    if isinstance(error, PublishError):
        return f"Publishing failed during {error.node}. Check the publish log for details."
    return "Unexpected error. Check the publish log for the traceback."


def progress_saver(run_id: str) -> Callable[[ProgressState], None]:
    """Progress subscriber that writes the snapshot when the step or counter moves.

    Label-only updates are not persisted; every terminal state changes the
    step, so the final snapshot is always written.
    """
    last: tuple[Any, int] | None = None

    def save(state: ProgressState) -> None:
        nonlocal last
        marker = (state.step, state.processed_items)
        if marker == last:
            return
        last = marker
        save_progress(run_id, state)

    return save


def _wordpress_client(config: Settings) -> WordPressClient:
    return WordPressClient(
        url=config.wordpress_url,
        username=config.wordpress_username,
        password=config.wordpress_password,
        timeout=config.request_timeout_seconds,
        max_retries=config.http_max_retries,
    )


async def run_publish_async(
    outline: Outline,
    libraries: Mapping[NodeKey | str, str] | None = None,
    run_id: str | None = None,
    progress_callback: Callable[[ProgressState], Any] | None = None,
    token: CancellationToken | None = None,
    generation_options: GenerationOptions | None = None,
    search_options: SearchOptions | None = None,
    config: Settings | None = None,
) -> dict[str, Any]:
    """Publish an outline to WordPress with audit logging and Langfuse tracing.

    Args:
        outline: Outline to publish
        libraries: Knowledge library assignments
        run_id: Run identifier (generated from the title when omitted)
        progress_callback: Optional callback receiving progress snapshots
        token: Optional cancellation token, lets callers cancel the run
        generation_options: OpenAI option overrides
        search_options: Perplexity option overrides
        config: Settings (defaults to the global settings)

    Returns:
        Dictionary with results and metadata; never raises for publish failures
    """
    start_time = time.time()
    config = config or get_config()
    run_id = run_id or new_run_id(outline.title)
    token = token or CancellationToken()

    ensure_directories(run_id)
    tracker = ProgressTracker(remote_url=config.wordpress_url or "")
    tracker.subscribe(progress_saver(run_id))
    if progress_callback:
        tracker.subscribe(progress_callback)

    chapters, topics, lessons = outline.count_items()
    append_log_entry(
        run_id,
        {
            "action": "publish_started",
            "title": outline.title,
            "method": outline.content_generation_method.value,
            "chapters": chapters,
            "topics": topics,
            "lessons": lessons,
        },
    )

    def failure(error: BaseException, **extra: Any) -> dict[str, Any]:
        return {
            "run_id": run_id,
            "success": False,
            "runtime_sec": time.time() - start_time,
            "error": str(error),
            "hint": describe_failure(error),
            "progress": tracker.snapshot().model_dump(mode="json"),
            **extra,
        }

    try:
        validate_configuration(outline, {} if libraries is None else libraries, config)
    except ConfigurationError as e:
        logger.error(f"Configuration invalid for run {run_id}: {e}")
        tracker.fail(str(e), error=str(e))
        append_log_entry(run_id, {"action": "publish_failed", "error": str(e), "node": e.node})
        return failure(e, failed_node=e.node, context=e.context)

    with trace_publish(
        run_id,
        outline.title,
        metadata={"method": outline.content_generation_method.value, "lessons": lessons},
    ) as trace:
        try:
            async with _wordpress_client(config) as wordpress, WebhookLinker(
                timeout=config.request_timeout_seconds,
                max_retries=config.http_max_retries,
            ) as linker:
                publisher = Publisher(
                    wordpress,
                    linker,
                    content_factory=lambda api_key: ContentGenerator(api_key, trace=trace),
                    config=config,
                    generation_options=generation_options,
                    search_options=search_options,
                    tracker=tracker,
                    token=token,
                    audit=lambda entry: append_log_entry(run_id, entry),
                )
                result = await publisher.publish(outline, libraries)

        except PublishAborted as e:
            flush_langfuse()
            return failure(e, aborted=True)

        except PublishError as e:
            track_error(trace, e, {"node": e.node, "context": e.context, "run_id": run_id})
            flush_langfuse()
            return failure(e, failed_node=e.node, context=e.context)

        except Exception as e:
            track_error(trace, e, {"run_id": run_id})
            flush_langfuse()
            logger.exception(f"Unexpected error in run {run_id}")
            return failure(e)

        save_published_structure(run_id, result.structure)
        flush_langfuse()

        return {
            "run_id": run_id,
            "success": True,
            "runtime_sec": time.time() - start_time,
            "message": tracker.state.message,
            "root_id": result.root_id,
            "root_url": result.root_url,
            "partial": result.partial,
            "failures": [f.model_dump() for f in result.failures],
            "structure": result.structure.model_dump(mode="json"),
            "progress": tracker.snapshot().model_dump(mode="json"),
        }


def run_publish(
    outline: Outline,
    libraries: Mapping[NodeKey | str, str] | None = None,
    run_id: str | None = None,
    progress_callback: Callable[[ProgressState], Any] | None = None,
) -> dict[str, Any]:
    """Synchronous wrapper around ``run_publish_async``."""
    return asyncio.run(
        run_publish_async(outline, libraries, run_id=run_id, progress_callback=progress_callback)
    )


async def run_checks_async(config: Settings | None = None) -> dict[str, Any]:
    """Run the WordPress preflight checks without publishing anything."""
    config = config or get_config()
    tracker = ProgressTracker(remote_url=config.wordpress_url or "")
    token = CancellationToken()

    try:
        async with _wordpress_client(config) as wordpress:
            await run_preflight(wordpress, token, tracker)
    except PublishError as e:
        return {
            "success": False,
            "error": str(e),
            "hint": describe_failure(e),
            "checks": tracker.state.debug,
        }

    return {"success": True, "checks": tracker.state.debug}


ResearchProvider = Literal["openai", "perplexity"]


async def run_research_brief_async(
    niche: str,
    must_haves: str,
    other: str | None = None,
    provider: ResearchProvider = "openai",
    generation_options: GenerationOptions | None = None,
    config: Settings | None = None,
) -> dict[str, Any]:
    """Generate the research brief that seeds an outline.

    OpenAI writes the brief from the model's knowledge; Perplexity grounds
    it in current web results. The fallback key is tried when the primary
    fails; there is no placeholder brief.
    """
    start_time = time.time()
    config = config or get_config()
    if provider == "perplexity":
        primary, fallback = ordered_keys(
            config.perplexity_primary_key, config.perplexity_fallback_key
        )
    else:
        primary, fallback = ordered_keys(config.openai_primary_key, config.openai_fallback_key)

    if not primary:
        error = ConfigurationError(
            f"No {provider} API key configured",
            node="configuration",
            context={"missing": [f"{provider}_primary_key"]},
        )
        return {"success": False, "error": str(error), "hint": describe_failure(error)}

    async def generate(api_key: str) -> str:
        if provider == "perplexity":
            async with WebResearcher(api_key) as researcher:
                return await researcher.generate_research_brief(niche, must_haves, other)
        generator = ContentGenerator(api_key)
        return await generator.generate_research_brief(niche, must_haves, other, generation_options)

    outcome = await with_fallback(
        generate, primary, fallback, lambda: None, CancellationToken(), "research brief"
    )
    if outcome.value is None:
        return {
            "success": False,
            "provider": provider,
            "error": "; ".join(outcome.errors),
            "hint": f"Check the {provider} API keys and try again.",
        }

    return {
        "success": True,
        "provider": provider,
        "source": outcome.source,
        "research_brief": outcome.value,
        "runtime_sec": time.time() - start_time,
    }


async def run_section_context_async(
    book_title: str,
    section_title: str,
    search_options: SearchOptions | None = None,
    config: Settings | None = None,
) -> dict[str, Any]:
    """Fetch current web context for one section, e.g. while editing an outline."""
    config = config or get_config()
    primary, fallback = ordered_keys(config.perplexity_primary_key, config.perplexity_fallback_key)
    if not primary:
        return {
            "success": False,
            "error": "No perplexity API key configured",
            "hint": "Set PERPLEXITY_PRIMARY_KEY in the environment or .env file.",
        }

    async def generate(api_key: str) -> str:
        async with WebResearcher(api_key) as researcher:
            context = await researcher.generate_section_context(
                book_title, section_title, search_options
            )
        if context is None:
            raise EnrichmentError(f"No web context returned for {section_title}")
        return context

    outcome = await with_fallback(
        generate, primary, fallback, lambda: None, CancellationToken(), "section web context"
    )
    if outcome.value is None:
        return {
            "success": False,
            "error": "; ".join(outcome.errors),
            "hint": "Check the Perplexity API keys and try again.",
        }
    return {"success": True, "source": outcome.source, "context": outcome.value}
