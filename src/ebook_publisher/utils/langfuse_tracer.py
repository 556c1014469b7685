"""Langfuse tracing utilities."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from langfuse import Langfuse
from langfuse.callback import CallbackHandler as LangfuseCallbackHandler

from ..config import settings

logger = logging.getLogger(__name__)

_client: Langfuse | None = None


def is_langfuse_enabled() -> bool:
    """Check if Langfuse is enabled and configured."""
    return (
        settings.langfuse_enabled
        and bool(settings.langfuse_public_key)
        and bool(settings.langfuse_secret_key)
    )


def get_langfuse_client() -> Langfuse | None:
    """Get the shared Langfuse client, created on first use."""
    global _client

    if not is_langfuse_enabled():
        return None

    if _client is None:
        try:
            _client = Langfuse(
                public_key=settings.langfuse_public_key,
                secret_key=settings.langfuse_secret_key,
                host=settings.langfuse_host,
            )
        except Exception as e:
            logger.warning("Failed to create Langfuse client: %s", e)
            return None
    return _client


def get_langchain_callback_handler(trace: Any | None = None) -> LangfuseCallbackHandler | None:
    """Get a LangChain callback handler, nested under ``trace`` when given."""
    if not is_langfuse_enabled():
        return None

    try:
        if trace is not None:
            return trace.get_langchain_handler()
        return LangfuseCallbackHandler(
            public_key=settings.langfuse_public_key,
            secret_key=settings.langfuse_secret_key,
            host=settings.langfuse_host,
        )
    except Exception as e:
        logger.warning("Failed to create Langfuse callback: %s", e)
        return None


@contextmanager
def trace_publish(
    run_id: str,
    title: str,
    metadata: dict[str, Any] | None = None,
) -> Iterator[Any | None]:
    """Open a Langfuse trace for one publish run."""
    client = get_langfuse_client()
    if client is None:
        yield None
        return

    try:
        trace = client.trace(
            name="publish_ebook",
            session_id=run_id,
            metadata={"title": title, **(metadata or {})},
        )
    except Exception as e:
        logger.warning("Langfuse trace creation failed for run=%s: %s", run_id, e)
        trace = None

    yield trace


def track_error(
    trace: Any | None, error: BaseException, metadata: dict[str, Any] | None = None
) -> None:
    """Record a terminal error on the trace."""
    if not trace:
        return

    try:
        trace.event(
            name="publish_error",
            level="ERROR",
            status_message=str(error),
            metadata={"type": type(error).__name__, **(metadata or {})},
        )
    except Exception as e:
        logger.debug("Langfuse error tracking failed: %s", e)


def flush_langfuse() -> None:
    """Flush pending Langfuse events."""
    if _client is None:
        return

    try:
        _client.flush()
    except Exception as e:
        logger.debug("Langfuse flush failed: %s", e)
