"""Chat model factory for the enrichment providers."""

import logging
from typing import Any

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_openai import ChatOpenAI
from openai import AsyncOpenAI

from ..config import settings
from ..options import GenerationOptions
from .langfuse_tracer import get_langchain_callback_handler

logger = logging.getLogger(__name__)


def _callbacks(trace: Any | None) -> list | None:
    handler = get_langchain_callback_handler(trace)
    return [handler] if handler else None


def create_openai_llm(
    api_key: str,
    options: GenerationOptions,
    trace: Any | None = None,
    use_responses_api: bool = False,
) -> BaseChatModel:
    """Create an OpenAI chat model for one credential.

    Retries are disabled at the client level: credential fallback is handled
    by ``fallback.with_fallback`` so a failing key is abandoned quickly.

    Args:
        api_key: OpenAI API key (primary or fallback)
        options: Merged generation options
        trace: Optional Langfuse trace for callbacks
        use_responses_api: Required for built-in tools such as file_search
    """
    logger.debug(f"Creating OpenAI chat model: {options.model}")
    return ChatOpenAI(
        model=options.model,
        temperature=options.temperature,
        max_tokens=options.max_tokens,
        api_key=api_key,
        base_url=settings.openai_base_url,
        timeout=settings.request_timeout_seconds,
        max_retries=0,
        use_responses_api=use_responses_api,
        callbacks=_callbacks(trace),
    )


def create_rag_llm(
    api_key: str,
    options: GenerationOptions,
    library_id: str,
    trace: Any | None = None,
) -> Any:
    """Create an OpenAI chat model grounded on a vector store via file_search."""
    logger.info(f"Using RAG with vector store: {library_id}")
    llm = create_openai_llm(api_key, options, trace=trace, use_responses_api=True)
    return llm.bind_tools([{"type": "file_search", "vector_store_ids": [library_id]}])


def create_perplexity_client(api_key: str) -> AsyncOpenAI:
    """Create an async client for Perplexity's OpenAI-compatible endpoint.

    The raw SDK is used rather than a chat model so the response extras
    (``search_results``) stay reachable.
    """
    return AsyncOpenAI(
        api_key=api_key,
        base_url=settings.perplexity_base_url,
        timeout=settings.request_timeout_seconds,
        max_retries=0,
    )
