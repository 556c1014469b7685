"""Per-call generation options for the enrichment providers.

Both option structs are plain pydantic models whose fields are all optional.
``merge_options`` layers caller overrides on top of defaults field by field,
so a caller can set only ``temperature`` and keep every other default.
"""

from typing import Any, Literal, TypeVar

from pydantic import BaseModel

OptionsT = TypeVar("OptionsT", bound=BaseModel)

SearchRecency = Literal["hour", "day", "week", "month", "year", "daterange"]


class GenerationOptions(BaseModel):
    """OpenAI chat generation options."""

    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None


class SearchOptions(BaseModel):
    """Perplexity Sonar options for web context and references."""

    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    search_recency_filter: SearchRecency | None = None
    search_mode: Literal["web", "academic"] | None = None
    search_context_size: Literal["low", "medium", "high"] | None = None
    search_domain_filter: str | None = None  # Comma separated
    country: str | None = None
    region: str | None = None
    city: str | None = None
    search_after_date_filter: str | None = None
    search_before_date_filter: str | None = None
    last_updated_after_filter: str | None = None
    last_updated_before_filter: str | None = None


DEFAULT_GENERATION_OPTIONS = GenerationOptions(
    model="gpt-4.1-mini-2025-04-14",
    temperature=0.5,
    max_tokens=2000,
)

DEFAULT_SEARCH_OPTIONS = SearchOptions(
    model="sonar",
    max_tokens=1000,
    search_recency_filter="month",
    search_mode="web",
    search_context_size="low",
)

# Research briefs always use these, whatever the caller configured.
RESEARCH_BRIEF_SEARCH_OPTIONS = SearchOptions(
    model="sonar",
    temperature=0.7,
    max_tokens=2000,
    search_recency_filter="month",
    search_mode="web",
)


def merge_options(defaults: OptionsT, overrides: OptionsT | dict | None) -> OptionsT:
    """Return ``defaults`` with every non-None field of ``overrides`` applied."""
    if overrides is None:
        return defaults.model_copy()
    if isinstance(overrides, dict):
        overrides = type(defaults).model_validate(overrides)

    updates = {
        name: value
        for name, value in overrides.model_dump().items()
        if value is not None
    }
    return defaults.model_copy(update=updates)


def build_search_payload(
    options: SearchOptions,
    messages: list[dict[str, str]],
    default_max_tokens: int = 800,
    default_temperature: float = 0.5,
) -> dict[str, Any]:
    """Build a Perplexity chat completion request body from ``options``."""
    payload: dict[str, Any] = {
        "model": options.model or "sonar",
        "messages": messages,
        "max_tokens": options.max_tokens or default_max_tokens,
        "temperature": (
            options.temperature if options.temperature is not None else default_temperature
        ),
    }

    recency = options.search_recency_filter
    if recency and recency != "daterange":
        payload["search_recency_filter"] = recency

    if options.search_mode:
        payload["search_mode"] = options.search_mode

    if options.search_domain_filter and options.search_mode != "academic":
        payload["search_domain_filter"] = [
            domain.strip()
            for domain in options.search_domain_filter.split(",")
            if domain.strip()
        ]

    web_search_options: dict[str, Any] = {}
    if options.search_context_size:
        web_search_options["search_context_size"] = options.search_context_size

    user_location = {
        field: getattr(options, field)
        for field in ("country", "region", "city")
        if getattr(options, field)
    }
    if user_location:
        web_search_options["user_location"] = user_location

    if web_search_options:
        payload["web_search_options"] = web_search_options

    if recency == "daterange":
        for field in (
            "search_after_date_filter",
            "search_before_date_filter",
            "last_updated_after_filter",
            "last_updated_before_filter",
        ):
            value = getattr(options, field)
            if value:
                payload[field] = value

    return payload
