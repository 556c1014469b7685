"""Primary → fallback credential → placeholder wrapper for enrichment calls."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Generic, Literal, TypeVar

from .cancellation import CancellationToken
from .models import PublishAborted

logger = logging.getLogger(__name__)

T = TypeVar("T")

OutcomeSource = Literal["primary", "fallback", "placeholder"]


@dataclass
class FallbackOutcome(Generic[T]):
    """Result of a wrapped enrichment call."""

    value: T | None
    source: OutcomeSource
    errors: list[str] = field(default_factory=list)

    @property
    def used_placeholder(self) -> bool:
        return self.source == "placeholder"


def is_abort(error: BaseException) -> bool:
    """True if ``error`` signals user cancellation rather than a failure."""
    return isinstance(error, (PublishAborted, asyncio.CancelledError))


async def with_fallback(
    call: Callable[[str], Awaitable[T]],
    primary: str,
    fallback: str | None,
    placeholder: Callable[[], T | None],
    token: CancellationToken,
    label: str,
) -> FallbackOutcome[T]:
    """Run ``call`` with the primary credential, then the fallback, then a placeholder.

    Args:
        call: Enrichment call taking a credential
        primary: Primary credential
        fallback: Optional fallback credential
        placeholder: Factory for the value used when every attempt fails
        token: Run cancellation token, checked before each attempt
        label: Description used in log messages

    Returns:
        FallbackOutcome describing which attempt produced the value

    Raises:
        PublishAborted: If the run is cancelled; never retried or replaced
    """
    errors: list[str] = []

    token.raise_if_cancelled()
    try:
        value = await token.run(call(primary))
        return FallbackOutcome(value=value, source="primary")
    except Exception as e:
        if is_abort(e):
            raise
        errors.append(str(e))
        logger.error(f"Error generating {label} with primary key: {e}")

    if fallback:
        token.raise_if_cancelled()
        logger.info(f"Using fallback API key for {label}")
        try:
            value = await token.run(call(fallback))
            return FallbackOutcome(value=value, source="fallback", errors=errors)
        except Exception as e:
            if is_abort(e):
                raise
            errors.append(str(e))
            logger.error(f"Fallback also failed for {label}: {e}")

    return FallbackOutcome(value=placeholder(), source="placeholder", errors=errors)
