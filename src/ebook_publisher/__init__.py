"""Publish ebook outlines to WordPress with AI-generated content."""

from .cancellation import CancellationToken
from .models import NodeKey, Outline, PublishAborted, PublishError, PublishResult
from .progress import ProgressTracker
from .publisher import Publisher

__all__ = [
    "CancellationToken",
    "NodeKey",
    "Outline",
    "ProgressTracker",
    "PublishAborted",
    "PublishError",
    "PublishResult",
    "Publisher",
]
