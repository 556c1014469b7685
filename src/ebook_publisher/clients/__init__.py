"""Remote store and relationship webhook clients."""

from .webhooks import WebhookLinker
from .wordpress import WordPressClient

__all__ = ["WebhookLinker", "WordPressClient"]
