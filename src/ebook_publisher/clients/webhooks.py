"""Parent/child relationship webhooks (FlowMattic via proxy)."""

import logging
from datetime import datetime, timezone

import httpx

from ..config import settings
from ..models import LinkResult, RemoteObjectKind
from ..utils.retry import create_async_retrying, request_with_retry

logger = logging.getLogger(__name__)

# Webhook type keyed by the child's post type
WEBHOOK_TYPES = {
    RemoteObjectKind.CHAPTER: "bookToChapter",
    RemoteObjectKind.TOPIC: "chapterToTopic",
    RemoteObjectKind.SECTION: "topicToSection",
}


class WebhookLinker:
    """Links a parent post to a child post through the webhook proxy.

    ``link`` never raises for delivery failures; it always returns a
    ``LinkResult``. Cancellation still propagates.
    """

    def __init__(
        self,
        proxy_url: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.proxy_url = proxy_url or settings.webhook_proxy_url
        self.max_retries = settings.http_max_retries if max_retries is None else max_retries
        if timeout is None:
            timeout = settings.request_timeout_seconds
        self.client = httpx.AsyncClient(
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "WebhookLinker":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    async def call_webhook(self, webhook_type: str, parent_id: int, child_id: int) -> LinkResult:
        logger.info(
            f"🔗 Calling webhook: {webhook_type} with parent: {parent_id}, child: {child_id}"
        )
        payload = {
            "parent_id": int(parent_id),
            "child_id": int(child_id),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "webhook_type": webhook_type,
        }

        try:
            response = await request_with_retry(
                self.client,
                "POST",
                self.proxy_url,
                retrying=create_async_retrying(max_attempts=self.max_retries + 1),
                params={"webhook": webhook_type},
                json=payload,
            )
        except httpx.HTTPError as e:
            logger.error(f"❌ Webhook {webhook_type} error: {e}")
            return LinkResult(success=False, error=str(e) or type(e).__name__)

        if response.is_success:
            try:
                data = response.json()
            except ValueError:
                data = response.text
            logger.info(f"✅ Webhook {webhook_type} successful")
            return LinkResult(success=True, details=data)

        logger.error(f"❌ Webhook {webhook_type} failed: {response.status_code}")
        return LinkResult(
            success=False,
            error=f"Webhook failed with status: {response.status_code}",
            details=response.text,
        )

    async def link(self, kind: RemoteObjectKind, parent_id: int, child_id: int) -> LinkResult:
        """Link ``child_id`` (of post type ``kind``) to ``parent_id``."""
        webhook_type = WEBHOOK_TYPES.get(kind)
        if webhook_type is None:
            return LinkResult(success=False, error=f"No webhook for {kind.value} posts")
        return await self.call_webhook(webhook_type, parent_id, child_id)

    async def link_book_to_chapter(self, book_id: int, chapter_id: int) -> LinkResult:
        return await self.link(RemoteObjectKind.CHAPTER, book_id, chapter_id)

    async def link_chapter_to_topic(self, chapter_id: int, topic_id: int) -> LinkResult:
        return await self.link(RemoteObjectKind.TOPIC, chapter_id, topic_id)

    async def link_topic_to_section(self, topic_id: int, section_id: int) -> LinkResult:
        return await self.link(RemoteObjectKind.SECTION, topic_id, section_id)
