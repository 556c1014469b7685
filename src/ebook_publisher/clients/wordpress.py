"""WordPress REST integration for the book/chapter/topic/section post types.

Each tree level is a custom post type registered on the site (Secure Custom
Posts + ACF). Children carry their parent id in an ACF relationship field;
the cross-linking webhooks in ``clients.webhooks`` complete the relationship.

Docs: https://developer.wordpress.org/rest-api/
"""

import logging
from typing import Any

import httpx

from ..config import settings
from ..models import (
    ApiSurfaceCheck,
    ConfigurationError,
    ConnectionCheck,
    CredentialsCheck,
    RemoteObject,
    RemoteObjectError,
    RemoteObjectKind,
)
from ..utils.retry import create_async_retrying, request_with_retry

logger = logging.getLogger(__name__)


class WordPressClient:
    """Async WordPress REST client for the ebook custom post types."""

    API_ROOT = "/wp-json"
    POST_TYPES_ENDPOINT = "/wp-json/wp/v2/types"
    USERS_ME_ENDPOINT = "/wp-json/wp/v2/users/me"

    CUSTOM_POST_TYPES = [kind.value for kind in RemoteObjectKind]

    # ACF relationship field linking a child post to its parent
    PARENT_FIELDS = {
        RemoteObjectKind.CHAPTER: "chapter_parent_book",
        RemoteObjectKind.TOPIC: "topic_parent_chapter",
        RemoteObjectKind.SECTION: "section_parent_topic",
    }

    def __init__(
        self,
        url: str | None = None,
        username: str | None = None,
        password: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the WordPress client.

        Args:
            url: Site URL (falls back to settings.wordpress_url)
            username: WordPress username (falls back to settings)
            password: Application password (falls back to settings)
            timeout: Per-request timeout in seconds, None for no timeout
            max_retries: Retries for idempotent GETs (default from settings)
            transport: Optional httpx transport, used by tests
        """
        url = url or settings.wordpress_url
        username = username or settings.wordpress_username
        password = password or settings.wordpress_password

        if not url or not username or not password:
            raise ConfigurationError(
                "WordPress credentials are not configured. Set WORDPRESS_URL, "
                "WORDPRESS_USERNAME and WORDPRESS_PASSWORD.",
                node="configuration",
            )

        self.url = url.rstrip("/")
        self.username = username
        self.max_retries = settings.http_max_retries if max_retries is None else max_retries
        if timeout is None:
            timeout = settings.request_timeout_seconds

        logger.info(f"Initializing WordPress client for URL: {self.url}")

        self.client = httpx.AsyncClient(
            auth=(username, password),
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
                "User-Agent": settings.user_agent,
            },
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "WordPressClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    def parse_error(self, error: Exception, operation: str) -> str:
        """Turn an httpx failure into an actionable message."""
        response = getattr(error, "response", None)
        if response is None:
            if isinstance(error, httpx.TimeoutException):
                return (
                    f"Connection timeout to {self.url}. The WordPress site may be "
                    "slow or unreachable."
                )
            if isinstance(error, httpx.ConnectError):
                return (
                    f"Network Error: Cannot connect to {self.url}. The site may be "
                    "down, blocked by a firewall, or have SSL/TLS certificate issues."
                )
            return f"Network connection failed to {self.url}: {error}"

        return self.describe_status(response, operation)

    def describe_status(self, response: httpx.Response, operation: str) -> str:
        status = response.status_code
        if status == 401:
            return f"Authentication failed: Invalid username or password for {self.url}"
        if status == 403:
            return (
                f"Permission denied: User doesn't have sufficient permissions on {self.url}"
            )
        if status == 404:
            return (
                f"Endpoint not found during {operation}: the custom post type may not "
                f"exist on {self.url}. Please ensure the custom post types are "
                "properly registered."
            )
        if status == 500:
            return (
                f"WordPress server error: Internal server error on {self.url}. "
                "Check WordPress error logs."
            )

        try:
            data = response.json()
        except ValueError:
            data = {}
        if isinstance(data, dict):
            wp_error = data.get("message") or data.get("error") or data.get("code")
            if wp_error:
                return str(wp_error)
        return f"WordPress API error ({status}): {response.reason_phrase}"

    async def _get(self, path: str, **kwargs) -> httpx.Response:
        retrying = create_async_retrying(max_attempts=self.max_retries + 1)
        response = await request_with_retry(
            self.client, "GET", f"{self.url}{path}", retrying=retrying, **kwargs
        )
        response.raise_for_status()
        return response

    async def validate_connection(self) -> ConnectionCheck:
        """Check the site answers authenticated requests on the REST root."""
        logger.info("Validating WordPress connection...")
        try:
            await self._get(self.API_ROOT)
            logger.info("WordPress connection validated successfully")
            return ConnectionCheck(success=True)
        except httpx.HTTPError as e:
            message = self.parse_error(e, "connection validation")
            logger.error(f"WordPress connection failed: {message}")
            return ConnectionCheck(
                success=False,
                error=message,
                details={
                    "originalError": str(e),
                    "url": f"{self.url}{self.API_ROOT}",
                    "status": getattr(getattr(e, "response", None), "status_code", None),
                },
            )

    async def validate_post_types(self) -> dict[str, dict[str, Any]]:
        """Check that each custom post type is registered."""
        results: dict[str, dict[str, Any]] = {}
        for post_type in self.CUSTOM_POST_TYPES:
            try:
                await self._get(f"{self.POST_TYPES_ENDPOINT}/{post_type}")
                results[post_type] = {"available": True}
            except httpx.HTTPError as e:
                message = self.parse_error(e, f"{post_type} custom post type check")
                logger.warning(f"Custom post type '{post_type}' not found: {message}")
                results[post_type] = {"available": False, "error": message}
        return results

    async def check_api_surface(self) -> ApiSurfaceCheck:
        """Check the public REST API and the custom post types are present."""
        logger.info("Checking WordPress REST API availability...")
        try:
            # The REST root is public; checked without credentials.
            await self._get(self.API_ROOT, auth=None)
        except httpx.HTTPError as e:
            message = self.parse_error(e, "REST API availability check")
            return ApiSurfaceCheck(
                available=False,
                error=message,
                details={"originalError": str(e), "url": f"{self.url}{self.API_ROOT}"},
            )

        post_types = await self.validate_post_types()
        missing = [name for name, result in post_types.items() if not result["available"]]
        if missing:
            return ApiSurfaceCheck(
                available=False,
                error=f"Custom post types not available: {', '.join(missing)}",
                details={"postTypes": post_types},
            )

        logger.info("WordPress REST API is available")
        return ApiSurfaceCheck(available=True, details={"postTypes": post_types})

    async def verify_credentials(self) -> CredentialsCheck:
        """Check the configured user can authenticate."""
        logger.info("Verifying WordPress user credentials...")
        try:
            response = await self._get(self.USERS_ME_ENDPOINT)
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 401:
                return CredentialsCheck(valid=False, error="Invalid username or password")
            return CredentialsCheck(
                valid=False,
                error=self.parse_error(e, "credentials verification"),
                details={"status": e.response.status_code},
            )
        except httpx.HTTPError as e:
            return CredentialsCheck(
                valid=False,
                error=self.parse_error(e, "credentials verification"),
                details={"originalError": str(e)},
            )

        try:
            user = response.json()
        except ValueError:
            user = None
        if not isinstance(user, dict):
            return CredentialsCheck(
                valid=False,
                error=(
                    "Unexpected response from the users endpoint: WordPress did not "
                    "return a JSON user object"
                ),
                details={"status": response.status_code, "body": response.text[:200]},
            )

        logger.info("WordPress credentials verified successfully")
        return CredentialsCheck(
            valid=True,
            details={"user": {"id": user.get("id"), "name": user.get("name")}},
        )

    async def create_root_object(self, title: str, body_html: str) -> RemoteObject:
        """
        Create the root ``book`` post.

        Args:
            title: Book title
            body_html: Book body (preface, introduction, research brief)

        Returns:
            RemoteObject with the new post id and link

        Raises:
            RemoteObjectError: If the request fails or no id is returned
        """
        payload = {"title": title, "content": body_html, "status": "publish"}
        return await self._create(RemoteObjectKind.BOOK, payload)

    async def create_child_object(
        self,
        kind: RemoteObjectKind,
        title: str,
        body_html: str,
        parent_id: int,
    ) -> RemoteObject:
        """
        Create a chapter, chapter topic or topic section under ``parent_id``.

        Args:
            kind: Post type of the child
            title: Post title
            body_html: Post content
            parent_id: Id of the parent post

        Returns:
            RemoteObject with the new post id and link

        Raises:
            RemoteObjectError: If the parent id is invalid, the request fails,
                or no id is returned
        """
        if kind not in self.PARENT_FIELDS:
            raise RemoteObjectError(f"{kind.value} posts cannot have a parent", node=kind.value)

        try:
            parent = int(parent_id)
        except (TypeError, ValueError):
            parent = 0
        if parent <= 0:
            raise RemoteObjectError(f"Invalid parent id: {parent_id}", node=kind.value)

        payload = {
            "title": title,
            "content": body_html,
            "status": "publish",
            "acf": {self.PARENT_FIELDS[kind]: parent},
        }
        return await self._create(kind, payload)

    async def _create(self, kind: RemoteObjectKind, payload: dict[str, Any]) -> RemoteObject:
        # Creation is not idempotent, so it is never retried.
        endpoint = f"{self.url}/wp-json/wp/v2/{kind.value}"
        logger.debug(
            f"Creating {kind.value}: {payload['title']} "
            f"(content length {len(payload['content'])})"
        )

        try:
            response = await self.client.post(endpoint, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            message = self.parse_error(e, f"{kind.value} creation")
            status = getattr(getattr(e, "response", None), "status_code", None)
            raise RemoteObjectError(
                f"Failed to create {kind.value}: {message}",
                node=kind.value,
                context={"endpoint": endpoint, "title": payload["title"]},
                status_code=status,
            ) from e

        try:
            data = response.json()
        except ValueError as e:
            # PHP notices printed ahead of the JSON body end up here.
            raise RemoteObjectError(
                f"{kind.value} creation returned a non-JSON response from WordPress",
                node=kind.value,
                context={"endpoint": endpoint, "body": response.text[:200]},
                status_code=response.status_code,
            ) from e

        post_id = self._post_id(data)
        if post_id is None:
            raise RemoteObjectError(
                f"{kind.value} created but no valid ID returned from WordPress",
                node=kind.value,
                context={"endpoint": endpoint},
                status_code=response.status_code,
            )

        logger.info(f"✅ {kind.value} created with ID: {post_id}")
        return RemoteObject(id=post_id, url=data.get("link"), kind=kind)

    @staticmethod
    def _post_id(data: Any) -> int | None:
        if not isinstance(data, dict):
            return None
        try:
            post_id = int(data.get("id"))
        except (TypeError, ValueError):
            return None
        return post_id if post_id > 0 else None
