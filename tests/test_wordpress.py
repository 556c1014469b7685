"""Tests for the WordPress REST client."""

import json

import httpx
import pytest
from tenacity import wait_none

from ebook_publisher.clients import wordpress
from ebook_publisher.clients.wordpress import WordPressClient
from ebook_publisher.models import ConfigurationError, RemoteObjectError, RemoteObjectKind
from ebook_publisher.utils.retry import create_async_retrying


def make_client(handler, max_retries=0):
    return WordPressClient(
        url="https://books.example.com/",
        username="editor",
        password="app-password",
        max_retries=max_retries,
        transport=httpx.MockTransport(handler),
    )


class TestWordPressClient:
    """Test WordPressClient."""

    def test_missing_credentials(self, isolated_settings, monkeypatch):
        """Missing credentials raise a configuration error."""
        monkeypatch.setattr(isolated_settings, "wordpress_url", None)

        with pytest.raises(ConfigurationError):
            WordPressClient(username="editor", password="secret")

    @pytest.mark.asyncio
    async def test_create_root_object(self):
        """The book post is created published with the given content."""
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(201, json={"id": 42, "link": "https://books.example.com/book/42"})

        async with make_client(handler) as client:
            remote = await client.create_root_object("My Book", "<p>Preface</p>")

        assert remote.id == 42
        assert remote.url == "https://books.example.com/book/42"
        assert remote.kind is RemoteObjectKind.BOOK
        assert str(requests[0].url) == "https://books.example.com/wp-json/wp/v2/book"
        assert json.loads(requests[0].content) == {
            "title": "My Book",
            "content": "<p>Preface</p>",
            "status": "publish",
        }
        assert requests[0].headers["authorization"].startswith("Basic ")

    @pytest.mark.asyncio
    async def test_create_child_sets_parent_field(self):
        """Children carry their parent id in the ACF relationship field."""
        payloads = []

        def handler(request):
            payloads.append((request.url.path, json.loads(request.content)))
            return httpx.Response(201, json={"id": 7})

        async with make_client(handler) as client:
            await client.create_child_object(RemoteObjectKind.CHAPTER, "Ch", "<p/>", 42)
            await client.create_child_object(RemoteObjectKind.TOPIC, "T", "<p/>", "7")
            await client.create_child_object(RemoteObjectKind.SECTION, "S", "<p/>", 7)

        assert [path for path, _ in payloads] == [
            "/wp-json/wp/v2/chapter",
            "/wp-json/wp/v2/chaptertopic",
            "/wp-json/wp/v2/topicsection",
        ]
        assert payloads[0][1]["acf"] == {"chapter_parent_book": 42}
        assert payloads[1][1]["acf"] == {"topic_parent_chapter": 7}
        assert payloads[2][1]["acf"] == {"section_parent_topic": 7}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("parent_id", [0, -3, None, "abc"])
    async def test_invalid_parent_id(self, parent_id):
        """Invalid parent ids are rejected without a request."""

        def handler(request):
            raise AssertionError("no request expected")

        async with make_client(handler) as client:
            with pytest.raises(RemoteObjectError, match="Invalid parent id"):
                await client.create_child_object(RemoteObjectKind.CHAPTER, "Ch", "", parent_id)

    @pytest.mark.asyncio
    async def test_missing_id_in_response(self):
        """A success response without an id is an error."""
        async with make_client(lambda request: httpx.Response(201, json={})) as client:
            with pytest.raises(RemoteObjectError, match="no valid ID"):
                await client.create_root_object("My Book", "")

    @pytest.mark.asyncio
    async def test_non_json_success_response(self):
        """A 2xx body that is not JSON is a creation error, not a crash."""
        notice = "<br><b>Notice</b>: Undefined index in functions.php<br>{\"id\": 7}"

        async with make_client(lambda request: httpx.Response(201, text=notice)) as client:
            with pytest.raises(RemoteObjectError, match="non-JSON response") as exc_info:
                await client.create_child_object(RemoteObjectKind.CHAPTER, "Ch", "", 5)

        assert exc_info.value.status_code == 201
        assert exc_info.value.context["body"].startswith("<br><b>Notice</b>")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("data", [["not", "an", "object"], {"id": "abc"}, {"id": 0}])
    async def test_invalid_id_in_response(self, data):
        async with make_client(lambda request: httpx.Response(201, json=data)) as client:
            with pytest.raises(RemoteObjectError, match="no valid ID"):
                await client.create_child_object(RemoteObjectKind.SECTION, "L", "", 5)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status, fragment",
        [
            (401, "Authentication failed"),
            (403, "Permission denied"),
            (404, "custom post type may not exist"),
            (500, "Internal server error"),
        ],
    )
    async def test_creation_errors_are_described(self, status, fragment):
        """Status codes map to actionable messages and are never retried."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(status)

        async with make_client(handler, max_retries=3) as client:
            with pytest.raises(RemoteObjectError) as exc_info:
                await client.create_child_object(RemoteObjectKind.TOPIC, "T", "", 9)

        assert fragment in str(exc_info.value)
        assert exc_info.value.status_code == status
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_wordpress_error_message_is_used(self):
        """WordPress error bodies surface their message."""

        def handler(request):
            return httpx.Response(400, json={"code": "rest_invalid_param", "message": "Bad title"})

        async with make_client(handler) as client:
            with pytest.raises(RemoteObjectError, match="Bad title"):
                await client.create_root_object("", "")

    @pytest.mark.asyncio
    async def test_validate_connection(self):
        """A reachable REST root validates the connection."""
        async with make_client(lambda request: httpx.Response(200, json={})) as client:
            check = await client.validate_connection()

        assert check.success is True

    @pytest.mark.asyncio
    async def test_validate_connection_network_error(self):
        """Network errors produce a connection failure, not an exception."""

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with make_client(handler) as client:
            check = await client.validate_connection()

        assert check.success is False
        assert "Cannot connect" in check.error

    @pytest.mark.asyncio
    async def test_get_is_retried(self, monkeypatch):
        """Idempotent GETs are retried on gateway errors."""
        retrying = create_async_retrying(max_attempts=2, jitter=False)
        retrying.wait = wait_none()
        monkeypatch.setattr(wordpress, "create_async_retrying", lambda **kwargs: retrying)
        responses = iter([httpx.Response(503), httpx.Response(200, json={})])

        async with make_client(lambda request: next(responses), max_retries=1) as client:
            check = await client.validate_connection()

        assert check.success is True

    @pytest.mark.asyncio
    async def test_check_api_surface_reports_missing_types(self):
        """Missing custom post types make the API surface unavailable."""

        def handler(request):
            if request.url.path.endswith("/types/chaptertopic"):
                return httpx.Response(404)
            return httpx.Response(200, json={})

        async with make_client(handler) as client:
            check = await client.check_api_surface()

        assert check.available is False
        assert check.error == "Custom post types not available: chaptertopic"
        assert check.details["postTypes"]["book"] == {"available": True}

    @pytest.mark.asyncio
    async def test_check_api_surface_without_credentials(self):
        """The REST root check does not send credentials."""
        seen = []

        def handler(request):
            seen.append((request.url.path, "authorization" in request.headers))
            return httpx.Response(200, json={})

        async with make_client(handler) as client:
            check = await client.check_api_surface()

        assert check.available is True
        assert seen[0] == ("/wp-json", False)
        assert all(has_auth for _, has_auth in seen[1:])

    @pytest.mark.asyncio
    async def test_verify_credentials(self):
        """Valid credentials return the user."""
        user = {"id": 3, "name": "Editor"}
        async with make_client(lambda request: httpx.Response(200, json=user)) as client:
            check = await client.verify_credentials()

        assert check.valid is True
        assert check.details == {"user": user}

    @pytest.mark.asyncio
    async def test_verify_credentials_rejected(self):
        """A 401 marks the credentials invalid."""
        async with make_client(lambda request: httpx.Response(401)) as client:
            check = await client.verify_credentials()

        assert check.valid is False
        assert check.error == "Invalid username or password"

    @pytest.mark.asyncio
    async def test_verify_credentials_unexpected_body(self):
        """A users endpoint answering with HTML leaves the credentials unverified."""
        async with make_client(
            lambda request: httpx.Response(200, text="<html>Maintenance</html>")
        ) as client:
            check = await client.verify_credentials()

        assert check.valid is False
        assert "JSON user object" in check.error
        assert check.details["status"] == 200
