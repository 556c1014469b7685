"""Tests for configuration validation and preflight checks."""

from unittest.mock import AsyncMock, Mock

import pytest

from ebook_publisher.cancellation import CancellationToken
from ebook_publisher.models import (
    ApiSurfaceCheck,
    ApiSurfaceError,
    ConfigurationError,
    ConnectionCheck,
    ConnectionCheckError,
    CredentialsCheck,
    CredentialsError,
    Outline,
    PublishAborted,
)
from ebook_publisher.preflight import run_preflight, validate_configuration
from ebook_publisher.progress import ProgressTracker
from fixtures.sample_outline import get_sample_outline, get_test_settings


def healthy_wordpress():
    wordpress = Mock()
    wordpress.validate_connection = AsyncMock(return_value=ConnectionCheck(success=True))
    wordpress.check_api_surface = AsyncMock(return_value=ApiSurfaceCheck(available=True))
    wordpress.verify_credentials = AsyncMock(return_value=CredentialsCheck(valid=True))
    return wordpress


class TestValidateConfiguration:
    """Test validate_configuration."""

    def test_valid(self, config):
        validate_configuration(get_sample_outline(method="hybrid"), {}, config)

    def test_empty_outline(self, config):
        """An outline without chapters cannot be published."""
        with pytest.raises(ConfigurationError, match="No outline available"):
            validate_configuration(Outline(title="Empty"), {}, config)

        with pytest.raises(ConfigurationError, match="No outline available"):
            validate_configuration(None, {}, config)

    def test_library_map_required(self, config):
        with pytest.raises(ConfigurationError, match="Knowledge library map is required"):
            validate_configuration(get_sample_outline(), None, config)

    def test_missing_settings_are_all_listed(self):
        """Every missing setting is reported at once."""
        config = get_test_settings(
            wordpress_password=None, openai_primary_key=None, perplexity_primary_key=None
        )

        with pytest.raises(ConfigurationError) as exc_info:
            validate_configuration(get_sample_outline(method="hybrid"), {}, config)

        assert exc_info.value.context["missing"] == [
            "wordpress_password",
            "openai_primary_key",
            "perplexity_primary_key",
        ]

    def test_primary_does_not_need_perplexity(self):
        config = get_test_settings(perplexity_primary_key=None)

        validate_configuration(get_sample_outline(method="primary"), {}, config)

    def test_web_references_without_key_only_warn(self, caplog):
        config = get_test_settings(perplexity_primary_key=None)

        validate_configuration(get_sample_outline(include_web_references=True), {}, config)

        assert "Web references requested" in caplog.text


class TestRunPreflight:
    """Test run_preflight."""

    @pytest.mark.asyncio
    async def test_all_checks_pass(self):
        """Checks run in order and are recorded in the debug state."""
        wordpress = healthy_wordpress()
        tracker = ProgressTracker()

        await run_preflight(wordpress, CancellationToken(), tracker)

        assert set(tracker.state.debug) >= {"connectionTest", "apiCheck", "credentialsCheck"}
        wordpress.verify_credentials.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_connection_failure_stops_checks(self):
        wordpress = healthy_wordpress()
        wordpress.validate_connection.return_value = ConnectionCheck(success=False, error="down")

        with pytest.raises(ConnectionCheckError, match="down"):
            await run_preflight(wordpress, CancellationToken(), ProgressTracker())

        wordpress.check_api_surface.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_api_surface_failure(self):
        wordpress = healthy_wordpress()
        wordpress.check_api_surface.return_value = ApiSurfaceCheck(
            available=False, error="Custom post types not available: book"
        )

        with pytest.raises(ApiSurfaceError, match="book"):
            await run_preflight(wordpress, CancellationToken(), ProgressTracker())

        wordpress.verify_credentials.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_credentials_failure(self):
        wordpress = healthy_wordpress()
        wordpress.verify_credentials.return_value = CredentialsCheck(
            valid=False, error="Invalid username or password"
        )

        with pytest.raises(CredentialsError) as exc_info:
            await run_preflight(wordpress, CancellationToken(), ProgressTracker())

        assert "application password" in exc_info.value.hint

    @pytest.mark.asyncio
    async def test_cancelled_before_checks(self):
        wordpress = healthy_wordpress()
        token = CancellationToken()
        token.cancel()

        with pytest.raises(PublishAborted):
            await run_preflight(wordpress, token, ProgressTracker())

        wordpress.validate_connection.assert_not_called()
