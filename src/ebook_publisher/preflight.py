"""Configuration and remote checks run before anything is created."""

import logging
from collections.abc import Mapping

from .cancellation import CancellationToken
from .clients.wordpress import WordPressClient
from .config import Settings, settings
from .models import (
    ApiSurfaceError,
    ConfigurationError,
    ConnectionCheckError,
    ContentGenerationMethod,
    CredentialsError,
    Outline,
    PublishStep,
)
from .progress import ProgressTracker

logger = logging.getLogger(__name__)


def validate_configuration(
    outline: Outline | None,
    library_map: Mapping | None,
    config: Settings | None = None,
) -> None:
    """Check a run has everything it needs before any remote call.

    Raises:
        ConfigurationError: Naming every missing setting
    """
    config = config or settings

    if outline is None or not outline.chapters:
        raise ConfigurationError("No outline available for publishing", node="configuration")

    if library_map is None:
        raise ConfigurationError("Knowledge library map is required", node="configuration")

    missing = [
        name
        for name in ("wordpress_url", "wordpress_username", "wordpress_password")
        if not getattr(config, name)
    ]

    if not config.openai_primary_key:
        missing.append("openai_primary_key")

    if (
        outline.content_generation_method is ContentGenerationMethod.HYBRID
        and not config.perplexity_primary_key
    ):
        missing.append("perplexity_primary_key")

    if missing:
        raise ConfigurationError(
            f"Missing required settings for {outline.content_generation_method.value} "
            f"publishing: {', '.join(missing)}",
            node="configuration",
            context={"missing": missing},
        )

    if outline.include_web_references and not (
        config.perplexity_primary_key or config.perplexity_fallback_key
    ):
        logger.warning("Web references requested but no Perplexity key is set; skipping them")


async def run_preflight(
    wordpress: WordPressClient,
    token: CancellationToken,
    tracker: ProgressTracker,
) -> None:
    """Validate the connection, REST API surface and credentials in order.

    Raises:
        ConnectionCheckError: If the site cannot be reached
        ApiSurfaceError: If the REST API or custom post types are missing
        CredentialsError: If the credentials are rejected
        PublishAborted: If the run is cancelled between checks
    """
    token.raise_if_cancelled()
    tracker.update(
        step=PublishStep.PREPARING,
        message="Validating WordPress connection...",
        current_item="Connection check",
    )
    connection = await token.run(wordpress.validate_connection())
    tracker.set_debug(connectionTest=connection.model_dump())
    if not connection.success:
        raise ConnectionCheckError(
            f"WordPress connection failed: {connection.error}",
            context=connection.details,
        )

    token.raise_if_cancelled()
    tracker.update(
        message="Checking WordPress REST API availability...",
        current_item="API check",
    )
    api = await token.run(wordpress.check_api_surface())
    tracker.set_debug(apiCheck=api.model_dump())
    if not api.available:
        raise ApiSurfaceError(
            f"WordPress REST API not available: {api.error}",
            context=api.details,
        )

    token.raise_if_cancelled()
    tracker.update(message="Verifying WordPress credentials...", current_item="Credentials check")
    credentials = await token.run(wordpress.verify_credentials())
    tracker.set_debug(credentialsCheck=credentials.model_dump())
    if not credentials.valid:
        raise CredentialsError(
            f"WordPress authentication failed: {credentials.error}",
            context=credentials.details,
        )

    logger.info("✅ WordPress preflight checks passed")
