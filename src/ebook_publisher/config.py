"""Configuration management using Pydantic settings."""

import logging
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Credentials are optional at import time so the package can be imported
    (and the API served) without a configured site. Each publish run checks
    the credential classes its generation method needs before touching any
    remote service, see ``preflight.validate_configuration``.
    """

    model_config = {
        "extra": "ignore",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }

    # WordPress (remote object store)
    wordpress_url: str | None = None
    wordpress_username: str | None = None
    wordpress_password: str | None = None  # Application password

    # Relationship webhooks (FlowMattic proxy)
    webhook_proxy_url: str = (
        "https://stalwart-strudel-558d81.netlify.app/.netlify/functions/flowmattic-proxy"
    )

    # Enrichment providers
    openai_primary_key: str | None = None
    openai_fallback_key: str | None = None
    openai_base_url: str = "https://api.openai.com/v1"
    perplexity_primary_key: str | None = None
    perplexity_fallback_key: str | None = None
    perplexity_base_url: str = "https://api.perplexity.ai"

    # Transport settings
    request_timeout_seconds: float | None = None  # No per-call timeout by default
    http_max_retries: int = 2
    http_retry_max_wait: int = 30
    user_agent: str = "EbookGen/1.0"

    # Knowledge libraries
    library_topic_inheritance: bool = False  # Consult topic-level keys too

    # Development settings
    debug: bool = False
    log_level: str = "INFO"
    runs_dir: str = "runs"

    # Langfuse observability settings
    langfuse_enabled: bool = True
    langfuse_public_key: str | None = None
    langfuse_secret_key: str | None = None
    langfuse_host: str = "https://cloud.langfuse.com"


def get_run_paths(run_id: str) -> dict[str, Path]:
    """Get standardized paths for a publish run."""
    base_dir = Path(settings.runs_dir) / run_id

    return {
        "base": base_dir,
        "log": base_dir / "publish_log.jsonl",
        "progress": base_dir / "progress.json",
        "structure": base_dir / "published_structure.json",
    }


def ensure_directories(run_id: str) -> None:
    """Create the directory for a run."""
    get_run_paths(run_id)["base"].mkdir(parents=True, exist_ok=True)


def configure_logging(level: str | None = None) -> None:
    """Configure root logging for CLI and API entry points."""
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# Global settings instance
settings = Settings()


def get_config() -> Settings:
    """Get the global configuration instance."""
    return settings
