"""Pytest configuration for ebook publisher tests."""

import pytest

from ebook_publisher.config import settings
from fixtures.sample_outline import (
    FakeLinker,
    FakeWordPress,
    GeneratorRecorder,
    ResearchRecorder,
    get_sample_outline,
    get_test_settings,
)


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    """Keep run artifacts in tmp_path and tracing off for every test."""
    monkeypatch.setattr(settings, "runs_dir", str(tmp_path / "runs"))
    monkeypatch.setattr(settings, "langfuse_enabled", False)
    monkeypatch.setattr(settings, "http_max_retries", 0)
    return settings


@pytest.fixture
def config():
    return get_test_settings()


@pytest.fixture
def outline():
    return get_sample_outline()


@pytest.fixture
def wordpress():
    return FakeWordPress()


@pytest.fixture
def linker():
    return FakeLinker()


@pytest.fixture
def generators():
    return GeneratorRecorder()


@pytest.fixture
def researchers():
    return ResearchRecorder()
