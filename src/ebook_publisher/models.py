"""Pydantic data models and error taxonomy for the publishing pipeline."""

import re
from enum import Enum
from typing import Any, Literal, NamedTuple

from pydantic import BaseModel, ConfigDict, Field


class PublishError(Exception):
    """Base exception for publishing failures."""

    def __init__(self, message: str, node: str = "publish", context: dict = None):
        super().__init__(message)
        self.node = node
        self.context = context or {}


class ConfigurationError(PublishError):
    """Raised when required credentials or remote settings are missing."""

    pass


class PreflightError(PublishError):
    """Raised when a remote check fails before any content is created."""

    hint = "Check the WordPress site settings and try again."

    def __init__(self, message: str, node: str = "preflight", context: dict = None):
        super().__init__(message, node=node, context=context)


class ConnectionCheckError(PreflightError):
    """Raised when the WordPress site cannot be reached."""

    hint = (
        "The WordPress site could not be reached. Check the site URL, SSL "
        "certificate and any firewall or CORS restrictions."
    )


class ApiSurfaceError(PreflightError):
    """Raised when the WordPress REST API or custom post types are missing."""

    hint = (
        "The WordPress REST API is unavailable or the book, chapter, "
        "chaptertopic and topicsection post types are not registered."
    )


class CredentialsError(PreflightError):
    """Raised when WordPress rejects the configured username/password."""

    hint = (
        "WordPress rejected the credentials. Use an application password for a "
        "user allowed to publish the custom post types."
    )


class RemoteObjectError(PublishError):
    """Raised when creating a remote object fails."""

    def __init__(
        self,
        message: str,
        node: str = "remote_object",
        context: dict = None,
        status_code: int | None = None,
    ):
        super().__init__(message, node=node, context=context)
        self.status_code = status_code


class EnrichmentError(PublishError):
    """Raised when an enrichment provider call fails."""

    pass


class PublishAborted(Exception):
    """Raised when the user cancels a publish run.

    Deliberately not a ``PublishError``: per-node recovery handlers must never
    treat cancellation as an ordinary failure.
    """

    def __init__(self, message: str = "Publishing process aborted by user"):
        super().__init__(message)


class ContentGenerationMethod(str, Enum):
    """How topic and lesson content is enriched."""

    PRIMARY = "primary"  # OpenAI only
    HYBRID = "hybrid"  # Perplexity web context + OpenAI synthesis


class RemoteObjectKind(str, Enum):
    """WordPress custom post types, one per tree level."""

    BOOK = "book"
    CHAPTER = "chapter"
    TOPIC = "chaptertopic"
    SECTION = "topicsection"


class PublishStep(str, Enum):
    """Publish run states as reported to progress subscribers."""

    IDLE = "idle"
    PREPARING = "preparing"
    BOOK = "book"
    CHAPTERS = "chapters"
    TOPICS = "topics"
    LESSONS = "lessons"
    ABORTING = "aborting"
    COMPLETE = "complete"
    ERROR = "error"
    ABORTED = "aborted"


TERMINAL_STEPS = frozenset({PublishStep.COMPLETE, PublishStep.ERROR, PublishStep.ABORTED})


_KEY_PATTERN = re.compile(r"^(chapter|topic|lesson)-(\d+)(?:-(\d+))?(?:-(\d+))?$")


class NodeKey(NamedTuple):
    """Structured address of a node in the outline tree."""

    chapter: int
    topic: int | None = None
    lesson: int | None = None

    @property
    def level(self) -> str:
        if self.lesson is not None:
            return "lesson"
        if self.topic is not None:
            return "topic"
        return "chapter"

    @classmethod
    def parse(cls, key: str) -> "NodeKey":
        """Parse a legacy synthetic key such as ``lesson-0-2-1``."""
        match = _KEY_PATTERN.match(key.strip())
        if not match:
            raise ValueError(f"Invalid node key: {key!r}")

        level, chapter, topic, lesson = match.groups()
        depth = sum(p is not None for p in (topic, lesson))
        if depth != {"chapter": 0, "topic": 1, "lesson": 2}[level]:
            raise ValueError(f"Invalid node key: {key!r}")

        return cls(
            int(chapter),
            int(topic) if topic is not None else None,
            int(lesson) if lesson is not None else None,
        )

    def __str__(self) -> str:
        parts = [str(p) for p in self if p is not None]
        return f"{self.level}-{'-'.join(parts)}"


class Lesson(BaseModel):
    """A single lesson (published as a topic section)."""

    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(alias="lessonTitle")
    description: str = Field(default="", alias="lessonDescription")
    user_added_context: str | None = Field(default=None, alias="userAddedContext")


class Topic(BaseModel):
    """A chapter topic with its ordered lessons."""

    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(alias="topicTitle")
    learning_objective: str = Field(
        default="", alias="topicLearningObjectiveDescription"
    )
    user_added_context: str | None = Field(default=None, alias="userAddedContext")
    lessons: list[Lesson] = Field(default_factory=list)


class Chapter(BaseModel):
    """A chapter (course) with its ordered topics."""

    model_config = ConfigDict(populate_by_name=True)

    number: int = Field(alias="courseNumber")
    title: str = Field(alias="courseTitle")
    description: str = Field(default="", alias="courseDescription")
    user_added_context: str | None = Field(default=None, alias="userAddedContext")
    topics: list[Topic] = Field(default_factory=list)


class Outline(BaseModel):
    """The ebook outline to publish."""

    model_config = ConfigDict(populate_by_name=True)

    title: str
    preface: str = ""
    introduction: str = ""
    research_brief: str = Field(default="", alias="researchBrief")
    content_generation_method: ContentGenerationMethod = Field(
        default=ContentGenerationMethod.PRIMARY, alias="contentGenerationMethod"
    )
    include_web_references: bool = Field(default=False, alias="includeWebReferences")
    chapters: list[Chapter] = Field(default_factory=list)

    def count_items(self) -> tuple[int, int, int]:
        """Return (chapters, topics, lessons) counts."""
        topic_count = 0
        lesson_count = 0
        for chapter in self.chapters:
            topic_count += len(chapter.topics)
            for topic in chapter.topics:
                lesson_count += len(topic.lessons)
        return len(self.chapters), topic_count, lesson_count

    def total_items(self) -> int:
        """Root plus every chapter, topic and lesson."""
        return 1 + sum(self.count_items())


class RemoteObject(BaseModel):
    """An object created in WordPress."""

    id: int
    url: str | None = None
    kind: RemoteObjectKind


class LinkResult(BaseModel):
    """Outcome of a parent/child relationship webhook."""

    success: bool
    error: str | None = None
    details: Any = None


class ConnectionCheck(BaseModel):
    success: bool
    error: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class ApiSurfaceCheck(BaseModel):
    available: bool
    error: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class CredentialsCheck(BaseModel):
    valid: bool
    error: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class WebSource(BaseModel):
    """A single web search result returned by Perplexity."""

    title: str
    url: str
    date: str | None = None
    snippet: str = ""


class WebReferences(BaseModel):
    """Reference list generated for a topic."""

    content: str
    web_sources: list[WebSource] = Field(default_factory=list)
    topic_title: str
    generated_at: str


class SharedTopicContext(BaseModel):
    """Web research covering every lesson of one topic, fetched once."""

    topic_title: str
    content: str
    lesson_sections: dict[str, str] = Field(default_factory=dict)
    generated_at: str


class PublishedLesson(BaseModel):
    index: int
    title: str
    remote: RemoteObject
    linked: bool = False
    library_id: str | None = None
    used_rag: bool = False
    used_web_context: bool = False
    has_user_context: bool = False
    content_fallback: bool = False


class PublishedTopic(BaseModel):
    index: int
    title: str
    remote: RemoteObject
    linked: bool = False
    introduction_fallback: bool = False
    shared_web_context: bool = False
    web_references: bool = False
    user_context: bool = False
    lessons: list[PublishedLesson] = Field(default_factory=list)


class PublishedChapter(BaseModel):
    index: int
    title: str
    remote: RemoteObject
    linked: bool = False
    user_context: bool = False
    topics: list[PublishedTopic] = Field(default_factory=list)


class PublishedStructure(BaseModel):
    """Mirror of the outline tree as created in WordPress."""

    root: RemoteObject
    chapters: list[PublishedChapter] = Field(default_factory=list)

    def count_chapters(self) -> int:
        return len(self.chapters)

    def count_topics(self) -> int:
        return sum(len(ch.topics) for ch in self.chapters)

    def count_lessons(self) -> int:
        return sum(len(t.lessons) for ch in self.chapters for t in ch.topics)


class NodeFailure(BaseModel):
    """A non-fatal per-node failure recorded in the audit trail."""

    key: str
    title: str
    stage: Literal["create", "link", "enrich"]
    error: str


class ProgressState(BaseModel):
    """Live progress of a publish run."""

    step: PublishStep = PublishStep.IDLE
    progress: int = 0
    message: str = ""
    current_item: str = ""
    processed_items: int = 0
    total_items: int = 0
    remote_url: str = ""
    debug: dict[str, Any] = Field(default_factory=dict)


class PublishResult(BaseModel):
    """Terminal success result of a publish run."""

    success: bool = True
    message: str = "Successfully published to WordPress"
    root_id: int
    root_url: str | None = None
    structure: PublishedStructure
    partial: bool = False
    failures: list[NodeFailure] = Field(default_factory=list)
