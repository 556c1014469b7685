"""FastAPI application for the ebook publisher."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Literal

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from ..cancellation import CancellationToken
from ..config import settings
from ..libraries import load_library_map
from ..models import Outline, ProgressState, PublishAborted, PublishStep
from ..options import GenerationOptions, SearchOptions
from ..runner import (
    describe_failure,
    new_run_id,
    run_publish_async,
    run_research_brief_async,
    run_section_context_async,
)
from ..storage import load_progress

logger = logging.getLogger(__name__)


# Request/Response models
class PublishRequest(BaseModel):
    outline: Outline
    libraries: dict[str, str] = Field(default_factory=dict)
    run_id: str | None = None
    generation_options: GenerationOptions | None = None
    search_options: SearchOptions | None = None


class ResearchBriefRequest(BaseModel):
    niche: str
    must_haves: str = ""
    other: str | None = None
    provider: Literal["openai", "perplexity"] = "openai"
    generation_options: GenerationOptions | None = None


class SectionContextRequest(BaseModel):
    book_title: str
    section_title: str
    search_options: SearchOptions | None = None


class PublishStartResponse(BaseModel):
    run_id: str
    status: str


class PublishStatusResponse(BaseModel):
    run_id: str
    progress: ProgressState
    finished: bool
    result: dict[str, Any] | None = None


class HealthResponse(BaseModel):
    status: str
    wordpress_configured: bool
    openai_configured: bool
    perplexity_configured: bool
    active_runs: int


@dataclass
class RunHandle:
    """In-memory handle for a run started through the API."""

    token: CancellationToken
    progress: ProgressState = field(default_factory=ProgressState)
    task: asyncio.Task | None = None
    result: dict[str, Any] | None = None


# Initialize FastAPI app
app = FastAPI(
    title="Ebook Publisher API",
    description="Publishes ebook outlines to WordPress with AI-generated content",
    version="0.1.0",
)
app.state.runs = {}

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _runs(request: Request) -> dict[str, RunHandle]:
    return request.app.state.runs


def _finish_with_error(handle: RunHandle, run_id: str, error: BaseException) -> None:
    aborted = isinstance(error, PublishAborted)
    handle.progress = handle.progress.model_copy(
        update={
            "step": PublishStep.ABORTED if aborted else PublishStep.ERROR,
            "message": str(error) if aborted else f"Error: {error}",
        }
    )
    handle.result = {
        "run_id": run_id,
        "success": False,
        "aborted": aborted,
        "error": str(error),
        "hint": describe_failure(error),
        "progress": handle.progress.model_dump(mode="json"),
    }


@app.post(
    "/api/publish",
    response_model=PublishStartResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_publish(request: Request, body: PublishRequest) -> PublishStartResponse:
    """Start publishing an outline in the background."""
    runs = _runs(request)
    run_id = body.run_id or new_run_id(body.outline.title)
    if run_id in runs and runs[run_id].result is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Run {run_id} is already in progress",
        )

    try:
        libraries = load_library_map(body.libraries)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid library key: {e}",
        )

    handle = RunHandle(token=CancellationToken())
    runs[run_id] = handle

    def on_progress(state: ProgressState) -> None:
        handle.progress = state

    async def run() -> None:
        try:
            handle.result = await run_publish_async(
                body.outline,
                libraries,
                run_id=run_id,
                progress_callback=on_progress,
                token=handle.token,
                generation_options=body.generation_options,
                search_options=body.search_options,
            )
        except Exception as e:
            logger.exception(f"Publish run {run_id} failed outside the publisher")
            _finish_with_error(handle, run_id, e)
        finally:
            # Task cancelled, e.g. on server shutdown
            if handle.result is None:
                _finish_with_error(handle, run_id, PublishAborted())

    handle.task = asyncio.create_task(run())
    logger.info(f"Started publish run {run_id}")
    return PublishStartResponse(run_id=run_id, status="started")


@app.get("/api/publish/{run_id}", response_model=PublishStatusResponse)
async def get_publish_status(request: Request, run_id: str) -> PublishStatusResponse:
    """Get progress and, once finished, the result of a run."""
    handle = _runs(request).get(run_id)
    if handle is None:
        # Runs from earlier processes only have their saved progress.
        progress = load_progress(run_id)
        if progress is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail=f"Run {run_id} not found"
            )
        return PublishStatusResponse(run_id=run_id, progress=progress, finished=True)

    return PublishStatusResponse(
        run_id=run_id,
        progress=handle.progress,
        finished=handle.result is not None,
        result=handle.result,
    )


@app.post("/api/publish/{run_id}/cancel")
async def cancel_publish(request: Request, run_id: str) -> dict[str, str]:
    """Request cancellation of a running publish."""
    handle = _runs(request).get(run_id)
    if handle is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Run {run_id} not found"
        )
    if handle.result is not None:
        return {"status": "finished"}

    handle.token.cancel()
    return {"status": "cancelling"}


@app.get("/api/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Health check endpoint."""
    runs = _runs(request)
    return HealthResponse(
        status="healthy",
        wordpress_configured=bool(
            settings.wordpress_url and settings.wordpress_username and settings.wordpress_password
        ),
        openai_configured=bool(settings.openai_primary_key),
        perplexity_configured=bool(settings.perplexity_primary_key),
        active_runs=sum(1 for handle in runs.values() if handle.result is None),
    )


@app.post("/api/research-brief")
async def research_brief(body: ResearchBriefRequest) -> dict[str, Any]:
    """Generate a research brief for a new outline."""
    result = await run_research_brief_async(
        body.niche,
        body.must_haves,
        body.other,
        provider=body.provider,
        generation_options=body.generation_options,
    )
    if not result["success"]:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=result)
    return result


@app.post("/api/section-context")
async def section_context(body: SectionContextRequest) -> dict[str, Any]:
    """Fetch current web context for one outline section."""
    result = await run_section_context_async(
        body.book_title, body.section_title, search_options=body.search_options
    )
    if not result["success"]:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=result)
    return result
