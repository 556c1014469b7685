"""CLI entry point for the ebook publisher."""

import asyncio
import signal
from pathlib import Path

import typer

from .cancellation import CancellationToken
from .config import configure_logging
from .models import ProgressState
from .options import SearchOptions
from .runner import (
    run_checks_async,
    run_publish_async,
    run_research_brief_async,
    run_section_context_async,
)
from .storage import load_library_map_file, load_outline

cli = typer.Typer()


def _print_progress(state: ProgressState) -> None:
    if state.current_item:
        typer.echo(f"[{state.progress:3d}%] {state.step.value}: {state.current_item}")


@cli.command()
def publish(
    outline_path: Path = typer.Argument(..., exists=True, help="Outline JSON file"),
    libraries: Path
    | None = typer.Option(
        None, "--libraries", "-l", exists=True, help="Knowledge library map JSON file"
    ),
    run_id: str | None = typer.Option(None, "--run-id", "-r", help="Run identifier"),
    log_level: str | None = typer.Option(None, "--log-level", help="Logging level"),
):
    """Publish an outline to WordPress."""
    configure_logging(log_level)
    outline = load_outline(outline_path)
    library_map = load_library_map_file(libraries)

    async def main() -> dict:
        token = CancellationToken()
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, token.cancel)
        except NotImplementedError:
            pass  # Windows
        return await run_publish_async(
            outline,
            library_map,
            run_id=run_id,
            progress_callback=_print_progress,
            token=token,
        )

    result = asyncio.run(main())

    if result["success"]:
        typer.echo(f"✅ {result['message']}")
        typer.echo(f"📚 Book ID: {result['root_id']}")
        if result.get("root_url"):
            typer.echo(f"🌐 {result['root_url']}")
        typer.echo(f"⏱️  Runtime: {result['runtime_sec']:.1f} seconds")
        for failure in result["failures"]:
            typer.echo(f"   • {failure['key']} ({failure['stage']}): {failure['error']}")
        return

    if result.get("aborted"):
        typer.echo(f"🛑 Publishing cancelled (run {result['run_id']})")
    else:
        typer.echo(f"❌ Publishing failed (run {result['run_id']})")
        typer.echo(f"   • {result['error']}")
    typer.echo(f"💡 {result['hint']}")
    raise typer.Exit(code=1)


@cli.command()
def check(log_level: str | None = typer.Option(None, "--log-level", help="Logging level")):
    """Check the WordPress connection, REST API and credentials."""
    configure_logging(log_level)
    result = asyncio.run(run_checks_async())

    if result["success"]:
        typer.echo("✅ WordPress is ready for publishing")
        return

    typer.echo(f"❌ {result['error']}")
    typer.echo(f"💡 {result['hint']}")
    raise typer.Exit(code=1)


@cli.command()
def brief(
    niche: str = typer.Argument(..., help="Professional niche of the ebook"),
    must_haves: str = typer.Option("", "--must-haves", "-m", help="Content the ebook must cover"),
    other: str | None = typer.Option(None, "--other", "-o", help="Other considerations"),
    provider: str = typer.Option("openai", "--provider", help="openai or perplexity"),
    log_level: str | None = typer.Option(None, "--log-level", help="Logging level"),
):
    """Generate a research brief to seed a new outline."""
    configure_logging(log_level)
    if provider not in ("openai", "perplexity"):
        raise typer.BadParameter("provider must be openai or perplexity")

    result = asyncio.run(run_research_brief_async(niche, must_haves, other, provider=provider))
    if not result["success"]:
        typer.echo(f"❌ {result['error']}")
        typer.echo(f"💡 {result['hint']}")
        raise typer.Exit(code=1)

    typer.echo(result["research_brief"])


@cli.command()
def context(
    book_title: str = typer.Argument(..., help="Ebook title"),
    section_title: str = typer.Argument(..., help="Section to research"),
    recency: str | None = typer.Option(None, "--recency", help="Search recency filter"),
    log_level: str | None = typer.Option(None, "--log-level", help="Logging level"),
):
    """Fetch current web context for one section."""
    configure_logging(log_level)
    options = SearchOptions(search_recency_filter=recency) if recency else None

    result = asyncio.run(run_section_context_async(book_title, section_title, options))
    if not result["success"]:
        typer.echo(f"❌ {result['error']}")
        typer.echo(f"💡 {result['hint']}")
        raise typer.Exit(code=1)

    typer.echo(result["context"])


@cli.command()
def api(
    host: str = typer.Option("0.0.0.0", "--host", "-h", help="Host to bind to"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to bind to"),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload"),
):
    """Start the FastAPI server."""
    import uvicorn

    configure_logging()
    typer.echo("🚀 Starting Ebook Publisher API server")
    typer.echo(f"🌐 http://{host}:{port}")
    typer.echo(f"📚 Docs: http://{host}:{port}/docs")

    uvicorn.run("ebook_publisher.api.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    cli()
