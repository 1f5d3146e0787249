"""Command-line interface for scenegen."""

import asyncio
import signal
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from scenegen.config.settings import get_settings
from scenegen.errors import ScenegenError
from scenegen.logging_setup import configure_logging
from scenegen.models import DocumentStatus

app = typer.Typer(
    name="scenegen",
    help="scenegen - turn long-form documents into illustrated, narrated scenes",
    add_completion=False,
)
console = Console()

STATUS_STYLES = {
    DocumentStatus.UPLOADED: "dim",
    DocumentStatus.CHAPTER_READY: "cyan",
    DocumentStatus.ROLE_READY: "cyan",
    DocumentStatus.SCENE_READY: "yellow",
    DocumentStatus.IMG_READY: "green",
    DocumentStatus.FAILED: "red",
}


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    settings = get_settings()
    configure_logging("DEBUG" if verbose else settings.log_level, settings.log_json)


@app.command()
def worker(
    workers: Optional[int] = typer.Option(None, "--workers", "-w", help="Worker loops (default from settings)"),
) -> None:
    """Run a pipeline controller until interrupted."""
    from scenegen.runtime import run_worker

    settings = get_settings()
    if workers is not None:
        settings = settings.model_copy(
            update={"pipeline": settings.pipeline.model_copy(update={"workers": workers})}
        )

    console.print(
        Panel.fit(
            "[bold blue]scenegen worker[/bold blue]\n"
            f"{settings.pipeline.workers} workers, lease backend: {settings.lease_backend}",
            border_style="blue",
        )
    )

    async def _run() -> None:
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)
        await run_worker(settings, stop)

    asyncio.run(_run())
    console.print("[green]Worker stopped.[/green]")


@app.command()
def ingest(
    path: Path = typer.Argument(
        ...,
        help="Path to a .txt, .md or .pdf file",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
    ),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Document name (default: file name)"),
) -> None:
    """Split a file into chapters and create a document."""
    from scenegen.ingest import ingest_file
    from scenegen.runtime import build_store

    settings = get_settings()
    try:
        store = build_store(settings)
        document = asyncio.run(ingest_file(store, path, name, settings))
        chapters = asyncio.run(store.list_chapters(document.id))
    except ScenegenError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    console.print(f"[green]Created[/green] {document.name} ({document.id})")
    console.print(f"[dim]Chapters:[/dim] {len(chapters)}  [dim]Status:[/dim] {document.status.value}")


@app.command()
def status(
    document_id: Optional[str] = typer.Argument(None, help="Show a single document"),
) -> None:
    """Show documents with their status and failure count."""
    from scenegen.runtime import build_store

    store = build_store(get_settings())
    try:
        if document_id:
            documents = [asyncio.run(store.get_document(document_id))]
        else:
            documents = asyncio.run(store.list_documents())
    except ScenegenError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    if not documents:
        console.print("[dim]No documents.[/dim]")
        return

    table = Table(title="Documents")
    table.add_column("ID", style="dim")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Failures", justify="right")
    table.add_column("Next attempt")
    table.add_column("Last error", overflow="fold")

    for doc in documents:
        style = STATUS_STYLES.get(doc.status, "")
        table.add_row(
            doc.id,
            doc.name,
            f"[{style}]{doc.status.value}[/{style}]" if style else doc.status.value,
            str(doc.failure_count),
            doc.next_attempt_at.isoformat(timespec="seconds") if doc.next_attempt_at else "",
            (doc.last_error or "")[:80],
        )

    console.print(table)


@app.command()
def reset(
    document_id: str = typer.Argument(..., help="Id of a failed document"),
    to: Optional[DocumentStatus] = typer.Option(
        None, "--to", help="Status to resume from (default: inferred from committed results)"
    ),
) -> None:
    """Put a failed document back into the pipeline."""
    from scenegen.ingest import reset_document
    from scenegen.runtime import build_store

    store = build_store(get_settings())
    try:
        document = asyncio.run(reset_document(store, document_id, to))
    except ScenegenError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    console.print(f"[green]Reset[/green] {document.name} to {document.status.value}")


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind address"),
    port: int = typer.Option(8100, help="Port"),
    pipeline: Optional[bool] = typer.Option(
        None, "--pipeline/--no-pipeline", help="Also run a pipeline controller in the server"
    ),
) -> None:
    """Run the HTTP API."""
    import uvicorn

    from scenegen.api.main import create_app

    settings = get_settings()
    if pipeline is not None:
        settings = settings.model_copy(update={"pipeline_enabled": pipeline})

    uvicorn.run(create_app(settings), host=host, port=port, log_config=None)


@app.command()
def info() -> None:
    """Display configuration."""
    from scenegen import __version__

    settings = get_settings()

    console.print(Panel.fit("[bold blue]scenegen[/bold blue]", border_style="blue"))

    table = Table(show_header=False, box=None)
    table.add_column("Setting", style="dim")
    table.add_column("Value")

    table.add_row("Version", __version__)
    table.add_row("Database", settings.database_url)
    table.add_row("Lease backend", settings.lease_backend)
    table.add_row("Redis URL", settings.redis_url)
    table.add_row("LLM Model", settings.llm_model_name)
    table.add_row("Ollama URL", settings.llm_ollama_base_url)
    table.add_row("Media service", settings.media_base_url)
    table.add_row("Workers", str(settings.pipeline.workers))
    table.add_row("Lease TTL", f"{settings.pipeline.lease_ttl}s")
    table.add_row("Max attempts", str(settings.pipeline.max_attempts))

    console.print(table)


if __name__ == "__main__":
    app()
