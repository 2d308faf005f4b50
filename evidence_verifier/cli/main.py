"""Command line interface for the evidence verification pipeline using Typer and Rich."""

import asyncio
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from evidence_verifier import __version__
from evidence_verifier.agents.verification.evidence_scorer import (
    VERIFICATION_THRESHOLD,
    is_verified,
    score_evidence,
)
from evidence_verifier.config.logging import configure_logging, get_logger
from evidence_verifier.config.settings import settings
from evidence_verifier.errors import EvidenceVerifierError
from evidence_verifier.pipeline.verification_producer import VerificationProducer
from evidence_verifier.pipeline.worker_runtime import WorkerRuntime, build_queue, build_store

app = typer.Typer(
    help="Evidence verification pipeline: producer, worker and queue tools",
    add_completion=False,
)

console = Console()

logger = get_logger("cli")

DEMO_EVIDENCE = [
    {
        "claim_id": 1,
        "source": "Livro / Sistemas",
        "excerpt": "A single point of failure raises risk; redundancy reduces failures.",
    },
    {
        "claim_id": 2,
        "source": "Economics / Hayek",
        "excerpt": "The price system coordinates dispersed knowledge.",
    },
]


@asynccontextmanager
async def _pipeline():
    """Connected store, queue and producer for one command."""
    store = build_store(settings)
    queue = build_queue(settings)
    async with store, queue:
        yield store, queue, VerificationProducer(store=store, queue=queue)


def _run(coro):
    try:
        return asyncio.run(coro)
    except EvidenceVerifierError as e:
        console.print(f"[red]✗[/red] {e}")
        logger.error(f"Command failed: {e}")
        raise typer.Exit(1)


@app.command()
def worker(
    delay: Optional[float] = typer.Option(
        None, help="Override the simulated verification delay in seconds"
    ),
    metrics: bool = typer.Option(True, help="Serve the /metrics endpoint"),
    log_level: Optional[str] = typer.Option(None, help="Override LOG_LEVEL for this worker"),
) -> None:
    """Run a verification worker until interrupted."""
    overrides = {}
    if delay is not None:
        overrides["simulated_delay_seconds"] = delay
    if log_level is not None:
        overrides["log_level"] = log_level.upper()
    run_settings = settings.model_copy(update=overrides) if overrides else settings
    configure_logging(run_settings)
    if run_settings.queue_backend == "memory":
        console.print("[yellow]⚠ memory queue backend: only jobs enqueued by this process are seen[/yellow]")

    console.print(f"[bold cyan]Worker consuming[/bold cyan] {run_settings.queue_name}")
    if metrics:
        console.print(f"[dim]Metrics on {run_settings.metrics_host}:{run_settings.metrics_port}/metrics[/dim]")

    runtime = WorkerRuntime(run_settings, serve_metrics=metrics)
    try:
        _run(runtime.run())
    except KeyboardInterrupt:
        console.print("\n[dim]Interrupted[/dim]")


@app.command()
def enqueue(evidence_id: int = typer.Argument(..., help="Evidence to (re-)verify")) -> None:
    """Request re-verification of existing evidence."""

    async def _enqueue():
        async with _pipeline() as (_, _, producer):
            return await producer.request_reverification(evidence_id)

    job = _run(_enqueue())
    console.print(f"[green]✓[/green] Job {job.job_id} enqueued for evidence {evidence_id}")


@app.command()
def submit(
    claim_id: int = typer.Option(..., help="Owning claim id"),
    source: str = typer.Option(..., help="Evidence source"),
    excerpt: str = typer.Option(..., help="Evidence excerpt"),
) -> None:
    """Create free-text evidence and enqueue its verification."""

    async def _submit():
        async with _pipeline() as (_, _, producer):
            return await producer.submit_text_evidence(claim_id, source, excerpt)

    try:
        evidence, job = _run(_submit())
    except ValueError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] Evidence {evidence.id} created, job {job.job_id} enqueued")


@app.command("submit-document")
def submit_document(
    claim_id: int = typer.Option(..., help="Owning claim id"),
    text_file: Path = typer.Option(..., exists=True, dir_okay=False, help="Pre-extracted document text"),
    file_name: Optional[str] = typer.Option(None, help="Original document name (defaults to text file name)"),
    file_path: Optional[str] = typer.Option(None, help="Reference to the stored document"),
) -> None:
    """Create evidence from a document's extracted text and enqueue its verification."""

    async def _submit():
        async with _pipeline() as (_, _, producer):
            return await producer.submit_document_evidence(
                claim_id,
                file_name or text_file.name,
                text_file.read_text(encoding="utf-8", errors="replace"),
                file_path=file_path,
            )

    evidence, job = _run(_submit())
    console.print(f"[green]✓[/green] Evidence {evidence.id} created, job {job.job_id} enqueued")


@app.command()
def score(
    source: str = typer.Option(..., help="Evidence source"),
    excerpt: str = typer.Option(..., help="Evidence excerpt"),
) -> None:
    """Score evidence locally without touching the store or queue."""
    value = score_evidence(source, excerpt)
    status = "VERIFIED" if is_verified(value) else "REJECTED"
    style = "green" if is_verified(value) else "red"
    console.print(Panel(
        f"Score: [bold]{value}[/bold] (threshold {VERIFICATION_THRESHOLD})\nStatus: [{style}]{status}[/{style}]",
        title="Evidence score",
        border_style=style,
    ))


@app.command()
def show(evidence_id: int = typer.Argument(..., help="Evidence id")) -> None:
    """Show one evidence record."""

    async def _show():
        store = build_store(settings)
        async with store:
            return await store.get_by_id(evidence_id)

    evidence = _run(_show())
    if evidence is None:
        console.print(f"[red]✗[/red] Evidence {evidence_id} not found")
        raise typer.Exit(1)

    table = Table(title=f"Evidence {evidence.id}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for field_name in ("claim_id", "source", "excerpt", "file_path", "status", "score", "reason", "updated_at"):
        value = getattr(evidence, field_name)
        table.add_row(field_name, str(value.value if hasattr(value, "value") else value))
    console.print(table)


@app.command("queue-status")
def queue_status(limit: int = typer.Option(10, help="History entries to show")) -> None:
    """Display queue counts and recent completed/failed jobs."""

    async def _status():
        queue = build_queue(settings)
        async with queue:
            return (
                await queue.stats(),
                await queue.history("completed", limit),
                await queue.history("failed", limit),
            )

    stats, completed, failed = _run(_status())

    counts = Table(title=f"Queue {settings.queue_name}", show_header=True, header_style="bold magenta")
    for state in stats:
        counts.add_column(state, justify="right")
    counts.add_row(*(str(v) for v in stats.values()))
    console.print(counts)

    history = Table(title="Recent jobs", show_header=True, header_style="bold magenta")
    history.add_column("Job", style="cyan")
    history.add_column("Evidence")
    history.add_column("State")
    history.add_column("Attempts", justify="right")
    history.add_column("Detail", style="yellow")
    for job in completed + failed:
        detail = job.last_error if job.status == "failed" else str(job.result or "")
        history.add_row(job.job_id, str(job.evidence_id), job.status, str(job.attempt), detail or "")
    console.print(history)


@app.command()
def seed() -> None:
    """Load demo evidence and enqueue it for verification."""

    async def _seed():
        async with _pipeline() as (_, _, producer):
            return [await producer.submit_text_evidence(**item) for item in DEMO_EVIDENCE]

    for evidence, job in _run(_seed()):
        console.print(f"[green]✓[/green] Evidence {evidence.id} ({evidence.source}) -> job {job.job_id}")


@app.command()
def health() -> None:
    """Check that the evidence store and the queue backend respond."""

    async def _health():
        store = build_store(settings)
        queue = build_queue(settings)
        async with store, queue:
            return await store.ping(), await queue.ping()

    store_ok, queue_ok = _run(_health())
    table = Table(title="Pipeline Health", show_header=True, header_style="bold magenta")
    table.add_column("Component", style="cyan")
    table.add_column("Status")
    table.add_column("Details", style="yellow")
    table.add_row("Evidence store", "✓ Ready" if store_ok else "✗ Down", settings.store_backend)
    table.add_row("Job queue", "✓ Ready" if queue_ok else "✗ Down", f"{settings.queue_backend} ({settings.queue_name})")
    console.print(table)
    if not (store_ok and queue_ok):
        raise typer.Exit(1)


@app.command()
def version() -> None:
    """Display version information."""
    console.print("[bold]Evidence Verifier[/bold]")
    console.print(f"Version: {__version__}")
    console.print(f"Python {sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}")


if __name__ == "__main__":
    app()
