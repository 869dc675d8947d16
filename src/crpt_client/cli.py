from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table
import typer

from .config import Settings, env_log_level
from .http_client import CrptApi, CrptError, CrptResponseError
from .models import CreationDocumentData
from .rate_limit import RateLimitConfigError
from .simulation import run_simulation


app = typer.Typer(help="Rate-limited document submission to the CRPT registry", no_args_is_help=True)
console = Console()
logger = logging.getLogger(__name__)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


@app.callback()
def main(
    log_level: str | None = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING or ERROR"),
) -> None:
    """Submit documents without exceeding the registry request rate."""

    try:
        _configure_logging(log_level or env_log_level())
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--log-level") from exc


@app.command()
def submit(
    document: Path = typer.Option(..., exists=True, dir_okay=False, readable=True),
    signature: Path = typer.Option(..., exists=True, dir_okay=False, readable=True),
    product_group: str = typer.Option(..., help="Product group name, e.g. milk"),
    document_type: str = typer.Option("LP_INTRODUCE_GOODS"),
    token: str | None = typer.Option(None, help="Bearer token; defaults to CRPT_TOKEN"),
    time_unit: str | None = typer.Option(None, help="Window length: SECONDS, MINUTES, ..."),
    request_limit: int | None = typer.Option(None, min=1),
) -> None:
    """Create one document and print the raw registry response."""

    try:
        settings = Settings()
    except ValueError as exc:
        raise typer.BadParameter(f"Bad CRPT_* environment setting: {exc}") from exc

    token = token or settings.token
    if not token:
        raise typer.BadParameter("A bearer token is required (--token or CRPT_TOKEN)")

    try:
        data = CreationDocumentData(
            product_document=document.read_text(encoding="utf-8"),
            product_group=product_group,
            document_type=document_type,
            token=token,
        )
    except ValidationError as exc:
        raise typer.BadParameter(str(exc)) from exc

    try:
        api = CrptApi(settings, time_unit=time_unit, request_limit=request_limit)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    with api:
        try:
            body = api.create_document(data, signature.read_text(encoding="utf-8"))
        except CrptResponseError as exc:
            console.print(f"[bold red]Error:[/bold red] {exc}")
            console.print(exc.body, markup=False, highlight=False)
            raise typer.Exit(code=1) from exc
        except CrptError as exc:
            console.print(f"[bold red]Error:[/bold red] {exc}")
            raise typer.Exit(code=1) from exc

    logger.info("Document accepted in %.1f ms", api.telemetry.mean_latency_ms)
    console.print(body, markup=False, highlight=False)


@app.command()
def simulate(
    calls: int = typer.Option(10, min=1),
    request_limit: int = typer.Option(3, min=1),
    window: float = typer.Option(1.0, help="Window length in seconds"),
    concurrency: int = typer.Option(0, min=0, help="Callers waiting at once; 0 for all"),
) -> None:
    """Drive concurrent callers through a limiter and show when each was admitted."""

    progress = Progress(
        SpinnerColumn(),
        TextColumn("[bold]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total}"),
        TimeElapsedColumn(),
        console=console,
    )
    task = progress.add_task("Admitting callers", total=calls)

    def callback(admitted: int, total: int) -> None:
        progress.update(task, completed=admitted, total=total)

    try:
        with progress:
            result = asyncio.run(
                run_simulation(
                    calls=calls,
                    request_limit=request_limit,
                    window_seconds=window,
                    concurrency=concurrency,
                    callback=callback,
                )
            )
    except RateLimitConfigError as exc:
        raise typer.BadParameter(str(exc)) from exc

    offsets = Table(title=f"Admissions ({request_limit} per {window:g}s)")
    offsets.add_column("#", justify="right")
    offsets.add_column("Offset (s)", justify="right")
    for index, offset in enumerate(sorted(result.offsets), start=1):
        offsets.add_row(str(index), f"{offset:.3f}")
    console.print(offsets)

    summary = Table(title="Simulation Summary")
    summary.add_column("Metric")
    summary.add_column("Value", justify="right")
    summary.add_row("Admitted", str(result.stats.admitted))
    summary.add_row("Immediate", str(result.stats.immediate))
    summary.add_row("Delayed", str(result.stats.delayed))
    summary.add_row("Mean wait (ms)", f"{result.stats.mean_wait_ms:.1f}")
    summary.add_row("Max wait (s)", f"{result.stats.max_wait_seconds:.3f}")
    summary.add_row("Peak calls in window", str(result.peak_in_window))
    summary.add_row("Elapsed (s)", f"{result.elapsed_seconds:.3f}")
    console.print(summary)


if __name__ == "__main__":
    app()
