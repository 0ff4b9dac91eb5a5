"""Command-line interface for Ledgee."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer

from ledgee.config import ExtractionConfig, get_settings
from ledgee.db.registry import sqlite_registry
from ledgee.extraction.gateway import ExtractionError
from ledgee.extraction.images import UnsupportedImageError, load_request
from ledgee.extraction.service import InvoiceExtractionService
from ledgee.logging_utils import configure_logging

app = typer.Typer(help="Ledgee invoice photo extraction commands.")
registry_app = typer.Typer(help="Inspect the merchant, store and agent registry.")
app.add_typer(registry_app, name="registry")


def _config(
    backend: Optional[str], api_key: Optional[str], model: Optional[str]
) -> ExtractionConfig:
    settings = get_settings()
    configure_logging(
        settings.log_level,
        settings.log_format,
        secrets=[api_key or "", settings.remote_api_key or ""],
    )
    selected = (backend or settings.backend).lower()
    if selected not in {"local", "remote"}:
        raise typer.BadParameter("backend must be 'local' or 'remote'", param_hint="--backend")
    model_field = "remote_model" if selected == "remote" else "local_model"
    return ExtractionConfig.from_settings(
        settings, backend=selected, api_key=api_key, **{model_field: model}
    )


def _load(image: Path):
    try:
        return load_request(image)
    except UnsupportedImageError as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from exc


_BACKEND_OPTION = typer.Option(None, "--backend", help="Model backend: local or remote.")
_API_KEY_OPTION = typer.Option(None, "--api-key", help="Gemini API key for the remote backend.")
_MODEL_OPTION = typer.Option(None, "--model", help="Override the model for the selected backend.")


@app.command()
def extract(
    image: Path = typer.Argument(..., exists=True, dir_okay=False, help="Invoice photo."),
    backend: Optional[str] = _BACKEND_OPTION,
    api_key: Optional[str] = _API_KEY_OPTION,
    model: Optional[str] = _MODEL_OPTION,
    pretty: bool = typer.Option(True, "--pretty/--no-pretty", help="Pretty-print result JSON."),
) -> None:
    """
    Extract structured invoice data from a photo and print it as JSON.
    """

    config = _config(backend, api_key, model)
    request = _load(image)
    result = asyncio.run(InvoiceExtractionService().extract(request, config))
    payload = result.model_dump(mode="json", by_alias=True)
    typer.echo(json.dumps(payload, indent=2 if pretty else None, ensure_ascii=False))
    if result.errors:
        raise typer.Exit(code=1)


@app.command()
def describe(
    image: Path = typer.Argument(..., exists=True, dir_okay=False, help="Invoice photo."),
    backend: Optional[str] = _BACKEND_OPTION,
    api_key: Optional[str] = _API_KEY_OPTION,
    model: Optional[str] = _MODEL_OPTION,
) -> None:
    """Print a free-text description of everything visible on the invoice."""

    config = _config(backend, api_key, model)
    request = _load(image)
    try:
        description = asyncio.run(InvoiceExtractionService().describe_image(request, config))
    except ExtractionError as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(description)


@app.command()
def availability(
    backend: Optional[str] = _BACKEND_OPTION,
    api_key: Optional[str] = _API_KEY_OPTION,
    model: Optional[str] = _MODEL_OPTION,
) -> None:
    """Report whether the selected backend is ready to extract."""

    config = _config(backend, api_key, model)
    report = asyncio.run(InvoiceExtractionService().check_availability(config))
    typer.echo(f"{config.model_label}: {report.status}")
    typer.echo(report.message)
    if report.instructions:
        typer.echo(report.instructions)
    if not report.available:
        raise typer.Exit(code=1)


def _print_rows(rows, *, mark_default: bool = False) -> None:
    if not rows:
        typer.echo("No entries.")
        return
    for row in rows:
        line = f"{row.id}\t{row.name}"
        if row.address:
            line += f"\t{row.address}"
        if mark_default and getattr(row, "is_default", False):
            line += "\t(default)"
        typer.echo(line)


@registry_app.command("merchants")
def list_merchants() -> None:
    """List registered merchants."""

    _print_rows(sqlite_registry().merchants.list())


@registry_app.command("stores")
def list_stores() -> None:
    """List registered stores, marking the default one."""

    _print_rows(sqlite_registry().stores.list(), mark_default=True)


@registry_app.command("agents")
def list_agents() -> None:
    """List registered sales agents."""

    _print_rows(sqlite_registry().agents.list())


def main(argv: Optional[list[str]] = None) -> None:
    """Entry point for the `ledgee` console script."""
    app(prog_name="ledgee", args=argv)


if __name__ == "__main__":
    main()
