#!/usr/bin/env python3
"""Main CLI entry point for Evidence Vault using Typer."""

import asyncio
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import typer
from pydantic import ValidationError
from typing_extensions import Annotated

from .. import __version__
from ..capture.browser_factory import parse_viewport, save_login_state
from .config import (
    EvidenceConfiguration,
    load_configuration,
    print_configuration,
    validate_configuration,
)
from .runner import CLIRunner, ExitCode, configure_logging


app = typer.Typer(
    name="evidence-vault",
    help="Evidence Vault - capture, archive and store registrant evidence",
    add_completion=False,
    rich_markup_mode="rich"
)


@app.callback()
def main():
    """
    Evidence Vault - capture, archive and store registrant evidence.

    Captures six evidence screenshots per registrant with an authenticated
    browser session, packs them into <id>.zip and uploads the archive.
    """


@app.command(name="version")
def show_version():
    """Show version information."""
    typer.echo(f"Evidence Vault CLI v{__version__}")


def _load_or_exit(config_file: Optional[Path], cli_overrides: Dict[str, Any]) -> EvidenceConfiguration:
    try:
        return load_configuration(config_file=config_file, cli_overrides=cli_overrides)
    except (FileNotFoundError, ValueError, ValidationError) as e:
        typer.echo(f"❌ Configuration error: {e}", err=True)
        raise typer.Exit(code=ExitCode.CONFIG_ERROR.value)


@app.command()
def run(
    registrants: Annotated[
        Optional[Path],
        typer.Option("--in", "-i", help="Registrant CSV (registrant_url, or id + eventId)")
    ] = None,

    auth: Annotated[
        Optional[Path],
        typer.Option("--auth", help="Saved login state from save-session")
    ] = None,

    out: Annotated[
        Optional[Path],
        typer.Option("--out", "-o", help="Output directory for per-registrant folders")
    ] = None,

    collection_id: Annotated[
        Optional[str],
        typer.Option("--collection-id", "--eventId", help="Event id applied to every row")
    ] = None,

    pdf: Annotated[
        bool,
        typer.Option("--pdf", help="Also export PDFs of full-page captures")
    ] = False,

    delay: Annotated[
        Optional[int],
        typer.Option("--delay", help="Extra delay after each navigation (ms)")
    ] = None,

    viewport: Annotated[
        Optional[str],
        typer.Option("--viewport", help="Viewport as WIDTHxHEIGHT, e.g. 1600x1200")
    ] = None,

    headful: Annotated[
        bool,
        typer.Option("--headful", help="Run browser with GUI")
    ] = False,

    sessions: Annotated[
        Optional[int],
        typer.Option("--sessions", help="Concurrent browser sessions")
    ] = None,

    storage: Annotated[
        Optional[str],
        typer.Option("--storage", help="Storage backend (azure, s3, local)")
    ] = None,

    container: Annotated[
        Optional[str],
        typer.Option("--container", help="Blob container or bucket name")
    ] = None,

    config_file: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Configuration file (YAML or JSON)")
    ] = None,

    output_format: Annotated[
        Optional[str],
        typer.Option("--format", help="Summary format (text, json, yaml)")
    ] = None,

    json_output: Annotated[
        bool,
        typer.Option("--json", help="Print the summary as JSON")
    ] = False,

    summary_file: Annotated[
        Optional[Path],
        typer.Option("--summary-file", help="Also write the summary to this file")
    ] = None,

    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Verbose output")
    ] = False,

    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Only warnings and errors")
    ] = False,

    print_config: Annotated[
        bool,
        typer.Option("--print-config", help="Print effective configuration and exit")
    ] = False,
):
    """
    Capture evidence for every registrant in a CSV and archive it.

    [bold]Examples:[/bold]

        # Save a login first
        evidence-vault save-session --auth auth.json

        # Capture, zip and upload to Azure
        evidence-vault run --in registrants.csv --auth auth.json --out out --eventId 255274

        # Dry run into a local folder instead of blob storage
        evidence-vault run --in registrants.csv --storage local --pdf
    """
    if verbose and quiet:
        typer.echo("❌ --verbose and --quiet cannot be combined", err=True)
        raise typer.Exit(code=ExitCode.CONFIG_ERROR.value)

    if viewport:
        try:
            parse_viewport(viewport)
        except ValueError as e:
            typer.echo(f"❌ {e}", err=True)
            raise typer.Exit(code=ExitCode.CONFIG_ERROR.value)

    cli_overrides: Dict[str, Any] = {}

    def override(section: str, key: str, value: Any) -> None:
        cli_overrides.setdefault(section, {})[key] = value

    if registrants is not None:
        override("input", "registrants_file", registrants)
    if collection_id is not None:
        override("input", "collection_id", collection_id)
    if auth is not None:
        override("browser", "storage_state", auth)
    if viewport is not None:
        override("browser", "viewport", viewport)
    if headful:
        override("browser", "headful", True)
    if pdf:
        override("capture", "pdf", True)
    if delay is not None:
        override("capture", "delay_ms", delay)
    if out is not None:
        override("output", "output_dir", out)
    if json_output:
        override("output", "format", "json")
    elif output_format is not None:
        override("output", "format", output_format)
    if summary_file is not None:
        override("output", "summary_file", summary_file)
    if verbose:
        override("output", "verbose", True)
    if quiet:
        override("output", "quiet", True)
    if storage is not None:
        override("storage", "backend", storage)
    if container is not None:
        override("storage", "container", container)
        override("storage", "bucket", container)
    if sessions is not None:
        override("execution", "sessions", sessions)

    config = _load_or_exit(config_file, cli_overrides)

    if print_config:
        typer.echo("# Effective Configuration")
        typer.echo("# Loaded from: " + " -> ".join(config.loaded_from))
        typer.echo(print_configuration(config, "yaml"))
        raise typer.Exit()

    errors = validate_configuration(config)
    if errors:
        for error in errors:
            typer.echo(f"❌ {error}", err=True)
        raise typer.Exit(code=ExitCode.CONFIG_ERROR.value)

    configure_logging(verbose=config.output.verbose, quiet=config.output.quiet)

    try:
        exit_code = asyncio.run(CLIRunner(config).run())
    except KeyboardInterrupt:
        typer.echo("❌ Operation interrupted by user", err=True)
        raise typer.Exit(code=ExitCode.RUNTIME_ERROR.value)
    except Exception as e:
        typer.echo(f"❌ Runtime error: {e}", err=True)
        if config.output.verbose:
            import traceback
            traceback.print_exc()
        raise typer.Exit(code=ExitCode.RUNTIME_ERROR.value)

    sys.exit(exit_code.value)


@app.command(name="save-session")
def save_session(
    auth: Annotated[
        Path,
        typer.Option("--auth", help="Where to write the login state")
    ] = Path("auth.json"),

    login_url: Annotated[
        Optional[str],
        typer.Option("--login-url", help="Page to open for logging in")
    ] = None,

    viewport: Annotated[
        Optional[str],
        typer.Option("--viewport", help="Viewport as WIDTHxHEIGHT")
    ] = None,

    config_file: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Configuration file (YAML or JSON)")
    ] = None,
):
    """
    Open a browser window to log in, then save the session for later runs.

    Close the browser window when the login is complete.
    """
    cli_overrides: Dict[str, Any] = {"browser": {"storage_state": None}}
    if viewport is not None:
        cli_overrides["browser"]["viewport"] = viewport
    if login_url is not None:
        cli_overrides["browser"]["login_url"] = login_url

    config = _load_or_exit(config_file, cli_overrides)
    configure_logging()

    try:
        path = asyncio.run(save_login_state(
            config.browser.login_url,
            auth,
            config.browser.to_browser_config(),
        ))
    except Exception as e:
        typer.echo(f"❌ Could not save session: {e}", err=True)
        raise typer.Exit(code=ExitCode.RUNTIME_ERROR.value)

    typer.echo(f"✅ Saved session to {path}")


def cli_main():
    """Entry point for console script."""
    app()


if __name__ == "__main__":
    cli_main()
