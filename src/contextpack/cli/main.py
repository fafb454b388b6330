"""contextpack CLI entry point."""

from __future__ import annotations

import importlib.metadata
import logging
from typing import Annotated

import typer
from rich.logging import RichHandler

from contextpack.cli.assemble import assemble_cmd
from contextpack.cli.common import err_console
from contextpack.cli.ingest import ingest_cmd, ingest_log_cmd
from contextpack.cli.init import init_cmd
from contextpack.cli.purge import purge_cmd
from contextpack.cli.status import status_cmd
from contextpack.cli.summarize import summarize_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("contextpack")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"contextpack {_installed_version()}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, RichHandler):
            root.removeHandler(handler)
    root.addHandler(
        RichHandler(console=err_console, show_path=False, rich_tracebacks=verbose)
    )
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)
    # LiteLLM is chatty at INFO even with suppress_debug_info.
    logging.getLogger("LiteLLM").setLevel(logging.WARNING)


app = typer.Typer(
    name="contextpack",
    help=(
        "contextpack — chunk project artifacts and assemble budgeted LLM context.\n\n"
        "  contextpack ingest    Chunk, deduplicate and embed files.\n"
        "  contextpack assemble  Build the context block for a prompt."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log debug output to stderr."),
    ] = False,
) -> None:
    """contextpack — chunk project artifacts and assemble budgeted LLM context."""
    _configure_logging(verbose)


app.command("init")(init_cmd)
app.command("ingest")(ingest_cmd)
app.command("ingest-log")(ingest_log_cmd)
app.command("assemble")(assemble_cmd)
app.command("summarize")(summarize_cmd)
app.command("purge")(purge_cmd)
app.command("status")(status_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed contextpack version."""
    typer.echo(f"contextpack {_installed_version()}")


if __name__ == "__main__":
    app()
