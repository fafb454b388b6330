"""contextpack assemble — print the budgeted context block for a prompt."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from contextpack.cli.common import err_console, open_service
from contextpack.cli.errors import err_input, err_store
from contextpack.errors import InputError, StoreError
from contextpack.service import ContextResult


def assemble_cmd(
    project: Annotated[str, typer.Option("--project", "-p", help="Project id.")],
    prompt: Annotated[str, typer.Option("--prompt", help="The user instruction.")],
    budget: Annotated[
        int | None,
        typer.Option("--budget", "-b", help="Token budget (default: assembly.budget)."),
    ] = None,
    hot: Annotated[
        list[str] | None,
        typer.Option("--hot", help="Open file or directory path (repeatable)."),
    ] = None,
    model: Annotated[
        str | None,
        typer.Option("--model", help="Target model recorded in the audit trail."),
    ] = None,
    no_conversation: Annotated[
        bool,
        typer.Option("--no-conversation", help="Leave conversation history out."),
    ] = False,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the full result as JSON."),
    ] = False,
    project_dir: Annotated[
        Path,
        typer.Option("--dir", help="Project directory holding the store."),
    ] = Path("."),
) -> None:
    """Assemble context for PROMPT within the token budget."""
    with open_service(project_dir.resolve()) as service:
        try:
            result = service.assemble_context(
                project,
                prompt,
                budget=budget,
                hot_paths=hot or [],
                model=model,
                include_conversation=not no_conversation,
            )
        except InputError as exc:
            err_console.print(err_input(str(exc)))
            raise typer.Exit(1) from exc
        except StoreError as exc:
            err_console.print(err_store(str(exc)))
            raise typer.Exit(1) from exc

    if as_json:
        typer.echo(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
        return

    typer.echo(result.assembled_text)
    _print_usage(result)


def _print_usage(result: ContextResult) -> None:
    table = Table(show_header=True, box=None, padding=(0, 1))
    table.add_column("Priority", style="bold")
    table.add_column("Path")
    table.add_column("Tokens", justify="right")
    for piece in result.pieces:
        table.add_row(piece.priority, piece.path, f"{piece.token_count:,}")
    err_console.print(table)
    source = "cache" if result.cached else "fresh"
    err_console.print(
        f"[dim]{result.token_usage:,}/{result.token_budget:,} tokens · "
        f"{len(result.pieces)} pieces · {source} · session {result.session_id}[/]"
    )
    if result.metadata.get("truncated"):
        err_console.print(
            f"[yellow]{result.metadata['omitted']} candidates omitted to fit the budget.[/]"
        )
