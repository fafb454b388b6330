"""contextpack summarize — rebuild the project-level summary."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.panel import Panel

from contextpack.cli.common import console, open_service
from contextpack.cli.errors import err_no_chunks, err_store
from contextpack.errors import InputError, StoreError


def summarize_cmd(
    project: Annotated[str, typer.Option("--project", "-p", help="Project id.")],
    project_dir: Annotated[
        Path,
        typer.Option("--dir", help="Project directory holding the store."),
    ] = Path("."),
) -> None:
    """Regenerate the project summary from the project's code chunks."""
    with open_service(project_dir.resolve()) as service:
        try:
            summary = service.summarize_project(project)
        except InputError as exc:
            console.print(err_no_chunks(project))
            raise typer.Exit(1) from exc
        except StoreError as exc:
            console.print(err_store(str(exc)))
            raise typer.Exit(1) from exc

    console.print(
        Panel(
            summary.content,
            title=f"[bold]Project summary[/] [dim]({summary.token_count} tokens)[/]",
            expand=False,
        )
    )
