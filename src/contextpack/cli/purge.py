"""contextpack purge — delete everything stored for a project.

Removes, for one project id:
  - chunks and their embeddings (all vec tables)
  - chunk and summary blobs
  - summaries
  - context session audit rows
  - cached contexts and cached blob text

Usage:
  contextpack purge --project P1
  contextpack purge --project P1 --yes
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from contextpack.cli.common import console, open_service
from contextpack.cli.errors import err_no_chunks, err_store
from contextpack.errors import StoreError


def purge_cmd(
    project: Annotated[str, typer.Option("--project", "-p", help="Project id to purge.")],
    project_dir: Annotated[
        Path,
        typer.Option("--dir", help="Project directory holding the store."),
    ] = Path("."),
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Delete a project's chunks, summaries, blobs, sessions and cache entries."""
    with open_service(project_dir.resolve()) as service:
        stats = service.chunk_stats(project)
        if not stats["total_chunks"]:
            console.print(err_no_chunks(project))
            raise typer.Exit(0)

        console.print(f"\nPurge project: [bold]{project}[/]")
        console.print(
            f"  Chunks: {stats['total_chunks']}  |  "
            f"Paths: {stats['unique_paths']}  |  "
            f"Tokens: {stats['total_tokens']:,}"
        )

        if not yes:
            if not typer.confirm("Confirm purge?", default=False):
                console.print("[dim]Cancelled.[/]")
                raise typer.Exit(0)

        try:
            report = service.purge_project(project)
        except StoreError as exc:
            console.print(err_store(str(exc)))
            raise typer.Exit(1) from exc

    console.print(f"\n[green]✓[/] Purged: {project}")
    console.print(
        f"  {report.chunks} chunks, {report.embeddings} vec entries, "
        f"{report.summaries} summaries, {report.sessions} sessions deleted"
    )
