"""contextpack status — store overview and per-project statistics."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.panel import Panel
from rich.table import Table

from contextpack.cli.common import console, load_cli_config, open_service
from contextpack.config import ContextPackConfig
from contextpack.db.models import SummaryLevel
from contextpack.db.vectors import list_vec_tables
from contextpack.service import ContextService, resolve_storage


def status_cmd(
    project: Annotated[
        str | None,
        typer.Option("--project", "-p", help="Show statistics for one project."),
    ] = None,
    project_dir: Annotated[
        Path,
        typer.Option("--dir", help="Project directory holding the store."),
    ] = Path("."),
) -> None:
    """Show store status, or chunk and session statistics for a project."""
    project_dir = project_dir.resolve()
    cfg = load_cli_config(project_dir)
    db_path, _ = resolve_storage(project_dir, cfg)

    _show_store_panel(db_path, cfg)
    if not db_path.exists():
        console.print(
            Panel(
                "[yellow]No database found.[/]\n"
                "  Run:  contextpack init",
                title="[bold]Projects[/]",
                expand=False,
            )
        )
        return

    with open_service(project_dir) as service:
        if project is None:
            _show_projects_panel(service)
        else:
            _show_project_panel(service, project)


# ---------------------------------------------------------------------------
# Panel renderers
# ---------------------------------------------------------------------------


def _show_store_panel(db_path: Path, cfg: ContextPackConfig) -> None:
    db_info = f"{db_path}"
    if db_path.exists():
        size_mb = db_path.stat().st_size / (1024 * 1024)
        db_info = f"{db_path} ({size_mb:.1f} MB)"

    lines = [
        f"Database:   {db_info}",
        f"Embedding:  {cfg.embedding.model} ({cfg.embedding.dimensions} dims)",
        f"Tokenizer:  {cfg.tokenizer.model}",
        f"Budget:     {cfg.assembly.budget:,} tokens",
    ]
    console.print(Panel("\n".join(lines), title="[bold]Store[/]", expand=False))


def _show_projects_panel(service: ContextService) -> None:
    projects = service.repo.list_projects()
    vec_tables = list_vec_tables(service.conn)
    if not projects:
        console.print(
            Panel("[dim]No projects ingested yet.[/]", title="[bold]Projects[/]", expand=False)
        )
        return

    table = Table(show_header=True, box=None, padding=(0, 1))
    table.add_column("Project", style="bold")
    table.add_column("Chunks", justify="right")
    for project_id, count in projects:
        table.add_row(project_id, f"{count:,}")
    console.print(
        Panel(
            table,
            title=f"[bold]Projects[/] [dim]({len(projects)} · {len(vec_tables)} vec tables)[/]",
            expand=False,
        )
    )


def _show_project_panel(service: ContextService, project: str) -> None:
    chunks = service.chunk_stats(project)
    sessions = service.context_stats(project)
    summaries = service.repo.list_summaries(project)

    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Chunks", f"{chunks['total_chunks']:,}")
    table.add_row("Tokens", f"{chunks['total_tokens']:,}")
    table.add_row("Paths", f"{chunks['unique_paths']:,}")
    table.add_row("Avg chunk size", f"{chunks['avg_chunk_size']:,.0f}")
    for level in SummaryLevel:
        n = sum(1 for s in summaries if s.level is level)
        table.add_row(f"{level.value.capitalize()} summaries", f"{n:,}")
    table.add_row("Sessions", f"{sessions['total_sessions']:,}")
    table.add_row("Avg tokens/session", f"{sessions['avg_tokens_per_session']:,.0f}")
    if sessions["last_session"]:
        table.add_row("Last session", str(sessions["last_session"])[:16])

    console.print(Panel(table, title=f"[bold]Project {project}[/]", expand=False))
