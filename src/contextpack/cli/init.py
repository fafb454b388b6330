"""contextpack init — create the project store and config.

Creates:
  .contextpack.db        — metadata + vector database with schema
  .contextpack/blobs/    — blob store for chunk and summary text
  contextpack.yaml       — project config (kept if it already exists)
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from contextpack.cli.common import console, open_service
from contextpack.config import write_project_config
from contextpack.service import resolve_storage

_DEFAULT_PROJECT_DIR = Path(".")


def init_cmd(
    project_dir: Annotated[
        Path,
        typer.Argument(help="Directory to initialize. Defaults to current directory."),
    ] = _DEFAULT_PROJECT_DIR,
) -> None:
    """Initialize a contextpack store in a directory."""
    project_dir = project_dir.resolve()
    project_dir.mkdir(parents=True, exist_ok=True)

    cfg_path = write_project_config(project_dir)
    console.print(f"  [green]✓[/] {cfg_path.name}")

    with open_service(project_dir, create=True) as service:
        db_path, blob_dir = resolve_storage(project_dir, service.config)
        blob_dir.mkdir(parents=True, exist_ok=True)
        console.print(f"  [green]✓[/] {db_path.name} ({service.vec_table})")
        console.print(f"  [green]✓[/] {blob_dir.relative_to(project_dir)}/")

    _update_gitignore(project_dir)

    console.print(f"\n[bold green]✓ contextpack initialized in {project_dir}[/]")
    console.print("\nNext steps:")
    console.print("  1. contextpack ingest --project <id> --source <path>")
    console.print('  2. contextpack assemble --project <id> --prompt "..." --hot <path>')


def _update_gitignore(project_dir: Path) -> None:
    """Add contextpack entries to .gitignore if it already exists."""
    gitignore = project_dir / ".gitignore"
    entries = [".contextpack.db*", ".contextpack/"]

    if gitignore.exists():
        existing = gitignore.read_text(encoding="utf-8")
        to_add = [e for e in entries if e not in existing]
        if to_add:
            with gitignore.open("a", encoding="utf-8") as f:
                f.write("\n# contextpack\n")
                for entry in to_add:
                    f.write(f"{entry}\n")
            console.print("  [green]✓[/] .gitignore (updated with contextpack entries)")
