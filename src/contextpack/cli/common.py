"""Shared CLI plumbing: config loading and service construction."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from contextpack.cli.errors import err_config, err_no_db, err_store
from contextpack.config import ConfigError, ContextPackConfig, load_config
from contextpack.errors import StoreError
from contextpack.service import ContextService, resolve_storage

console = Console()
err_console = Console(stderr=True)


def load_cli_config(project_dir: Path) -> ContextPackConfig:
    try:
        return load_config(project_dir)
    except ConfigError as exc:
        err_console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc


def open_service(project_dir: Path, *, create: bool = False) -> ContextService:
    """Open the project's store, exiting with an actionable message on failure.

    Args:
        project_dir: Directory holding contextpack.yaml and the database.
        create: Create the database if it does not exist yet.
    """
    cfg = load_cli_config(project_dir)
    db_path, _ = resolve_storage(project_dir, cfg)
    if not create and not db_path.exists():
        err_console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)
    try:
        return ContextService.open(project_dir, cfg)
    except StoreError as exc:
        err_console.print(err_store(str(exc)))
        raise typer.Exit(1) from exc
