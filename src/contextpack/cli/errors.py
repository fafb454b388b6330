"""contextpack rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from contextpack.cli.errors import err_no_db
    console.print(err_no_db(".contextpack.db"))
    raise typer.Exit(1)
"""

from __future__ import annotations


def err_no_db(db_path: str = ".contextpack.db") -> str:
    """No database found for the project directory."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  contextpack init"
    )


def err_config(message: str) -> str:
    """Config file failed to load or validate."""
    return (
        f"[red]Error:[/] Invalid configuration.\n"
        f"  {message}\n"
        "  Fix contextpack.yaml (or ~/.contextpack/config.yaml) and retry."
    )


def err_input(message: str) -> str:
    """A required argument is missing or invalid."""
    return f"[red]Error:[/] {message}\n  Run with --help to see the required options."


def err_store(message: str) -> str:
    """A database or blob store operation failed."""
    return (
        f"[red]Error:[/] Storage failure: {message}\n"
        "  Check that the project directory is writable and not on a full disk.\n"
        "  Another contextpack process may hold the database lock; retry shortly."
    )


def err_source_not_found(source: str) -> str:
    """Path passed to --source / --file does not exist."""
    return (
        f"[red]Error:[/] Source not found: '{source}'\n"
        "  Pass an existing file or directory."
    )


def err_no_chunks(project_id: str) -> str:
    """Project has nothing stored yet."""
    return (
        f"[yellow]Project '{project_id}' has no chunks.[/]\n"
        f"  Run:  contextpack ingest --project {project_id} --source <path>"
    )
