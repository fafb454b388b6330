"""contextpack ingest / ingest-log — add artifacts to a project's store.

Files are read as bytes; binary or oversized files become placeholders.
Directories expand to their files (--recursive for subdirectories); hidden
entries and the store's own files are skipped. Stored paths are relative to
the project directory when the file lies inside it.
"""

from __future__ import annotations

import fnmatch
from pathlib import Path
from typing import Annotated

import typer
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

from contextpack.cli.common import console, open_service
from contextpack.cli.errors import err_input, err_source_not_found, err_store
from contextpack.errors import InputError, StoreError
from contextpack.service import ContextService

_SKIP_PREFIXES = (".", "contextpack.yaml")


def ingest_cmd(
    project: Annotated[str, typer.Option("--project", "-p", help="Project id.")],
    source: Annotated[
        list[Path] | None,
        typer.Option("--source", "-s", help="File or directory (repeatable)."),
    ] = None,
    project_dir: Annotated[
        Path,
        typer.Option("--dir", help="Project directory holding the store."),
    ] = Path("."),
    recursive: Annotated[
        bool,
        typer.Option("--recursive", help="Recurse into subdirectories (max 10 levels)."),
    ] = False,
    exclude: Annotated[
        list[str] | None,
        typer.Option("--exclude", help="Glob pattern to exclude (repeatable)."),
    ] = None,
    no_summaries: Annotated[
        bool,
        typer.Option("--no-summaries", help="Skip chunk and file summaries."),
    ] = False,
) -> None:
    """Chunk, deduplicate and embed files into a project."""
    sources = source or []
    if not sources:
        console.print(err_input("No --source specified. Use --source PATH."))
        raise typer.Exit(1)
    for src in sources:
        if not src.exists():
            console.print(err_source_not_found(str(src)))
            raise typer.Exit(1)

    files = _expand_sources(sources, recursive=recursive, exclude=exclude or [])
    if not files:
        console.print("[yellow]No files found to ingest.[/]")
        raise typer.Exit(0)

    project_dir = project_dir.resolve()
    with open_service(project_dir, create=True) as service:
        totals = _ingest_files(service, project, files, project_dir, not no_summaries)

    console.print(
        f"\n[green]✓[/] {totals['files']} files · {totals['chunks']} chunks "
        f"({totals['created']} new, {totals['deduplicated']} deduplicated) · "
        f"{totals['tokens']:,} tokens"
    )


def ingest_log_cmd(
    project: Annotated[str, typer.Option("--project", "-p", help="Project id.")],
    file: Annotated[Path, typer.Option("--file", "-f", help="Log file, one entry per line.")],
    project_dir: Annotated[
        Path,
        typer.Option("--dir", help="Project directory holding the store."),
    ] = Path("."),
) -> None:
    """Store each non-empty line of a log file as a log chunk."""
    if not file.is_file():
        console.print(err_source_not_found(str(file)))
        raise typer.Exit(1)
    lines = [
        line
        for line in file.read_text(encoding="utf-8", errors="replace").splitlines()
        if line.strip()
    ]
    with open_service(project_dir.resolve(), create=True) as service:
        try:
            chunks = service.ingest_logs(project, lines)
        except InputError as exc:
            console.print(err_input(str(exc)))
            raise typer.Exit(1) from exc
        except StoreError as exc:
            console.print(err_store(str(exc)))
            raise typer.Exit(1) from exc
    console.print(f"[green]✓[/] {len(chunks)} log chunks from {file.name}")


# ------------------------------------------------------------------
# Per-file pipeline
# ------------------------------------------------------------------


def _ingest_files(
    service: ContextService,
    project: str,
    files: list[Path],
    project_dir: Path,
    summarize: bool,
) -> dict[str, int]:
    totals = {"files": 0, "chunks": 0, "created": 0, "deduplicated": 0, "tokens": 0}
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        transient=True,
        console=console,
    ) as prog:
        task = prog.add_task("Ingesting…", total=len(files))
        for path in files:
            rel = _relative_path(path, project_dir)
            prog.update(task, description=f"Ingesting {rel}")
            try:
                result = service.ingest(project, rel, path.read_bytes(), summarize=summarize)
            except InputError as exc:
                console.print(f"  [yellow]↷ {rel}:[/] {exc}")
                prog.advance(task)
                continue
            except StoreError as exc:
                console.print(err_store(str(exc)))
                raise typer.Exit(1) from exc
            except OSError as exc:
                console.print(f"  [red]✗ {rel}:[/] {exc}")
                prog.advance(task)
                continue

            totals["files"] += 1
            totals["chunks"] += len(result.chunks)
            totals["created"] += result.created
            totals["deduplicated"] += result.deduplicated
            totals["tokens"] += result.total_tokens
            console.print(
                f"  [green]✓[/] {rel} [dim]({result.language}, {len(result.chunks)} chunks)[/]"
            )
            prog.advance(task)
    return totals


def _relative_path(path: Path, project_dir: Path) -> str:
    resolved = path.resolve()
    try:
        return resolved.relative_to(project_dir).as_posix()
    except ValueError:
        return resolved.as_posix()


# ------------------------------------------------------------------
# Directory expansion
# ------------------------------------------------------------------


def _expand_sources(sources: list[Path], recursive: bool, exclude: list[str]) -> list[Path]:
    """Expand directories to individual files; leave files as-is."""
    result: list[Path] = []
    for src in sources:
        if src.is_dir():
            files = _scan_dir(src, recursive=recursive, exclude=exclude, depth=0)
            if not files:
                console.print(f"[yellow]No files found in directory:[/] {src}")
            result.extend(files)
        elif not any(fnmatch.fnmatch(src.name, pat) for pat in exclude):
            result.append(src)
    return result


def _scan_dir(
    directory: Path,
    recursive: bool,
    exclude: list[str],
    depth: int,
    max_depth: int = 10,
) -> list[Path]:
    """Return files in *directory* (optionally recursive)."""
    if depth > max_depth:
        return []
    files: list[Path] = []
    try:
        entries = sorted(directory.iterdir())
    except PermissionError:
        return []
    for entry in entries:
        if entry.name.startswith(_SKIP_PREFIXES):
            continue
        if any(fnmatch.fnmatch(entry.name, pat) for pat in exclude):
            continue
        if entry.is_file():
            files.append(entry)
        elif entry.is_dir() and recursive and depth < max_depth:
            files.extend(
                _scan_dir(entry, recursive=recursive, exclude=exclude, depth=depth + 1)
            )
    return files
