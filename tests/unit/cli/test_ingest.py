"""Tests for contextpack ingest and ingest-log."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from typer.testing import CliRunner

from contextpack.cli.main import app
from contextpack.db.connection import Database
from contextpack.db.models import ChunkKind
from contextpack.db.repository import Repository

runner = CliRunner()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def project(tmp_path, fake_embeddings) -> Path:
    (tmp_path / "contextpack.yaml").write_text(
        yaml.dump(
            {
                "embedding": {"model": "test/fake-embed", "dimensions": 8},
                "tokenizer": {"model": "simple"},
                "chunking": {"min_chunk_tokens": 1},
            }
        ),
        encoding="utf-8",
    )
    src = tmp_path / "src"
    src.mkdir()
    (src / "sort.py").write_text("def sort_records(rs):\n    return sorted(rs)\n", encoding="utf-8")
    (src / "util.py").write_text("def helper():\n    return 42\n", encoding="utf-8")
    (src / ".hidden.py").write_text("secret = 1\n", encoding="utf-8")
    nested = src / "pkg"
    nested.mkdir()
    (nested / "deep.py").write_text("def deep():\n    return 'deep'\n", encoding="utf-8")
    return tmp_path


def _chunks(project_dir: Path, project_id: str = "P1"):
    with Database(project_dir / ".contextpack.db") as conn:
        return Repository(conn).list_chunks(project_id)


def _ingest(project_dir: Path, *args: str):
    return runner.invoke(app, ["ingest", "--dir", str(project_dir), "--project", "P1", *args])


# ---------------------------------------------------------------------------
# ingest
# ---------------------------------------------------------------------------


def test_ingest_single_file(project):
    result = _ingest(project, "--source", str(project / "src" / "sort.py"))
    assert result.exit_code == 0, result.output
    chunks = _chunks(project)
    assert [c.path for c in chunks] == ["src/sort.py"]
    assert chunks[0].language == "python"


def test_ingest_directory_non_recursive(project):
    result = _ingest(project, "--source", str(project / "src"))
    assert result.exit_code == 0, result.output
    assert {c.path for c in _chunks(project)} == {"src/sort.py", "src/util.py"}


def test_ingest_directory_recursive_skips_hidden(project):
    result = _ingest(project, "--source", str(project / "src"), "--recursive")
    assert result.exit_code == 0, result.output
    paths = {c.path for c in _chunks(project)}
    assert paths == {"src/sort.py", "src/util.py", "src/pkg/deep.py"}


def test_ingest_exclude_pattern(project):
    result = _ingest(project, "--source", str(project / "src"), "--exclude", "util*")
    assert result.exit_code == 0, result.output
    assert {c.path for c in _chunks(project)} == {"src/sort.py"}


def test_ingest_twice_reports_dedup(project):
    _ingest(project, "--source", str(project / "src" / "sort.py"))
    result = _ingest(project, "--source", str(project / "src" / "sort.py"))
    assert result.exit_code == 0, result.output
    assert "1 deduplicated" in result.output
    assert len(_chunks(project)) == 1


def test_ingest_binary_file(project):
    (project / "logo.png").write_bytes(b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR")
    result = _ingest(project, "--source", str(project / "logo.png"))
    assert result.exit_code == 0, result.output
    chunks = _chunks(project)
    assert [c.kind for c in chunks] == [ChunkKind.BINARY]


def test_ingest_empty_file_is_skipped(project):
    (project / "empty.txt").write_text("   \n", encoding="utf-8")
    result = _ingest(
        project,
        "--source", str(project / "empty.txt"),
        "--source", str(project / "src" / "sort.py"),
    )
    assert result.exit_code == 0, result.output
    assert [c.path for c in _chunks(project)] == ["src/sort.py"]


def test_ingest_no_summaries(project):
    result = _ingest(project, "--source", str(project / "src" / "sort.py"), "--no-summaries")
    assert result.exit_code == 0, result.output
    with Database(project / ".contextpack.db") as conn:
        assert Repository(conn).list_summaries("P1") == []


def test_ingest_requires_source(project):
    result = _ingest(project)
    assert result.exit_code == 1
    assert "No --source specified" in result.output


def test_ingest_missing_source(project):
    result = _ingest(project, "--source", str(project / "nope.py"))
    assert result.exit_code == 1
    assert "Source not found" in result.output


# ---------------------------------------------------------------------------
# ingest-log
# ---------------------------------------------------------------------------


def test_ingest_log(project):
    log = project / "app.log"
    log.write_text("INFO started\n\nERROR sort failed\n", encoding="utf-8")
    result = runner.invoke(
        app, ["ingest-log", "--dir", str(project), "--project", "P1", "--file", str(log)]
    )
    assert result.exit_code == 0, result.output
    chunks = _chunks(project)
    assert [c.kind for c in chunks] == [ChunkKind.LOG, ChunkKind.LOG]
    assert all(c.path == "logs" for c in chunks)


def test_ingest_log_missing_file(project):
    result = runner.invoke(
        app,
        ["ingest-log", "--dir", str(project), "--project", "P1", "--file", str(project / "x.log")],
    )
    assert result.exit_code == 1
