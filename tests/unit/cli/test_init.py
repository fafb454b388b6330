"""Tests for contextpack init."""

from __future__ import annotations

from pathlib import Path

import yaml
from typer.testing import CliRunner

from contextpack.cli.main import app
from contextpack.db.connection import Database
from contextpack.db.vectors import list_vec_tables

runner = CliRunner()


def _write_config(project_dir: Path) -> None:
    (project_dir / "contextpack.yaml").write_text(
        yaml.dump(
            {
                "embedding": {"model": "test/fake-embed", "dimensions": 8},
                "tokenizer": {"model": "simple"},
            }
        ),
        encoding="utf-8",
    )


def test_init_creates_store(tmp_path):
    result = runner.invoke(app, ["init", str(tmp_path)])
    assert result.exit_code == 0, result.output
    assert (tmp_path / ".contextpack.db").exists()
    assert (tmp_path / ".contextpack" / "blobs").is_dir()
    assert (tmp_path / "contextpack.yaml").exists()
    assert "contextpack initialized" in result.output


def test_init_creates_vec_table_for_configured_model(tmp_path):
    _write_config(tmp_path)
    result = runner.invoke(app, ["init", str(tmp_path)])
    assert result.exit_code == 0, result.output
    with Database(tmp_path / ".contextpack.db") as conn:
        assert list_vec_tables(conn) == ["vec_chunks_test_fake_embed"]


def test_init_keeps_existing_config(tmp_path):
    _write_config(tmp_path)
    before = (tmp_path / "contextpack.yaml").read_text(encoding="utf-8")
    runner.invoke(app, ["init", str(tmp_path)])
    assert (tmp_path / "contextpack.yaml").read_text(encoding="utf-8") == before


def test_init_is_idempotent(tmp_path):
    _write_config(tmp_path)
    assert runner.invoke(app, ["init", str(tmp_path)]).exit_code == 0
    assert runner.invoke(app, ["init", str(tmp_path)]).exit_code == 0


def test_init_updates_existing_gitignore(tmp_path):
    (tmp_path / ".gitignore").write_text("__pycache__/\n", encoding="utf-8")
    runner.invoke(app, ["init", str(tmp_path)])
    content = (tmp_path / ".gitignore").read_text(encoding="utf-8")
    assert ".contextpack.db*" in content
    assert ".contextpack/" in content


def test_init_does_not_create_gitignore(tmp_path):
    runner.invoke(app, ["init", str(tmp_path)])
    assert not (tmp_path / ".gitignore").exists()


def test_init_invalid_config_exits(tmp_path):
    (tmp_path / "contextpack.yaml").write_text(
        "chunking:\n  max_tokens: 10\n  overlap_tokens: 20\n", encoding="utf-8"
    )
    result = runner.invoke(app, ["init", str(tmp_path)])
    assert result.exit_code == 1
    assert "Invalid configuration" in result.output


def test_version_flag():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert result.output.startswith("contextpack ")


def test_version_command():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert "contextpack" in result.output
