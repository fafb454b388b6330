"""Tests for contextpack rich error messages."""

from __future__ import annotations

import pytest

from contextpack.cli.errors import (
    err_config,
    err_input,
    err_no_chunks,
    err_no_db,
    err_source_not_found,
    err_store,
)


def _has_action(msg: str) -> bool:
    """Every error must tell the user what to do next."""
    lower = msg.lower()
    return any(kw in lower for kw in ["run:", "run with", "fix ", "pass ", "check ", "retry"])


@pytest.mark.parametrize(
    "msg",
    [
        err_no_db(),
        err_config("chunking.overlap_tokens must be < max_tokens"),
        err_input("prompt is required"),
        err_store("disk I/O error"),
        err_source_not_found("missing.py"),
        err_no_chunks("P1"),
    ],
)
def test_every_error_has_action(msg: str) -> None:
    assert _has_action(msg)


def test_err_no_db_names_path_and_init() -> None:
    msg = err_no_db("/work/.contextpack.db")
    assert "/work/.contextpack.db" in msg
    assert "contextpack init" in msg


def test_err_config_includes_detail() -> None:
    msg = err_config("assembly.budget must be > 0")
    assert "Invalid configuration" in msg
    assert "assembly.budget must be > 0" in msg


def test_err_input_includes_message() -> None:
    assert "budget must be > 0" in err_input("budget must be > 0")


def test_err_store_includes_cause() -> None:
    msg = err_store("database is locked")
    assert "database is locked" in msg
    assert "lock" in msg.lower()


def test_err_source_not_found_names_source() -> None:
    assert "'notes/missing.md'" in err_source_not_found("notes/missing.md")


def test_err_no_chunks_suggests_ingest() -> None:
    msg = err_no_chunks("P7")
    assert "P7" in msg
    assert "contextpack ingest --project P7" in msg
