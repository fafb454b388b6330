"""Tests for the model tokenizer wrapper and its fallback splitter."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from contextpack.errors import TokenizerUnavailable
from contextpack.ingest.tokenizer import TokenSequence, Tokenizer, simple_tokenize


# ------------------------------------------------------------------
# simple_tokenize
# ------------------------------------------------------------------


def test_simple_splits_whitespace_and_punctuation():
    seq = simple_tokenize("def sort(xs): return xs")
    assert seq.tokens == ["def", "sort", "(", "xs", ")", ":", "return", "xs"]


def test_simple_text_between_is_exact_substring():
    text = "alpha  beta,\ngamma delta"
    seq = simple_tokenize(text)
    assert seq.text_between(1, 4) == "beta,\ngamma"
    assert seq.text_between(0, len(seq)) == text


def test_simple_empty():
    assert len(simple_tokenize("")) == 0
    assert len(simple_tokenize("   \n\t")) == 0


def test_text_between_clamps_and_handles_empty_range():
    seq = simple_tokenize("a b c")
    assert seq.text_between(2, 100) == "c"
    assert seq.text_between(2, 2) == ""


def test_text_between_without_spans_or_decoder_raises():
    seq = TokenSequence(text="x", tokens=[1])
    with pytest.raises(TokenizerUnavailable):
        seq.text_between(0, 1)


# ------------------------------------------------------------------
# Tokenizer
# ------------------------------------------------------------------


def test_simple_hint_never_calls_litellm():
    tok = Tokenizer("simple")
    with patch("contextpack.ingest.tokenizer.litellm.encode") as mock_encode:
        assert tok.count("one two three") == 3
    mock_encode.assert_not_called()
    assert not tok.uses_model_tokenizer


def test_model_tokenizer_used_when_available():
    tok = Tokenizer("gpt-4")
    with (
        patch("contextpack.ingest.tokenizer.litellm.encode", return_value=[10, 11, 12]),
        patch(
            "contextpack.ingest.tokenizer.litellm.decode",
            side_effect=lambda model, tokens: "|".join(str(t) for t in tokens),
        ),
    ):
        seq = tok.tokenize("anything")
        assert len(seq) == 3
        assert seq.text_between(1, 3) == "11|12"
    assert tok.uses_model_tokenizer


def test_encoding_object_with_ids():
    class Encoding:
        ids = [1, 2]

    tok = Tokenizer("gpt-4")
    with (
        patch("contextpack.ingest.tokenizer.litellm.encode", return_value=Encoding()),
        patch("contextpack.ingest.tokenizer.litellm.decode", return_value="x"),
    ):
        assert tok.count("two tokens") == 2


def test_fallback_on_encode_failure(caplog):
    tok = Tokenizer("no-such-model")
    with patch(
        "contextpack.ingest.tokenizer.litellm.encode", side_effect=RuntimeError("no tokenizer")
    ) as mock_encode:
        assert tok.count("one two three") == 3
        assert tok.count("four five") == 2
    assert mock_encode.call_count == 1
    assert not tok.uses_model_tokenizer
    assert "unavailable" in caplog.text


def test_fallback_on_decode_failure():
    tok = Tokenizer("gpt-4")
    with (
        patch("contextpack.ingest.tokenizer.litellm.encode", return_value=[1, 2, 3]),
        patch("contextpack.ingest.tokenizer.litellm.decode", side_effect=KeyError("x")),
    ):
        seq = tok.tokenize("a b")
    assert seq.tokens == ["a", "b"]


def test_deterministic():
    tok = Tokenizer("simple")
    text = "for i in range(10): print(i)"
    assert tok.tokenize(text).tokens == tok.tokenize(text).tokens


def test_empty_text():
    assert Tokenizer("gpt-4").count("") == 0
