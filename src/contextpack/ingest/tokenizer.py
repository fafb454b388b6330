"""Model-aware tokenization with a deterministic regex fallback.

The primary path asks LiteLLM for the tokenizer of the model hint
(``litellm.encode`` / ``litellm.decode``), so token counts match what the
target model will see. When that tokenizer is unavailable, text is split on
whitespace and punctuation instead; each fallback token keeps its character
span so a window of tokens maps back to an exact substring of the input.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable

import litellm

from contextpack.errors import TokenizerUnavailable

logger = logging.getLogger(__name__)

SIMPLE_HINT = "simple"

_PUNCT = r".,!?;:()\[\]{}\"'`~@#$%^&*+=|\\/<>"
_SIMPLE_TOKEN_RE = re.compile(rf"[{_PUNCT}]|[^\s{_PUNCT}]+")


@dataclass
class TokenSequence:
    """Tokens of one text plus the means to turn a token window back into text.

    Either ``spans`` (fallback splitter) or ``decoder`` (model tokenizer) is
    set.
    """

    text: str
    tokens: list = field(default_factory=list)
    spans: list[tuple[int, int]] | None = None
    decoder: Callable[[list], str] | None = None

    def __len__(self) -> int:
        return len(self.tokens)

    def text_between(self, start: int, end: int) -> str:
        """Text covered by tokens ``[start, end)``."""
        end = min(end, len(self.tokens))
        if start >= end:
            return ""
        if self.spans is not None:
            return self.text[self.spans[start][0] : self.spans[end - 1][1]]
        if self.decoder is None:
            raise TokenizerUnavailable("token sequence has neither spans nor decoder")
        return self.decoder(self.tokens[start:end])


def simple_tokenize(text: str) -> TokenSequence:
    """Split on whitespace and punctuation; punctuation marks are own tokens."""
    tokens: list[str] = []
    spans: list[tuple[int, int]] = []
    for match in _SIMPLE_TOKEN_RE.finditer(text):
        tokens.append(match.group())
        spans.append(match.span())
    return TokenSequence(text=text, tokens=tokens, spans=spans)


class Tokenizer:
    """Tokenize text for a model hint such as ``"gpt-4"``.

    Deterministic for a given hint. ``tokenize`` never raises: if LiteLLM
    cannot provide the model's tokenizer a warning is logged once and the
    fallback splitter is used from then on.

    Args:
        model_hint: LiteLLM model string, or ``"simple"`` / ``""`` to select
            the fallback splitter directly.
    """

    def __init__(self, model_hint: str = "gpt-4") -> None:
        self.model_hint = model_hint
        self._model_available = bool(model_hint) and model_hint != SIMPLE_HINT

    @property
    def uses_model_tokenizer(self) -> bool:
        return self._model_available

    def tokenize(self, text: str) -> TokenSequence:
        if not text:
            return TokenSequence(text=text)
        if self._model_available:
            try:
                return self._tokenize_with_model(text)
            except TokenizerUnavailable as exc:
                self._model_available = False
                logger.warning(
                    "Tokenizer for '%s' unavailable (%s); using simple splitter",
                    self.model_hint,
                    exc,
                )
        return simple_tokenize(text)

    def count(self, text: str) -> int:
        return len(self.tokenize(text))

    # ------------------------------------------------------------------
    # LiteLLM path
    # ------------------------------------------------------------------

    def _tokenize_with_model(self, text: str) -> TokenSequence:
        ids = self._encode(text)
        # A broken decoder must surface before chunking starts.
        self._decode(ids[:1])
        return TokenSequence(text=text, tokens=ids, decoder=self._decode)

    def _encode(self, text: str) -> list[int]:
        try:
            encoded = litellm.encode(model=self.model_hint, text=text)
        except Exception as exc:
            raise TokenizerUnavailable(str(exc)) from exc
        ids = getattr(encoded, "ids", encoded)
        try:
            return list(ids)
        except TypeError as exc:
            raise TokenizerUnavailable(f"unexpected encoding type {type(encoded)!r}") from exc

    def _decode(self, ids: list) -> str:
        try:
            return litellm.decode(model=self.model_hint, tokens=list(ids))
        except Exception as exc:
            raise TokenizerUnavailable(str(exc)) from exc
