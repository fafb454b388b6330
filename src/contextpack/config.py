"""contextpack configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site — not in this module)
  2. Environment variables  (CONTEXTPACK_EMBEDDING_MODEL, CONTEXTPACK_TOKENIZER_MODEL,
                             CONTEXTPACK_ASSEMBLY_MODEL)
  3. Per-project contextpack.yaml  (next to .contextpack.db)
  4. Global ~/.contextpack/config.yaml  (model defaults only — no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load() — never yaml.load().

The resulting ContextPackConfig is passed explicitly into every component;
nothing below the CLI reads the environment.
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".contextpack"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "contextpack.yaml"

# Fields that suggest an API key: forbidden in global config.
# Does NOT match legitimate config keys like max_tokens, overlap_tokens.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"  # api_key, api-key, api_secret, apikey
    r"|_token$"                  # github_token, access_token, auth_token (suffix)
    r"|^token$"                  # exactly "token" (standalone)
    r"|_secret$"                 # my_secret, client_secret (suffix)
    r"|^secret$"                 # exactly "secret" (standalone)
    r"|passw(?:ord|d)"           # password, passwd
    r"|credential",              # credential, credentials
    re.IGNORECASE,
)

# Known top-level sections; unknown keys produce a warning
_KNOWN_SECTIONS: frozenset[str] = frozenset(
    [
        "embedding",
        "tokenizer",
        "chunking",
        "retrieval",
        "assembly",
        "summary",
        "cache",
        "storage",
    ]
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class EmbeddingCfg:
    """Embedding function configuration (contextpack.yaml: embedding:)."""

    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536
    timeout_seconds: float = 30.0
    num_retries: int = 2


@dataclass
class TokenizerCfg:
    """Tokenizer configuration (contextpack.yaml: tokenizer:).

    Attributes:
        model: Model hint passed to the tokenizer. ``"simple"`` selects the
            whitespace/punctuation splitter without trying a model tokenizer.
    """

    model: str = "gpt-4"


@dataclass
class ChunkingCfg:
    """Token windowing configuration (contextpack.yaml: chunking:)."""

    max_tokens: int = 8_000
    overlap_tokens: int = 256
    min_chunk_tokens: int = 1_000
    binary_size_limit: int = 1024 * 1024


@dataclass
class RetrievalCfg:
    """Retrieval configuration (contextpack.yaml: retrieval:)."""

    top_k: int = 500
    min_relevance: float = 0.3
    hot_window_size: int = 10
    max_conversation_messages: int = 10


@dataclass
class AssemblyCfg:
    """Budget assembly configuration (contextpack.yaml: assembly:).

    Attributes:
        budget: Default token ceiling when the caller supplies none.
        model: Model name recorded in the audit trail.
        backfill_free_ratio: Summaries are backfilled only while more than
            this fraction of the budget is still free.
        max_file_summaries: Cap on file summaries added during backfill.
        prompt_prefix_chars: Prompt prefix length that feeds the cache key.
    """

    budget: int = 498_000
    model: str = "gpt-4"
    backfill_free_ratio: float = 0.2
    max_file_summaries: int = 5
    prompt_prefix_chars: int = 100


@dataclass
class SummaryCfg:
    """Summarizer configuration (contextpack.yaml: summary:)."""

    method: str = "extractive"  # extractive | llm
    model: str = "openai/gpt-4o-mini"
    max_tokens: int = 300


@dataclass
class CacheCfg:
    """Assembly cache configuration (contextpack.yaml: cache:)."""

    ttl_seconds: int = 3_600


@dataclass
class StorageCfg:
    """Store locations (contextpack.yaml: storage:)."""

    db: str = ".contextpack.db"
    blob_dir: str = ".contextpack/blobs"
    busy_timeout_seconds: float = 30.0


@dataclass
class ContextPackConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    tokenizer: TokenizerCfg = field(default_factory=TokenizerCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    assembly: AssemblyCfg = field(default_factory=AssemblyCfg)
    summary: SummaryCfg = field(default_factory=SummaryCfg)
    cache: CacheCfg = field(default_factory=CacheCfg)
    storage: StorageCfg = field(default_factory=StorageCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names.

    Global config must never store credentials; they belong in env vars.
    """

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' — ignored.",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: ContextPackConfig) -> None:
    """Raise ConfigError for values the pipeline cannot work with."""
    ch = cfg.chunking
    if ch.max_tokens < 1 or ch.min_chunk_tokens < 1:
        raise ConfigError("chunking.max_tokens and chunking.min_chunk_tokens must be >= 1")
    if not 0 <= ch.overlap_tokens < ch.max_tokens:
        raise ConfigError(
            f"chunking.overlap_tokens must be in [0, {ch.max_tokens}), got {ch.overlap_tokens}"
        )
    if cfg.embedding.dimensions < 1:
        raise ConfigError(f"embedding.dimensions must be >= 1, got {cfg.embedding.dimensions}")
    if not 0.0 <= cfg.assembly.backfill_free_ratio < 1.0:
        raise ConfigError("assembly.backfill_free_ratio must be in [0.0, 1.0)")
    if cfg.summary.method not in ("extractive", "llm"):
        raise ConfigError(
            f"summary.method must be 'extractive' or 'llm', got '{cfg.summary.method}'"
        )


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _cfg_from_dict(data: dict[str, Any]) -> ContextPackConfig:
    """Build a *ContextPackConfig* from a merged raw YAML dict."""
    cfg = ContextPackConfig()

    if "embedding" in data:
        e = data["embedding"]
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", cfg.embedding.model)),
            dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
            timeout_seconds=float(e.get("timeout_seconds", cfg.embedding.timeout_seconds)),
            num_retries=int(e.get("num_retries", cfg.embedding.num_retries)),
        )

    if "tokenizer" in data:
        t = data["tokenizer"]
        cfg.tokenizer = TokenizerCfg(model=str(t.get("model", cfg.tokenizer.model)))

    if "chunking" in data:
        c = data["chunking"]
        cfg.chunking = ChunkingCfg(
            max_tokens=int(c.get("max_tokens", cfg.chunking.max_tokens)),
            overlap_tokens=int(c.get("overlap_tokens", cfg.chunking.overlap_tokens)),
            min_chunk_tokens=int(c.get("min_chunk_tokens", cfg.chunking.min_chunk_tokens)),
            binary_size_limit=int(c.get("binary_size_limit", cfg.chunking.binary_size_limit)),
        )

    if "retrieval" in data:
        r = data["retrieval"]
        cfg.retrieval = RetrievalCfg(
            top_k=int(r.get("top_k", cfg.retrieval.top_k)),
            min_relevance=float(r.get("min_relevance", cfg.retrieval.min_relevance)),
            hot_window_size=int(r.get("hot_window_size", cfg.retrieval.hot_window_size)),
            max_conversation_messages=int(
                r.get("max_conversation_messages", cfg.retrieval.max_conversation_messages)
            ),
        )

    if "assembly" in data:
        a = data["assembly"]
        cfg.assembly = AssemblyCfg(
            budget=int(a.get("budget", cfg.assembly.budget)),
            model=str(a.get("model", cfg.assembly.model)),
            backfill_free_ratio=float(
                a.get("backfill_free_ratio", cfg.assembly.backfill_free_ratio)
            ),
            max_file_summaries=int(a.get("max_file_summaries", cfg.assembly.max_file_summaries)),
            prompt_prefix_chars=int(
                a.get("prompt_prefix_chars", cfg.assembly.prompt_prefix_chars)
            ),
        )

    if "summary" in data:
        s = data["summary"]
        cfg.summary = SummaryCfg(
            method=str(s.get("method", cfg.summary.method)),
            model=str(s.get("model", cfg.summary.model)),
            max_tokens=int(s.get("max_tokens", cfg.summary.max_tokens)),
        )

    if "cache" in data:
        cfg.cache = CacheCfg(
            ttl_seconds=int(data["cache"].get("ttl_seconds", cfg.cache.ttl_seconds))
        )

    if "storage" in data:
        st = data["storage"]
        cfg.storage = StorageCfg(
            db=str(st.get("db", cfg.storage.db)),
            blob_dir=str(st.get("blob_dir", cfg.storage.blob_dir)),
            busy_timeout_seconds=float(
                st.get("busy_timeout_seconds", cfg.storage.busy_timeout_seconds)
            ),
        )

    return cfg


def _apply_env_overrides(cfg: ContextPackConfig) -> ContextPackConfig:
    """Apply CONTEXTPACK_* environment variable overrides (layer 2)."""
    if model := os.environ.get("CONTEXTPACK_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if model := os.environ.get("CONTEXTPACK_TOKENIZER_MODEL"):
        cfg.tokenizer.model = model
    if model := os.environ.get("CONTEXTPACK_ASSEMBLY_MODEL"):
        cfg.assembly.model = model
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> ContextPackConfig:
    """Load and return a merged *ContextPackConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *contextpack.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged *ContextPackConfig* with env var overrides applied.

    Raises:
        ConfigError: If global config contains API-key-like fields, or if a
            value is out of range (e.g. overlap >= max_tokens).
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)

    # Layer 3: env var overrides
    cfg = _apply_env_overrides(cfg)

    _validate(cfg)
    return cfg


def write_project_config(project_dir: Path, cfg: ContextPackConfig | None = None) -> Path:
    """Write a starter *contextpack.yaml* into *project_dir* if none exists.

    Returns:
        Path to the project config file.
    """
    cfg = cfg or ContextPackConfig()
    target = project_dir / _PROJECT_CONFIG_NAME
    if target.exists():
        return target

    data = {
        "embedding": {
            "model": cfg.embedding.model,
            "dimensions": cfg.embedding.dimensions,
        },
        "tokenizer": {"model": cfg.tokenizer.model},
        "assembly": {"budget": cfg.assembly.budget, "model": cfg.assembly.model},
        "storage": {"db": cfg.storage.db, "blob_dir": cfg.storage.blob_dir},
    }
    header = (
        "# contextpack project configuration.\n"
        "# NEVER store API keys here. Use environment variables:\n"
        "#   export OPENAI_API_KEY=sk-...\n\n"
    )
    target.write_text(header + yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
    return target
