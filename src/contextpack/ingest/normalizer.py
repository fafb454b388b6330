"""Text normalization, language and binary detection for ingested artifacts."""

from __future__ import annotations

import re
from enum import Enum
from pathlib import PurePosixPath

_TRAILING_WS_RE = re.compile(r"[ \t]+$", re.MULTILINE)
_NON_PRINTABLE_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

# Fraction of control characters above which text is treated as binary.
_BINARY_RATIO = 0.1


class Language(str, Enum):
    JAVASCRIPT = "javascript"
    JSX = "jsx"
    TYPESCRIPT = "typescript"
    TSX = "tsx"
    PYTHON = "python"
    JAVA = "java"
    CPP = "cpp"
    C = "c"
    GO = "go"
    RUST = "rust"
    PHP = "php"
    RUBY = "ruby"
    SWIFT = "swift"
    KOTLIN = "kotlin"
    SCALA = "scala"
    CSHARP = "csharp"
    HTML = "html"
    CSS = "css"
    SCSS = "scss"
    SASS = "sass"
    JSON = "json"
    YAML = "yaml"
    TOML = "toml"
    XML = "xml"
    MARKDOWN = "markdown"
    SQL = "sql"
    BASH = "bash"
    ZSH = "zsh"
    TEXT = "text"
    BINARY = "binary"


_EXTENSION_LANGUAGE: dict[str, Language] = {
    "js": Language.JAVASCRIPT,
    "jsx": Language.JSX,
    "ts": Language.TYPESCRIPT,
    "tsx": Language.TSX,
    "py": Language.PYTHON,
    "java": Language.JAVA,
    "cpp": Language.CPP,
    "cc": Language.CPP,
    "c": Language.C,
    "go": Language.GO,
    "rs": Language.RUST,
    "php": Language.PHP,
    "rb": Language.RUBY,
    "swift": Language.SWIFT,
    "kt": Language.KOTLIN,
    "scala": Language.SCALA,
    "cs": Language.CSHARP,
    "html": Language.HTML,
    "css": Language.CSS,
    "scss": Language.SCSS,
    "sass": Language.SASS,
    "json": Language.JSON,
    "yaml": Language.YAML,
    "yml": Language.YAML,
    "toml": Language.TOML,
    "xml": Language.XML,
    "md": Language.MARKDOWN,
    "txt": Language.TEXT,
    "sql": Language.SQL,
    "sh": Language.BASH,
    "bash": Language.BASH,
    "zsh": Language.ZSH,
}

_EXTENSION_MIME: dict[str, str] = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "svg": "image/svg+xml",
    "pdf": "application/pdf",
    "zip": "application/zip",
    "tar": "application/x-tar",
    "gz": "application/gzip",
    "mp4": "video/mp4",
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
}


def _extension(path: str) -> str:
    return PurePosixPath(path).suffix.lstrip(".").lower()


def detect_language(path: str) -> Language:
    """Map a file path to a Language by extension; unknown → TEXT."""
    return _EXTENSION_LANGUAGE.get(_extension(path), Language.TEXT)


def detect_mime_type(path: str) -> str:
    return _EXTENSION_MIME.get(_extension(path), "application/octet-stream")


def decode(raw: bytes | str) -> str:
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return raw


def normalize(raw: bytes | str) -> str:
    """Canonical text form used for hashing and tokenizing.

    Line endings become ``\\n``, trailing spaces and tabs are stripped from
    every line, and leading/trailing whitespace of the whole document is
    removed. Idempotent: ``normalize(normalize(x)) == normalize(x)``.
    """
    text = decode(raw).replace("\r\n", "\n").replace("\r", "\n")
    text = _TRAILING_WS_RE.sub("", text)
    return text.strip()


def is_binary(content: bytes | str) -> bool:
    """True if *content* holds a NUL or more than 10% control characters."""
    text = decode(content)
    if not text:
        return False
    if "\x00" in text:
        return True
    return len(_NON_PRINTABLE_RE.findall(text)) / len(text) > _BINARY_RATIO
