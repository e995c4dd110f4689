"""File classification and plain-text extraction for every supported format."""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Collection

import pandas as pd

from localsearch.indexing.config import DEFAULT_SKIP_DIRS
from localsearch.indexing.exceptions import (
    BinaryDetectedError,
    FileReadError,
    StructuredExtractionError,
    UnsupportedFormatError,
)


LOGGER = logging.getLogger(__name__)
_SURROGATES = re.compile("[\ud800-\udfff]")

MAX_INDEX_BYTES = 10 * 1024 * 1024
BINARY_SAMPLE_BYTES = 8192
UTF8_BOM = b"\xef\xbb\xbf"
FALLBACK_ENCODINGS = ("gbk", "shift_jis", "euc_kr", "big5")

# Whitespace control bytes: tab, line feed, vertical tab, form feed, carriage return.
_WHITESPACE_CONTROL = frozenset({0x09, 0x0A, 0x0B, 0x0C, 0x0D})


class FileType(str, Enum):
    MARKDOWN = "markdown"
    CODE = "code"
    PLAIN_TEXT = "plain_text"
    PDF = "pdf"
    DOCX = "docx"
    XLSX = "xlsx"
    UNSUPPORTED = "unsupported"


MARKDOWN_EXTS = frozenset({"md", "mdx"})
PLAIN_TEXT_EXTS = frozenset({"txt", "rst", "adoc", "org"})
DATA_EXTS = frozenset(
    {"json", "yaml", "yml", "toml", "xml", "csv", "ini", "conf", "cfg", "env", "properties", "lock"}
)
CODE_EXTS = frozenset(
    {
        # Web
        "html", "htm", "css", "scss", "less", "js", "jsx", "ts", "tsx", "vue", "svelte",
        # Programming
        "rs", "py", "go", "java", "kt", "swift", "dart", "c", "cpp", "h", "hpp",
        "cs", "rb", "php", "lua", "r", "jl", "zig", "nim", "ex", "exs",
        "hs", "ml", "clj", "scala", "groovy",
        # Shell / scripts
        "sh", "bash", "zsh", "fish", "ps1", "bat", "cmd",
        # Other
        "sql", "graphql", "gql", "proto", "dockerfile", "makefile", "cmake", "gradle",
    }
)
SPREADSHEET_EXTS = frozenset({"xlsx", "xls", "ods"})
KNOWN_TEXT_NAMES = frozenset(
    {
        "readme",
        "license",
        "changelog",
        "makefile",
        "dockerfile",
        "cmakelists.txt",
        ".gitignore",
        ".editorconfig",
        ".env",
    }
)


@dataclass(frozen=True)
class ExtractedText:
    text: str
    file_type: FileType


def classify(path: str | Path) -> FileType:
    p = Path(path)
    name = p.name.lower()
    # Path.suffix treats ".gitignore" as a stem, which is what we want here.
    ext = p.suffix.lower().lstrip(".")

    if not ext:
        return FileType.PLAIN_TEXT if name in KNOWN_TEXT_NAMES else FileType.UNSUPPORTED
    if ext in MARKDOWN_EXTS:
        return FileType.MARKDOWN
    if ext in PLAIN_TEXT_EXTS or ext in DATA_EXTS:
        return FileType.PLAIN_TEXT
    if ext == "pdf":
        return FileType.PDF
    if ext == "docx":
        return FileType.DOCX
    if ext in SPREADSHEET_EXTS:
        return FileType.XLSX
    if ext in CODE_EXTS:
        return FileType.CODE
    return FileType.UNSUPPORTED


def should_index(
    path: str | Path,
    *,
    root: str | Path | None = None,
    skip_dirs: Collection[str] = DEFAULT_SKIP_DIRS,
    max_bytes: int = MAX_INDEX_BYTES,
) -> bool:
    """
    Eligibility gate: denylisted or hidden directory segments, size cap,
    regular files only.

    When `root` is given only the segments below it are checked, so a project
    living under a hidden directory is still indexable.
    """

    p = Path(path)
    parts = p.parts
    if root is not None:
        try:
            parts = p.relative_to(root).parts
        except ValueError:
            parts = p.parts
    for part in parts[:-1]:
        if part in skip_dirs or (part.startswith(".") and part not in (".", "..")):
            return False
    if p.name in skip_dirs:
        return False

    try:
        if not p.is_file():
            return False
        if p.stat().st_size > max_bytes:
            return False
    except OSError:
        return False

    return classify(p) != FileType.UNSUPPORTED


def looks_binary(data: bytes) -> bool:
    sample = data[:BINARY_SAMPLE_BYTES]
    suspicious = sum(
        1 for byte in sample if byte == 0 or (byte < 0x20 and byte not in _WHITESPACE_CONTROL)
    )
    return suspicious > len(sample) / 20


def decode_text(data: bytes) -> str:
    """UTF-8 first, then the CJK encodings in order, then lossy UTF-8."""

    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        pass

    for encoding in FALLBACK_ENCODINGS:
        try:
            return data.decode(encoding)
        except UnicodeDecodeError:
            continue

    return data.decode("utf-8", errors="replace")


def _extract_plain(path: Path) -> str:
    try:
        raw = path.read_bytes()
    except OSError as exc:
        raise FileReadError(f"Cannot read file {path}: {exc}") from exc

    data = raw[len(UTF8_BOM):] if raw.startswith(UTF8_BOM) else raw
    if looks_binary(data):
        raise BinaryDetectedError(f"Binary file detected: {path}")
    return decode_text(data)


def _extract_pdf(path: Path) -> str:
    from pypdf import PdfReader

    try:
        reader = PdfReader(str(path))
        parts = [page.extract_text() or "" for page in reader.pages]
    except OSError as exc:
        raise FileReadError(f"Cannot read PDF {path}: {exc}") from exc
    except Exception as exc:
        raise StructuredExtractionError(f"PDF extraction failed for {path}: {exc}") from exc
    return "\n".join(parts)


def _extract_docx(path: Path) -> str:
    import docx  # python-docx
    from docx.oxml.ns import qn
    from docx.text.paragraph import Paragraph

    try:
        document = docx.Document(str(path))
        body = document.element.body
        # Every w:p in document order, including paragraphs nested in tables.
        lines = [Paragraph(node, document).text for node in body.iter(qn("w:p"))]
    except OSError as exc:
        raise FileReadError(f"Cannot read docx {path}: {exc}") from exc
    except Exception as exc:
        raise StructuredExtractionError(f"Invalid docx {path}: {exc}") from exc
    return "".join(f"{line}\n" for line in lines)


def _format_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
    return str(value)


def _extract_spreadsheet(path: Path) -> str:
    try:
        sheets = pd.read_excel(path, sheet_name=None, header=None, dtype=object)
    except OSError as exc:
        raise FileReadError(f"Cannot open spreadsheet {path}: {exc}") from exc
    except Exception as exc:
        raise StructuredExtractionError(f"Cannot open spreadsheet {path}: {exc}") from exc

    parts: list[str] = []
    for sheet_name, frame in sheets.items():
        parts.append(f"## {sheet_name}\n")
        for row in frame.itertuples(index=False, name=None):
            parts.append("\t".join(_format_cell(cell) for cell in row))
            parts.append("\n")
        parts.append("\n")
    return "".join(parts)


def scrub_surrogates(text: str) -> str:
    """Replace lone UTF-16 surrogates (seen in some PDF font maps) with U+FFFD."""

    return _SURROGATES.sub("\ufffd", text)


def extract(path: str | Path) -> ExtractedText:
    """Return the plain text of `path` or raise an ExtractionError subclass."""

    p = Path(path)
    file_type = classify(p)
    if file_type == FileType.UNSUPPORTED:
        raise UnsupportedFormatError(f"Unsupported file type: {p}")

    if file_type == FileType.PDF:
        text = _extract_pdf(p)
    elif file_type == FileType.DOCX:
        text = _extract_docx(p)
    elif file_type == FileType.XLSX:
        text = _extract_spreadsheet(p)
    else:
        text = _extract_plain(p)
    text = scrub_surrogates(text)

    LOGGER.debug("Extracted %s chars from %s (%s)", len(text), p, file_type.value)
    return ExtractedText(text=text, file_type=file_type)


__all__ = [
    "ExtractedText",
    "FileType",
    "MAX_INDEX_BYTES",
    "classify",
    "decode_text",
    "extract",
    "looks_binary",
    "scrub_surrogates",
    "should_index",
]
