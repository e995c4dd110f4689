"""Line-based chunking with token-budget and overlap heuristics."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Sequence

from localsearch.indexing.config import ChunkingConfig
from localsearch.indexing.extractor import FileType


@dataclass(frozen=True)
class Chunk:
    content: str
    start_line: int
    end_line: int
    heading: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


_CJK_RANGES = (
    (0x4E00, 0x9FFF),  # CJK Unified Ideographs
    (0x3400, 0x4DBF),  # CJK Extension A
    (0xF900, 0xFAFF),  # CJK Compatibility Ideographs
    (0x3000, 0x303F),  # CJK Symbols and Punctuation
    (0x3040, 0x309F),  # Hiragana
    (0x30A0, 0x30FF),  # Katakana
    (0xAC00, 0xD7AF),  # Hangul Syllables
    (0xFF00, 0xFFEF),  # Halfwidth and Fullwidth Forms
)


def is_cjk(char: str) -> bool:
    code = ord(char)
    return any(low <= code <= high for low, high in _CJK_RANGES)


def estimate_tokens(text: str) -> int:
    """
    Rough token estimate, not a tokenizer call.

    CJK-dominant text (more than a third of the characters): ~1.5 characters
    per token. Anything else: whitespace-delimited word count, at least 1.
    """

    cjk_chars = sum(1 for char in text if is_cjk(char))
    return _joined_estimate(len(text), cjk_chars, len(text.split()))


def _joined_estimate(total_chars: int, cjk_chars: int, words: int) -> int:
    """Token estimate from the character, CJK and word counts of a text."""

    if cjk_chars > total_chars // 3:
        return (total_chars * 2 + 2) // 3
    return max(words, 1)


def split_lines(text: str) -> list[str]:
    """Split on newlines only; a trailing newline does not add an empty line."""

    if not text:
        return []
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


def _is_blank(lines: Sequence[str]) -> bool:
    return all(not line.strip() for line in lines)


def subdivide_lines(
    lines: Sequence[str],
    base_line: int,
    heading: str | None,
    config: ChunkingConfig,
) -> list[Chunk]:
    """
    Cut `lines` (0-indexed at `base_line` within the file) into chunks.

    Within the cap the range is emitted whole. Otherwise scan forward until
    the running estimate reaches the target, emit, step back over roughly
    `overlap_tokens` worth of lines and scan forward again.
    """

    if not lines or _is_blank(lines):
        return []

    full_text = "\n".join(lines)
    if estimate_tokens(full_text) <= config.max_tokens:
        return [
            Chunk(
                content=full_text,
                start_line=base_line + 1,
                end_line=base_line + len(lines),
                heading=heading,
            )
        ]

    line_tokens = [estimate_tokens(line) + 1 for line in lines]
    line_chars = [len(line) for line in lines]
    line_cjk = [sum(1 for char in line if is_cjk(char)) for line in lines]
    line_words = [len(line.split()) for line in lines]
    chunks: list[Chunk] = []
    start = 0
    while start < len(lines):
        end = start
        tokens = 0
        chars = cjk = words = 0
        while end < len(lines) and tokens < config.target_tokens:
            # Counts of the joined text, newline separators included.
            next_chars = chars + line_chars[end] + (1 if end > start else 0)
            next_cjk = cjk + line_cjk[end]
            next_words = words + line_words[end]
            # A single oversized line may stand alone, never on top of others.
            if end > start and _joined_estimate(next_chars, next_cjk, next_words) > config.max_tokens:
                break
            chars, cjk, words = next_chars, next_cjk, next_words
            tokens += line_tokens[end]
            end += 1

        chunks.append(
            Chunk(
                content="\n".join(lines[start:end]),
                start_line=base_line + start + 1,
                end_line=base_line + end,
                heading=heading,
            )
        )
        if end >= len(lines):
            break

        overlap = 0
        new_start = end
        while new_start > start and overlap < config.overlap_tokens:
            new_start -= 1
            overlap += line_tokens[new_start]
        start = new_start if new_start > start else end

    return chunks


def chunk_markdown(text: str, config: ChunkingConfig) -> list[Chunk]:
    lines = split_lines(text)
    if not lines:
        return []

    sections: list[tuple[str | None, int, int]] = []
    heading: str | None = None
    section_start = 0
    for index, line in enumerate(lines):
        if line.startswith("#"):
            if index > 0:
                sections.append((heading, section_start, index - 1))
            heading = line.lstrip("#").strip() or None
            section_start = index
    sections.append((heading, section_start, len(lines) - 1))

    chunks: list[Chunk] = []
    for section_heading, start, end in sections:
        chunks.extend(subdivide_lines(lines[start : end + 1], start, section_heading, config))
    return chunks


def chunk_code(text: str, config: ChunkingConfig) -> list[Chunk]:
    """Blocks are separated by runs of two or more blank lines."""

    lines = split_lines(text)
    if not lines:
        return []

    chunks: list[Chunk] = []
    block_start = 0
    blank_run = 0
    for index, line in enumerate(lines):
        if not line.strip():
            blank_run += 1
            continue
        if blank_run >= 2 and index > block_start:
            chunks.extend(subdivide_lines(lines[block_start:index], block_start, None, config))
            block_start = index
        blank_run = 0

    if block_start < len(lines):
        chunks.extend(subdivide_lines(lines[block_start:], block_start, None, config))
    return chunks


def chunk_plain(text: str, config: ChunkingConfig) -> list[Chunk]:
    """Paragraphs are separated by blank lines."""

    lines = split_lines(text)
    if not lines:
        return []

    chunks: list[Chunk] = []
    para_start = 0
    prev_blank = False
    for index, line in enumerate(lines):
        is_blank = not line.strip()
        if is_blank and not prev_blank and index > para_start:
            chunks.extend(subdivide_lines(lines[para_start:index], para_start, None, config))
            para_start = index + 1
        elif is_blank and index == para_start:
            para_start = index + 1
        prev_blank = is_blank

    if para_start < len(lines):
        chunks.extend(subdivide_lines(lines[para_start:], para_start, None, config))
    return chunks


def chunk_text(
    text: str,
    file_type: FileType,
    config: ChunkingConfig | None = None,
) -> list[Chunk]:
    """Pure and deterministic: same text and type always give the same chunks."""

    config = config or ChunkingConfig()
    if file_type == FileType.MARKDOWN:
        return chunk_markdown(text, config)
    if file_type == FileType.CODE:
        return chunk_code(text, config)
    if file_type in (FileType.PLAIN_TEXT, FileType.PDF, FileType.DOCX, FileType.XLSX):
        return chunk_plain(text, config)
    return []


__all__ = [
    "Chunk",
    "chunk_code",
    "chunk_markdown",
    "chunk_plain",
    "chunk_text",
    "estimate_tokens",
    "is_cjk",
    "split_lines",
    "subdivide_lines",
]
