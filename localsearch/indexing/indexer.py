"""Full and incremental directory indexing plus query-time search."""

from __future__ import annotations

import hashlib
import logging
import os
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Callable, Protocol, Sequence

import numpy as np

from localsearch.indexing.chunking import chunk_text
from localsearch.indexing.config import ChunkingConfig, WalkConfig
from localsearch.indexing.exceptions import ExtractionError, InferenceError
from localsearch.indexing.extractor import extract, should_index
from localsearch.indexing.store import IndexStats, IndexStore, SearchResult


LOGGER = logging.getLogger(__name__)

PROGRESS_EVERY_FILES = 3
EMBED_BATCH_SIZE = 32


class EmbedderProtocol(Protocol):
    def embed(self, text: str) -> np.ndarray: ...

    def embed_batch(self, texts: Sequence[str]) -> list[np.ndarray]: ...


@dataclass(frozen=True)
class StatusEvent:
    status: str  # "indexing" | "ready" | "error"
    message: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


StatusCallback = Callable[[StatusEvent], None]


@dataclass
class IndexReport:
    files_indexed: int = 0
    files_skipped: int = 0
    chunks_created: int = 0
    files_unchanged: int = 0
    files_failed: int = 0
    elapsed_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["elapsed_seconds"] = round(self.elapsed_seconds, 4)
        return payload


def emit_status(
    callback: StatusCallback | None,
    status: str,
    message: str,
    logger: logging.Logger | None = None,
) -> None:
    if callback is None:
        return
    try:
        callback(StatusEvent(status=status, message=message))
    except Exception as exc:
        (logger or LOGGER).warning("Status callback failed: %s", exc)


def collect_files(root: str | Path, config: WalkConfig | None = None) -> list[tuple[Path, str]]:
    """
    Eligible files under `root` as (absolute path, root-relative slash path),
    sorted by name, at most `max_depth` directories deep.
    """

    config = config or WalkConfig()
    base = Path(root).resolve()
    result: list[tuple[Path, str]] = []

    def _walk(directory: Path, depth: int) -> None:
        if depth > config.max_depth:
            return
        try:
            entries = sorted(os.scandir(directory), key=lambda entry: entry.name)
        except OSError as exc:
            LOGGER.warning("Cannot read dir %s: %s", directory, exc)
            return

        for entry in entries:
            path = Path(entry.path)
            try:
                is_dir = entry.is_dir(follow_symlinks=False)
            except OSError:
                continue
            if is_dir:
                if entry.name.startswith(".") or entry.name in config.skip_dirs:
                    continue
                _walk(path, depth + 1)
            elif should_index(
                path,
                root=base,
                skip_dirs=config.skip_dirs,
                max_bytes=config.max_file_bytes,
            ):
                result.append((path, path.relative_to(base).as_posix()))

    _walk(base, 0)
    return result


def file_mtime(path: Path) -> int:
    return int(path.stat().st_mtime)


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8", errors="surrogatepass")).hexdigest()


class Indexer:
    """Sole caller of extractor, chunker, embedding engine and store."""

    def __init__(
        self,
        store: IndexStore,
        engine: EmbedderProtocol,
        *,
        chunking_config: ChunkingConfig | None = None,
        walk_config: WalkConfig | None = None,
        batch_size: int = EMBED_BATCH_SIZE,
        status_callback: StatusCallback | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.store = store
        self.engine = engine
        self.chunking_config = chunking_config or ChunkingConfig()
        self.walk_config = walk_config or WalkConfig()
        self.batch_size = max(1, int(batch_size))
        self.status_callback = status_callback
        self.logger = logger or LOGGER

    def index_all(self, directory: str | Path) -> IndexReport:
        started = time.perf_counter()
        report = IndexReport()

        entries = collect_files(directory, self.walk_config)
        total = len(entries)
        self.logger.info("Found %s files to process under %s", total, directory)

        for position, (full_path, rel_path) in enumerate(entries):
            try:
                mtime = file_mtime(full_path)
            except OSError as exc:
                self.logger.warning("Skip %s: cannot stat file: %s", rel_path, exc)
                report.files_failed += 1
                report.files_skipped += 1
                mtime = None

            if mtime is not None and self.store.get_file_mtime(rel_path) == mtime:
                report.files_unchanged += 1
                report.files_skipped += 1
            elif mtime is not None:
                try:
                    created = self.index_file(full_path, rel_path, mtime)
                except (ExtractionError, InferenceError, OSError, UnicodeError) as exc:
                    self.logger.warning("Skip %s: %s", rel_path, exc)
                    report.files_failed += 1
                    report.files_skipped += 1
                else:
                    report.files_indexed += 1
                    report.chunks_created += created

            if position % PROGRESS_EVERY_FILES == 0 or position + 1 == total:
                emit_status(
                    self.status_callback,
                    "indexing",
                    f"{position + 1}/{total} files",
                    self.logger,
                )

        report.elapsed_seconds = time.perf_counter() - started
        self.logger.info(
            "Indexing done: indexed=%s skipped=%s (unchanged=%s failed=%s) chunks=%s",
            report.files_indexed,
            report.files_skipped,
            report.files_unchanged,
            report.files_failed,
            report.chunks_created,
        )
        return report

    def index_file(self, full_path: Path, rel_path: str, mtime: int) -> int:
        """Replace one file's record and chunks; returns the number of chunks written."""

        extracted = extract(full_path)
        chunks = chunk_text(extracted.text, extracted.file_type, self.chunking_config)

        # One transaction per file: a failure restores the previous version.
        with self.store.transaction():
            file_id = self.store.upsert_file(rel_path, mtime, content_hash(extracted.text))
            for batch_start in range(0, len(chunks), self.batch_size):
                batch = chunks[batch_start : batch_start + self.batch_size]
                vectors = self.engine.embed_batch([chunk.content for chunk in batch])
                if len(vectors) != len(batch):
                    raise InferenceError(
                        f"Embedding returned {len(vectors)} vectors for {len(batch)} chunks"
                    )
                sizes = {np.asarray(vector).size for vector in vectors}
                if sizes - {self.store.dimension}:
                    raise InferenceError(
                        f"Embedding dimensions {sorted(sizes)} do not match index dimension {self.store.dimension}"
                    )
                for chunk, vector in zip(batch, vectors):
                    self.store.insert_chunk(
                        file_id,
                        chunk.content,
                        chunk.start_line,
                        chunk.end_line,
                        chunk.heading,
                        vector,
                    )
        return len(chunks)

    def search(self, query: str, top_k: int) -> list[SearchResult]:
        query_vector = self.engine.embed(query)
        return self.store.search(query_vector, top_k)

    def status(self) -> IndexStats:
        return self.store.stats()


__all__ = [
    "EmbedderProtocol",
    "IndexReport",
    "Indexer",
    "StatusCallback",
    "StatusEvent",
    "collect_files",
    "content_hash",
    "emit_status",
    "file_mtime",
]
