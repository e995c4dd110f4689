"""Host-facing lifecycle: init / search / stats / rebuild of one project index."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from localsearch.indexing.cleaner import CleanupReport, auto_cleanup
from localsearch.indexing.config import IndexingSettings
from localsearch.indexing.embeddings import EmbeddingEngine, ProgressCallback
from localsearch.indexing.indexer import (
    EmbedderProtocol,
    IndexReport,
    Indexer,
    StatusCallback,
    emit_status,
)
from localsearch.indexing.store import IndexStats, IndexStore, SearchResult


LOGGER = logging.getLogger(__name__)

_SQLITE_SIDE_FILES = ("-wal", "-shm")


@dataclass
class SearchSession:
    """Owned handle to the live indexer of one project. Not thread-safe."""

    project_dir: Path
    indexer: Indexer
    settings: IndexingSettings
    report: IndexReport = field(default_factory=IndexReport)
    cleanup: CleanupReport | None = None

    @property
    def store(self) -> IndexStore:
        return self.indexer.store

    def search(self, query: str, top_k: int | None = None) -> list[SearchResult]:
        effective_top_k = int(top_k or self.settings.search.default_top_k)
        return self.indexer.search(query, effective_top_k)

    def stats(self) -> IndexStats:
        return self.indexer.status()

    def reindex(self) -> IndexReport:
        self.report = self.indexer.index_all(self.project_dir)
        return self.report

    def close(self) -> None:
        self.indexer.store.close()

    def summary(self) -> dict[str, Any]:
        return {
            "project_dir": str(self.project_dir),
            "db_path": str(self.store.db_path),
            "report": self.report.to_dict(),
            "cleanup": self.cleanup.to_dict() if self.cleanup else None,
            "stats": self.stats().to_dict(),
        }


def init_session(
    project_dir: str | Path,
    *,
    settings: IndexingSettings | None = None,
    engine: EmbedderProtocol | None = None,
    status_callback: StatusCallback | None = None,
    progress_callback: ProgressCallback | None = None,
    logger: logging.Logger | None = None,
) -> SearchSession:
    """
    Open the store, drop stale entries, provision the model and index.

    Either fully succeeds or leaves nothing open behind: on failure the store
    is closed and the error propagates to the caller, who must call again.
    """

    logger = logger or LOGGER
    settings = settings or IndexingSettings.load()
    root = Path(project_dir).resolve()
    if not root.is_dir():
        raise NotADirectoryError(f"Project directory not found: {root}")

    started = time.perf_counter()
    logger.info("Init start, dir=%s", root)
    emit_status(status_callback, "indexing", "Initializing...", logger)

    store = IndexStore.open(
        root,
        settings.store,
        dimension=settings.embeddings.embedding_dim,
        logger=logger,
    )
    try:
        cleanup = auto_cleanup(
            store,
            root,
            vacuum_threshold=settings.cleanup.vacuum_threshold,
            logger=logger,
        )

        emit_status(status_callback, "indexing", "Loading model...", logger)
        if engine is None:
            engine = EmbeddingEngine(
                settings.embeddings,
                progress_callback=progress_callback,
                logger=logger,
            )
        ensure_ready = getattr(engine, "ensure_ready", None)
        if ensure_ready is not None:
            ensure_ready()
        logger.info("Embedding engine ready")

        indexer = Indexer(
            store,
            engine,
            chunking_config=settings.chunking,
            walk_config=settings.walk,
            batch_size=settings.embeddings.batch_size,
            status_callback=status_callback,
            logger=logger,
        )

        emit_status(status_callback, "indexing", "Indexing files...", logger)
        report = indexer.index_all(root)
    except Exception as exc:
        store.close()
        emit_status(status_callback, "error", str(exc), logger)
        raise

    emit_status(
        status_callback,
        "ready",
        f"{report.files_indexed} files indexed, {report.chunks_created} chunks",
        logger,
    )
    logger.info("Init complete in %.2fs", time.perf_counter() - started)
    return SearchSession(
        project_dir=root,
        indexer=indexer,
        settings=settings,
        report=report,
        cleanup=cleanup,
    )


def delete_index(project_dir: str | Path, settings: IndexingSettings | None = None) -> bool:
    """Remove the index database and its WAL/SHM side files. Returns True if it existed."""

    settings = settings or IndexingSettings.load()
    db_path = settings.store.db_path(Path(project_dir).resolve())
    existed = db_path.exists()
    for path in [db_path, *(db_path.with_name(db_path.name + suffix) for suffix in _SQLITE_SIDE_FILES)]:
        path.unlink(missing_ok=True)
    return existed


def rebuild_session(
    project_dir: str | Path,
    *,
    previous: SearchSession | None = None,
    settings: IndexingSettings | None = None,
    engine: EmbedderProtocol | None = None,
    status_callback: StatusCallback | None = None,
    progress_callback: ProgressCallback | None = None,
    logger: logging.Logger | None = None,
) -> SearchSession:
    """Discard the project's index and build it again from scratch."""

    logger = logger or LOGGER
    settings = settings or (previous.settings if previous else IndexingSettings.load())
    emit_status(status_callback, "indexing", "Rebuilding index...", logger)

    if previous is not None:
        if engine is None:
            engine = previous.indexer.engine
        previous.close()

    if delete_index(project_dir, settings):
        logger.info("Removed previous index for %s", project_dir)

    return init_session(
        project_dir,
        settings=settings,
        engine=engine,
        status_callback=status_callback,
        progress_callback=progress_callback,
        logger=logger,
    )


__all__ = ["SearchSession", "delete_index", "init_session", "rebuild_session"]
