"""Reconcile the index with the live filesystem."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from localsearch.indexing.store import IndexStore


LOGGER = logging.getLogger(__name__)

DEFAULT_VACUUM_THRESHOLD = 100


@dataclass(frozen=True)
class CleanupReport:
    files_removed: int
    chunks_removed: int
    vacuumed: bool

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def auto_cleanup(
    store: IndexStore,
    project_dir: str | Path,
    *,
    vacuum_threshold: int = DEFAULT_VACUUM_THRESHOLD,
    logger: logging.Logger | None = None,
) -> CleanupReport:
    """Drop entries whose file is gone; VACUUM only past `vacuum_threshold` removals."""

    logger = logger or LOGGER
    root = Path(project_dir)
    files_removed = 0
    chunks_removed = 0

    for rel_path in store.list_indexed_files():
        if (root / rel_path).exists():
            continue
        chunks_removed += store.delete_file(rel_path)
        files_removed += 1
        logger.debug("Removed stale index entry %s", rel_path)

    vacuumed = files_removed > vacuum_threshold
    if vacuumed:
        store.vacuum()

    logger.info(
        "Cleanup done: files_removed=%s chunks_removed=%s vacuumed=%s",
        files_removed,
        chunks_removed,
        vacuumed,
    )
    return CleanupReport(
        files_removed=files_removed,
        chunks_removed=chunks_removed,
        vacuumed=vacuumed,
    )


__all__ = ["CleanupReport", "DEFAULT_VACUUM_THRESHOLD", "auto_cleanup"]
