"""Per-project SQLite index (WAL) with sqlite-vec nearest-neighbour search."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Iterator, Sequence

import numpy as np

from localsearch.indexing.config import StoreConfig
from localsearch.indexing.exceptions import StoreError


LOGGER = logging.getLogger(__name__)

DEFAULT_DIMENSION = 384
# vec0 refuses KNN queries with k above this value.
MAX_KNN_K = 4096


@dataclass(frozen=True)
class SearchResult:
    path: str
    content: str
    start_line: int
    end_line: int
    heading: str | None
    distance: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class IndexStats:
    file_count: int
    chunk_count: int
    db_size_bytes: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _schema_sql(dimension: int) -> str:
    return f"""
CREATE TABLE IF NOT EXISTS files (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  path TEXT NOT NULL UNIQUE,
  mtime INTEGER NOT NULL,
  hash TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS chunks (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  file_id INTEGER NOT NULL REFERENCES files(id) ON DELETE CASCADE,
  content TEXT NOT NULL,
  start_line INTEGER NOT NULL,
  end_line INTEGER NOT NULL,
  heading TEXT
);

CREATE INDEX IF NOT EXISTS idx_chunks_file_id ON chunks(file_id);

CREATE VIRTUAL TABLE IF NOT EXISTS vec_chunks USING vec0(
  chunk_id INTEGER PRIMARY KEY,
  embedding float[{int(dimension)}]
);
"""


_SEARCH_SQL = """
WITH knn AS (
  SELECT chunk_id, distance
  FROM vec_chunks
  WHERE embedding MATCH ? AND k = ?
)
SELECT knn.distance, c.content, c.start_line, c.end_line, c.heading, f.path
FROM knn
JOIN chunks c ON c.id = knn.chunk_id
JOIN files f ON f.id = c.file_id
ORDER BY knn.distance
LIMIT ?
"""


def vector_to_blob(vector: Sequence[float] | np.ndarray) -> bytes:
    """Little-endian float32 bytes, the layout vec0 expects."""

    return np.asarray(vector, dtype="<f4").tobytes()


def _load_vec_extension(con: sqlite3.Connection) -> None:
    import sqlite_vec

    con.enable_load_extension(True)
    try:
        sqlite_vec.load(con)
    finally:
        con.enable_load_extension(False)


class IndexStore:
    """
    Single-writer store for one project's index file.

    Writes outside `transaction()` commit immediately. Inside it they commit
    together or not at all, so a crash mid-file leaves the last committed
    state intact.
    """

    def __init__(
        self,
        db_path: str | Path,
        *,
        dimension: int = DEFAULT_DIMENSION,
        logger: logging.Logger | None = None,
    ) -> None:
        self.db_path = Path(db_path)
        self.dimension = int(dimension)
        self.logger = logger or LOGGER
        self._tx_depth = 0

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            # Autocommit mode: transactions are opened explicitly in transaction().
            self._con = sqlite3.connect(str(self.db_path), isolation_level=None)
        except (OSError, sqlite3.Error) as exc:
            raise StoreError(f"Failed to open index db {self.db_path}: {exc}") from exc

        try:
            _load_vec_extension(self._con)
            self._con.execute("PRAGMA journal_mode=WAL")
            self._con.execute("PRAGMA foreign_keys=ON")
            self._con.executescript(_schema_sql(self.dimension))
        except Exception as exc:
            self._con.close()
            raise StoreError(f"Schema creation failed for {self.db_path}: {exc}") from exc

        self.logger.info("Index store opened at %s", self.db_path)

    @classmethod
    def open(
        cls,
        project_dir: str | Path,
        config: StoreConfig | None = None,
        *,
        dimension: int = DEFAULT_DIMENSION,
        logger: logging.Logger | None = None,
    ) -> "IndexStore":
        """Open (or create) the index at its fixed location under `project_dir`."""

        config = config or StoreConfig()
        return cls(config.db_path(project_dir), dimension=dimension, logger=logger)

    def close(self) -> None:
        self._con.close()

    def __enter__(self) -> "IndexStore":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @contextmanager
    def transaction(self) -> Iterator["IndexStore"]:
        """Nestable; only the outermost level issues BEGIN/COMMIT/ROLLBACK."""

        outermost = self._tx_depth == 0
        if outermost:
            self._execute("BEGIN IMMEDIATE")
        self._tx_depth += 1
        try:
            yield self
        except BaseException:
            self._tx_depth -= 1
            if outermost and self._con.in_transaction:
                self._con.execute("ROLLBACK")
            raise
        else:
            self._tx_depth -= 1
            if outermost:
                self._execute("COMMIT")

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        try:
            return self._con.execute(sql, params)
        except sqlite3.Error as exc:
            raise StoreError(f"{sql.split()[0]} failed: {exc}") from exc

    def upsert_file(self, path: str, mtime: int, content_hash: str) -> int:
        """Full replace: drop the existing record (and its chunks), insert a fresh one."""

        with self.transaction():
            self.delete_file(path)
            cursor = self._execute(
                "INSERT INTO files (path, mtime, hash) VALUES (?, ?, ?)",
                (path, int(mtime), content_hash),
            )
        return int(cursor.lastrowid)

    def insert_chunk(
        self,
        file_id: int,
        content: str,
        start_line: int,
        end_line: int,
        heading: str | None,
        vector: Sequence[float] | np.ndarray,
    ) -> int:
        blob = vector_to_blob(vector)
        if len(blob) != self.dimension * 4:
            raise StoreError(
                f"Vector has {len(blob) // 4} dimensions, index expects {self.dimension}"
            )

        with self.transaction():
            cursor = self._execute(
                "INSERT INTO chunks (file_id, content, start_line, end_line, heading) "
                "VALUES (?, ?, ?, ?, ?)",
                (file_id, content, int(start_line), int(end_line), heading),
            )
            chunk_id = int(cursor.lastrowid)
            self._execute(
                "INSERT INTO vec_chunks (chunk_id, embedding) VALUES (?, ?)",
                (chunk_id, blob),
            )
        return chunk_id

    def search(self, query_vector: Sequence[float] | np.ndarray, k: int) -> list[SearchResult]:
        if k <= 0:
            return []
        knn_k = min(int(k), MAX_KNN_K)
        rows = self._execute(_SEARCH_SQL, (vector_to_blob(query_vector), knn_k, knn_k)).fetchall()
        return [
            SearchResult(
                path=row[5],
                content=row[1],
                start_line=int(row[2]),
                end_line=int(row[3]),
                heading=row[4],
                distance=float(row[0]),
            )
            for row in rows
        ]

    def delete_file(self, path: str) -> int:
        """Remove a file with its chunks and vectors; returns the removed chunk count."""

        row = self._execute("SELECT id FROM files WHERE path = ?", (path,)).fetchone()
        if row is None:
            return 0
        file_id = row[0]

        with self.transaction():
            chunk_ids = [
                (chunk_id,)
                for (chunk_id,) in self._execute(
                    "SELECT id FROM chunks WHERE file_id = ?", (file_id,)
                ).fetchall()
            ]
            if chunk_ids:
                try:
                    self._con.executemany("DELETE FROM vec_chunks WHERE chunk_id = ?", chunk_ids)
                except sqlite3.Error as exc:
                    raise StoreError(f"delete vectors failed: {exc}") from exc
            # chunks go with the file row through ON DELETE CASCADE
            self._execute("DELETE FROM files WHERE id = ?", (file_id,))
        return len(chunk_ids)

    def get_file_mtime(self, path: str) -> int | None:
        row = self._execute("SELECT mtime FROM files WHERE path = ?", (path,)).fetchone()
        return None if row is None else int(row[0])

    def list_indexed_files(self) -> list[str]:
        return [row[0] for row in self._execute("SELECT path FROM files ORDER BY path").fetchall()]

    def stats(self) -> IndexStats:
        file_count = self._execute("SELECT COUNT(*) FROM files").fetchone()[0]
        chunk_count = self._execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
        try:
            db_size_bytes = self.db_path.stat().st_size
        except OSError:
            db_size_bytes = 0
        return IndexStats(
            file_count=int(file_count),
            chunk_count=int(chunk_count),
            db_size_bytes=int(db_size_bytes),
        )

    def vacuum(self) -> None:
        if self._tx_depth:
            raise StoreError("VACUUM cannot run inside a transaction")
        self._execute("VACUUM")


__all__ = ["IndexStats", "IndexStore", "SearchResult", "vector_to_blob"]
