from __future__ import annotations

from pathlib import Path

import pytest

pytest.importorskip("sqlite_vec")

from conftest import FakeEmbeddings
from localsearch.indexing.cleaner import auto_cleanup
from localsearch.indexing.indexer import Indexer
from localsearch.indexing.store import IndexStore


def _indexed_store(root: Path) -> IndexStore:
    store = IndexStore.open(root)
    Indexer(store, FakeEmbeddings()).index_all(root)
    return store


def _file_chunk_count(store: IndexStore, rel_path: str) -> int:
    (count,) = store._con.execute(
        "SELECT COUNT(*) FROM chunks c JOIN files f ON f.id = c.file_id WHERE f.path = ?",
        (rel_path,),
    ).fetchone()
    return int(count)


def test_cleanup_removes_deleted_file_exactly(project_dir: Path):
    store = _indexed_store(project_dir)
    try:
        before = store.stats()
        removed_chunks = _file_chunk_count(store, "notes.txt")
        (project_dir / "notes.txt").unlink()

        report = auto_cleanup(store, project_dir)

        after = store.stats()
        assert report.files_removed == 1
        assert report.chunks_removed == removed_chunks
        assert report.vacuumed is False
        assert after.file_count == before.file_count - 1
        assert after.chunk_count == before.chunk_count - removed_chunks
    finally:
        store.close()


def test_cleanup_without_changes_is_noop(project_dir: Path):
    store = _indexed_store(project_dir)
    try:
        report = auto_cleanup(store, project_dir)
    finally:
        store.close()

    assert report.to_dict() == {"files_removed": 0, "chunks_removed": 0, "vacuumed": False}


def test_vacuum_only_above_threshold(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    for idx in range(3):
        (tmp_path / f"file{idx}.txt").write_text(f"content {idx}\n", encoding="utf-8")
    store = _indexed_store(tmp_path)
    vacuum_calls: list[bool] = []
    monkeypatch.setattr(store, "vacuum", lambda: vacuum_calls.append(True))
    try:
        (tmp_path / "file0.txt").unlink()
        at_threshold = auto_cleanup(store, tmp_path, vacuum_threshold=1)

        (tmp_path / "file1.txt").unlink()
        (tmp_path / "file2.txt").unlink()
        above_threshold = auto_cleanup(store, tmp_path, vacuum_threshold=1)
    finally:
        store.close()

    assert at_threshold.vacuumed is False
    assert above_threshold.files_removed == 2
    assert above_threshold.vacuumed is True
    assert vacuum_calls == [True]
