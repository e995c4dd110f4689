from __future__ import annotations

from pathlib import Path

import pytest

pytest.importorskip("sqlite_vec")

from conftest import FakeEmbeddings
from localsearch.indexing.config import IndexingSettings
from localsearch.indexing.exceptions import ModelProvisionError
from localsearch.indexing.indexer import StatusEvent
from localsearch.indexing.session import delete_index, init_session, rebuild_session


class _BrokenEngine(FakeEmbeddings):
    def ensure_ready(self) -> None:
        raise ModelProvisionError("All download sources failed for model")


def test_init_session_indexes_and_reports(project_dir: Path, fake_embeddings: FakeEmbeddings):
    events: list[StatusEvent] = []

    session = init_session(
        project_dir,
        settings=IndexingSettings(),
        engine=fake_embeddings,
        status_callback=events.append,
    )
    try:
        summary = session.summary()
        results = session.search("installer directory")
        stats = session.stats()
    finally:
        session.close()

    messages = [event.message for event in events]
    assert messages[:3] == ["Initializing...", "Loading model...", "Indexing files..."]
    assert events[-1].status == "ready"
    assert events[-1].message == f"3 files indexed, {stats.chunk_count} chunks"
    assert fake_embeddings.ready_calls == 1
    assert summary["report"]["files_indexed"] == 3
    assert summary["cleanup"]["files_removed"] == 0
    assert summary["db_path"].endswith("index.db")
    assert 0 < len(results) <= 5
    assert stats.file_count == 3


def test_init_session_failure_surfaces_error(project_dir: Path):
    events: list[StatusEvent] = []

    with pytest.raises(ModelProvisionError):
        init_session(
            project_dir,
            settings=IndexingSettings(),
            engine=_BrokenEngine(),
            status_callback=events.append,
        )

    assert events[-1].status == "error"
    assert "download" in events[-1].message


def test_init_session_rejects_missing_directory(tmp_path: Path, fake_embeddings: FakeEmbeddings):
    with pytest.raises(NotADirectoryError):
        init_session(tmp_path / "nope", settings=IndexingSettings(), engine=fake_embeddings)


def test_second_init_only_indexes_changes(project_dir: Path, fake_embeddings: FakeEmbeddings):
    settings = IndexingSettings()
    init_session(project_dir, settings=settings, engine=fake_embeddings).close()
    (project_dir / "notes.txt").unlink()
    (project_dir / "todo.md").write_text("# Todo\n\nWrite more tests.\n", encoding="utf-8")

    session = init_session(project_dir, settings=settings, engine=fake_embeddings)
    try:
        assert session.cleanup is not None and session.cleanup.files_removed == 1
        assert session.report.files_indexed == 1
        assert session.report.files_unchanged == 2
        assert session.stats().file_count == 3
    finally:
        session.close()


def test_rebuild_session_reindexes_everything(project_dir: Path, fake_embeddings: FakeEmbeddings):
    settings = IndexingSettings()
    previous = init_session(project_dir, settings=settings, engine=fake_embeddings)

    rebuilt = rebuild_session(project_dir, previous=previous, settings=settings)
    try:
        assert rebuilt.report.files_indexed == 3
        assert rebuilt.report.files_unchanged == 0
        assert rebuilt.indexer.engine is fake_embeddings
    finally:
        rebuilt.close()
    assert fake_embeddings.ready_calls == 2


def test_delete_index_removes_db_files(project_dir: Path, fake_embeddings: FakeEmbeddings):
    settings = IndexingSettings()
    init_session(project_dir, settings=settings, engine=fake_embeddings).close()
    db_path = settings.store.db_path(project_dir)
    assert db_path.exists()

    assert delete_index(project_dir, settings) is True
    assert not db_path.exists()
    assert not db_path.with_name("index.db-wal").exists()
    assert delete_index(project_dir, settings) is False
