from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
import requests

from conftest import FakeSession, FakeTokenizer, StreamingSessionMock
from localsearch.indexing.config import EmbeddingConfig
from localsearch.indexing.embeddings import (
    EmbeddingEngine,
    ModelProgress,
    download_file,
    download_with_fallback,
    l2_normalize,
    mean_pool,
)
from localsearch.indexing.exceptions import (
    InferenceError,
    ModelProvisionError,
    SetupInProgressError,
)

PRIMARY = "https://primary.example/model.onnx"
MIRROR = "https://mirror.example/model.onnx"


def _ready_engine(config: EmbeddingConfig | None = None, session: FakeSession | None = None) -> EmbeddingEngine:
    return EmbeddingEngine(
        config or EmbeddingConfig(),
        session=session or FakeSession(),
        tokenizer=FakeTokenizer(),
    )


def test_mean_pool_ignores_padding():
    hidden = np.array([[[1.0, 1.0], [3.0, 3.0], [100.0, 100.0]]], dtype=np.float32)
    mask = np.array([[1, 1, 0]])

    pooled = mean_pool(hidden, mask)

    np.testing.assert_allclose(pooled, [[2.0, 2.0]])


def test_mean_pool_fully_masked_row_is_zero():
    hidden = np.ones((1, 2, 3), dtype=np.float32)
    mask = np.zeros((1, 2))

    np.testing.assert_array_equal(mean_pool(hidden, mask), np.zeros((1, 3)))


def test_l2_normalize_unit_length_and_zero_row():
    vectors = np.array([[3.0, 4.0], [0.0, 0.0]], dtype=np.float32)

    normalized = l2_normalize(vectors)

    np.testing.assert_allclose(normalized[0], [0.6, 0.8], rtol=1e-6)
    np.testing.assert_array_equal(normalized[1], [0.0, 0.0])


def test_embed_batch_pads_to_batch_max_and_normalizes():
    session = FakeSession()
    engine = _ready_engine(session=session)

    vectors = engine.embed_batch(["hello brave world", "hi"])

    assert len(vectors) == 2
    assert all(vector.shape == (384,) for vector in vectors)
    assert all(vector.dtype == np.float32 for vector in vectors)
    for vector in vectors:
        assert np.linalg.norm(vector) == pytest.approx(1.0, rel=1e-5)

    feed = session.feeds[-1]
    # token_type_ids is dropped when the model does not declare it.
    assert set(feed) == {"input_ids", "attention_mask"}
    assert feed["input_ids"].shape == (2, 5)
    assert feed["input_ids"].dtype == np.int64
    assert feed["attention_mask"][1].tolist() == [1, 1, 1, 0, 0]


def test_embed_batch_caps_sequence_length():
    session = FakeSession(input_names=("input_ids", "attention_mask", "token_type_ids"))
    engine = _ready_engine(EmbeddingConfig(max_seq_len=4), session=session)

    engine.embed("one two three four five six seven")

    feed = session.feeds[-1]
    assert feed["input_ids"].shape == (1, 4)
    assert feed["token_type_ids"].tolist() == [[0, 0, 0, 0]]


def test_embed_batch_rejects_wrong_output_dimension():
    engine = _ready_engine(session=FakeSession(dimension=8))

    with pytest.raises(InferenceError):
        engine.embed("some text")


def test_embed_requires_ready_engine():
    engine = EmbeddingEngine(EmbeddingConfig())

    assert engine.embed_batch([]) == []
    with pytest.raises(InferenceError):
        engine.embed_batch(["text"])


def test_ensure_ready_is_single_flight(tmp_path: Path):
    engine = EmbeddingEngine(EmbeddingConfig(model_dir=str(tmp_path)))
    engine._setup_lock.acquire()
    try:
        with pytest.raises(SetupInProgressError) as exc_info:
            engine.ensure_ready()
    finally:
        engine._setup_lock.release()
    assert exc_info.value.code == "SETUP_IN_PROGRESS"


def test_ensure_ready_noop_when_loaded():
    engine = _ready_engine()
    engine._setup_lock.acquire()
    try:
        engine.ensure_ready()
    finally:
        engine._setup_lock.release()
    assert engine.is_ready


def test_download_file_reports_progress(tmp_path: Path, http_mock: StreamingSessionMock):
    http_mock.add(PRIMARY, {"body": b"x" * 10_000, "block_size": 1_000})
    events: list[ModelProgress] = []
    dest = tmp_path / "model.onnx"

    written = download_file(
        PRIMARY, dest, label="model", http=http_mock, progress_callback=events.append
    )

    assert written == 10_000
    assert dest.read_bytes() == b"x" * 10_000
    assert not (tmp_path / "model.onnx.part").exists()
    assert events[0].progress == 0.0
    assert events[-1].progress == 1.0
    assert events[-1].downloaded_bytes == 10_000
    middle = [event.progress for event in events[1:-1]]
    assert middle == sorted(middle)
    assert all(0.0 < value <= 0.99 for value in middle)
    assert {event.stage for event in events} == {"downloading_model"}


def test_download_file_indeterminate_progress(tmp_path: Path, http_mock: StreamingSessionMock):
    http_mock.add(
        PRIMARY,
        {"body": b"y" * 200_000, "block_size": 50_000, "content_length": False},
    )
    events: list[ModelProgress] = []

    download_file(
        PRIMARY,
        tmp_path / "tokenizer.json",
        label="tokenizer",
        http=http_mock,
        progress_callback=events.append,
    )

    indeterminate = [event for event in events if event.progress == -1.0]
    assert len(indeterminate) == 3
    assert indeterminate[-1].downloaded_bytes == 200_000
    assert events[-1].progress == 1.0


def test_download_with_fallback_uses_mirror(tmp_path: Path, http_mock: StreamingSessionMock):
    http_mock.add(PRIMARY, {"status_code": 404})
    http_mock.add(MIRROR, {"body": b"model-bytes"})
    dest = tmp_path / "model.onnx"

    download_with_fallback([PRIMARY, MIRROR], dest, label="model", http=http_mock)

    assert http_mock.calls == [PRIMARY, MIRROR]
    assert dest.read_bytes() == b"model-bytes"


def test_download_with_fallback_all_sources_fail(tmp_path: Path, http_mock: StreamingSessionMock):
    http_mock.add(PRIMARY, {"raise": requests.ConnectionError("refused")})
    http_mock.add(MIRROR, {"body": b"a" * 4_000, "error": requests.ConnectionError("reset")})
    dest = tmp_path / "model.onnx"

    with pytest.raises(ModelProvisionError) as exc_info:
        download_with_fallback([PRIMARY, MIRROR], dest, label="model", http=http_mock)

    assert "All download sources failed" in str(exc_info.value)
    assert not dest.exists()
    assert not (tmp_path / "model.onnx.part").exists()


def test_download_empty_body_is_error(tmp_path: Path, http_mock: StreamingSessionMock):
    http_mock.add(PRIMARY, {"body": b""})

    with pytest.raises(ModelProvisionError):
        download_file(PRIMARY, tmp_path / "model.onnx", label="model", http=http_mock)


def test_raising_progress_callback_is_ignored(tmp_path: Path, http_mock: StreamingSessionMock):
    http_mock.add(PRIMARY, {"body": b"z" * 100})

    def _boom(event: ModelProgress) -> None:
        raise RuntimeError("ui went away")

    assert download_file(
        PRIMARY, tmp_path / "model.onnx", label="model", http=http_mock, progress_callback=_boom
    ) == 100


def test_ensure_ready_downloads_missing_files_once(
    tmp_path: Path, http_mock: StreamingSessionMock, monkeypatch: pytest.MonkeyPatch
):
    tokenizer_url = "https://primary.example/tokenizer.json"
    http_mock.add(PRIMARY, {"status_code": 503})
    http_mock.add(MIRROR, {"body": b"onnx"})
    http_mock.add(tokenizer_url, {"body": b"{}"})
    config = EmbeddingConfig(
        model_dir=str(tmp_path / "models"),
        model_urls=(PRIMARY, MIRROR),
        tokenizer_urls=(tokenizer_url,),
    )
    engine = EmbeddingEngine(config, http=http_mock)
    loaded: list[tuple[Path, Path]] = []

    def _fake_load(model_path: Path, tokenizer_path: Path) -> None:
        loaded.append((model_path, tokenizer_path))
        engine._session = FakeSession()
        engine._tokenizer = FakeTokenizer()

    monkeypatch.setattr(engine, "_load", _fake_load)

    engine.ensure_ready()
    engine.ensure_ready()

    assert http_mock.calls == [PRIMARY, MIRROR, tokenizer_url]
    assert loaded == [(tmp_path / "models" / "model.onnx", tmp_path / "models" / "tokenizer.json")]
    assert (tmp_path / "models" / "model.onnx").read_bytes() == b"onnx"
    assert engine.is_ready
    assert not http_mock.closed


def test_ensure_ready_reuses_cached_files(
    tmp_path: Path, http_mock: StreamingSessionMock, monkeypatch: pytest.MonkeyPatch
):
    model_dir = tmp_path / "models"
    model_dir.mkdir()
    (model_dir / "model.onnx").write_bytes(b"cached")
    (model_dir / "tokenizer.json").write_bytes(b"{}")
    engine = EmbeddingEngine(EmbeddingConfig(model_dir=str(model_dir)), http=http_mock)
    monkeypatch.setattr(engine, "_load", lambda model_path, tokenizer_path: None)

    engine.ensure_ready()

    assert http_mock.calls == []


def test_ensure_ready_closes_its_own_http_session(
    tmp_path: Path, http_mock: StreamingSessionMock, monkeypatch: pytest.MonkeyPatch
):
    tokenizer_url = "https://primary.example/tokenizer.json"
    http_mock.add(PRIMARY, {"body": b"onnx"})
    http_mock.add(tokenizer_url, {"body": b"{}"})
    created: list[StreamingSessionMock] = []

    def _session() -> StreamingSessionMock:
        created.append(http_mock)
        return http_mock

    monkeypatch.setattr(requests, "Session", _session)
    config = EmbeddingConfig(
        model_dir=str(tmp_path / "models"),
        model_urls=(PRIMARY,),
        tokenizer_urls=(tokenizer_url,),
    )
    engine = EmbeddingEngine(config)
    monkeypatch.setattr(engine, "_load", lambda model_path, tokenizer_path: None)

    engine.ensure_ready()

    assert len(created) == 1
    assert http_mock.calls == [PRIMARY, tokenizer_url]
    assert http_mock.closed


def test_download_file_closes_default_session(
    tmp_path: Path, http_mock: StreamingSessionMock, monkeypatch: pytest.MonkeyPatch
):
    http_mock.add(PRIMARY, {"body": b"x" * 10})
    monkeypatch.setattr(requests, "Session", lambda: http_mock)

    assert download_file(PRIMARY, tmp_path / "model.onnx", label="model") == 10
    assert http_mock.closed
