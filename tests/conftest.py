"""Test configuration helpers."""

from __future__ import annotations

import hashlib
import sys
from collections import deque
from pathlib import Path
from typing import Any, Sequence

import numpy as np
import pytest
import requests

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


class FakeEmbeddings:
    """Deterministic bag-of-words hashing embeddings for fully offline tests."""

    def __init__(self, dimension: int = 384) -> None:
        self.dimension = dimension
        self.ready_calls = 0
        self.batch_sizes: list[int] = []

    def ensure_ready(self) -> None:
        self.ready_calls += 1

    def _embed(self, text: str) -> np.ndarray:
        vector = np.zeros(self.dimension, dtype=np.float32)
        for token in text.lower().split():
            digest = hashlib.sha256(token.encode("utf-8")).digest()
            vector[digest[0] % self.dimension] += (digest[1] / 255.0) + 0.01
        norm = float(np.linalg.norm(vector))
        return vector / norm if norm else vector

    def embed_batch(self, texts: Sequence[str]) -> list[np.ndarray]:
        self.batch_sizes.append(len(texts))
        return [self._embed(text) for text in texts]

    def embed(self, text: str) -> np.ndarray:
        return self._embed(text)


class FakeEncoding:
    def __init__(self, ids: list[int]) -> None:
        self.ids = ids
        self.attention_mask = [1] * len(ids)


class FakeTokenizer:
    """Whitespace tokenizer mimicking `tokenizers.Tokenizer.encode_batch`."""

    def encode_batch(self, texts: list[str]) -> list[FakeEncoding]:
        return [
            FakeEncoding([101] + [len(word) + 1000 for word in text.split()] + [102])
            for text in texts
        ]


class _FakeInput:
    def __init__(self, name: str) -> None:
        self.name = name


class FakeSession:
    """Stands in for `onnxruntime.InferenceSession`; hidden state = token id broadcast."""

    def __init__(self, dimension: int = 384, input_names: Sequence[str] = ("input_ids", "attention_mask")) -> None:
        self.dimension = dimension
        self.input_names = tuple(input_names)
        self.feeds: list[dict[str, np.ndarray]] = []

    def get_inputs(self) -> list[_FakeInput]:
        return [_FakeInput(name) for name in self.input_names]

    def run(self, output_names: Any, feed: dict[str, np.ndarray]) -> list[np.ndarray]:
        del output_names
        self.feeds.append(feed)
        input_ids = feed["input_ids"].astype(np.float32)
        hidden = np.repeat(input_ids[:, :, None], self.dimension, axis=2)
        hidden[:, :, 1] = 1.0
        return [hidden]


class _MockStreamResponse:
    def __init__(self, payload: dict[str, Any]) -> None:
        self.status_code = int(payload.get("status_code", 200))
        self._body: bytes = payload.get("body", b"")
        self._block_size = int(payload.get("block_size", 1024))
        self._error: Exception | None = payload.get("error")
        self.headers: dict[str, str] = {}
        if payload.get("content_length", True) and self._body:
            self.headers["Content-Length"] = str(len(self._body))
        self.closed = False

    def iter_content(self, chunk_size: int = 1024):
        del chunk_size
        for offset in range(0, len(self._body), self._block_size):
            if self._error is not None and offset >= len(self._body) // 2:
                raise self._error
            yield self._body[offset : offset + self._block_size]

    def close(self) -> None:
        self.closed = True


class StreamingSessionMock:
    """Scripted `requests.Session` replacement keyed by URL."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self._routes: dict[str, deque[dict[str, Any]]] = {}
        self.closed = False

    def add(self, url: str, responses: dict[str, Any] | list[dict[str, Any]]) -> None:
        if isinstance(responses, list):
            self._routes[url] = deque(responses)
        else:
            self._routes[url] = deque([responses])

    def get(self, url: str, stream: bool = False, timeout: Any = None, **kwargs: Any) -> _MockStreamResponse:
        del stream, timeout, kwargs
        self.calls.append(url)
        route = self._routes.get(url)
        if not route:
            raise requests.ConnectionError(f"Unexpected request URL in test: {url}")
        payload = route.popleft()
        if isinstance(payload.get("raise"), Exception):
            raise payload["raise"]
        return _MockStreamResponse(payload)

    def close(self) -> None:
        self.closed = True

    def __enter__(self) -> "StreamingSessionMock":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


@pytest.fixture
def fake_embeddings() -> FakeEmbeddings:
    return FakeEmbeddings()


@pytest.fixture
def http_mock() -> StreamingSessionMock:
    return StreamingSessionMock()


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    root.mkdir()
    (root / "README.md").write_text(
        "# Project\n\nLocal semantic search over notes and code.\n\n"
        "## Install\n\nRun the installer and point it at a directory.\n",
        encoding="utf-8",
    )
    (root / "src").mkdir()
    (root / "src" / "main.py").write_text(
        "def add(a, b):\n    return a + b\n\n\n"
        "def greet(name):\n    return f'hello {name}'\n",
        encoding="utf-8",
    )
    (root / "notes.txt").write_text(
        "Quarterly budget review notes.\nThe database migration is scheduled for Friday.\n",
        encoding="utf-8",
    )
    (root / "node_modules").mkdir()
    (root / "node_modules" / "dep.js").write_text("module.exports = 1;\n", encoding="utf-8")
    (root / "image.png").write_bytes(b"\x89PNG\r\n\x1a\n\x00\x00")
    return root
