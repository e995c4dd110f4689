"""Sentence-embedding engine: model provisioning + ONNX inference + pooling."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Callable, Sequence

import numpy as np
import requests

from localsearch.indexing.config import EmbeddingConfig
from localsearch.indexing.exceptions import (
    InferenceError,
    ModelProvisionError,
    SetupInProgressError,
)


LOGGER = logging.getLogger(__name__)

DOWNLOAD_CHUNK_BYTES = 64 * 1024
INDETERMINATE_EMIT_BYTES = 64 * 1024
PROGRESS_STEP = 0.02


@dataclass(frozen=True)
class ModelProgress:
    stage: str
    # 0.0-1.0 when the total is known, -1.0 otherwise.
    progress: float
    downloaded_bytes: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


ProgressCallback = Callable[[ModelProgress], None]


def _emit(callback: ProgressCallback | None, event: ModelProgress, logger: logging.Logger) -> None:
    if callback is None:
        return
    try:
        callback(event)
    except Exception as exc:
        logger.warning("Model progress callback failed: %s", exc)


def download_file(
    url: str,
    dest: Path,
    *,
    label: str,
    expected_size: int = 0,
    http: requests.Session | None = None,
    connect_timeout: float = 15,
    overall_timeout: float = 300,
    progress_callback: ProgressCallback | None = None,
    logger: logging.Logger | None = None,
) -> int:
    """
    Stream `url` into `dest` and return the number of bytes written.

    The body goes to `<dest>.part` first and is renamed into place only after
    the whole transfer succeeded. Not resumable: a retry fetches everything.
    """

    if http is None:
        with requests.Session() as session:
            return download_file(
                url,
                dest,
                label=label,
                expected_size=expected_size,
                http=session,
                connect_timeout=connect_timeout,
                overall_timeout=overall_timeout,
                progress_callback=progress_callback,
                logger=logger,
            )

    logger = logger or LOGGER
    stage = f"downloading_{label}"
    tmp_path = dest.with_name(dest.name + ".part")
    deadline = time.monotonic() + overall_timeout

    logger.info("Downloading %s from %s", label, url)
    _emit(progress_callback, ModelProgress(stage=stage, progress=0.0), logger)

    try:
        response = http.get(url, stream=True, timeout=(connect_timeout, overall_timeout))
    except requests.RequestException as exc:
        raise ModelProvisionError(f"Download {label} failed: {exc}") from exc

    try:
        if response.status_code >= 400:
            raise ModelProvisionError(
                f"Download {label} failed: HTTP {response.status_code} from {url}"
            )

        content_length = int(response.headers.get("Content-Length") or 0)
        total = content_length or expected_size
        logger.info(
            "%s response: status=%s content_length=%s expected_size=%s",
            label,
            response.status_code,
            content_length or None,
            expected_size,
        )

        downloaded = 0
        last_emitted = 0.0
        with tmp_path.open("wb") as stream:
            for block in response.iter_content(chunk_size=DOWNLOAD_CHUNK_BYTES):
                if not block:
                    continue
                if time.monotonic() > deadline:
                    raise ModelProvisionError(
                        f"Download {label} timed out after {overall_timeout}s"
                    )
                stream.write(block)
                downloaded += len(block)

                if total > 0:
                    progress = min(downloaded / total, 0.99)
                    should_emit = progress - last_emitted >= PROGRESS_STEP
                else:
                    progress = -1.0
                    should_emit = downloaded % INDETERMINATE_EMIT_BYTES < len(block)

                if should_emit:
                    last_emitted = progress
                    _emit(
                        progress_callback,
                        ModelProgress(stage=stage, progress=progress, downloaded_bytes=downloaded),
                        logger,
                    )
    except requests.RequestException as exc:
        tmp_path.unlink(missing_ok=True)
        raise ModelProvisionError(f"Download stream error for {label}: {exc}") from exc
    except OSError as exc:
        tmp_path.unlink(missing_ok=True)
        raise ModelProvisionError(f"Failed to write {label}: {exc}") from exc
    except ModelProvisionError:
        tmp_path.unlink(missing_ok=True)
        raise
    finally:
        response.close()

    if downloaded == 0:
        tmp_path.unlink(missing_ok=True)
        raise ModelProvisionError(f"Download {label} returned an empty body from {url}")

    tmp_path.replace(dest)
    _emit(
        progress_callback,
        ModelProgress(stage=stage, progress=1.0, downloaded_bytes=downloaded),
        logger,
    )
    logger.info("%s complete, %s bytes written to %s", label, downloaded, dest)
    return downloaded


def download_with_fallback(
    urls: Sequence[str],
    dest: Path,
    *,
    label: str,
    logger: logging.Logger | None = None,
    **kwargs: Any,
) -> int:
    """Try each candidate source in order until one succeeds."""

    logger = logger or LOGGER
    errors: list[str] = []
    for url in urls:
        try:
            return download_file(url, dest, label=label, logger=logger, **kwargs)
        except ModelProvisionError as exc:
            logger.warning("Download of %s from %s failed: %s", label, url, exc)
            errors.append(str(exc))

    raise ModelProvisionError(
        f"All download sources failed for {label}: " + ("; ".join(errors) or "no sources configured")
    )


def mean_pool(hidden: np.ndarray, attention_mask: np.ndarray) -> np.ndarray:
    """Attention-mask weighted mean over the token axis. Fully masked rows stay zero."""

    mask = attention_mask.astype(np.float32)[:, :, None]
    summed = (hidden.astype(np.float32) * mask).sum(axis=1)
    counts = mask.sum(axis=1)
    return np.divide(summed, counts, out=np.zeros_like(summed), where=counts > 0)


def l2_normalize(vectors: np.ndarray) -> np.ndarray:
    """Divide each row by its Euclidean norm; rows with a zero norm are left as is."""

    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    return np.divide(vectors, norms, out=vectors.copy(), where=norms != 0)


class EmbeddingEngine:
    """
    Fixed-size sentence-embedding model kept resident for the engine lifetime.

    `ensure_ready` provisions the model and tokenizer once (download if
    missing, then load). Provisioning is single-flight per instance: a call
    made while another one is in progress fails fast with
    `SetupInProgressError` instead of blocking or downloading twice.
    """

    def __init__(
        self,
        config: EmbeddingConfig | None = None,
        *,
        session: Any | None = None,
        tokenizer: Any | None = None,
        http: requests.Session | None = None,
        progress_callback: ProgressCallback | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config or EmbeddingConfig()
        self.logger = logger or LOGGER
        self.progress_callback = progress_callback
        self._http = http
        self._session = session
        self._tokenizer = tokenizer
        self._setup_lock = threading.Lock()

    @property
    def is_ready(self) -> bool:
        return self._session is not None and self._tokenizer is not None

    @property
    def model_dir(self) -> Path:
        return self.config.resolve_model_dir()

    @property
    def dimension(self) -> int:
        return self.config.embedding_dim

    def ensure_ready(self) -> None:
        if self.is_ready:
            return
        if not self._setup_lock.acquire(blocking=False):
            raise SetupInProgressError()
        try:
            if self.is_ready:
                return
            model_path, tokenizer_path = self._provision_files()
            self._load(model_path, tokenizer_path)
        finally:
            self._setup_lock.release()

    def _provision_files(self) -> tuple[Path, Path]:
        model_dir = self.model_dir
        self.logger.info("Model dir=%s", model_dir)
        try:
            model_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ModelProvisionError(f"Failed to create model dir {model_dir}: {exc}") from exc

        model_path = model_dir / self.config.model_file
        tokenizer_path = model_dir / self.config.tokenizer_file
        http = self._http or requests.Session()
        download_kwargs = {
            "http": http,
            "connect_timeout": self.config.connect_timeout_seconds,
            "overall_timeout": self.config.download_timeout_seconds,
            "progress_callback": self.progress_callback,
            "logger": self.logger,
        }

        try:
            if model_path.exists():
                self.logger.info("Model exists, size=%s", model_path.stat().st_size)
            else:
                download_with_fallback(
                    self.config.model_urls,
                    model_path,
                    label="model",
                    expected_size=self.config.model_expected_size,
                    **download_kwargs,
                )

            if tokenizer_path.exists():
                self.logger.info("Tokenizer exists at %s", tokenizer_path)
            else:
                download_with_fallback(
                    self.config.tokenizer_urls,
                    tokenizer_path,
                    label="tokenizer",
                    expected_size=self.config.tokenizer_expected_size,
                    **download_kwargs,
                )
        finally:
            # Injected sessions belong to the caller.
            if self._http is None:
                http.close()

        return model_path, tokenizer_path

    def _load(self, model_path: Path, tokenizer_path: Path) -> None:
        import onnxruntime as ort
        from tokenizers import Tokenizer

        _emit(self.progress_callback, ModelProgress(stage="loading", progress=0.9), self.logger)

        try:
            options = ort.SessionOptions()
            options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
            session = ort.InferenceSession(
                str(model_path),
                sess_options=options,
                providers=["CPUExecutionProvider"],
            )
        except Exception as exc:
            raise ModelProvisionError(f"ONNX model load failed: {exc}") from exc
        self.logger.info("ONNX session loaded from %s", model_path)

        try:
            tokenizer = Tokenizer.from_file(str(tokenizer_path))
        except Exception as exc:
            raise ModelProvisionError(f"Tokenizer load failed: {exc}") from exc
        self.logger.info("Tokenizer loaded from %s", tokenizer_path)

        self._session = session
        self._tokenizer = tokenizer
        _emit(self.progress_callback, ModelProgress(stage="ready", progress=1.0), self.logger)

    def _input_names(self) -> set[str] | None:
        get_inputs = getattr(self._session, "get_inputs", None)
        if get_inputs is None:
            return None
        return {item.name for item in get_inputs()}

    def embed_batch(self, texts: Sequence[str]) -> list[np.ndarray]:
        if not texts:
            return []
        if not self.is_ready:
            raise InferenceError("Embedding engine is not ready; call ensure_ready() first.")

        try:
            encodings = self._tokenizer.encode_batch(list(texts))
        except Exception as exc:
            raise InferenceError(f"Tokenization failed: {exc}") from exc

        batch_size = len(encodings)
        max_len = max(min(len(encoding.ids), self.config.max_seq_len) for encoding in encodings)
        max_len = max(max_len, 1)

        input_ids = np.zeros((batch_size, max_len), dtype=np.int64)
        attention_mask = np.zeros((batch_size, max_len), dtype=np.int64)
        token_type_ids = np.zeros((batch_size, max_len), dtype=np.int64)
        for row, encoding in enumerate(encodings):
            length = min(len(encoding.ids), max_len)
            input_ids[row, :length] = encoding.ids[:length]
            attention_mask[row, :length] = encoding.attention_mask[:length]

        feed = {
            "input_ids": input_ids,
            "attention_mask": attention_mask,
            "token_type_ids": token_type_ids,
        }
        input_names = self._input_names()
        if input_names is not None:
            feed = {name: value for name, value in feed.items() if name in input_names}

        try:
            outputs = self._session.run(None, feed)
        except Exception as exc:
            raise InferenceError(f"ONNX inference failed: {exc}") from exc

        hidden = np.asarray(outputs[0], dtype=np.float32)
        expected = (batch_size, max_len, self.config.embedding_dim)
        if hidden.shape != expected:
            raise InferenceError(
                f"Unexpected model output shape {hidden.shape}, expected {expected}"
            )

        pooled = l2_normalize(mean_pool(hidden, attention_mask))
        return [row.astype(np.float32) for row in pooled]

    def embed(self, text: str) -> np.ndarray:
        vectors = self.embed_batch([text])
        if not vectors:
            raise InferenceError("Empty embedding result")
        return vectors[0]


__all__ = [
    "EmbeddingEngine",
    "ModelProgress",
    "ProgressCallback",
    "download_file",
    "download_with_fallback",
    "l2_normalize",
    "mean_pool",
]
