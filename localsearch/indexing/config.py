"""Indexing configuration: defaults, YAML loading and typed sections."""

from __future__ import annotations

import copy
import os
import sys
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml


APP_NAME = "localsearch"
CONFIG_ENV_VAR = "LOCALSEARCH_CONFIG"
MODEL_DIR_ENV_VAR = "LOCALSEARCH_MODEL_DIR"
DATA_DIR_ENV_VAR = "LOCALSEARCH_DATA_DIR"

_HF_BASE = "https://huggingface.co/sentence-transformers/all-MiniLM-L6-v2/resolve/main"
_HF_MIRROR = "https://hf-mirror.com/sentence-transformers/all-MiniLM-L6-v2/resolve/main"

DEFAULT_SKIP_DIRS = (
    "node_modules",
    ".git",
    "target",
    "dist",
    "build",
    ".next",
    "__pycache__",
    ".venv",
    "venv",
    ".localsearch",
    ".DS_Store",
    "vendor",
    "coverage",
    ".cache",
    ".parcel-cache",
)


DEFAULT_INDEXING_CONFIG: dict[str, Any] = {
    "chunking": {
        "target_tokens": 300,
        "max_tokens": 500,
        "overlap_tokens": 50,
    },
    "embeddings": {
        "model_name": "all-MiniLM-L6-v2",
        "model_dir": "",
        "model_file": "model.onnx",
        "tokenizer_file": "tokenizer.json",
        "model_urls": [
            f"{_HF_BASE}/onnx/model.onnx",
            f"{_HF_MIRROR}/onnx/model.onnx",
        ],
        "tokenizer_urls": [
            f"{_HF_BASE}/tokenizer.json",
            f"{_HF_MIRROR}/tokenizer.json",
        ],
        "model_expected_size": 90_900_000,
        "tokenizer_expected_size": 712_000,
        "embedding_dim": 384,
        "max_seq_len": 256,
        "batch_size": 32,
        "connect_timeout_seconds": 15,
        "download_timeout_seconds": 300,
    },
    "store": {
        "index_dirname": ".localsearch",
        "db_filename": "index.db",
    },
    "walk": {
        "max_depth": 8,
        "max_file_bytes": 10 * 1024 * 1024,
        "skip_dirs": list(DEFAULT_SKIP_DIRS),
    },
    "cleanup": {
        "vacuum_threshold": 100,
    },
    "search": {
        "default_top_k": 5,
        "max_top_k": 50,
    },
}


def _to_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _to_str_list(value: Any, default: tuple[str, ...]) -> tuple[str, ...]:
    if value is None:
        return default
    if isinstance(value, str):
        text = value.strip()
        return (text,) if text else default
    if isinstance(value, (list, tuple)):
        items = tuple(str(item).strip() for item in value if str(item).strip())
        return items or default
    return default


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_indexing_config(config_path: str | Path | None = None) -> dict[str, Any]:
    """
    Load the indexing config as a plain dict.

    Priority:
      1) Explicit `config_path`
      2) LOCALSEARCH_CONFIG environment variable
      3) Defaults only
    """

    config = copy.deepcopy(DEFAULT_INDEXING_CONFIG)
    raw_path = config_path or os.getenv(CONFIG_ENV_VAR, "").strip() or None
    if raw_path is None:
        return config

    path = Path(raw_path)
    if not path.exists():
        raise FileNotFoundError(f"Indexing config not found: {path}")

    with path.open("r", encoding="utf-8") as stream:
        payload = yaml.safe_load(stream) or {}
    if not isinstance(payload, dict):
        raise ValueError("Indexing config root must be a mapping.")
    return _deep_merge(config, payload)


def default_data_dir() -> Path:
    """Shared application-data root, reused across all projects."""

    override = os.getenv(DATA_DIR_ENV_VAR, "").strip()
    if override:
        return Path(override)
    if sys.platform == "win32":
        base = os.getenv("APPDATA") or str(Path.home() / "AppData" / "Roaming")
        return Path(base) / APP_NAME
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / APP_NAME
    base = os.getenv("XDG_DATA_HOME") or str(Path.home() / ".local" / "share")
    return Path(base) / APP_NAME


@dataclass(frozen=True)
class ChunkingConfig:
    target_tokens: int = 300
    max_tokens: int = 500
    overlap_tokens: int = 50

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> "ChunkingConfig":
        payload = payload or {}
        target = max(1, _to_int(payload.get("target_tokens"), 300))
        max_tokens = max(target, _to_int(payload.get("max_tokens"), 500))
        return cls(
            target_tokens=target,
            max_tokens=max_tokens,
            overlap_tokens=max(0, _to_int(payload.get("overlap_tokens"), 50)),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class EmbeddingConfig:
    model_name: str = "all-MiniLM-L6-v2"
    model_dir: str = ""
    model_file: str = "model.onnx"
    tokenizer_file: str = "tokenizer.json"
    model_urls: tuple[str, ...] = tuple(DEFAULT_INDEXING_CONFIG["embeddings"]["model_urls"])
    tokenizer_urls: tuple[str, ...] = tuple(DEFAULT_INDEXING_CONFIG["embeddings"]["tokenizer_urls"])
    model_expected_size: int = 90_900_000
    tokenizer_expected_size: int = 712_000
    embedding_dim: int = 384
    max_seq_len: int = 256
    batch_size: int = 32
    connect_timeout_seconds: int = 15
    download_timeout_seconds: int = 300

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> "EmbeddingConfig":
        payload = payload or {}
        defaults = cls()
        return cls(
            model_name=str(payload.get("model_name") or defaults.model_name).strip(),
            model_dir=str(payload.get("model_dir") or "").strip(),
            model_file=str(payload.get("model_file") or defaults.model_file).strip(),
            tokenizer_file=str(payload.get("tokenizer_file") or defaults.tokenizer_file).strip(),
            model_urls=_to_str_list(payload.get("model_urls"), defaults.model_urls),
            tokenizer_urls=_to_str_list(payload.get("tokenizer_urls"), defaults.tokenizer_urls),
            model_expected_size=max(
                0, _to_int(payload.get("model_expected_size"), defaults.model_expected_size)
            ),
            tokenizer_expected_size=max(
                0, _to_int(payload.get("tokenizer_expected_size"), defaults.tokenizer_expected_size)
            ),
            embedding_dim=max(1, _to_int(payload.get("embedding_dim"), 384)),
            max_seq_len=max(1, _to_int(payload.get("max_seq_len"), 256)),
            batch_size=max(1, _to_int(payload.get("batch_size"), 32)),
            connect_timeout_seconds=max(1, _to_int(payload.get("connect_timeout_seconds"), 15)),
            download_timeout_seconds=max(1, _to_int(payload.get("download_timeout_seconds"), 300)),
        )

    def resolve_model_dir(self) -> Path:
        """Explicit config > LOCALSEARCH_MODEL_DIR > app data dir."""

        if self.model_dir:
            return Path(self.model_dir).expanduser()
        override = os.getenv(MODEL_DIR_ENV_VAR, "").strip()
        if override:
            return Path(override).expanduser()
        return default_data_dir() / "models" / self.model_name

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["model_urls"] = list(self.model_urls)
        payload["tokenizer_urls"] = list(self.tokenizer_urls)
        return payload


@dataclass(frozen=True)
class StoreConfig:
    index_dirname: str = ".localsearch"
    db_filename: str = "index.db"

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> "StoreConfig":
        payload = payload or {}
        return cls(
            index_dirname=str(payload.get("index_dirname") or ".localsearch").strip(),
            db_filename=str(payload.get("db_filename") or "index.db").strip(),
        )

    def db_path(self, project_dir: str | Path) -> Path:
        return Path(project_dir) / self.index_dirname / self.db_filename


@dataclass(frozen=True)
class WalkConfig:
    max_depth: int = 8
    max_file_bytes: int = 10 * 1024 * 1024
    skip_dirs: frozenset[str] = field(default_factory=lambda: frozenset(DEFAULT_SKIP_DIRS))

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> "WalkConfig":
        payload = payload or {}
        return cls(
            max_depth=max(0, _to_int(payload.get("max_depth"), 8)),
            max_file_bytes=max(1, _to_int(payload.get("max_file_bytes"), 10 * 1024 * 1024)),
            skip_dirs=frozenset(_to_str_list(payload.get("skip_dirs"), DEFAULT_SKIP_DIRS)),
        )


@dataclass(frozen=True)
class CleanupConfig:
    vacuum_threshold: int = 100

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> "CleanupConfig":
        payload = payload or {}
        return cls(vacuum_threshold=max(0, _to_int(payload.get("vacuum_threshold"), 100)))


@dataclass(frozen=True)
class SearchConfig:
    default_top_k: int = 5
    max_top_k: int = 50

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> "SearchConfig":
        payload = payload or {}
        max_top_k = max(1, _to_int(payload.get("max_top_k"), 50))
        default_top_k = max(1, _to_int(payload.get("default_top_k"), 5))
        return cls(default_top_k=min(default_top_k, max_top_k), max_top_k=max_top_k)


@dataclass(frozen=True)
class IndexingSettings:
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    embeddings: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    walk: WalkConfig = field(default_factory=WalkConfig)
    cleanup: CleanupConfig = field(default_factory=CleanupConfig)
    search: SearchConfig = field(default_factory=SearchConfig)

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> "IndexingSettings":
        payload = payload or {}
        return cls(
            chunking=ChunkingConfig.from_dict(payload.get("chunking")),
            embeddings=EmbeddingConfig.from_dict(payload.get("embeddings")),
            store=StoreConfig.from_dict(payload.get("store")),
            walk=WalkConfig.from_dict(payload.get("walk")),
            cleanup=CleanupConfig.from_dict(payload.get("cleanup")),
            search=SearchConfig.from_dict(payload.get("search")),
        )

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> "IndexingSettings":
        return cls.from_dict(load_indexing_config(config_path))


__all__ = [
    "ChunkingConfig",
    "CleanupConfig",
    "DEFAULT_INDEXING_CONFIG",
    "DEFAULT_SKIP_DIRS",
    "EmbeddingConfig",
    "IndexingSettings",
    "SearchConfig",
    "StoreConfig",
    "WalkConfig",
    "default_data_dir",
    "load_indexing_config",
]
