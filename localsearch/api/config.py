"""Runtime configuration for the Flask API."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any

from localsearch import __version__


def _to_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "y", "on"}:
        return True
    if text in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _to_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class APISettings:
    flask_env: str
    host: str
    port: int
    log_level: str

    project_dir: str
    indexing_config_path: str

    default_top_k: int
    max_top_k: int

    api_version: str
    debug: bool

    @classmethod
    def from_env(cls, overrides: dict[str, Any] | None = None) -> "APISettings":
        overrides = overrides or {}

        def pick(name: str, default: Any = "") -> Any:
            if name in overrides:
                return overrides[name]
            lower = name.lower()
            if lower in overrides:
                return overrides[lower]
            return os.getenv(name, default)

        max_top_k = max(1, _to_int(pick("MAX_TOP_K", 50), 50))
        default_top_k = max(1, _to_int(pick("DEFAULT_TOP_K", 5), 5))
        if default_top_k > max_top_k:
            default_top_k = max_top_k

        return cls(
            flask_env=str(pick("FLASK_ENV", "dev")).strip() or "dev",
            host=str(pick("HOST", "127.0.0.1")).strip() or "127.0.0.1",
            port=max(1, _to_int(pick("PORT", 8765), 8765)),
            log_level=str(pick("LOG_LEVEL", "INFO")).strip().upper() or "INFO",
            project_dir=str(pick("PROJECT_DIR", "")).strip(),
            indexing_config_path=str(pick("INDEXING_CONFIG_PATH", "")).strip(),
            default_top_k=default_top_k,
            max_top_k=max_top_k,
            api_version=str(pick("API_VERSION", __version__) or __version__).strip() or __version__,
            debug=_to_bool(pick("DEBUG", False), default=False),
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "flask_env": self.flask_env,
            "host": self.host,
            "port": self.port,
            "log_level": self.log_level,
            "project_dir": self.project_dir,
            "indexing_config_path": self.indexing_config_path,
            "default_top_k": self.default_top_k,
            "max_top_k": self.max_top_k,
            "api_version": self.api_version,
            "debug": self.debug,
        }
