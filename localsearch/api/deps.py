"""Dependency container owning the single live search session."""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from flask import Flask, current_app

from localsearch.api.config import APISettings
from localsearch.api.exceptions import (
    APIError,
    OperationInProgressError,
    SessionUnavailableError,
)
from localsearch.indexing.config import IndexingSettings
from localsearch.indexing.embeddings import EmbeddingEngine, ModelProgress
from localsearch.indexing.indexer import EmbedderProtocol, StatusEvent
from localsearch.indexing.session import SearchSession, init_session, rebuild_session

LOGGER = logging.getLogger(__name__)
_EXTENSION_KEY = "api_dependencies"


class AppDependencies:
    """
    Holds the one active `SearchSession` behind a lock.

    Init and rebuild are exclusive: a second call while one is running fails
    fast. Search and stats wait for the session lock and fail with 503 when no
    session is open.
    """

    def __init__(
        self,
        settings: APISettings,
        *,
        indexing_settings: IndexingSettings | None = None,
        engine: EmbedderProtocol | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.settings = settings
        self.logger = logger or LOGGER
        self.indexing_settings = indexing_settings or IndexingSettings.load(
            settings.indexing_config_path or None
        )
        self._engine = engine
        self._session: SearchSession | None = None
        self._session_lock = threading.RLock()
        self._lifecycle_lock = threading.Lock()
        self._last_status: StatusEvent | None = None
        self._last_progress: ModelProgress | None = None

    @property
    def is_busy(self) -> bool:
        return self._lifecycle_lock.locked()

    def _on_status(self, event: StatusEvent) -> None:
        self._last_status = event
        self.logger.info("index.status status=%s message=%s", event.status, event.message)

    def _on_progress(self, event: ModelProgress) -> None:
        self._last_progress = event

    def _get_engine(self) -> EmbedderProtocol:
        if self._engine is None:
            self._engine = EmbeddingEngine(
                self.indexing_settings.embeddings,
                progress_callback=self._on_progress,
                logger=self.logger,
            )
        return self._engine

    def _resolve_project_dir(self, project_dir: str | None) -> Path:
        raw = project_dir or self.settings.project_dir
        if not raw:
            raise APIError(
                code="PROJECT_DIR_MISSING",
                message="project_dir is required (request body or PROJECT_DIR).",
                status_code=400,
            )
        path = Path(raw).expanduser().resolve()
        if not path.is_dir():
            raise APIError(
                code="PROJECT_DIR_NOT_FOUND",
                message=f"Project directory not found: {path}",
                status_code=400,
            )
        return path

    def _take_session(self) -> SearchSession | None:
        with self._session_lock:
            session, self._session = self._session, None
            return session

    def _run_lifecycle(self, project_dir: str | None, *, rebuild: bool) -> dict[str, Any]:
        target = self._resolve_project_dir(project_dir)
        if not self._lifecycle_lock.acquire(blocking=False):
            raise OperationInProgressError()

        started = time.perf_counter()
        try:
            previous = self._take_session()
            engine = self._get_engine()
            if rebuild:
                session = rebuild_session(
                    target,
                    previous=previous,
                    settings=self.indexing_settings,
                    engine=engine,
                    status_callback=self._on_status,
                    logger=self.logger,
                )
            else:
                if previous is not None:
                    previous.close()
                session = init_session(
                    target,
                    settings=self.indexing_settings,
                    engine=engine,
                    status_callback=self._on_status,
                    logger=self.logger,
                )
            with self._session_lock:
                self._session = session
            payload = session.summary()
        finally:
            self._lifecycle_lock.release()

        payload["mode"] = "rebuild" if rebuild else "init"
        payload["timings_ms"] = {"total": int((time.perf_counter() - started) * 1000)}
        return payload

    def init_project(self, *, project_dir: str | None = None) -> dict[str, Any]:
        return self._run_lifecycle(project_dir, rebuild=False)

    def rebuild_project(self, *, project_dir: str | None = None) -> dict[str, Any]:
        return self._run_lifecycle(project_dir, rebuild=True)

    def search(self, *, query: str, top_k: int) -> list[dict[str, Any]]:
        with self._session_lock:
            if self._session is None:
                raise SessionUnavailableError()
            results = self._session.search(query, top_k)
        return [result.to_dict() for result in results]

    def get_stats_payload(self) -> dict[str, Any]:
        with self._session_lock:
            if self._session is None:
                raise SessionUnavailableError()
            stats = self._session.stats()
            project_dir = str(self._session.project_dir)
        return {"project_dir": project_dir, **stats.to_dict()}

    def get_status_payload(self) -> dict[str, Any]:
        return {
            "busy": self.is_busy,
            "initialized": self._session is not None,
            "status": self._last_status.to_dict() if self._last_status else None,
            "model_progress": self._last_progress.to_dict() if self._last_progress else None,
        }

    def get_health_payload(self) -> dict[str, Any]:
        return {
            "status": "ok",
            "api": "up",
            "initialized": self._session is not None,
            "version": self.settings.api_version,
            "timestamp": datetime.now(tz=timezone.utc).isoformat(),
        }

    def close(self) -> None:
        session = self._take_session()
        if session is not None:
            session.close()


def init_dependencies(app: Flask, deps_override: AppDependencies | None = None) -> AppDependencies:
    if deps_override is not None:
        app.extensions[_EXTENSION_KEY] = deps_override
        return deps_override

    settings: APISettings = app.config["API_SETTINGS"]
    deps = AppDependencies(settings=settings)
    app.extensions[_EXTENSION_KEY] = deps
    return deps


def get_dependencies() -> AppDependencies:
    deps = current_app.extensions.get(_EXTENSION_KEY)
    if deps is None:
        raise RuntimeError("API dependencies are not initialized.")
    return deps


def get_settings() -> APISettings:
    return current_app.config["API_SETTINGS"]


__all__ = ["AppDependencies", "get_dependencies", "get_settings", "init_dependencies"]
