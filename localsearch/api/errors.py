"""JSON error envelopes for every failure the API can return."""

from __future__ import annotations

import logging
from typing import Any

from flask import Flask, Response, g, jsonify
from pydantic import ValidationError
from werkzeug.exceptions import HTTPException

from localsearch.api.exceptions import APIError
from localsearch.indexing.exceptions import SearchEngineError, SetupInProgressError

LOGGER = logging.getLogger(__name__)


def _json_error(
    code: str,
    message: str,
    status: int,
    details: dict[str, Any] | list[Any] | None = None,
) -> tuple[Response, int]:
    error: dict[str, Any] = {
        "code": code,
        "message": message,
        "request_id": str(getattr(g, "request_id", "")),
    }
    if details is not None:
        error["details"] = details
    return jsonify({"error": error}), status


def _engine_status_code(exc: SearchEngineError) -> int:
    # Model setup already running elsewhere; everything else is a server fault.
    if isinstance(exc, SetupInProgressError):
        return 409
    return 500


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(APIError)
    def handle_api_error(exc: APIError):  # type: ignore[no-untyped-def]
        return _json_error(exc.code, exc.message, exc.status_code, exc.details)

    @app.errorhandler(SearchEngineError)
    def handle_engine_error(exc: SearchEngineError):  # type: ignore[no-untyped-def]
        status = _engine_status_code(exc)
        LOGGER.error("Search engine error code=%s status=%s error=%s", exc.code, status, exc)
        return _json_error(exc.code, exc.message, status)

    @app.errorhandler(ValidationError)
    def handle_validation_error(exc: ValidationError):  # type: ignore[no-untyped-def]
        return _json_error(
            "INVALID_REQUEST",
            "Request schema validation failed.",
            400,
            exc.errors(include_url=False, include_context=False),
        )

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):  # type: ignore[no-untyped-def]
        # Routing failures: unknown path (404), wrong verb (405) and the like.
        code = (exc.name or "HTTP error").upper().replace(" ", "_")
        return _json_error(code, exc.description or exc.name, exc.code or 500)

    @app.errorhandler(Exception)
    def handle_unexpected_error(exc: Exception):  # type: ignore[no-untyped-def]
        LOGGER.exception(
            "Unhandled API exception request_id=%s error=%s", getattr(g, "request_id", ""), exc
        )
        return _json_error("INTERNAL_ERROR", "Unexpected server error.", 500)


__all__ = ["register_error_handlers"]
