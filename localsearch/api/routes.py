"""Flask routes exposing init / search / stats / rebuild."""

from __future__ import annotations

import logging
from typing import Any

from flask import Blueprint, jsonify, request

from localsearch.api.deps import get_dependencies, get_settings
from localsearch.api.exceptions import APIError
from localsearch.api.schemas import (
    parse_init_request,
    parse_rebuild_request,
    parse_search_request,
)

LOGGER = logging.getLogger(__name__)

api_bp = Blueprint("api", __name__)


def _clamp_top_k(raw_top_k: int | None, default_top_k: int, max_top_k: int) -> int:
    if raw_top_k is None:
        return default_top_k
    return max(1, min(int(raw_top_k), max_top_k))


def _json_object(*, required: bool) -> dict[str, Any]:
    raw_payload = request.get_json(silent=True)
    if raw_payload is None and not required:
        return {}
    if not isinstance(raw_payload, dict):
        raise APIError(
            code="INVALID_REQUEST",
            message="JSON object payload is required.",
            status_code=400,
        )
    return raw_payload


@api_bp.get("/")
def root():
    return jsonify(
        {
            "name": "localsearch API",
            "status": "ok",
            "endpoints": ["/health", "/status", "/init", "/search", "/stats", "/rebuild"],
        }
    )


@api_bp.get("/health")
def health():
    return jsonify(get_dependencies().get_health_payload())


@api_bp.get("/status")
def status():
    return jsonify(get_dependencies().get_status_payload())


@api_bp.post("/init")
def init():
    parsed = parse_init_request(_json_object(required=False))
    summary = get_dependencies().init_project(project_dir=parsed.project_dir)
    return jsonify({"status": "ok", **summary})


@api_bp.post("/rebuild")
def rebuild():
    parsed = parse_rebuild_request(_json_object(required=False))
    summary = get_dependencies().rebuild_project(project_dir=parsed.project_dir)
    return jsonify({"status": "ok", **summary})


@api_bp.post("/search")
def search():
    parsed = parse_search_request(_json_object(required=True))
    settings = get_settings()
    top_k = _clamp_top_k(
        raw_top_k=parsed.top_k,
        default_top_k=settings.default_top_k,
        max_top_k=settings.max_top_k,
    )
    results = get_dependencies().search(query=parsed.query, top_k=top_k)
    return jsonify(
        {
            "query": parsed.query,
            "top_k": top_k,
            "results": results,
        }
    )


@api_bp.get("/stats")
def stats():
    return jsonify(get_dependencies().get_stats_payload())
