"""Request schemas for Flask API endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


def _strip_optional(value: str | None) -> str | None:
    if value is None:
        return None
    text = value.strip()
    return text or None


class InitRequest(_StrictModel):
    project_dir: str | None = None

    @field_validator("project_dir")
    @classmethod
    def _normalize_project_dir(cls, value: str | None) -> str | None:
        return _strip_optional(value)


class RebuildRequest(InitRequest):
    pass


class SearchRequest(_StrictModel):
    query: str = Field(..., min_length=1, max_length=2000)
    top_k: int | None = None

    @field_validator("query")
    @classmethod
    def _validate_query(cls, value: str) -> str:
        text = value.strip()
        if not text:
            raise ValueError("query is required")
        return text

    @field_validator("top_k")
    @classmethod
    def _validate_top_k(cls, value: int | None) -> int | None:
        if value is None:
            return None
        if value <= 0:
            raise ValueError("top_k must be > 0")
        return value


def parse_init_request(payload: dict[str, Any]) -> InitRequest:
    return InitRequest.model_validate(payload)


def parse_rebuild_request(payload: dict[str, Any]) -> RebuildRequest:
    return RebuildRequest.model_validate(payload)


def parse_search_request(payload: dict[str, Any]) -> SearchRequest:
    return SearchRequest.model_validate(payload)


__all__ = [
    "InitRequest",
    "RebuildRequest",
    "SearchRequest",
    "parse_init_request",
    "parse_rebuild_request",
    "parse_search_request",
]
