"""Error taxonomy shared by the indexing engine."""

from __future__ import annotations


class SearchEngineError(Exception):
    """Base error carrying a stable machine-readable code."""

    code = "SEARCH_ENGINE_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ExtractionError(SearchEngineError):
    """A single file could not be turned into text. Always recoverable."""

    code = "EXTRACTION_FAILED"


class FileReadError(ExtractionError):
    code = "IO_ERROR"


class UnsupportedFormatError(ExtractionError):
    code = "UNSUPPORTED_FORMAT"


class BinaryDetectedError(ExtractionError):
    code = "BINARY_DETECTED"


class StructuredExtractionError(ExtractionError):
    """Malformed PDF/DOCX/spreadsheet container."""

    code = "STRUCTURED_EXTRACTION_FAILED"


class ModelProvisionError(SearchEngineError):
    code = "MODEL_PROVISION_FAILED"


class SetupInProgressError(ModelProvisionError):
    code = "SETUP_IN_PROGRESS"

    def __init__(self, message: str = "Model setup already in progress.") -> None:
        super().__init__(message)


class InferenceError(SearchEngineError):
    code = "INFERENCE_FAILED"


class StoreError(SearchEngineError):
    code = "STORE_FAILED"


__all__ = [
    "BinaryDetectedError",
    "ExtractionError",
    "FileReadError",
    "InferenceError",
    "ModelProvisionError",
    "SearchEngineError",
    "SetupInProgressError",
    "StoreError",
    "StructuredExtractionError",
    "UnsupportedFormatError",
]
