"""
Exception hierarchy for the study assistant.

Every domain error carries:
- error_code: machine-readable string (e.g. "TEXT_EXTRACTION_FAILED")
- status_code: HTTP status code used when the error reaches a route
- message: human-readable description, safe to show to the user
- context: optional structured metadata for logs
"""

from typing import Any, Dict, Optional


class StudyAssistantError(Exception):
    """Base exception for all study assistant errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "INTERNAL_ERROR",
        status_code: int = 500,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "error_code": self.error_code}


class ValidationError(StudyAssistantError):
    def __init__(self, message: str, error_code: str = "INVALID_REQUEST", context: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code=error_code, status_code=400, context=context)


class NotFoundError(StudyAssistantError):
    def __init__(self, message: str, error_code: str = "NOT_FOUND", context: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code=error_code, status_code=404, context=context)


class TextExtractionError(StudyAssistantError):
    """Raised when an upload yields no usable text."""

    def __init__(self, message: str = "Could not extract text from file", context: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="TEXT_EXTRACTION_FAILED", status_code=400, context=context)


class GenerationError(StudyAssistantError):
    """A generator could not produce its artifact."""

    def __init__(self, message: str, operation: str = "", context: Optional[Dict[str, Any]] = None):
        merged = dict(context or {})
        if operation:
            merged.setdefault("operation", operation)
        super().__init__(message, error_code="GENERATION_FAILED", status_code=502, context=merged)
        self.operation = operation


class ModelUnavailableError(StudyAssistantError):
    """Every candidate inference model failed its probe."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="MODEL_UNAVAILABLE", status_code=503, context=context)


class ConfigurationError(StudyAssistantError):
    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="CONFIGURATION_ERROR", status_code=503, context=context)


class ConflictError(StudyAssistantError):
    """The resource is busy with another operation."""

    def __init__(self, message: str, error_code: str = "CONFLICT", context: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code=error_code, status_code=409, context=context)
