"""
Shared error handling for the response cache service.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel
from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class CacheLayerException(Exception):
    """Base exception for the cache service."""

    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class ConfigError(CacheLayerException):
    """Invalid configuration. Only raised at startup."""

    def __init__(self, message: str = "Invalid config", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIG_ERROR", message, details)


class StorageError(CacheLayerException):
    """Base class for storage backend failures."""

    status_code = 503

    def __init__(self, code: str, operation: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.operation = operation
        super().__init__(code, f"{operation}: {message}", details)


class StorageTimeout(StorageError):
    """A storage operation exceeded its configured timeout."""

    def __init__(self, operation: str, timeout_ms: float, details: Optional[Dict[str, Any]] = None):
        self.timeout_ms = timeout_ms
        super().__init__("STORAGE_TIMEOUT", operation, f"timed out after {timeout_ms}ms", details)


class StorageConnectionError(StorageError):
    """The remote backend is unreachable."""

    def __init__(self, operation: str, message: str = "connection lost", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORAGE_CONNECTION_ERROR", operation, message, details)


class CodecError(CacheLayerException):
    """Response body could not be read or decompressed."""

    def __init__(self, message: str = "Payload codec error", details: Optional[Dict[str, Any]] = None):
        super().__init__("CODEC_ERROR", message, details)


class SchemaResolutionError(CacheLayerException):
    """A content type could not be resolved from the schema registry."""

    def __init__(self, uid: str, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.uid = uid
        super().__init__("SCHEMA_RESOLUTION_ERROR", message or f"Content type {uid} not found", details)


class InvalidInput(CacheLayerException):
    """User supplied input rejected by a purge endpoint."""

    def __init__(self, message: str = "Invalid input", details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_INPUT", message, details)
