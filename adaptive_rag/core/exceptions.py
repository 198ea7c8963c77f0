"""Custom exceptions for the adaptive retrieval engine."""
from adaptive_rag.core.domain import ErrorCode


class AdaptiveRAGError(Exception):
    """Base exception carrying an error code."""

    error_code: ErrorCode = ErrorCode.VALIDATION_FAILED

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def __str__(self):
        # Format used for logging
        return f"[{self.error_code.value}] {self.message}"


class ValidationError(AdaptiveRAGError):
    """Empty query or malformed input. Raised before any oracle call."""
    error_code = ErrorCode.VALIDATION_FAILED


class DimensionMismatchError(AdaptiveRAGError):
    """Two embeddings of different length were compared."""
    error_code = ErrorCode.DIMENSION_MISMATCH

    def __init__(self, left: int, right: int):
        self.left = left
        self.right = right
        super().__init__(f"Vector dimensions must match ({left} != {right})")


class OracleError(AdaptiveRAGError):
    """External LLM call failed or returned unparsable output."""
    error_code = ErrorCode.ORACLE_FAILED


class StorageError(AdaptiveRAGError):
    """Disk I/O failure while persisting or removing chunks."""
    error_code = ErrorCode.STORAGE_FAILED


class DocumentNotFoundError(AdaptiveRAGError):
    error_code = ErrorCode.NOT_FOUND
