"""
Centralized error handling for the card scanner.

This module defines the error taxonomy of the recognition pipeline and the
helpers used to log errors with context. Some errors are always recovered
inside the pipeline (preprocessing, catalog), some end a scan in the
``failed`` state (recognition), and the ``InvalidRequest`` family is raised
straight to the caller before any state is touched.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional


class CardScannerError(Exception):
    """Base exception class for all card scanner errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(CardScannerError):
    """Raised when there are configuration or environment variable issues."""
    pass


class RecoverablePreprocessingError(CardScannerError):
    """Raised by an image transform step; the preprocessor falls back to the original image."""
    pass


class RecognitionFailure(CardScannerError):
    """Raised when the text recognizer crashes or cannot read the image."""
    pass


class RecognitionTimeout(RecognitionFailure):
    """Raised when a recognition pass exceeds its time budget."""
    pass


class CatalogUnavailable(CardScannerError):
    """Raised when the external card catalog errors or times out."""
    pass


class EnhancementFailure(CardScannerError):
    """Raised when an enhancement run cannot produce an identification."""
    pass


class StoreError(CardScannerError):
    """Raised when the record or blob store cannot complete an operation."""
    pass


class InvalidRequest(CardScannerError):
    """Raised for caller errors; no scan state is mutated."""
    pass


class InvalidImagePayload(InvalidRequest):
    """Raised when the submitted image is missing or cannot be decoded."""
    pass


class ScanNotFound(InvalidRequest):
    """Raised when a scan id does not exist."""
    pass


class ScanOwnershipError(InvalidRequest):
    """Raised when a caller operates on a scan owned by someone else."""
    pass


class ScanStateError(InvalidRequest):
    """Raised when a scan is not in a state that allows the operation."""
    pass


class ScanBusyError(InvalidRequest):
    """Raised when another operation is already in flight for the same scan."""
    pass


@dataclass
class ErrorContext:
    """Context information for error reporting."""
    operation: str
    module: str
    function: str
    input_data: Optional[Dict[str, Any]] = None
    scan_id: Optional[str] = None


def handle_error(
    error: Exception,
    context: ErrorContext,
    logger: Any,
    reraise: bool = True,
    default_return: Any = None
) -> Any:
    """
    Log an error with its context and optionally re-raise it.

    Args:
        error: The exception that occurred
        context: Context information about where the error occurred
        logger: structlog logger used for reporting
        reraise: Whether to re-raise the exception after logging
        default_return: Value to return if not re-raising

    Returns:
        The default_return value if not re-raising
    """
    error_msg = f"Error in {context.module}.{context.function} during {context.operation}"

    if isinstance(error, CardScannerError):
        error_msg += f": {error.message}"
    else:
        error_msg += f": {error}"

    logger.error(
        error_msg,
        error_type=type(error).__name__,
        operation=context.operation,
        error_module=context.module,
        error_function=context.function,
        input_data=context.input_data,
        scan_id=context.scan_id,
        details=getattr(error, "details", None),
    )

    if reraise:
        raise error

    return default_return
