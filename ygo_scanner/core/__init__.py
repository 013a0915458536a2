"""Core data model, diagnostics and heuristic constants."""

from .diagnostics import ScanDiagnostics
from .types import (
    CardCandidate,
    CardRecord,
    CatalogEntry,
    EnhancementMode,
    EnhancementRequest,
    Identification,
    IdentificationContext,
    ManualHints,
    RecognitionResult,
    ScanAttempt,
    ScanStatus,
)

__all__ = [
    "CardCandidate",
    "CardRecord",
    "CatalogEntry",
    "EnhancementMode",
    "EnhancementRequest",
    "Identification",
    "IdentificationContext",
    "ManualHints",
    "RecognitionResult",
    "ScanAttempt",
    "ScanDiagnostics",
    "ScanStatus",
]
