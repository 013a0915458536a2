"""Scan lifecycle, recognition runs and enhancement."""

from .enhance import (
    EnhancementOrchestrator,
    EnhancementOutcome,
    HeuristicIdentifier,
    parse_enhancement_request,
)
from .lifecycle import ScanLifecycleManager, ScanOutcome
from .locks import ScanLockRegistry
from .processing import PipelineResult, ScanPipeline

__all__ = [
    "EnhancementOrchestrator",
    "EnhancementOutcome",
    "HeuristicIdentifier",
    "PipelineResult",
    "ScanLifecycleManager",
    "ScanLockRegistry",
    "ScanOutcome",
    "ScanPipeline",
    "parse_enhancement_request",
]
