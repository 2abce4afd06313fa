"""Data models and transfer objects."""

from .diagnostic import Diagnostic, ErrorCluster, Severity
from .generation import GeneratorResponse, ParseStatus
from .patch import BatchItem, BatchResult, Hunk, Patch, PatchSource
from .report import ClusterOutcome, ClusterResolution, RunSummary

__all__ = [
    # Diagnostic models
    "Severity",
    "Diagnostic",
    "ErrorCluster",
    # Patch models
    "PatchSource",
    "Patch",
    "Hunk",
    "BatchItem",
    "BatchResult",
    # Generator models
    "ParseStatus",
    "GeneratorResponse",
    # Run models
    "ClusterResolution",
    "ClusterOutcome",
    "RunSummary",
]
