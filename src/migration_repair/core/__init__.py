"""Core business logic components.

This module exports the main business logic classes:
- RepairPipeline: Orchestrates a two-tier repair run
- ErrorClusterer: Groups diagnostics by normalized pattern key
- PatternMatcher: Matches clusters against the tier-1 rule registry
- PatchEngine: Validates, applies and rolls back unified-diff patches
- TscOutputParser: Maps TypeScript compiler output to diagnostics
"""

from migration_repair.core.clusterer import ErrorClusterer, pattern_key
from migration_repair.core.diagnostics import (
    DiagnosticSource,
    FileDiagnosticSource,
    TscOutputParser,
    load_diagnostics,
)
from migration_repair.core.patch_engine import (
    PatchApplyError,
    PatchEngine,
    PatchError,
    PatchParseError,
    ValidationMismatchError,
    apply_diff,
    create_patch,
    create_reverse_diff,
    parse_diff,
    validate,
)
from migration_repair.core.patterns import PatternMatcher, PatternRegistry, PatternRule
from migration_repair.core.pipeline import RepairPipeline
from migration_repair.core.response_parser import parse_generator_response

__all__ = [
    "DiagnosticSource",
    "ErrorClusterer",
    "FileDiagnosticSource",
    "PatchApplyError",
    "PatchEngine",
    "PatchError",
    "PatchParseError",
    "PatternMatcher",
    "PatternRegistry",
    "PatternRule",
    "RepairPipeline",
    "TscOutputParser",
    "ValidationMismatchError",
    "apply_diff",
    "create_patch",
    "create_reverse_diff",
    "load_diagnostics",
    "parse_diff",
    "parse_generator_response",
    "pattern_key",
    "validate",
]
