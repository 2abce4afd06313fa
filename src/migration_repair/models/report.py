"""Data models for pipeline run results."""

from dataclasses import dataclass, field
from enum import StrEnum

from .diagnostic import ErrorCluster
from .patch import BatchResult, Patch


class ClusterResolution(StrEnum):
    """What happened to a cluster during a run."""

    PATTERN = "pattern"  # fixed by a tier-1 rule
    GENERATED = "generated"  # fixed by the tier-2 generator
    UNRESOLVED = "unresolved"  # no patches produced
    FAILED = "failed"  # patches produced but the batch did not apply
    SKIPPED = "skipped"  # generator budget exhausted


@dataclass(frozen=True)
class ClusterOutcome:
    """Per-cluster accounting for one run."""

    cluster: ErrorCluster
    resolution: ClusterResolution
    rule_id: str | None = None
    patches: tuple[Patch, ...] = ()
    batch: BatchResult | None = None
    error: str | None = None

    @property
    def applied(self) -> bool:
        """True if this cluster's patches are now on disk."""
        return self.batch is not None and self.batch.success


@dataclass(frozen=True)
class RunSummary:
    """Summary of a complete repair run."""

    total_diagnostics: int
    outcomes: tuple[ClusterOutcome, ...] = field(default_factory=tuple)
    patches_applied: int = 0
    errors_fixed: int = 0
    remaining_issues: int = 0
    rolled_back_batches: int = 0

    @property
    def clusters(self) -> tuple[ErrorCluster, ...]:
        return tuple(o.cluster for o in self.outcomes)

    def count(self, resolution: ClusterResolution) -> int:
        """Number of clusters that ended with ``resolution``."""
        return sum(1 for o in self.outcomes if o.resolution == resolution)

    @property
    def tier1_resolved(self) -> int:
        return self.count(ClusterResolution.PATTERN)

    @property
    def tier2_resolved(self) -> int:
        return self.count(ClusterResolution.GENERATED)

    @property
    def unresolved(self) -> int:
        return (
            self.count(ClusterResolution.UNRESOLVED)
            + self.count(ClusterResolution.FAILED)
            + self.count(ClusterResolution.SKIPPED)
        )

    @property
    def message(self) -> str:
        """One-line summary suitable for display."""
        if self.total_diagnostics == 0:
            return "Migration completed successfully with no errors."
        if self.remaining_issues == 0:
            return f"Fixed all {self.errors_fixed} errors with {self.patches_applied} patches."
        return (
            f"Applied {self.patches_applied} patches, fixed {self.errors_fixed} errors. "
            f"{self.remaining_issues} errors require manual fixes."
        )
