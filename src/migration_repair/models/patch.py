"""Data models for unified-diff patches and their application."""

from dataclasses import dataclass, field
from enum import StrEnum


class PatchSource(StrEnum):
    """Where a patch came from. Recorded for auditing only."""

    PATTERN = "pattern"
    GENERATED = "generated"
    MANUAL = "manual"


@dataclass(frozen=True)
class Patch:
    """A unified-diff patch targeting a single file."""

    diff: str
    description: str
    file_path: str
    source: PatchSource = PatchSource.MANUAL


@dataclass(frozen=True)
class Hunk:
    """One contiguous change region parsed from a unified diff."""

    old_start: int
    old_count: int
    new_start: int
    new_count: int
    removed_lines: tuple[str, ...] = ()
    added_lines: tuple[str, ...] = ()
    # Context lines immediately following the header, before any change line.
    context_lines: tuple[str, ...] = ()
    # True when context appears after the first change line. Only the leading
    # context run is validated, so such hunks get a weaker check.
    has_trailing_context: bool = False


@dataclass(frozen=True)
class BatchItem:
    """A patch paired with the file it should be applied to."""

    file_path: str
    patch: Patch


@dataclass(frozen=True)
class BatchResult:
    """Outcome of applying a batch of patches all-or-nothing."""

    applied_count: int
    rolled_back: bool = False
    failure_reason: str | None = None
    failed_item: BatchItem | None = None
    # Items whose reverse patch could not be applied during rollback.
    rollback_failures: tuple[BatchItem, ...] = field(default_factory=tuple)

    @property
    def success(self) -> bool:
        """True if every item in the batch was applied."""
        return self.failure_reason is None

    @property
    def rollback_clean(self) -> bool:
        """True if nothing from a failed batch remains on disk."""
        return not self.rollback_failures
