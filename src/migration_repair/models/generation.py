"""Data models for tier-2 generator responses."""

from dataclasses import dataclass
from enum import StrEnum

from .patch import Patch


class ParseStatus(StrEnum):
    """How much of a generator response could be understood."""

    SUCCESS = "success"  # structured JSON payload
    PARTIAL = "partial"  # only raw diff blocks recovered
    FAILURE = "failure"


@dataclass(frozen=True)
class GeneratorResponse:
    """Typed result of parsing a generator's raw text response."""

    status: ParseStatus
    patches: tuple[Patch, ...] = ()
    error: str | None = None

    @property
    def usable_patches(self) -> tuple[Patch, ...]:
        """Patches whose target file is known."""
        return tuple(p for p in self.patches if p.file_path and p.file_path != "unknown")
