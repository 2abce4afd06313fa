"""Data models for compiler and analyzer diagnostics."""

from dataclasses import dataclass
from enum import StrEnum


class Severity(StrEnum):
    """Severity reported by the compiler or analyzer."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass(frozen=True)
class Diagnostic:
    """A single issue reported by the compiler after a dependency upgrade."""

    file_path: str
    line_number: int  # 1-indexed
    message: str
    severity: Severity = Severity.ERROR

    def __post_init__(self) -> None:
        if self.line_number < 1:
            raise ValueError(f"line_number must be >= 1, got {self.line_number}")
        if not isinstance(self.severity, Severity):
            object.__setattr__(self, "severity", Severity(self.severity))

    @property
    def location(self) -> str:
        """Location in ``path:line`` form."""
        return f"{self.file_path}:{self.line_number}"


@dataclass(frozen=True)
class ErrorCluster:
    """Diagnostics that share one pattern key."""

    id: str  # "cluster-1", "cluster-2", ...
    pattern: str
    representative: Diagnostic
    instances: tuple[Diagnostic, ...]

    @property
    def size(self) -> int:
        """Number of diagnostics in this cluster."""
        return len(self.instances)

    @property
    def file_paths(self) -> tuple[str, ...]:
        """Distinct files touched by this cluster, in first-seen order."""
        return tuple(dict.fromkeys(d.file_path for d in self.instances))
