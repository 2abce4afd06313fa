"""Protocol definitions for pluggable collaborators."""

from .generator import FixGenerator

__all__ = ["FixGenerator"]
