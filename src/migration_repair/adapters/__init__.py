"""Concrete implementations of provider interfaces."""

from .llm.anthropic import AnthropicFixGenerator

__all__ = [
    "AnthropicFixGenerator",
]
