"""Configuration loading and validation."""

from .loader import load_config
from .schema import (
    AnthropicConfig,
    FileLoggingConfig,
    LLMConfig,
    LoggingConfig,
    PipelineConfig,
    RepairConfig,
    RetryConfig,
)

__all__ = [
    # Loader
    "load_config",
    # Root config
    "RepairConfig",
    # Sections
    "PipelineConfig",
    "LLMConfig",
    "LoggingConfig",
    "FileLoggingConfig",
    "RetryConfig",
    # Provider-specific configs
    "AnthropicConfig",
]
