"""Pydantic models for configuration schema."""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..models.diagnostic import Severity


class AnthropicConfig(BaseModel):
    """Anthropic-specific configuration."""

    api_key: str
    model: str = "claude-3-5-sonnet-20241022"
    max_tokens: int = Field(4096, ge=256, le=64000)
    temperature: float = Field(0.2, ge=0.0, le=1.0)
    max_doc_chars: int = Field(2000, ge=0, description="Docs truncated to this length in prompts")
    requests_per_minute: float = Field(30.0, gt=0.0)
    request_timeout: float = Field(120.0, ge=5.0, le=600.0)

    @field_validator("api_key")
    @classmethod
    def validate_api_key(cls, v: str) -> str:
        """Reject empty API keys."""
        if not v.strip():
            raise ValueError("Anthropic api_key must not be empty")
        return v


class LLMConfig(BaseModel):
    """Tier-2 generator provider configuration."""

    provider: Literal["anthropic"] = "anthropic"
    anthropic: AnthropicConfig | None = None


class PipelineConfig(BaseModel):
    """Repair pipeline configuration."""

    workspace_root: Path = Path(".")
    max_patches_per_run: int = Field(
        10, ge=1, le=100, description="Maximum generator calls per run"
    )
    auto_apply: bool = True
    use_generator: bool = True
    strict_validation: bool = Field(
        False, description="Verify every context and removed line before applying"
    )
    severities: list[Severity] = [Severity.ERROR]
    context_lines: int = Field(15, ge=0, le=200)

    @field_validator("severities")
    @classmethod
    def validate_severities(cls, v: list[Severity]) -> list[Severity]:
        """Require at least one severity to repair."""
        if not v:
            raise ValueError("severities must name at least one severity")
        return v


class FileLoggingConfig(BaseModel):
    """File logging configuration."""

    enabled: bool = False
    path: Path = Path("migration-repair.log")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["json", "console"] = "console"
    file: FileLoggingConfig = FileLoggingConfig()


class RetryConfig(BaseModel):
    """Retry configuration for transient generator failures."""

    max_attempts: int = Field(3, ge=1, le=10)
    initial_delay: float = Field(1.0, ge=0.1, le=10.0)
    max_delay: float = Field(30.0, ge=1.0, le=300.0)


class RepairConfig(BaseSettings):
    """Root configuration for migration-repair."""

    pipeline: PipelineConfig = PipelineConfig()
    llm: LLMConfig = LLMConfig()
    logging: LoggingConfig = LoggingConfig()
    retry: RetryConfig = RetryConfig()

    model_config = SettingsConfigDict(
        env_prefix="MIGRATION_REPAIR_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )
