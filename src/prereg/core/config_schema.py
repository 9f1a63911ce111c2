"""Pydantic models for prereg config files."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

Language = Literal["ko", "en", "ja"]


class BackendConfig(BaseModel):
    """Where the pre-registration data lives.

    ``local`` runs the schema on an embedded SQLite file (or ``:memory:``);
    ``rest`` talks PostgREST to a hosted project.
    """
    type: Literal["local", "rest"] = "local"
    url: Optional[str] = None
    anon_key: Optional[str] = Field(None, alias="anonKey")
    database: Optional[str] = None
    timeout: float = 30.0
    target_milestone: int = Field(100_000, alias="targetMilestone")

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="after")
    def _require_rest_credentials(self) -> "BackendConfig":
        if self.type == "rest" and (not self.url or not self.anon_key):
            raise ValueError("rest backend requires 'url' and 'anonKey'")
        return self


class RealtimeConfig(BaseModel):
    """Realtime channel options."""
    enabled: bool = True
    poll_interval: float = Field(2.0, alias="pollInterval")

    model_config = ConfigDict(populate_by_name=True)


class RetryConfig(BaseModel):
    """Bounded retry with linear backoff."""
    max_retries: int = Field(3, alias="maxRetries", ge=0)
    delay: float = Field(1.0, ge=0)

    model_config = ConfigDict(populate_by_name=True)


class ValidationConfig(BaseModel):
    """Form field availability checks."""
    debounce: float = Field(0.5, ge=0)


class LoggingConfig(BaseModel):
    """Logging sink configuration."""
    level: Optional[str] = None
    format: Optional[Literal["kv", "json", "pretty"]] = None
    console: Optional[bool] = None
    file: Optional[bool] = None
    dev_file: Optional[bool] = None


class Config(BaseModel):
    """Root configuration."""
    language: Language = "ko"
    backend: BackendConfig = Field(default_factory=BackendConfig)
    realtime: RealtimeConfig = Field(default_factory=RealtimeConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    logging: Optional[LoggingConfig] = None
    log_level: Optional[str] = Field(None, alias="logLevel")

    model_config = ConfigDict(extra="allow", populate_by_name=True)
