"""Application config models: maps to config.json."""

from __future__ import annotations

from pydantic import BaseModel, Field


class AppConfig(BaseModel):
    """Full application config as persisted in config.json."""

    creative_model: str = "claude-sonnet-4-5-20250929"
    mechanical_model: str = "claude-3-5-haiku-20241022"
    system_prompt: str = "You are an expert DJ music librarian. You answer with JSON only."
    scheduler_profile: str = "desktop"  # "desktop" | "hosted"
    chunk_size: int | None = None  # None = preset value
    concurrency: int | None = None
    delay_between_requests: float = 0.0
    retry_chunk_size: int = 50
    retry_concurrency: int = 1
    max_escalation_levels: int = 2
    job_timeout: float = 0.0
    playlist_root_name: str = "AI_GENERATED"


class ConfigUpdate(BaseModel):
    """Partial config update (PUT /api/config). Omitted fields keep their value."""

    creative_model: str | None = None
    mechanical_model: str | None = None
    system_prompt: str | None = None
    scheduler_profile: str | None = None
    chunk_size: int | None = Field(default=None, ge=1)
    concurrency: int | None = Field(default=None, ge=1)
    delay_between_requests: float | None = Field(default=None, ge=0)
    retry_chunk_size: int | None = Field(default=None, ge=1)
    retry_concurrency: int | None = Field(default=None, ge=1)
    max_escalation_levels: int | None = Field(default=None, ge=0, le=5)
    job_timeout: float | None = Field(default=None, ge=0)
    playlist_root_name: str | None = Field(default=None, min_length=1)
