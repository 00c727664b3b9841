"""Configuration models and YAML loader for the harvester."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

VALID_RANKS = ("A", "B", "C")


class DatabaseConfig(BaseModel):
    """Database configuration."""

    path: str = "data/harvest.db"


class BrowserConfig(BaseModel):
    """Browser pool configuration. Every worker gets its own context."""

    headless: bool = False
    timeout_ms: int = Field(default=30000, ge=1000)
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
    )
    locale: str = "ja-JP"
    timezone_id: str = "Asia/Tokyo"
    viewport_width: int = Field(default=1920, ge=320)
    viewport_height: int = Field(default=1080, ge=240)
    cookies_path: str | None = None


class EngineConfig(BaseModel):
    """Worker pool and pacing settings."""

    worker_count: int = Field(default=3, ge=1, le=10)
    max_pages: int = Field(default=500, ge=1)
    worker_stagger_s: float = Field(default=2.0, ge=0.0)
    politeness_delay_s: float = Field(default=1.0, ge=0.0)
    queue_poll_s: float = Field(default=0.1, gt=0.0)
    smart_stop_threshold: int = Field(default=0, ge=0)


class RetryConfig(BaseModel):
    """Retry policy for navigation and detail fetches."""

    max_retries: int = Field(default=3, ge=1, le=10)
    base_delay_s: float = Field(default=3.0, ge=0.0)
    jitter_s: float = Field(default=1.0, ge=0.0)


class ScrapeOptions(BaseModel):
    """Options for a single engine run (the caller's control surface)."""

    sources: list[str]
    keywords: str | None = None
    location: str | None = None
    prefectures: list[str] = Field(default_factory=list)
    job_types: list[str] = Field(default_factory=list)
    rank_filter: list[str] = Field(default_factory=list)
    min_salary: int | None = Field(default=None, ge=0)
    employee_range: str | None = None
    worker_count: int | None = Field(default=None, ge=1, le=10)

    @field_validator("sources")
    @classmethod
    def sources_not_empty(cls, v: list[str]) -> list[str]:
        cleaned = [s.strip() for s in v if s.strip()]
        if not cleaned:
            msg = "at least one source must be given"
            raise ValueError(msg)
        return cleaned

    @field_validator("rank_filter")
    @classmethod
    def ranks_known(cls, v: list[str]) -> list[str]:
        ranks = [r.strip().upper() for r in v if r.strip()]
        unknown = [r for r in ranks if r not in VALID_RANKS]
        if unknown:
            msg = f"unknown rank(s): {', '.join(unknown)}"
            raise ValueError(msg)
        return ranks


class Settings(BaseModel):
    """Top-level settings loaded from YAML."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    extractors: dict[str, str] = Field(default_factory=dict)

    @field_validator("extractors")
    @classmethod
    def extractor_paths_valid(cls, v: dict[str, str]) -> dict[str, str]:
        for name, target in v.items():
            module, _, attr = target.partition(":")
            if not module or not attr:
                msg = f"extractor '{name}' must be 'module.path:ClassName', got '{target}'"
                raise ValueError(msg)
        return v

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        path = Path(path)
        if not path.exists():
            msg = f"Config file not found: {path}"
            raise FileNotFoundError(msg)
        raw: dict[str, Any] = yaml.safe_load(path.read_text()) or {}
        return cls.model_validate(raw)
