"""Core data models for the harvester."""

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

BudgetRank = Literal["A", "B", "C"]

RunStatus = Literal["success", "error", "partial"]


class CandidateRecord(BaseModel):
    """One company/job pairing as scraped from a listing site.

    Frozen and transient: the coordinator converts it into a company row and a
    job row, it is never stored as-is.
    """

    model_config = ConfigDict(frozen=True)

    company_name: str
    url: str
    source: str
    homepage_url: str = ""
    industry: str = ""
    area: str = ""
    address: str = ""
    job_title: str = ""
    job_description: str = ""
    salary_text: str = ""
    employees: str = ""
    representative: str = ""
    establishment: str = ""
    revenue: str = ""
    phone: str = ""
    email: str = ""
    contact_form_url: str = ""
    budget_rank: BudgetRank | None = None
    rank_confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    employment_type: str = ""
    job_type: str = ""
    date_posted: str | None = None
    date_updated: str | None = None
    date_expires: str | None = None


class JobCardInfo(BaseModel):
    """Minimal descriptor collected from a listing page (two-phase path)."""

    model_config = ConfigDict(frozen=True)

    url: str
    detail_url: str = ""
    company_name: str = ""
    job_title: str = ""
    rank: BudgetRank | None = None
    display_index: int = Field(default=0, ge=0)


class JobLocation(BaseModel):
    """A structured work location parsed from free-text address."""

    region: str | None = None
    locality: str | None = None
    address: str | None = None


class JobRecord(BaseModel):
    """A persisted job posting, unique per (source, source_job_id)."""

    id: str
    source: str
    source_job_id: str
    source_url: str
    company_name: str
    company_url: str | None = None
    title: str
    employment_type: str = ""
    industry: str | None = None
    description: str = ""
    salary_min: int | None = None
    salary_max: int | None = None
    salary_text: str = ""
    locations: list[JobLocation] = Field(default_factory=list)
    location_summary: str = ""
    date_posted: str | None = None
    date_expires: str | None = None
    date_updated: str | None = None
    scraped_at: str
    last_checked_at: str
    is_active: bool = True


class ScrapeRunLog(BaseModel):
    """One summary row per (source, run)."""

    scrape_type: str
    source: str
    target_url: str | None = None
    status: RunStatus
    jobs_found: int = 0
    new_jobs: int = 0
    updated_jobs: int = 0
    errors: int = 0
    error_message: str | None = None
    duration_ms: int = 0
    scraped_at: datetime = Field(default_factory=datetime.now)


class ProcessOutcome(str, Enum):
    """How the coordinator disposed of one candidate."""

    NEW = "new"
    DUPLICATE = "duplicate"
    ERROR = "error"
    REJECTED = "rejected"


class JobUpsertStatus(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    ERROR = "error"


class ProcessResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    outcome: ProcessOutcome
    job_status: JobUpsertStatus | None = None


class SourceProgress(BaseModel):
    """Progress snapshot for a single source."""

    source: str
    status: str = ""
    current: int = 0
    total: int = 0
    new_count: int = 0
    duplicate_count: int = 0
    skipped_count: int = 0
    error_count: int = 0
    total_jobs: int | None = None
    estimated_minutes: int | None = None
    waiting_confirmation: bool = False


class ScrapeProgress(BaseModel):
    """Snapshot emitted to the caller on every progress update."""

    source: str
    status: str = ""
    current: int = 0
    total: int = 0
    new_count: int = 0
    duplicate_count: int = 0
    total_jobs: int | None = None
    estimated_minutes: int | None = None
    waiting_confirmation: bool = False
    per_source_breakdown: dict[str, SourceProgress] | None = None


class ScrapeResult(BaseModel):
    """Terminal result of an engine run."""

    success: bool
    error: str | None = None
