"""Abstract base classes for per-site extraction modules.

Every module streams CandidateRecords. Modules that can also split the work
into "collect links" and "fetch one detail page" implement
TwoPhaseExtraction and get the parallel pipeline.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field

from harvest.core.schemas import CandidateRecord, JobCardInfo

LogFn = Callable[[str], None]


class ScrapeParams(BaseModel):
    """Query parameters handed to an extraction module.

    ``job_types`` holds at most one facet per sub-run; the engine expands
    multi-valued facets before calling a module.
    """

    keywords: str | None = None
    location: str | None = None
    prefectures: list[str] = Field(default_factory=list)
    job_types: list[str] = Field(default_factory=list)
    rank_filter: list[str] = Field(default_factory=list)
    min_salary: int | None = None
    employee_range: str | None = None
    max_pages: int = Field(default=500, ge=1)


@dataclass
class ExtractCallbacks:
    """Optional sinks a module may report through while extracting."""

    on_log: LogFn | None = None
    on_total_count: Callable[[int], None] | None = None

    def log(self, message: str) -> None:
        if self.on_log is not None:
            self.on_log(message)

    def report_total(self, count: int) -> None:
        if self.on_total_count is not None:
            self.on_total_count(count)


class ExtractionModule(ABC):
    """Base class that every site module must implement."""

    @property
    @abstractmethod
    def source(self) -> str:
        """Unique identifier for this site (e.g. 'doda')."""

    async def login(self, page: Any) -> None:
        """Authenticate the session if the site needs it. No-op by default."""
        return None

    @abstractmethod
    def enumerate_and_extract(
        self,
        page: Any,
        params: ScrapeParams,
        callbacks: ExtractCallbacks,
    ) -> AsyncIterator[CandidateRecord]:
        """Enumerate listings and yield one CandidateRecord per job, lazily.

        Consumers may stop iterating early; implementations must not assume
        the sequence is exhausted.
        """


class TotalCountProbe(ABC):
    """Capability: report the total number of matching listings."""

    @abstractmethod
    async def get_total_count(self, page: Any, params: ScrapeParams) -> int | None:
        """Return the site-reported total result count, or None."""


class TwoPhaseExtraction(ABC):
    """Capability: collect listing links first, fetch details one by one."""

    @abstractmethod
    async def collect_links(
        self,
        page: Any,
        params: ScrapeParams,
        callbacks: ExtractCallbacks,
    ) -> list[JobCardInfo]:
        """Paginate listing pages (up to ``params.max_pages``) and return cards."""

    @abstractmethod
    async def fetch_detail(
        self,
        page: Any,
        card: JobCardInfo,
        log: LogFn,
    ) -> CandidateRecord | None:
        """Visit one detail page. Return None when nothing usable was found."""


def supports_two_phase(module: ExtractionModule) -> bool:
    return isinstance(module, TwoPhaseExtraction)


def supports_total_count(module: ExtractionModule) -> bool:
    return isinstance(module, TotalCountProbe)
