"""Progress counters, ETA estimation, and cross-source aggregation."""

import logging
import math
import time
from collections.abc import Callable

from harvest.core.schemas import (
    JobUpsertStatus,
    ProcessOutcome,
    ProcessResult,
    ScrapeProgress,
    SourceProgress,
)

logger = logging.getLogger(__name__)

# Assumed cost of one item before anything has been measured.
DEFAULT_SECONDS_PER_ITEM = 10.0

ProgressCallback = Callable[[ScrapeProgress], None]


def estimate_minutes(
    *,
    elapsed_s: float,
    processed: int,
    remaining: int,
    workers: int = 1,
) -> int:
    """Extrapolate the running per-item average over the remaining items."""
    per_item = elapsed_s / processed if processed > 0 else DEFAULT_SECONDS_PER_ITEM
    return math.ceil((remaining * per_item) / max(workers, 1) / 60)


class ProgressTracker:
    """Counters for one source, emitted as SourceProgress snapshots.

    All mutations are synchronous, so tasks on one event loop can share a
    tracker without locks.
    """

    def __init__(
        self,
        source: str,
        emit: Callable[[SourceProgress], None],
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.source = source
        self._emit = emit
        self._clock = clock
        self._started = clock()
        self._phase_base = 0

        self.current = 0
        self.total = 0
        self.total_jobs: int | None = None
        self.new_count = 0
        self.duplicate_count = 0
        self.skipped_count = 0
        self.error_count = 0
        self.jobs_inserted = 0
        self.jobs_updated = 0
        self.workers = 1
        self.status = ""
        self.waiting_confirmation = False

    @property
    def elapsed_s(self) -> float:
        """Seconds since the current phase started."""
        return self._clock() - self._started

    @property
    def phase_processed(self) -> int:
        return self.current - self._phase_base

    def start_phase(self, total: int = 0) -> None:
        """Begin a new processing phase.

        Restarts the ETA clock so time spent collecting or waiting at the
        confirmation gate is not charged to processed items. Counters carry
        over; the ETA only measures items processed in this phase against
        ``total`` (or ``total_jobs`` when ``total`` is 0).
        """
        self._started = self._clock()
        self._phase_base = self.current
        self.total = total

    def record(self, result: ProcessResult) -> None:
        """Count one processed candidate."""
        self.current += 1
        if result.outcome is ProcessOutcome.NEW:
            self.new_count += 1
        elif result.outcome is ProcessOutcome.DUPLICATE:
            self.duplicate_count += 1
        elif result.outcome is ProcessOutcome.REJECTED:
            self.skipped_count += 1
        else:
            self.error_count += 1

        if result.job_status is JobUpsertStatus.INSERTED:
            self.jobs_inserted += 1
        elif result.job_status in (JobUpsertStatus.UPDATED, JobUpsertStatus.UNCHANGED):
            self.jobs_updated += 1
        elif result.job_status is JobUpsertStatus.ERROR:
            self.error_count += 1

    def record_skip(self) -> None:
        self.current += 1
        self.skipped_count += 1

    def record_error(self) -> None:
        self.current += 1
        self.error_count += 1

    def estimated_minutes(self) -> int | None:
        total = self.total or (self.total_jobs or 0)
        if not total:
            return None
        return estimate_minutes(
            elapsed_s=self.elapsed_s,
            processed=self.phase_processed,
            remaining=max(0, total - self.phase_processed),
            workers=self.workers,
        )

    def snapshot(self) -> SourceProgress:
        return SourceProgress(
            source=self.source,
            status=self.status,
            current=self.current,
            total=max(self.total or (self.total_jobs or 0), self.current),
            new_count=self.new_count,
            duplicate_count=self.duplicate_count,
            skipped_count=self.skipped_count,
            error_count=self.error_count,
            total_jobs=self.total_jobs,
            estimated_minutes=self.estimated_minutes(),
            waiting_confirmation=self.waiting_confirmation,
        )

    def emit(self, status: str | None = None) -> None:
        if status is not None:
            self.status = status
        self._emit(self.snapshot())


def single_source_progress(snapshot: SourceProgress) -> ScrapeProgress:
    """Forward one source's snapshot unchanged (single-source runs)."""
    return ScrapeProgress(
        source=snapshot.source,
        status=snapshot.status,
        current=snapshot.current,
        total=snapshot.total,
        new_count=snapshot.new_count,
        duplicate_count=snapshot.duplicate_count,
        total_jobs=snapshot.total_jobs,
        estimated_minutes=snapshot.estimated_minutes,
        waiting_confirmation=snapshot.waiting_confirmation,
    )


class ProgressAggregator:
    """Merge per-source snapshots into one combined ScrapeProgress.

    Every update from any source re-emits the combined view. Sources run
    concurrently, so the combined ETA is the slowest source's ETA.
    """

    def __init__(self, sources: list[str], emit: ProgressCallback) -> None:
        self._sources = list(sources)
        self._emit = emit
        self._latest: dict[str, SourceProgress] = {
            name: SourceProgress(source=name) for name in sources
        }

    def update(self, snapshot: SourceProgress) -> None:
        self._latest[snapshot.source] = snapshot
        self._emit(self.combined(status_from=snapshot))

    def combined(self, status_from: SourceProgress | None = None) -> ScrapeProgress:
        parts = list(self._latest.values())
        totals_jobs = [p.total_jobs for p in parts if p.total_jobs is not None]
        etas = [p.estimated_minutes for p in parts if p.estimated_minutes is not None]
        status = ""
        if status_from is not None and status_from.status:
            status = f"[{status_from.source}] {status_from.status}"
        return ScrapeProgress(
            source=",".join(self._sources),
            status=status,
            current=sum(p.current for p in parts),
            total=sum(p.total for p in parts),
            new_count=sum(p.new_count for p in parts),
            duplicate_count=sum(p.duplicate_count for p in parts),
            total_jobs=sum(totals_jobs) if totals_jobs else None,
            estimated_minutes=max(etas) if etas else None,
            waiting_confirmation=any(p.waiting_confirmation for p in parts),
            per_source_breakdown=dict(self._latest),
        )
