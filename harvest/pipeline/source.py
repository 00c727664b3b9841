"""Per-source pipeline: drives one extraction module through the two-phase
parallel path or the single-stream sequential path.

Parallel path (module implements TwoPhaseExtraction):
  1. Collect job cards with one session
  2. Pre-filter in memory (rank, one card per company, known companies)
  3. Confirmation gate
  4. Fetch details with N staggered workers, each with its own session
Any exception in the parallel path falls back to the sequential path; counts
from the parallel attempt carry over and the run log records the fallback.

Exactly one ScrapeRunLog row is written per execution, whatever happens.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

from harvest.browser.actions import with_retry
from harvest.browser.session import SessionPool
from harvest.core.config import EngineConfig, RetryConfig
from harvest.core.schemas import (
    CandidateRecord,
    JobCardInfo,
    ProcessOutcome,
    RunStatus,
    ScrapeRunLog,
    SourceProgress,
)
from harvest.core.store import Store
from harvest.extractors.base import (
    ExtractCallbacks,
    ExtractionModule,
    ScrapeParams,
    supports_total_count,
    supports_two_phase,
)
from harvest.pipeline.coordinator import UpsertCoordinator
from harvest.pipeline.gate import ConfirmationGate
from harvest.pipeline.prefilter import build_prefilters, run_prefilters
from harvest.pipeline.progress import ProgressTracker
from harvest.pipeline.workers import run_detail_workers, run_sequential_pool

logger = logging.getLogger(__name__)

SCRAPE_TYPE_SEQUENTIAL = "full"
SCRAPE_TYPE_PARALLEL = "parallel"


def classify_run(*, jobs_found: int, errors: int, raised: bool) -> RunStatus:
    """Run-log status: error if it raised with nothing found, partial if
    errors exceed half of what was found, success otherwise."""
    if raised and jobs_found == 0:
        return "error"
    if errors > jobs_found * 0.5:
        return "partial"
    return "success"


class SourcePipeline:
    """One source's harvesting run inside an engine run."""

    def __init__(
        self,
        module: ExtractionModule,
        *,
        params: ScrapeParams,
        pool: SessionPool,
        store: Store,
        coordinator: UpsertCoordinator,
        engine_config: EngineConfig,
        retry_config: RetryConfig,
        worker_count: int,
        stop_event: asyncio.Event,
        on_progress: Callable[[SourceProgress], None],
        on_log: Callable[[str], None] | None = None,
    ) -> None:
        self.module = module
        self.source = module.source
        self.params = params
        self.gate: ConfirmationGate | None = None
        self.scrape_type = SCRAPE_TYPE_SEQUENTIAL
        self.tracker = ProgressTracker(self.source, on_progress)

        self._pool = pool
        self._store = store
        self._coordinator = coordinator
        self._engine = engine_config
        self._retry = retry_config
        self._worker_count = worker_count
        self._stop = stop_event
        self._on_log = on_log
        self._consecutive_duplicates = 0
        self._smart_stopped = False
        self._fallback_reason: str | None = None

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def log(self, message: str) -> None:
        logger.info("[%s] %s", self.source, message)
        if self._on_log is not None:
            self._on_log(f"[{self.source}] {message}")

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(self) -> ScrapeRunLog:
        started = time.monotonic()
        error: Exception | None = None
        try:
            if supports_two_phase(self.module):
                try:
                    await self._run_parallel()
                except Exception as e:
                    logger.exception("[%s] Parallel path failed", self.source)
                    if self.stopped:
                        raise
                    self._fallback_reason = str(e) or type(e).__name__
                    self.log(f"Parallel scrape failed ({e}) — falling back to sequential")
                    if self.tracker.current:
                        self.log(f"Keeping counts for {self.tracker.current} items processed before the fallback")
                    await self._run_sequential()
            else:
                await self._run_sequential()
        except Exception as e:
            error = e
            self.tracker.error_count += 1
            logger.exception("[%s] Source pipeline failed", self.source)
            self.tracker.emit(f"Error: {e}")
        finally:
            await self._coordinator.wait_for_enrichment()
            run_log = self._build_run_log(error, started)
            try:
                await self._store.insert_run_log(run_log)
            except Exception:
                logger.exception("[%s] Failed to write scrape run log", self.source)
        return run_log

    def _build_run_log(self, error: Exception | None, started: float) -> ScrapeRunLog:
        found = self.tracker.current
        errors = self.tracker.error_count
        if error is not None:
            message: str | None = str(error) or type(error).__name__
        elif errors:
            message = f"{errors} errors occurred"
        else:
            message = None
        if self._fallback_reason is not None and error is None:
            fallback = f"Fell back to sequential after parallel failure: {self._fallback_reason}"
            message = f"{fallback}; {message}" if message else fallback
        return ScrapeRunLog(
            scrape_type=self.scrape_type,
            source=self.source,
            status=classify_run(jobs_found=found, errors=errors, raised=error is not None),
            jobs_found=found,
            new_jobs=self.tracker.jobs_inserted,
            updated_jobs=self.tracker.jobs_updated,
            errors=errors,
            error_message=message,
            duration_ms=int((time.monotonic() - started) * 1000),
        )

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def _callbacks(self) -> ExtractCallbacks:
        return ExtractCallbacks(on_log=self.log, on_total_count=self._on_total_count)

    def _on_total_count(self, count: int) -> None:
        self.tracker.total_jobs = count
        self.log(f"Total jobs reported: {count}")
        self.tracker.emit()

    def _has_login(self) -> bool:
        return type(self.module).login is not ExtractionModule.login

    async def _login(self, page: Any) -> None:
        if self._has_login():
            self.tracker.emit("Checking login...")
            await self.module.login(page)

    async def _probe_total(self, page: Any) -> None:
        if self.tracker.total_jobs is not None or not supports_total_count(self.module):
            return
        try:
            total = await self.module.get_total_count(page, self.params)  # type: ignore[attr-defined]
        except Exception as e:
            logger.debug("[%s] Total count probe failed", self.source, exc_info=True)
            self.log(f"Failed to get total count: {e}")
            return
        if total:
            self._on_total_count(total)

    def _finish_status(self) -> str:
        return "Stopped" if self.stopped else "Done"

    # ------------------------------------------------------------------
    # Parallel path
    # ------------------------------------------------------------------

    async def _run_parallel(self) -> None:
        self.scrape_type = SCRAPE_TYPE_PARALLEL
        self.tracker.emit("Collecting job links...")

        async with self._pool.session() as session:
            await self._login(session.page)
            if self.stopped:
                return
            cards: list[JobCardInfo] = await self.module.collect_links(  # type: ignore[attr-defined]
                session.page, self.params, self._callbacks(),
            )
            await self._probe_total(session.page)

        filters = build_prefilters(self.params.rank_filter, self._coordinator.known_names)
        filtered = run_prefilters(cards, filters)
        self.log(f"Collected {len(cards)} job links, {len(filtered)} remain after pre-filter")
        self.tracker.total = len(filtered)

        if not filtered:
            self.tracker.emit("No new companies to fetch")
            return
        if not await self._await_confirmation(len(filtered)):
            return

        workers = min(self._worker_count, len(filtered))
        self.tracker.workers = workers
        self.tracker.start_phase(len(filtered))
        self.tracker.emit(f"Fetching details with {workers} workers...")
        await run_detail_workers(
            filtered,
            self._fetch_one,
            pool=self._pool,
            worker_count=workers,
            stop_event=self._stop,
            stagger_s=self._engine.worker_stagger_s,
            politeness_s=self._engine.politeness_delay_s,
            setup=self.module.login if self._has_login() else None,
        )
        self.tracker.emit(self._finish_status())

    async def _await_confirmation(self, count: int) -> bool:
        gate = ConfirmationGate()
        self.gate = gate
        if self.stopped:
            gate.resolve(False)

        self.tracker.waiting_confirmation = True
        self.tracker.emit(f"Waiting for confirmation: {count} companies to fetch")
        self.log(f"Waiting for confirmation to fetch {count} detail pages")
        try:
            proceed = await gate.wait()
        finally:
            self.tracker.waiting_confirmation = False

        if not proceed:
            self.log("Detail fetch cancelled before start")
            self.tracker.emit("Cancelled")
        return proceed

    async def _fetch_one(self, page: Any, card: JobCardInfo) -> None:
        if self.stopped:
            return

        def _on_retry(error: Exception, attempt: int) -> None:
            self.log(f"Retrying {card.url} ({attempt}/{self._retry.max_retries}): {error}")

        async def _fetch() -> CandidateRecord | None:
            return await self.module.fetch_detail(page, card, self.log)  # type: ignore[attr-defined,no-any-return]

        try:
            candidate = await with_retry(
                _fetch,
                max_retries=self._retry.max_retries,
                base_delay_s=self._retry.base_delay_s,
                jitter_s=self._retry.jitter_s,
                on_retry=_on_retry,
            )
        except Exception as e:
            self.tracker.record_error()
            self.log(f"Detail fetch failed for {card.url}: {e}")
            self.tracker.emit()
            return

        if candidate is None:
            self.tracker.record_skip()
        else:
            self.tracker.record(await self._coordinator.process(candidate, self.log))
        self.tracker.emit()

    # ------------------------------------------------------------------
    # Sequential path
    # ------------------------------------------------------------------

    async def _run_sequential(self) -> None:
        self.scrape_type = SCRAPE_TYPE_SEQUENTIAL
        self.tracker.workers = 1

        async with self._pool.session() as session:
            await self._login(session.page)
            if self.stopped:
                return
            await self._probe_total(session.page)
            self.tracker.start_phase()
            self.tracker.emit("Scraping...")

            stream = self.module.enumerate_and_extract(session.page, self.params, self._callbacks())
            queue = await run_sequential_pool(
                stream,
                self._handle_candidate,
                worker_count=self._worker_count,
                stop_event=self._stop,
                poll_s=self._engine.queue_poll_s,
                stop_producing=self._should_smart_stop,
            )
            logger.debug("[%s] Queue high-water mark: %d", self.source, queue.high_water)

        self.tracker.emit(self._finish_status())

    async def _handle_candidate(self, candidate: CandidateRecord) -> None:
        result = await self._coordinator.process(candidate, self.log)
        if result.outcome is ProcessOutcome.DUPLICATE:
            self._consecutive_duplicates += 1
        elif result.outcome is ProcessOutcome.NEW:
            self._consecutive_duplicates = 0
        self.tracker.record(result)
        self.tracker.emit()

    def _should_smart_stop(self) -> bool:
        threshold = self._engine.smart_stop_threshold
        if threshold <= 0 or self._consecutive_duplicates < threshold:
            return False
        if not self._smart_stopped:
            self._smart_stopped = True
            self.log(f"Smart stop: {threshold} consecutive duplicates")
        return True
