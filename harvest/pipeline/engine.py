"""Scraping engine: single-flight orchestration of one harvesting run.

Run flow:
  1. Resolve requested sources against the extractor registry
  2. Seed the shared dedup cache from the store
  3. Open the browser pool
  4. For each job-type facet, run every source pipeline concurrently
  5. Release the pool and clear the running flag, whatever happened
"""

import asyncio
import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager

from harvest.browser.session import BrowserPool, SessionPool
from harvest.core.config import BrowserConfig, ScrapeOptions, Settings
from harvest.core.schemas import ScrapeResult, SourceProgress
from harvest.core.store import Store
from harvest.extractors.base import ExtractionModule, ScrapeParams
from harvest.extractors.registry import ExtractorRegistry
from harvest.pipeline.coordinator import PhoneLookup, UpsertCoordinator
from harvest.pipeline.progress import (
    ProgressAggregator,
    ProgressCallback,
    single_source_progress,
)
from harvest.pipeline.source import SourcePipeline

logger = logging.getLogger(__name__)

PoolFactory = Callable[[BrowserConfig], AbstractAsyncContextManager[SessionPool]]


def expand_job_types(options: ScrapeOptions, *, max_pages: int = 500) -> list[ScrapeParams]:
    """Split a multi-valued job-type facet into one ScrapeParams per value."""
    base = ScrapeParams(
        keywords=options.keywords,
        location=options.location,
        prefectures=list(options.prefectures),
        rank_filter=list(options.rank_filter),
        min_salary=options.min_salary,
        employee_range=options.employee_range,
        max_pages=max_pages,
    )
    if len(options.job_types) <= 1:
        return [base.model_copy(update={"job_types": list(options.job_types)})]
    return [base.model_copy(update={"job_types": [jt]}) for jt in options.job_types]


class ScrapingEngine:
    """Run extraction modules against the store, one run at a time.

    Usage::

        engine = ScrapingEngine(settings, store, registry)
        result = await engine.start(ScrapeOptions(sources=["doda"]), print)
        # from another task: engine.confirm(True) / engine.stop()
    """

    def __init__(
        self,
        settings: Settings,
        store: Store,
        registry: ExtractorRegistry,
        *,
        pool_factory: PoolFactory = BrowserPool,
        phone_lookup: PhoneLookup | None = None,
    ) -> None:
        self._settings = settings
        self._store = store
        self._registry = registry
        self._pool_factory = pool_factory
        self._phone_lookup = phone_lookup
        self._running = False
        self._stop_event = asyncio.Event()
        self._pipelines: list[SourcePipeline] = []

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def pending_confirmations(self) -> list[str]:
        """Sources currently blocked on their confirmation gate."""
        return [p.source for p in self._pipelines if p.gate is not None and p.gate.pending]

    async def start(
        self,
        options: ScrapeOptions,
        on_progress: ProgressCallback,
        on_log: Callable[[str], None] | None = None,
    ) -> ScrapeResult:
        if self._running:
            return ScrapeResult(success=False, error="Scraping already in progress")
        self._running = True
        self._stop_event.clear()

        def log(message: str) -> None:
            if on_log is not None:
                on_log(message)

        try:
            modules, missing = self._registry.resolve(options.sources)
            for name in missing:
                logger.warning("No extraction module for source '%s' — skipped", name)
                log(f"Unknown source '{name}' skipped")
            if not modules:
                log("No extraction modules to run")
                return ScrapeResult(success=True)

            coordinator = UpsertCoordinator(self._store, phone_lookup=self._phone_lookup)
            seeded = await coordinator.seed()
            logger.info("Starting run: sources=%s, %d known companies",
                        [m.source for m in modules], seeded)

            sub_runs = expand_job_types(options, max_pages=self._settings.engine.max_pages)
            worker_count = options.worker_count or self._settings.engine.worker_count

            async with self._pool_factory(self._settings.browser) as pool:
                for index, params in enumerate(sub_runs, 1):
                    if self._stop_event.is_set():
                        break
                    if len(sub_runs) > 1:
                        log(f"Job type {params.job_types[0]} ({index}/{len(sub_runs)})")
                    await self._run_sources(
                        modules, params, pool, coordinator, worker_count, on_progress, on_log,
                    )

            logger.info("Run finished%s", " (stopped)" if self._stop_event.is_set() else "")
            return ScrapeResult(success=True)
        except Exception as e:
            logger.exception("Scraping run failed")
            log(f"Scraping failed: {e}")
            return ScrapeResult(success=False, error=str(e))
        finally:
            self._pipelines = []
            self._running = False

    async def _run_sources(
        self,
        modules: list[ExtractionModule],
        params: ScrapeParams,
        pool: SessionPool,
        coordinator: UpsertCoordinator,
        worker_count: int,
        on_progress: ProgressCallback,
        on_log: Callable[[str], None] | None,
    ) -> None:
        on_source: Callable[[SourceProgress], None]
        if len(modules) == 1:
            def on_source(snapshot: SourceProgress) -> None:
                on_progress(single_source_progress(snapshot))
        else:
            on_source = ProgressAggregator([m.source for m in modules], on_progress).update

        self._pipelines = [
            SourcePipeline(
                module,
                params=params,
                pool=pool,
                store=self._store,
                coordinator=coordinator,
                engine_config=self._settings.engine,
                retry_config=self._settings.retry,
                worker_count=worker_count,
                stop_event=self._stop_event,
                on_progress=on_source,
                on_log=on_log,
            )
            for module in modules
        ]
        await asyncio.gather(*(p.run() for p in self._pipelines))

    def stop(self) -> None:
        """Request cooperative cancellation and decline every pending gate."""
        self._stop_event.set()
        for pipeline in self._pipelines:
            if pipeline.gate is not None:
                pipeline.gate.resolve(False)
        logger.info("Stop requested")

    def confirm(self, proceed: bool, source: str | None = None) -> bool:
        """Resolve the pending gate of ``source`` (or all pending gates).

        Returns True if at least one gate was resolved.
        """
        resolved = False
        for pipeline in self._pipelines:
            if source is not None and pipeline.source != source:
                continue
            if pipeline.gate is not None and pipeline.gate.resolve(proceed):
                resolved = True
        if not resolved:
            logger.debug("confirm(%s, source=%s) found no pending gate", proceed, source)
        return resolved
