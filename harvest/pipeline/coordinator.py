"""Dedup & upsert coordinator: at most one write per company name per run.

Data flow for one candidate:
  1. Reject empty name / url
  2. In-run name cache: claim the name synchronously, or report duplicate
  3. Company safe upsert (curated fields untouched)
  4. Job upsert by material change (failure here keeps the company write)
  5. Fire-and-forget phone enrichment when the candidate has no phone

One coordinator is shared by every source pipeline of an engine run.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Protocol

from harvest.core.converter import candidate_to_job
from harvest.core.schemas import (
    CandidateRecord,
    JobUpsertStatus,
    ProcessOutcome,
    ProcessResult,
)
from harvest.core.store import Store

logger = logging.getLogger(__name__)

LogFn = Callable[[str], None]


def _discard(_msg: str) -> None:
    return None


class PhoneLookup(Protocol):
    """Third-party phone number lookup (e.g. a places API client)."""

    async def find_phone(self, company_name: str, address: str) -> str | None: ...


class UpsertCoordinator:
    """Decide new vs. duplicate and write each company exactly once.

    Usage::

        coordinator = UpsertCoordinator(store)
        await coordinator.seed()
        result = await coordinator.process(candidate)
    """

    def __init__(self, store: Store, *, phone_lookup: PhoneLookup | None = None) -> None:
        self._store = store
        self._phone_lookup = phone_lookup
        self._claimed: set[str] = set()
        self._enrichments: set[asyncio.Task[None]] = set()

    @property
    def known_names(self) -> set[str]:
        """Names persisted before the run plus names claimed during it."""
        return self._claimed

    async def seed(self) -> int:
        """Bulk-load every stored company name into the in-run cache."""
        names = await self._store.all_company_names()
        self._claimed.update(names)
        logger.debug("Dedup cache seeded with %d company names", len(names))
        return len(names)

    async def process(self, candidate: CandidateRecord, log: LogFn = _discard) -> ProcessResult:
        name = candidate.company_name.strip()
        if not name or not candidate.url.strip():
            logger.debug("Rejected candidate without name/url: %r", candidate.url)
            return ProcessResult(outcome=ProcessOutcome.REJECTED)

        # Check and claim with no await in between: no other task can claim
        # the same name concurrently.
        if name in self._claimed:
            log(f"Duplicate skipped: {name}")
            return ProcessResult(outcome=ProcessOutcome.DUPLICATE)
        self._claimed.add(name)

        try:
            await self._store.upsert_company(candidate)
        except Exception as e:
            logger.exception("Company upsert failed for %s", name)
            log(f"Failed to save company {name}: {e}")
            return ProcessResult(outcome=ProcessOutcome.ERROR)

        job_status = await self._upsert_job(candidate, log)

        if not candidate.phone and self._phone_lookup is not None:
            self._start_enrichment(self._phone_lookup, name, candidate.address, log)

        return ProcessResult(outcome=ProcessOutcome.NEW, job_status=job_status)

    async def _upsert_job(self, candidate: CandidateRecord, log: LogFn) -> JobUpsertStatus:
        try:
            job = candidate_to_job(candidate)
            return await self._store.upsert_job(job)
        except Exception as e:
            logger.exception("Failed to convert/save job %s", candidate.url)
            log(f"Failed to save job {candidate.url}: {e}")
            return JobUpsertStatus.ERROR

    # --- phone enrichment ---

    def _start_enrichment(self, lookup: PhoneLookup, name: str, address: str, log: LogFn) -> None:
        task = asyncio.create_task(self._enrich_phone(lookup, name, address, log))
        self._enrichments.add(task)
        task.add_done_callback(self._enrichments.discard)

    async def _enrich_phone(self, lookup: PhoneLookup, name: str, address: str, log: LogFn) -> None:
        try:
            phone = await lookup.find_phone(name, address)
            if not phone:
                log(f"No phone number found: {name}")
                return
            row = await self._store.get_company(name)
            if row is None or row["phone"]:
                return
            await self._store.update_company(row["id"], {"phone": phone})
            log(f"Phone number found for {name}: {phone}")
        except Exception:
            logger.warning("Phone lookup failed for %s", name, exc_info=True)

    @property
    def pending_enrichments(self) -> int:
        return len(self._enrichments)

    async def wait_for_enrichment(self) -> None:
        """Await every enrichment task started so far."""
        if self._enrichments:
            await asyncio.gather(*list(self._enrichments), return_exceptions=True)
