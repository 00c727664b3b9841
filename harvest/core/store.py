"""Async facade over the SQLite layer.

Every call runs in a worker thread (a suspension point for the engine) and
holds a lock, so many concurrent tasks can share one connection.
"""

import asyncio
import sqlite3
import threading
from collections.abc import Callable
from typing import Any, TypeVar

from harvest.core import db
from harvest.core.schemas import CandidateRecord, JobRecord, JobUpsertStatus, ScrapeRunLog

T = TypeVar("T")


class Store:
    """Persistence contract consumed by the engine.

    Usage::

        store = Store(init_db("data/harvest.db"))
        names = await store.all_company_names()
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._lock = threading.Lock()

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    async def _call(self, fn: Callable[..., T], *args: Any) -> T:
        def _locked() -> T:
            with self._lock:
                return fn(self._conn, *args)

        return await asyncio.to_thread(_locked)

    # --- companies ---

    async def all_company_names(self) -> set[str]:
        return await self._call(db.get_all_company_names)

    async def company_exists(self, name: str) -> bool:
        return await self._call(db.company_exists_by_name, name)

    async def get_company(self, name: str) -> sqlite3.Row | None:
        return await self._call(db.get_company_by_name, name)

    async def upsert_company(self, candidate: CandidateRecord) -> bool:
        return await self._call(db.safe_upsert_company, candidate)

    async def update_company(self, company_id: int, updates: dict[str, Any]) -> None:
        await self._call(db.update_company, company_id, updates)

    # --- jobs ---

    async def get_job(self, job_id: str) -> JobRecord | None:
        return await self._call(db.get_job_by_id, job_id)

    async def job_exists_by_url(self, url: str) -> bool:
        return await self._call(db.job_exists_by_url, url)

    async def upsert_job(self, job: JobRecord) -> JobUpsertStatus:
        return await self._call(db.upsert_job, job)

    # --- run logs ---

    async def insert_run_log(self, log: ScrapeRunLog) -> int:
        return await self._call(db.insert_run_log, log)

    async def recent_run_logs(self, limit: int = 50) -> list[ScrapeRunLog]:
        return await self._call(db.get_recent_run_logs, limit)

    async def run_log_stats(self) -> dict[str, float]:
        return await self._call(db.get_run_log_stats)

    def close(self) -> None:
        with self._lock:
            self._conn.close()
