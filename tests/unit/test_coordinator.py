"""Tests for the dedup & upsert coordinator."""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from harvest.core.db import init_db
from harvest.core.schemas import CandidateRecord, JobUpsertStatus, ProcessOutcome
from harvest.core.store import Store
from harvest.pipeline.coordinator import UpsertCoordinator


def _candidate(name: str = "株式会社テスト", **kw: object) -> CandidateRecord:
    defaults: dict[str, object] = {
        "company_name": name,
        "url": f"https://doda.jp/DodaFront/View/JobSearchDetail/j_jid__{abs(hash(name)) % 10**8}/",
        "source": "doda",
        "job_title": "営業",
    }
    defaults.update(kw)
    return CandidateRecord(**defaults)  # type: ignore[arg-type]


class FakePhoneLookup:
    def __init__(self, phone: str | None, release: asyncio.Event | None = None) -> None:
        self.phone = phone
        self.release = release
        self.calls: list[tuple[str, str]] = []

    async def find_phone(self, company_name: str, address: str) -> str | None:
        self.calls.append((company_name, address))
        if self.release is not None:
            await self.release.wait()
        return self.phone


@pytest.fixture()
def store(tmp_path: Path) -> Store:
    s = Store(init_db(tmp_path / "coord.db"))
    yield s  # type: ignore[misc]
    s.close()


# ---------------------------------------------------------------------------
# TestProcess
# ---------------------------------------------------------------------------


class TestProcess:
    async def test_new_company_and_job(self, store: Store) -> None:
        coordinator = UpsertCoordinator(store)
        result = await coordinator.process(_candidate())
        assert result.outcome is ProcessOutcome.NEW
        assert result.job_status is JobUpsertStatus.INSERTED
        assert await store.company_exists("株式会社テスト")

    async def test_second_sighting_is_duplicate_without_writes(self, store: Store) -> None:
        coordinator = UpsertCoordinator(store)
        await coordinator.process(_candidate())
        before = (await store.get_company("株式会社テスト"))["updated_at"]  # type: ignore[index]

        logs: list[str] = []
        result = await coordinator.process(_candidate(industry="IT"), logs.append)

        assert result.outcome is ProcessOutcome.DUPLICATE
        assert result.job_status is None
        row = await store.get_company("株式会社テスト")
        assert row["updated_at"] == before  # type: ignore[index]
        assert row["industry"] is None  # type: ignore[index]
        assert any("Duplicate" in m for m in logs)

    async def test_seeded_names_are_duplicates(self, store: Store) -> None:
        await store.upsert_company(_candidate("既存"))
        coordinator = UpsertCoordinator(store)
        assert await coordinator.seed() == 1
        assert "既存" in coordinator.known_names
        result = await coordinator.process(_candidate("既存"))
        assert result.outcome is ProcessOutcome.DUPLICATE

    async def test_name_whitespace_normalized(self, store: Store) -> None:
        coordinator = UpsertCoordinator(store)
        await coordinator.process(_candidate("A社"))
        result = await coordinator.process(_candidate("  A社 "))
        assert result.outcome is ProcessOutcome.DUPLICATE

    async def test_empty_name_rejected(self, store: Store) -> None:
        coordinator = UpsertCoordinator(store)
        result = await coordinator.process(_candidate("   "))
        assert result.outcome is ProcessOutcome.REJECTED
        assert await store.all_company_names() == set()

    async def test_empty_url_rejected(self, store: Store) -> None:
        coordinator = UpsertCoordinator(store)
        result = await coordinator.process(_candidate(url=""))
        assert result.outcome is ProcessOutcome.REJECTED

    async def test_concurrent_same_name_single_write(self, store: Store) -> None:
        """Many tasks racing on one name: exactly one NEW, the rest duplicates."""
        coordinator = UpsertCoordinator(store)
        results = await asyncio.gather(*(coordinator.process(_candidate()) for _ in range(10)))
        outcomes = [r.outcome for r in results]
        assert outcomes.count(ProcessOutcome.NEW) == 1
        assert outcomes.count(ProcessOutcome.DUPLICATE) == 9

    async def test_company_write_failure_is_error(self, store: Store) -> None:
        coordinator = UpsertCoordinator(store)
        with patch.object(store, "upsert_company", AsyncMock(side_effect=RuntimeError("locked"))):
            result = await coordinator.process(_candidate())
        assert result.outcome is ProcessOutcome.ERROR
        # The claim stays: a retry in the same run is a duplicate.
        assert (await coordinator.process(_candidate())).outcome is ProcessOutcome.DUPLICATE

    async def test_job_failure_keeps_company(self, store: Store) -> None:
        coordinator = UpsertCoordinator(store)
        with patch.object(store, "upsert_job", AsyncMock(side_effect=RuntimeError("constraint"))):
            result = await coordinator.process(_candidate())
        assert result.outcome is ProcessOutcome.NEW
        assert result.job_status is JobUpsertStatus.ERROR
        assert await store.company_exists("株式会社テスト")


# ---------------------------------------------------------------------------
# TestPhoneEnrichment
# ---------------------------------------------------------------------------


class TestPhoneEnrichment:
    async def test_phone_found_is_written(self, store: Store) -> None:
        lookup = FakePhoneLookup("03-1234-5678")
        coordinator = UpsertCoordinator(store, phone_lookup=lookup)
        await coordinator.process(_candidate(address="東京都港区"))
        await coordinator.wait_for_enrichment()

        assert lookup.calls == [("株式会社テスト", "東京都港区")]
        row = await store.get_company("株式会社テスト")
        assert row["phone"] == "03-1234-5678"  # type: ignore[index]

    async def test_not_awaited_by_process(self, store: Store) -> None:
        release = asyncio.Event()
        lookup = FakePhoneLookup("03-1234-5678", release)
        coordinator = UpsertCoordinator(store, phone_lookup=lookup)
        await coordinator.process(_candidate())
        assert coordinator.pending_enrichments == 1
        release.set()
        await coordinator.wait_for_enrichment()
        assert coordinator.pending_enrichments == 0

    async def test_no_lookup_configured(self, store: Store) -> None:
        coordinator = UpsertCoordinator(store)
        result = await coordinator.process(_candidate(address="東京都港区"))
        assert result.outcome is ProcessOutcome.NEW
        assert coordinator.pending_enrichments == 0
        await coordinator.wait_for_enrichment()

    async def test_lookup_called_once_per_new_company(self, store: Store) -> None:
        lookup = FakePhoneLookup("03-1234-5678")
        coordinator = UpsertCoordinator(store, phone_lookup=lookup)
        await coordinator.process(_candidate("A社", address="大阪府"))
        await coordinator.process(_candidate("A社", address="大阪府"))
        await coordinator.process(_candidate("B社", address="京都府"))
        await coordinator.wait_for_enrichment()
        assert lookup.calls == [("A社", "大阪府"), ("B社", "京都府")]

    async def test_candidate_with_phone_skips_lookup(self, store: Store) -> None:
        lookup = FakePhoneLookup("03-9999-9999")
        coordinator = UpsertCoordinator(store, phone_lookup=lookup)
        await coordinator.process(_candidate(phone="03-0000-0000"))
        await coordinator.wait_for_enrichment()
        assert lookup.calls == []

    async def test_existing_phone_not_overwritten(self, store: Store) -> None:
        release = asyncio.Event()
        lookup = FakePhoneLookup("03-9999-9999", release)
        coordinator = UpsertCoordinator(store, phone_lookup=lookup)
        await coordinator.process(_candidate())
        row = await store.get_company("株式会社テスト")
        await store.update_company(row["id"], {"phone": "03-1111-1111"})  # type: ignore[index]
        release.set()
        await coordinator.wait_for_enrichment()

        row = await store.get_company("株式会社テスト")
        assert row["phone"] == "03-1111-1111"  # type: ignore[index]

    async def test_lookup_failure_is_swallowed(self, store: Store) -> None:
        lookup = FakePhoneLookup(None)
        lookup.find_phone = AsyncMock(side_effect=RuntimeError("quota"))  # type: ignore[method-assign]
        coordinator = UpsertCoordinator(store, phone_lookup=lookup)
        result = await coordinator.process(_candidate())
        await coordinator.wait_for_enrichment()
        assert result.outcome is ProcessOutcome.NEW
