"""Tests for the database layer: companies, jobs, and scrape run logs."""

from datetime import datetime

import pytest

from harvest.core.converter import candidate_to_job
from harvest.core.db import (
    company_exists_by_name,
    get_all_company_names,
    get_company_by_name,
    get_job_by_id,
    get_recent_run_logs,
    get_run_log_stats,
    init_db,
    insert_run_log,
    job_exists_by_url,
    job_needs_update,
    safe_upsert_company,
    update_company,
    upsert_job,
)
from harvest.core.schemas import CandidateRecord, JobUpsertStatus, ScrapeRunLog


def _candidate(name: str = "株式会社テスト", **kw: object) -> CandidateRecord:
    defaults: dict[str, object] = {
        "company_name": name,
        "url": "https://doda.jp/DodaFront/View/JobSearchDetail/j_jid__100/",
        "source": "doda",
        "job_title": "営業",
        "salary_text": "年収400万円～600万円",
        "address": "東京都港区芝公園1-1",
    }
    defaults.update(kw)
    return CandidateRecord(**defaults)  # type: ignore[arg-type]


@pytest.fixture()
def db(tmp_path):  # type: ignore[no-untyped-def]
    """Provide a fresh SQLite connection per test."""
    return init_db(tmp_path / "test.db")


class TestInitDb:
    def test_creates_tables(self, db) -> None:  # type: ignore[no-untyped-def]
        tables = {
            row[0]
            for row in db.execute(
                "SELECT name FROM sqlite_master WHERE type='table'"
            ).fetchall()
        }
        assert {"companies", "jobs", "scraping_logs"} <= tables

    def test_idempotent(self, tmp_path) -> None:  # type: ignore[no-untyped-def]
        """Calling init_db twice on the same path doesn't error."""
        p = tmp_path / "double.db"
        conn1 = init_db(p)
        conn1.close()
        conn2 = init_db(p)
        conn2.close()

    def test_creates_parent_dir(self, tmp_path) -> None:  # type: ignore[no-untyped-def]
        conn = init_db(tmp_path / "nested" / "dir" / "h.db")
        conn.close()
        assert (tmp_path / "nested" / "dir" / "h.db").exists()


class TestSafeUpsertCompany:
    def test_insert_new(self, db) -> None:  # type: ignore[no-untyped-def]
        assert safe_upsert_company(db, _candidate()) is True
        row = get_company_by_name(db, "株式会社テスト")
        assert row["status"] == "new"
        assert row["source"] == "doda"
        assert row["address"] == "東京都港区芝公園1-1"

    def test_second_observation_updates(self, db) -> None:  # type: ignore[no-untyped-def]
        safe_upsert_company(db, _candidate())
        assert safe_upsert_company(db, _candidate(industry="IT")) is False
        assert db.execute("SELECT COUNT(*) FROM companies").fetchone()[0] == 1
        assert get_company_by_name(db, "株式会社テスト")["industry"] == "IT"

    def test_empty_values_do_not_overwrite(self, db) -> None:  # type: ignore[no-untyped-def]
        safe_upsert_company(db, _candidate(industry="IT"))
        safe_upsert_company(db, _candidate(industry=""))
        assert get_company_by_name(db, "株式会社テスト")["industry"] == "IT"

    def test_protected_fields_untouched(self, db) -> None:  # type: ignore[no-untyped-def]
        safe_upsert_company(db, _candidate())
        row = get_company_by_name(db, "株式会社テスト")
        update_company(db, row["id"], {
            "status": "contacted", "note": "called twice", "ai_summary": "s", "ai_tags": "t",
        })

        safe_upsert_company(db, _candidate(industry="製造"))

        row = get_company_by_name(db, "株式会社テスト")
        assert row["status"] == "contacted"
        assert row["note"] == "called twice"
        assert row["ai_summary"] == "s"
        assert row["ai_tags"] == "t"
        assert row["industry"] == "製造"

    def test_phone_filled_only_when_empty(self, db) -> None:  # type: ignore[no-untyped-def]
        safe_upsert_company(db, _candidate())
        safe_upsert_company(db, _candidate(phone="03-1111-1111"))
        assert get_company_by_name(db, "株式会社テスト")["phone"] == "03-1111-1111"

        safe_upsert_company(db, _candidate(phone="03-2222-2222"))
        assert get_company_by_name(db, "株式会社テスト")["phone"] == "03-1111-1111"

    def test_last_seen_refreshed(self, db) -> None:  # type: ignore[no-untyped-def]
        safe_upsert_company(db, _candidate())
        db.execute("UPDATE companies SET last_seen_at = '2000-01-01T00:00:00'")
        safe_upsert_company(db, _candidate())
        assert get_company_by_name(db, "株式会社テスト")["last_seen_at"] > "2000-01-01"

    def test_empty_name_rejected(self, db) -> None:  # type: ignore[no-untyped-def]
        with pytest.raises(ValueError, match="required"):
            safe_upsert_company(db, _candidate(name="  "))

    def test_exists_and_all_names(self, db) -> None:  # type: ignore[no-untyped-def]
        safe_upsert_company(db, _candidate("A社"))
        safe_upsert_company(db, _candidate("B社"))
        assert company_exists_by_name(db, "A社") is True
        assert company_exists_by_name(db, "C社") is False
        assert get_all_company_names(db) == {"A社", "B社"}


class TestUpdateCompany:
    def test_unknown_column_rejected(self, db) -> None:  # type: ignore[no-untyped-def]
        safe_upsert_company(db, _candidate())
        row = get_company_by_name(db, "株式会社テスト")
        with pytest.raises(ValueError, match="cannot update company column"):
            update_company(db, row["id"], {"id": 99})

    def test_empty_updates_noop(self, db) -> None:  # type: ignore[no-untyped-def]
        safe_upsert_company(db, _candidate())
        row = get_company_by_name(db, "株式会社テスト")
        update_company(db, row["id"], {})
        assert get_company_by_name(db, "株式会社テスト")["updated_at"] == row["updated_at"]


class TestUpsertJob:
    def test_insert_then_unchanged(self, db) -> None:  # type: ignore[no-untyped-def]
        first = candidate_to_job(_candidate(), now=datetime(2026, 1, 1))
        assert upsert_job(db, first) is JobUpsertStatus.INSERTED

        again = candidate_to_job(_candidate(), now=datetime(2026, 2, 1))
        assert upsert_job(db, again) is JobUpsertStatus.UNCHANGED

        stored = get_job_by_id(db, first.id)
        assert stored is not None
        assert stored.last_checked_at == again.last_checked_at
        assert stored.scraped_at == first.scraped_at

    def test_material_change_updates(self, db) -> None:  # type: ignore[no-untyped-def]
        first = candidate_to_job(_candidate(), now=datetime(2026, 1, 1))
        upsert_job(db, first)

        changed = candidate_to_job(
            _candidate(salary_text="年収500万円～700万円"), now=datetime(2026, 2, 1),
        )
        assert upsert_job(db, changed) is JobUpsertStatus.UPDATED

        stored = get_job_by_id(db, first.id)
        assert stored is not None
        assert stored.salary_min == 5_000_000
        assert stored.date_posted == first.date_posted
        assert stored.scraped_at == first.scraped_at

    def test_locations_round_trip(self, db) -> None:  # type: ignore[no-untyped-def]
        job = candidate_to_job(_candidate())
        upsert_job(db, job)
        stored = get_job_by_id(db, job.id)
        assert stored is not None
        assert stored.locations[0].region == "東京都"
        assert stored.is_active is True

    def test_exists_by_url(self, db) -> None:  # type: ignore[no-untyped-def]
        job = candidate_to_job(_candidate())
        assert job_exists_by_url(db, job.source_url) is False
        upsert_job(db, job)
        assert job_exists_by_url(db, job.source_url) is True

    def test_job_needs_update_ignores_timestamps(self) -> None:
        a = candidate_to_job(_candidate(), now=datetime(2026, 1, 1))
        b = candidate_to_job(_candidate(), now=datetime(2026, 3, 1))
        assert job_needs_update(a, b) is False
        c = candidate_to_job(_candidate(job_title="経理"), now=datetime(2026, 3, 1))
        assert job_needs_update(a, c) is True


class TestRunLogs:
    def _log(self, **kw: object) -> ScrapeRunLog:
        defaults: dict[str, object] = {
            "scrape_type": "parallel",
            "source": "doda",
            "status": "success",
            "jobs_found": 10,
            "new_jobs": 4,
        }
        defaults.update(kw)
        return ScrapeRunLog(**defaults)  # type: ignore[arg-type]

    def test_insert_and_read(self, db) -> None:  # type: ignore[no-untyped-def]
        row_id = insert_run_log(db, self._log())
        assert row_id >= 1
        logs = get_recent_run_logs(db)
        assert len(logs) == 1
        assert logs[0].source == "doda"
        assert logs[0].jobs_found == 10

    def test_recent_newest_first(self, db) -> None:  # type: ignore[no-untyped-def]
        insert_run_log(db, self._log(source="a", scraped_at=datetime(2026, 1, 1)))
        insert_run_log(db, self._log(source="b", scraped_at=datetime(2026, 1, 2)))
        assert [log.source for log in get_recent_run_logs(db, limit=1)] == ["b"]

    def test_stats(self, db) -> None:  # type: ignore[no-untyped-def]
        insert_run_log(db, self._log())
        insert_run_log(db, self._log(status="partial", jobs_found=6, new_jobs=1))
        stats = get_run_log_stats(db)
        assert stats["total_runs"] == 2
        assert stats["success_rate"] == 50.0
        assert stats["total_jobs_found"] == 16
        assert stats["total_new_jobs"] == 5

    def test_stats_empty(self, db) -> None:  # type: ignore[no-untyped-def]
        stats = get_run_log_stats(db)
        assert stats["total_runs"] == 0
        assert stats["success_rate"] == 0.0
