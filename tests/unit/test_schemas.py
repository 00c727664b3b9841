"""Tests for core schemas: CandidateRecord, JobCardInfo, ScrapeRunLog, progress."""

from datetime import datetime

import pytest
from pydantic import ValidationError

from harvest.core.schemas import (
    CandidateRecord,
    JobCardInfo,
    ProcessOutcome,
    ScrapeProgress,
    ScrapeRunLog,
    SourceProgress,
)


def _make_candidate(**overrides: object) -> CandidateRecord:
    defaults: dict[str, object] = {
        "company_name": "株式会社サンプル",
        "url": "https://example.jp/job/1",
        "source": "doda",
    }
    defaults.update(overrides)
    return CandidateRecord(**defaults)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# CandidateRecord
# ---------------------------------------------------------------------------


class TestCandidateRecord:
    def test_defaults(self) -> None:
        c = _make_candidate()
        assert c.industry == ""
        assert c.budget_rank is None
        assert c.date_posted is None

    def test_frozen(self) -> None:
        c = _make_candidate()
        with pytest.raises(ValidationError):
            c.company_name = "other"  # type: ignore[misc]

    def test_invalid_rank_rejected(self) -> None:
        with pytest.raises(ValidationError):
            _make_candidate(budget_rank="D")

    def test_confidence_bounds(self) -> None:
        with pytest.raises(ValidationError):
            _make_candidate(rank_confidence=1.5)


# ---------------------------------------------------------------------------
# JobCardInfo
# ---------------------------------------------------------------------------


class TestJobCardInfo:
    def test_negative_display_index_rejected(self) -> None:
        with pytest.raises(ValidationError):
            JobCardInfo(url="https://example.jp/1", display_index=-1)

    def test_rank_optional(self) -> None:
        card = JobCardInfo(url="https://example.jp/1", rank="A")
        assert card.rank == "A"
        assert card.company_name == ""


# ---------------------------------------------------------------------------
# ScrapeRunLog
# ---------------------------------------------------------------------------


class TestScrapeRunLog:
    def test_scraped_at_defaults_to_now(self) -> None:
        log = ScrapeRunLog(scrape_type="full", source="doda", status="success")
        assert isinstance(log.scraped_at, datetime)
        assert log.errors == 0

    def test_unknown_status_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ScrapeRunLog(scrape_type="full", source="doda", status="done")  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Progress snapshots
# ---------------------------------------------------------------------------


class TestProgress:
    def test_breakdown_nested(self) -> None:
        progress = ScrapeProgress(
            source="multi",
            per_source_breakdown={"doda": SourceProgress(source="doda", current=3)},
        )
        assert progress.per_source_breakdown["doda"].current == 3  # type: ignore[index]

    def test_outcome_values_are_strings(self) -> None:
        assert ProcessOutcome.DUPLICATE == "duplicate"
