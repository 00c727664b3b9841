"""SQLite database layer for companies, jobs, and scrape run logs."""

import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

from harvest.core.schemas import (
    CandidateRecord,
    JobLocation,
    JobRecord,
    JobUpsertStatus,
    ScrapeRunLog,
)

_COMPANIES_TABLE = """
CREATE TABLE IF NOT EXISTS companies (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    company_name     TEXT    NOT NULL UNIQUE,
    source           TEXT    NOT NULL DEFAULT '',
    url              TEXT    NOT NULL,
    homepage_url     TEXT,
    status           TEXT    NOT NULL DEFAULT 'new',
    industry         TEXT,
    area             TEXT,
    job_title        TEXT,
    salary_text      TEXT,
    representative   TEXT,
    establishment    TEXT,
    employees        TEXT,
    revenue          TEXT,
    phone            TEXT,
    email            TEXT,
    contact_form_url TEXT,
    address          TEXT,
    budget_rank      TEXT,
    ai_summary       TEXT,
    ai_tags          TEXT,
    note             TEXT,
    last_seen_at     TEXT,
    created_at       TEXT    NOT NULL,
    updated_at       TEXT    NOT NULL
);
"""

_JOBS_TABLE = """
CREATE TABLE IF NOT EXISTS jobs (
    id               TEXT PRIMARY KEY,
    source           TEXT NOT NULL,
    source_job_id    TEXT NOT NULL,
    source_url       TEXT NOT NULL UNIQUE,
    company_name     TEXT NOT NULL,
    company_url      TEXT,
    title            TEXT NOT NULL,
    employment_type  TEXT,
    industry         TEXT,
    description      TEXT,
    salary_min       INTEGER,
    salary_max       INTEGER,
    salary_text      TEXT,
    locations        TEXT,
    location_summary TEXT,
    date_posted      TEXT,
    date_expires     TEXT,
    date_updated     TEXT,
    scraped_at       TEXT NOT NULL,
    last_checked_at  TEXT NOT NULL,
    is_active        INTEGER NOT NULL DEFAULT 1,
    UNIQUE (source, source_job_id)
);
"""

_SCRAPING_LOGS_TABLE = """
CREATE TABLE IF NOT EXISTS scraping_logs (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    scrape_type   TEXT NOT NULL,
    source        TEXT NOT NULL,
    target_url    TEXT,
    status        TEXT NOT NULL,
    jobs_found    INTEGER DEFAULT 0,
    new_jobs      INTEGER DEFAULT 0,
    updated_jobs  INTEGER DEFAULT 0,
    errors        INTEGER DEFAULT 0,
    error_message TEXT,
    duration_ms   INTEGER,
    scraped_at    TEXT NOT NULL,
    CHECK (status IN ('success', 'error', 'partial'))
);
"""

_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_companies_status ON companies(status)",
    "CREATE INDEX IF NOT EXISTS idx_jobs_company ON jobs(company_name)",
    "CREATE INDEX IF NOT EXISTS idx_jobs_source_active ON jobs(source, is_active)",
    "CREATE INDEX IF NOT EXISTS idx_logs_source ON scraping_logs(source)",
    "CREATE INDEX IF NOT EXISTS idx_logs_scraped ON scraping_logs(scraped_at)",
)

# Refreshed from every observation that carries a non-empty value.
COMPANY_REFRESH_FIELDS = (
    "url",
    "homepage_url",
    "industry",
    "area",
    "job_title",
    "salary_text",
    "representative",
    "establishment",
    "employees",
    "revenue",
    "email",
    "contact_form_url",
    "address",
    "budget_rank",
)

# Curated by people or downstream tools; a scrape never overwrites them.
COMPANY_PROTECTED_FIELDS = ("status", "note", "ai_summary", "ai_tags", "phone")

_COMPANY_UPDATABLE = frozenset(
    COMPANY_REFRESH_FIELDS + COMPANY_PROTECTED_FIELDS + ("source", "last_seen_at"),
)

# A difference in any of these triggers a full job update.
JOB_MATERIAL_FIELDS = (
    "title",
    "salary_min",
    "salary_max",
    "salary_text",
    "description",
    "date_expires",
    "employment_type",
    "location_summary",
    "is_active",
)

_JOB_COLUMNS = (
    "id",
    "source",
    "source_job_id",
    "source_url",
    "company_name",
    "company_url",
    "title",
    "employment_type",
    "industry",
    "description",
    "salary_min",
    "salary_max",
    "salary_text",
    "locations",
    "location_summary",
    "date_posted",
    "date_expires",
    "date_updated",
    "scraped_at",
    "last_checked_at",
    "is_active",
)


def init_db(path: str | Path) -> sqlite3.Connection:
    """Create the database and tables, returning a connection.

    The connection may be used from worker threads; callers serialize access.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute(_COMPANIES_TABLE)
    conn.execute(_JOBS_TABLE)
    conn.execute(_SCRAPING_LOGS_TABLE)
    for stmt in _INDEXES:
        conn.execute(stmt)
    conn.commit()
    return conn


def _now() -> str:
    return datetime.now().isoformat()


# ---------------------------------------------------------------------------
# Companies
# ---------------------------------------------------------------------------


def get_company_by_name(conn: sqlite3.Connection, name: str) -> sqlite3.Row | None:
    """Return the company row with exactly this name, or None."""
    row: sqlite3.Row | None = conn.execute(
        "SELECT * FROM companies WHERE company_name = ?", (name,),
    ).fetchone()
    return row


def company_exists_by_name(conn: sqlite3.Connection, name: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM companies WHERE company_name = ? LIMIT 1", (name,),
    ).fetchone()
    return row is not None


def get_all_company_names(conn: sqlite3.Connection) -> set[str]:
    """Bulk read of every stored company name (dedup cache seed)."""
    return {row[0] for row in conn.execute("SELECT company_name FROM companies")}


def safe_upsert_company(conn: sqlite3.Connection, candidate: CandidateRecord) -> bool:
    """Insert or refresh a company without touching curated fields.

    On insert every scraped field is stored and status starts as 'new'.
    On update only non-empty refresh fields are written; phone is filled in
    only while the stored phone is empty; status, note and AI fields are
    never written. last_seen_at and updated_at are always refreshed.

    Returns True if a new row was inserted.
    """
    name = candidate.company_name.strip()
    if not name or not candidate.url.strip():
        msg = "company name and url are required"
        raise ValueError(msg)

    now = _now()
    existing = get_company_by_name(conn, name)

    if existing is None:
        values: dict[str, Any] = {
            field: getattr(candidate, field) or None
            for field in COMPANY_REFRESH_FIELDS
        }
        values["url"] = candidate.url
        values.update(
            company_name=name,
            source=candidate.source,
            phone=candidate.phone or None,
            last_seen_at=now,
            created_at=now,
            updated_at=now,
        )
        columns = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        conn.execute(
            f"INSERT INTO companies ({columns}) VALUES ({placeholders})",
            tuple(values.values()),
        )
        conn.commit()
        return True

    updates: dict[str, Any] = {
        field: getattr(candidate, field)
        for field in COMPANY_REFRESH_FIELDS
        if getattr(candidate, field)
    }
    if candidate.phone and not existing["phone"]:
        updates["phone"] = candidate.phone
    updates["last_seen_at"] = now
    _update_company_row(conn, existing["id"], updates)
    return False


def update_company(conn: sqlite3.Connection, company_id: int, updates: dict[str, Any]) -> None:
    """Patch selected columns of a company row."""
    unknown = set(updates) - _COMPANY_UPDATABLE
    if unknown:
        msg = f"cannot update company column(s): {', '.join(sorted(unknown))}"
        raise ValueError(msg)
    if not updates:
        return
    _update_company_row(conn, company_id, updates)


def _update_company_row(
    conn: sqlite3.Connection,
    company_id: int,
    updates: dict[str, Any],
) -> None:
    set_clause = ", ".join(f"{key} = ?" for key in updates)
    conn.execute(
        f"UPDATE companies SET {set_clause}, updated_at = ? WHERE id = ?",
        (*updates.values(), _now(), company_id),
    )
    conn.commit()


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


def _job_to_row(job: JobRecord) -> tuple[Any, ...]:
    data = job.model_dump()
    data["locations"] = json.dumps(
        [loc.model_dump(exclude_none=True) for loc in job.locations], ensure_ascii=False,
    )
    data["is_active"] = int(job.is_active)
    return tuple(data[col] for col in _JOB_COLUMNS)


def _row_to_job(row: sqlite3.Row) -> JobRecord:
    data = dict(row)
    data["locations"] = [JobLocation(**loc) for loc in json.loads(data["locations"] or "[]")]
    data["is_active"] = bool(data["is_active"])
    data["employment_type"] = data["employment_type"] or ""
    data["description"] = data["description"] or ""
    data["salary_text"] = data["salary_text"] or ""
    data["location_summary"] = data["location_summary"] or ""
    return JobRecord.model_validate(data)


def get_job_by_id(conn: sqlite3.Connection, job_id: str) -> JobRecord | None:
    row = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
    return _row_to_job(row) if row is not None else None


def job_exists_by_url(conn: sqlite3.Connection, url: str) -> bool:
    row = conn.execute("SELECT 1 FROM jobs WHERE source_url = ? LIMIT 1", (url,)).fetchone()
    return row is not None


def insert_job(conn: sqlite3.Connection, job: JobRecord) -> None:
    columns = ", ".join(_JOB_COLUMNS)
    placeholders = ", ".join("?" for _ in _JOB_COLUMNS)
    conn.execute(
        f"INSERT INTO jobs ({columns}) VALUES ({placeholders})",
        _job_to_row(job),
    )
    conn.commit()


def update_job(conn: sqlite3.Connection, job: JobRecord) -> None:
    """Overwrite every column except the identity and first-seen fields."""
    keep = {"id", "source", "source_job_id", "scraped_at", "date_posted"}
    row = dict(zip(_JOB_COLUMNS, _job_to_row(job), strict=True))
    updates = {k: v for k, v in row.items() if k not in keep}
    set_clause = ", ".join(f"{key} = ?" for key in updates)
    conn.execute(
        f"UPDATE jobs SET {set_clause} WHERE id = ?",
        (*updates.values(), job.id),
    )
    conn.commit()


def touch_job_last_checked(conn: sqlite3.Connection, job_id: str, checked_at: str) -> None:
    conn.execute("UPDATE jobs SET last_checked_at = ? WHERE id = ?", (checked_at, job_id))
    conn.commit()


def job_needs_update(existing: JobRecord, new: JobRecord) -> bool:
    """Return True if any material field differs."""
    return any(getattr(existing, f) != getattr(new, f) for f in JOB_MATERIAL_FIELDS)


def upsert_job(conn: sqlite3.Connection, job: JobRecord) -> JobUpsertStatus:
    """Insert a job, or update it only when a material field changed.

    Unchanged jobs only get last_checked_at refreshed.
    """
    existing = get_job_by_id(conn, job.id)
    if existing is None:
        insert_job(conn, job)
        return JobUpsertStatus.INSERTED
    if job_needs_update(existing, job):
        update_job(conn, job)
        return JobUpsertStatus.UPDATED
    touch_job_last_checked(conn, job.id, job.last_checked_at)
    return JobUpsertStatus.UNCHANGED


# ---------------------------------------------------------------------------
# Scrape run logs
# ---------------------------------------------------------------------------


def insert_run_log(conn: sqlite3.Connection, log: ScrapeRunLog) -> int:
    """Record a completed per-source run. Returns the row ID."""
    cursor = conn.execute(
        """
        INSERT INTO scraping_logs
            (scrape_type, source, target_url, status, jobs_found, new_jobs,
             updated_jobs, errors, error_message, duration_ms, scraped_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            log.scrape_type,
            log.source,
            log.target_url,
            log.status,
            log.jobs_found,
            log.new_jobs,
            log.updated_jobs,
            log.errors,
            log.error_message,
            log.duration_ms,
            log.scraped_at.isoformat(),
        ),
    )
    conn.commit()
    return cursor.lastrowid or 0


def get_recent_run_logs(conn: sqlite3.Connection, limit: int = 50) -> list[ScrapeRunLog]:
    rows = conn.execute(
        "SELECT * FROM scraping_logs ORDER BY scraped_at DESC, id DESC LIMIT ?", (limit,),
    ).fetchall()
    return [
        ScrapeRunLog.model_validate({k: row[k] for k in row.keys() if k != "id"})
        for row in rows
    ]


def get_run_log_stats(conn: sqlite3.Connection) -> dict[str, float]:
    """Aggregate totals over every recorded run."""
    row = conn.execute(
        """
        SELECT
            COUNT(*) AS total_runs,
            SUM(CASE WHEN status = 'success' THEN 1 ELSE 0 END) AS success_count,
            SUM(jobs_found) AS total_jobs_found,
            SUM(new_jobs) AS total_new_jobs
        FROM scraping_logs
        """,
    ).fetchone()
    total_runs = row["total_runs"] or 0
    return {
        "total_runs": total_runs,
        "success_rate": (row["success_count"] / total_runs) * 100 if total_runs else 0.0,
        "total_jobs_found": row["total_jobs_found"] or 0,
        "total_new_jobs": row["total_new_jobs"] or 0,
    }
