"""Convert scraped CandidateRecords into persisted JobRecords.

Pure functions: no browser or database dependency.
"""

import hashlib
import re
from datetime import datetime

from harvest.core.schemas import CandidateRecord, JobLocation, JobRecord

DEFAULT_EMPLOYMENT_TYPE = "正社員"
UNKNOWN_TITLE = "タイトル不明"

# Site-native job id patterns, keyed by source.
_JOB_ID_PATTERNS: dict[str, re.Pattern[str]] = {
    # https://tenshoku.mynavi.jp/jobinfo-99359-1-160-1/
    "mynavi": re.compile(r"/jobinfo-([^/]+)/"),
    # https://doda.jp/DodaFront/View/JobSearchDetail/j_jid__3014345383/
    "doda": re.compile(r"j_jid__(\d+)"),
    # https://next.rikunabi.com/company/cmi1234567/
    "rikunabi": re.compile(r"/company/([^/]+)/"),
}

_MAN = 10_000
# Hourly wages are annualized as 8h x 20 days x 12 months.
_HOURS_PER_YEAR = 8 * 20 * 12

_RANGE_SEP = r"\s*[～〜~\-－]\s*"
_YEARLY_RANGE = re.compile(rf"年収\s*(\d+)万円{_RANGE_SEP}(\d+)万円")
_YEARLY_SINGLE = re.compile(r"年収\s*(\d+)万円")
_MONTHLY_RANGE = re.compile(rf"月給\s*(\d+)万円{_RANGE_SEP}(\d+)万円")
_MONTHLY_SINGLE = re.compile(r"月給\s*(\d+)万円")
_HOURLY_RANGE = re.compile(rf"時給\s*([\d,]+)円{_RANGE_SEP}([\d,]+)円")

PREFECTURES = (
    "北海道", "青森県", "岩手県", "宮城県", "秋田県", "山形県", "福島県",
    "茨城県", "栃木県", "群馬県", "埼玉県", "千葉県", "東京都", "神奈川県",
    "新潟県", "富山県", "石川県", "福井県", "山梨県", "長野県", "岐阜県",
    "静岡県", "愛知県", "三重県", "滋賀県", "京都府", "大阪府", "兵庫県",
    "奈良県", "和歌山県", "鳥取県", "島根県", "岡山県", "広島県", "山口県",
    "徳島県", "香川県", "愛媛県", "高知県", "福岡県", "佐賀県", "長崎県",
    "熊本県", "大分県", "宮崎県", "鹿児島県", "沖縄県",
)

_LOCALITY = re.compile(r"^([^、,\s]+)")


def hash_url(url: str) -> str:
    """Stable content hash used when no site-native id can be parsed."""
    return hashlib.sha1(url.encode("utf-8")).hexdigest()[:16]


def extract_job_id(url: str, source: str) -> str:
    """Parse the site-native job id from a detail URL, or hash the URL."""
    pattern = _JOB_ID_PATTERNS.get(source)
    if pattern is not None:
        match = pattern.search(url)
        if match:
            return match.group(1)
    return hash_url(url)


def normalize_salary(salary_text: str) -> tuple[int | None, int | None]:
    """Return annual (min, max) yen bounds parsed from salary text.

    Understands yearly (年収), monthly (月給) and hourly (時給) forms; anything
    else yields (None, None).
    """
    if not salary_text:
        return None, None

    if m := _YEARLY_RANGE.search(salary_text):
        return int(m.group(1)) * _MAN, int(m.group(2)) * _MAN
    if m := _YEARLY_SINGLE.search(salary_text):
        value = int(m.group(1)) * _MAN
        return value, value
    if m := _MONTHLY_RANGE.search(salary_text):
        return int(m.group(1)) * _MAN * 12, int(m.group(2)) * _MAN * 12
    if m := _MONTHLY_SINGLE.search(salary_text):
        value = int(m.group(1)) * _MAN * 12
        return value, value
    if m := _HOURLY_RANGE.search(salary_text):
        low = int(m.group(1).replace(",", ""))
        high = int(m.group(2).replace(",", ""))
        return low * _HOURS_PER_YEAR, high * _HOURS_PER_YEAR
    return None, None


def parse_locations(address: str, area: str) -> list[JobLocation]:
    """Structure a free-text address into at most one location."""
    text = address or area
    if not text:
        return []
    for pref in PREFECTURES:
        idx = text.find(pref)
        if idx != -1:
            rest = text[idx + len(pref):]
            match = _LOCALITY.match(rest)
            return [JobLocation(
                region=pref,
                locality=match.group(1) if match else None,
                address=text,
            )]
    return [JobLocation(address=text)]


def candidate_to_job(candidate: CandidateRecord, now: datetime | None = None) -> JobRecord:
    """Convert a CandidateRecord into a JobRecord keyed by source + native id."""
    timestamp = (now or datetime.now()).isoformat()
    source_job_id = extract_job_id(candidate.url, candidate.source)
    salary_min, salary_max = normalize_salary(candidate.salary_text)

    return JobRecord(
        id=f"{candidate.source}_{source_job_id}",
        source=candidate.source,
        source_job_id=source_job_id,
        source_url=candidate.url,
        company_name=candidate.company_name.strip(),
        company_url=candidate.homepage_url or None,
        title=candidate.job_title or UNKNOWN_TITLE,
        employment_type=candidate.employment_type or DEFAULT_EMPLOYMENT_TYPE,
        industry=candidate.industry or None,
        description=candidate.job_description,
        salary_min=salary_min,
        salary_max=salary_max,
        salary_text=candidate.salary_text,
        locations=parse_locations(candidate.address, candidate.area),
        location_summary=candidate.address or candidate.area,
        date_posted=candidate.date_posted or timestamp,
        date_expires=candidate.date_expires,
        date_updated=candidate.date_updated or timestamp,
        scraped_at=timestamp,
        last_checked_at=timestamp,
        is_active=True,
    )
