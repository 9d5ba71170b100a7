"""
Retention Calculator — disposal year and date for filed records.

The retention clock starts at the finalization (filing) date, not at
submission:

    1. permanent records      → year "Permanent", no date
    2. incomplete policy      → year "Unknown", date "N/A"
    3. cutoff from filed_at:
         CALENDAR_YEAR → Dec 31 of that year
         FISCAL_YEAR   → Sep 30 (same year before October, else next year)
         anything else → filed_at itself
    4. cutoff + retention period (years / months / days)

Adding months or years to a day that does not exist in the target month
rolls the overflow into the following month (Feb 29 + 1 year → Mar 1,
Jan 31 + 1 month → Mar 2 or Mar 3).

Usage:
    from edms.services.retention import compute_disposal, RetentionInfo

    result = compute_disposal(RetentionInfo(
        is_permanent=False, retention_value=3, retention_unit="years",
        cutoff_trigger="CALENDAR_YEAR", filed_at=date(2023, 6, 15),
    ))
    result.year   # "2026"
    result.date   # "12/31/2026"
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime, timedelta

PERMANENT = "Permanent"
UNKNOWN = "Unknown"
NOT_AVAILABLE = "N/A"

CALENDAR_YEAR = "CALENDAR_YEAR"
FISCAL_YEAR = "FISCAL_YEAR"

# Government fiscal year ends Sep 30.
FISCAL_YEAR_END_MONTH = 9
FISCAL_YEAR_END_DAY = 30

# Year-group ordering for the records dashboards. The originator view pins
# Permanent first, the command view pins it last; Unknown is last in both.
ORIGINATOR_YEAR_ORDER = "originator"
COMMAND_YEAR_ORDER = "command"

NO_BUCKET = "Unassigned"


@dataclass(frozen=True)
class RetentionInfo:
    is_permanent: bool = False
    retention_value: int | None = None
    retention_unit: str | None = None
    cutoff_trigger: str | None = None
    filed_at: date | datetime | None = None

    @classmethod
    def from_request(cls, request) -> "RetentionInfo":
        return cls(
            is_permanent=bool(request.is_permanent),
            retention_value=request.retention_value,
            retention_unit=request.retention_unit,
            cutoff_trigger=request.cutoff_trigger,
            filed_at=request.filed_at,
        )


@dataclass(frozen=True)
class DisposalResult:
    """``year`` is a 4-digit string, "Permanent" or "Unknown".

    ``date`` is the display string (M/D/YYYY), "N/A" or None for permanent
    records; ``disposal_on`` is the same date as a value.
    """

    year: str
    date: str | None
    disposal_on: date | None = None

    def to_dict(self) -> dict:
        return {
            "year": self.year,
            "date": self.date,
            "disposal_on": self.disposal_on.isoformat() if self.disposal_on else None,
        }


def _as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def _format_us(d: date) -> str:
    return f"{d.month}/{d.day}/{d.year}"


def _add_months(d: date, months: int) -> date:
    index = d.year * 12 + (d.month - 1) + months
    year, month = divmod(index, 12)
    return date(year, month + 1, 1) + timedelta(days=d.day - 1)


# ── Calculation ──────────────────────────────────────────────────────────


def compute_cutoff_date(filed_at, cutoff_trigger: str | None) -> date:
    """Cutoff date for a record finalized on ``filed_at``."""
    d = _as_date(filed_at)
    if cutoff_trigger == CALENDAR_YEAR:
        return date(d.year, 12, 31)
    if cutoff_trigger == FISCAL_YEAR:
        year = d.year if d.month <= FISCAL_YEAR_END_MONTH else d.year + 1
        return date(year, FISCAL_YEAR_END_MONTH, FISCAL_YEAR_END_DAY)
    return d


def add_retention_period(start: date, value: int, unit: str | None) -> date:
    """Add ``value`` units to ``start``; an unrecognized unit leaves it unchanged."""
    unit = (unit or "").lower()
    if unit == "years":
        return _add_months(start, int(value) * 12)
    if unit == "months":
        return _add_months(start, int(value))
    if unit == "days":
        return start + timedelta(days=int(value))
    return start


def compute_disposal(info: RetentionInfo) -> DisposalResult:
    """Disposal year and date for a retention policy and finalization date."""
    if info.is_permanent:
        return DisposalResult(year=PERMANENT, date=None)
    if info.retention_value is None or not info.cutoff_trigger or info.filed_at is None:
        return DisposalResult(year=UNKNOWN, date=NOT_AVAILABLE)

    cutoff = compute_cutoff_date(info.filed_at, info.cutoff_trigger)
    disposal = add_retention_period(cutoff, info.retention_value, info.retention_unit)
    return DisposalResult(year=str(disposal.year), date=_format_us(disposal), disposal_on=disposal)


# ── Display ──────────────────────────────────────────────────────────────


def format_retention(is_permanent, value, unit) -> str:
    if is_permanent:
        return "Permanent - Transfer to NARA"
    if value is None or not unit:
        return NOT_AVAILABLE
    unit = str(unit).lower()
    singular = unit[:-1] if unit.endswith("s") else unit
    return f"{value} {singular if int(value) == 1 else singular + 's'}"


def format_cutoff(cutoff_trigger: str | None, cutoff_description: str | None = None) -> str:
    if cutoff_trigger == CALENDAR_YEAR:
        return "End of Calendar Year"
    if cutoff_trigger == FISCAL_YEAR:
        return "End of Fiscal Year"
    if cutoff_description:
        return cutoff_description
    if cutoff_trigger:
        return cutoff_trigger.replace("_", " ").title()
    return NOT_AVAILABLE


def disposal_summary(request) -> str:
    """One-line disposal instruction for a request carrying retention fields."""
    if request.is_permanent:
        return "PERMANENT: Transfer to National Archives"
    retention = format_retention(False, request.retention_value, request.retention_unit)
    cutoff = format_cutoff(request.cutoff_trigger, request.cutoff_description)
    return f"TEMPORARY: {retention} after {cutoff.lower()}"


# ── Records dashboard ────────────────────────────────────────────────────


def _year_sort_key(order: str):
    permanent_rank = -1 if order == ORIGINATOR_YEAR_ORDER else 1

    def key(year: str):
        if year == PERMANENT:
            return (permanent_rank, 0)
        if year == UNKNOWN:
            return (2, 0)
        try:
            return (0, int(year))
        except ValueError:
            return (2, 0)

    return key


def sort_disposal_years(years: Iterable[str], order: str = ORIGINATOR_YEAR_ORDER) -> list[str]:
    """Sort year-group labels: numeric years ascending, Permanent and Unknown pinned.

    ORIGINATOR_YEAR_ORDER puts Permanent first; COMMAND_YEAR_ORDER puts it
    after the numbered years. Unknown is always last.
    """
    return sorted(set(years), key=_year_sort_key(order))


def group_filed_records(records: Sequence, order: str = ORIGINATOR_YEAR_ORDER) -> list[dict]:
    """Group filed requests by disposal year, then by SSIC bucket.

    Returns::

        [{"year": "2026", "buckets": [
            {"bucket": "2000", "title": "...", "records": [request, ...]}]}]
    """
    by_year: dict[str, dict[str, dict]] = {}
    for record in records:
        if record.filed_at is None:
            continue
        year = compute_disposal(RetentionInfo.from_request(record)).year
        bucket_key = record.ssic_bucket or NO_BUCKET
        buckets = by_year.setdefault(year, {})
        bucket = buckets.setdefault(bucket_key, {
            "bucket": bucket_key,
            "title": record.ssic_bucket_title,
            "records": [],
        })
        bucket["records"].append(record)

    return [
        {"year": year, "buckets": [by_year[year][k] for k in sorted(by_year[year])]}
        for year in sort_disposal_years(by_year, order)
    ]
