"""Translate event list filters into a WHERE clause for the events table.

The filters mirror the query string of ``GET /api/events``:

* ``category``: exact match unless missing or ``"all"``.
* ``date``: one of ``today``, ``week`` or ``month``. Each bucket is a half-open
  local-time range ``[start, end)``. Anything else applies no constraint.
* ``search``: case-insensitive substring of ``name`` or ``description``.

Search is a full scan over casefolded text; there is no text index behind it.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional
import logging

from utils import format_timestamp

logger = logging.getLogger(__name__)

ALL = "all"
DATE_BUCKETS = ("today", "week", "month")

@dataclass
class EventFilter:
    category: Optional[str] = None
    date: Optional[str] = None
    search: Optional[str] = None

@dataclass
class EventQuery:
    clauses: list[str] = field(default_factory=list)
    params: list = field(default_factory=list)

    def add(self, clause: str, *params):
        self.clauses.append(clause)
        self.params.extend(params)

    def where_sql(self) -> str:
        if not self.clauses:
            return ""
        return "WHERE " + " AND ".join(self.clauses)

def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)

def date_range(bucket: str, now: datetime) -> Optional[tuple[datetime, datetime]]:
    """Return the ``[start, end)`` range for a date bucket, or None."""
    today = start_of_day(now)
    if bucket == "today":
        return today, today + timedelta(days=1)
    if bucket == "week":
        # weekday() is 0 for Monday; weeks start on Sunday
        week_start = today - timedelta(days=(today.weekday() + 1) % 7)
        return week_start, week_start + timedelta(days=7)
    if bucket == "month":
        month_start = today.replace(day=1)
        if month_start.month == 12:
            month_end = month_start.replace(year=month_start.year + 1, month=1)
        else:
            month_end = month_start.replace(month=month_start.month + 1)
        return month_start, month_end
    return None

def build_event_query(filters: EventFilter, now: Optional[datetime] = None) -> EventQuery:
    """Build the predicate for a filter request relative to ``now``."""
    query = EventQuery()

    if filters.category and filters.category != ALL:
        query.add("e.category = ?", filters.category)

    if filters.date and filters.date != ALL:
        bounds = date_range(filters.date, now or datetime.now())
        if bounds:
            start, end = bounds
            query.add("e.date >= ? AND e.date < ?", format_timestamp(start), format_timestamp(end))
        else:
            logger.debug(f"Ignoring unknown date filter {filters.date!r}")

    if filters.search:
        # casefold() is registered on the connection by Database
        term = filters.search.casefold()
        query.add("(instr(casefold(e.name), ?) > 0 OR instr(casefold(e.description), ?) > 0)", term, term)

    return query
