"""
Calendar helpers: IST "today", API date parsing, and turning a user's
requested date into cache windows plus candidate dates for the price API.
"""
import calendar
import datetime as dt
import re
from dataclasses import dataclass, field
from typing import List, Optional
from zoneinfo import ZoneInfo

IST = ZoneInfo("Asia/Kolkata")

_YEAR = re.compile(r"^(\d{4})$")
_MONTH = re.compile(r"^(\d{4})-(\d{1,2})$")


def today_ist() -> dt.date:
    return dt.datetime.now(IST).date()


def parse_api_date(s: Optional[str]) -> Optional[dt.date]:
    """Parse 'dd/mm/yyyy', 'dd-mm-yyyy' or ISO 'yyyy-mm-dd' into a date."""
    if not s:
        return None
    s = s.strip()
    for fmt in ("%d/%m/%Y", "%d-%m-%Y", "%Y-%m-%d"):
        try:
            return dt.datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    return None


def format_api_date(d: dt.date) -> str:
    return d.strftime("%d/%m/%Y")


@dataclass
class DatePlan:
    kind: str                               # latest | date | month | year
    cache_on_or_before: dt.date
    cache_not_before: Optional[dt.date] = None
    candidates: List[dt.date] = field(default_factory=list)
    requested: Optional[dt.date] = None

    @property
    def is_latest(self) -> bool:
        return self.kind == "latest"


def _latest_plan(today: dt.date, day_budget: int, lookback_days: int = 0) -> DatePlan:
    yesterday = today - dt.timedelta(days=1)
    return DatePlan(
        kind="latest",
        cache_on_or_before=yesterday,
        cache_not_before=(today - dt.timedelta(days=lookback_days)) if lookback_days > 0 else None,
        candidates=[yesterday - dt.timedelta(days=i) for i in range(max(day_budget, 0))],
    )


def _around(d: dt.date, today: dt.date, spread: int = 3) -> List[dt.date]:
    out = [d]
    for i in range(1, spread + 1):
        out.append(d - dt.timedelta(days=i))
        out.append(d + dt.timedelta(days=i))
    return [x for x in out if x < today]


def plan_dates(date_text: Optional[str], today: dt.date, day_budget: int = 14,
               lookback_days: int = 0) -> DatePlan:
    """
    Map the intent's date onto a search plan.

    - None / 'latest' / 'today'  -> scan back from yesterday, `day_budget` external days
    - 'yesterday' / 'YYYY-MM-DD' -> that day, then +-3 days
    - 'YYYY-MM'                  -> the month in cache, days 1-5 externally
    - 'YYYY'                     -> mid-year (Jun 15, Jul 1)
    """
    text = (date_text or "").strip().lower()
    if not text or text in ("latest", "today", "now", "current"):
        return _latest_plan(today, day_budget, lookback_days)

    if text == "yesterday":
        text = (today - dt.timedelta(days=1)).isoformat()

    m = _YEAR.match(text)
    if m:
        year = int(m.group(1))
        if year < dt.MINYEAR or year >= today.year + 1:
            return _latest_plan(today, day_budget, lookback_days)
        start, end = dt.date(year, 6, 1), dt.date(year, 7, 31)
        cands = [dt.date(year, 6, 15), dt.date(year, 7, 1)]
        return DatePlan(
            kind="year",
            cache_on_or_before=min(end, today - dt.timedelta(days=1)),
            cache_not_before=start,
            candidates=[c for c in cands if c < today],
            requested=dt.date(year, 6, 15),
        )

    m = _MONTH.match(text)
    if m:
        year, month = int(m.group(1)), int(m.group(2))
        if dt.MINYEAR <= year < today.year + 1 and 1 <= month <= 12:
            first = dt.date(year, month, 1)
            last = dt.date(year, month, calendar.monthrange(year, month)[1])
            return DatePlan(
                kind="month",
                cache_on_or_before=min(last, today - dt.timedelta(days=1)),
                cache_not_before=first,
                candidates=[first + dt.timedelta(days=i) for i in range(5) if first + dt.timedelta(days=i) < today],
                requested=first,
            )

    d = parse_api_date(text)
    if d is None or d >= today:
        return _latest_plan(today, day_budget, lookback_days)
    return DatePlan(
        kind="date",
        cache_on_or_before=d,
        cache_not_before=d - dt.timedelta(days=3),
        candidates=_around(d, today),
        requested=d,
    )
