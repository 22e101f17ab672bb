"""Spending analytics over a date-filtered view of the expense list.

All functions are pure. ``today`` is passed in explicitly so results do not
depend on when they are computed.
"""

import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from spendtracker.domain import (
    KNOWN_CATEGORIES,
    ExpenseRecord,
    category_label,
    day_of,
    format_money,
    round_money,
    round_whole,
)
from spendtracker.errors import ValidationError

FILTER_KINDS = ("all", "today", "week", "month", "custom")
WEEK_DAYS = 7
MONTH_DAYS = 30
DAY_MS = 24 * 60 * 60 * 1000
HIGH_DAILY_SPEND = 1000.0
CONCENTRATION_SHARE = 50
RECENT_COUNT = 3
RECENT_FACTOR = 1.5


@dataclass(frozen=True)
class DateFilter:
    kind: str = "all"
    start: Optional[date] = None
    end: Optional[date] = None

    def __post_init__(self):
        if self.kind not in FILTER_KINDS:
            raise ValidationError(f"Unknown date filter {self.kind!r}")
        if self.start and self.end and self.start > self.end:
            raise ValidationError("Start date cannot be after end date")

    @classmethod
    def custom(cls, start: Optional[date], end: Optional[date]) -> "DateFilter":
        return cls("custom", start, end)

    @property
    def effective_kind(self) -> str:
        # a custom range missing a bound shows everything
        if self.kind == "custom" and not (self.start and self.end):
            return "all"
        return self.kind


@dataclass(frozen=True)
class TimeSeries:
    labels: Tuple[str, ...]
    values: Tuple[float, ...]
    days: Tuple[date, ...]


@dataclass(frozen=True)
class CategoryShare:
    category: str
    name: str
    amount: float
    percentage: int


@dataclass(frozen=True)
class Tip:
    kind: str
    message: str
    icon: str


@dataclass(frozen=True)
class AnalyticsReport:
    filter: DateFilter
    records: Tuple[ExpenseRecord, ...]
    series: TimeSeries
    breakdown: Tuple[CategoryShare, ...]
    total: float
    tip: Tip


def window(flt: DateFilter, today: date) -> Optional[Tuple[date, date]]:
    """Inclusive (first, last) day of the filter, or None for no bound."""
    kind = flt.effective_kind
    if kind == "today":
        return today, today
    if kind == "week":
        return today - timedelta(days=WEEK_DAYS - 1), today
    if kind == "month":
        return today - timedelta(days=MONTH_DAYS - 1), today
    if kind == "custom":
        return flt.start, flt.end
    return None


def by_day_range(first: date, last: date) -> Callable[[ExpenseRecord], bool]:
    def _filter(r: ExpenseRecord) -> bool:
        return first <= day_of(r.timestamp) <= last

    return _filter


def iter_records(records: Iterable[ExpenseRecord], pred: Callable[[ExpenseRecord], bool]) -> Iterator[ExpenseRecord]:
    for r in records:
        if pred(r):
            yield r


def filter_records(records: Iterable[ExpenseRecord], flt: DateFilter, today: date) -> Tuple[ExpenseRecord, ...]:
    bounds = window(flt, today)
    if bounds is None:
        return tuple(records)
    return tuple(iter_records(records, by_day_range(*bounds)))


def series_days(flt: DateFilter, today: date) -> List[date]:
    kind = flt.effective_kind
    if kind == "today":
        return [today]
    if kind == "custom":
        count = (flt.end - flt.start).days + 1
        return [flt.start + timedelta(days=i) for i in range(count)]
    count = WEEK_DAYS if kind == "week" else MONTH_DAYS
    first = today - timedelta(days=count - 1)
    return [first + timedelta(days=i) for i in range(count)]


def time_series(records: Iterable[ExpenseRecord], flt: DateFilter, today: date) -> TimeSeries:
    """Per-day totals; a record lands in the bucket of its timestamp's day."""
    days = series_days(flt, today)
    per_day: Dict[date, Decimal] = defaultdict(Decimal)
    for r in records:
        per_day[day_of(r.timestamp)] += Decimal(str(r.amount))
    return TimeSeries(
        labels=tuple(f"{d.day}/{d.month}" for d in days),
        values=tuple(round_money(float(per_day.get(d, 0))) for d in days),
        days=tuple(days),
    )


def category_totals(records: Iterable[ExpenseRecord]) -> Dict[str, Decimal]:
    totals: Dict[str, Decimal] = defaultdict(Decimal)
    for r in records:
        totals[r.category] += Decimal(str(r.amount))
    return totals


def category_breakdown(records: Iterable[ExpenseRecord]) -> Tuple[CategoryShare, ...]:
    """Known categories in display order, then any others found, sorted.

    Percentages are shares of the whole filtered total.
    """
    totals = category_totals(records)
    grand = sum(totals.values(), Decimal(0))
    known = [cid for cid, _ in KNOWN_CATEGORIES]
    order = known + sorted(c for c in totals if c not in known)

    shares = []
    for cid in order:
        amount = totals.get(cid, Decimal(0))
        pct = round_whole(float(amount / grand * 100)) if grand and amount else 0
        shares.append(CategoryShare(cid, category_label(cid), round_money(float(amount)), pct))
    return tuple(shares)


def total_spent(records: Iterable[ExpenseRecord]) -> float:
    return round_money(float(sum((Decimal(str(r.amount)) for r in records), Decimal(0))))


def elapsed_days(flt: DateFilter, records: Sequence[ExpenseRecord] = ()) -> int:
    """Divisor for the daily average.

    A custom range is measured by the span between its earliest and latest
    record, rounded up to whole days, rather than by the picked dates.
    """
    kind = flt.effective_kind
    if kind == "today":
        return 1
    if kind == "week":
        return WEEK_DAYS
    if kind == "custom":
        if len(records) < 2:
            return 1
        stamps = [r.timestamp for r in records]
        return max(1, math.ceil((max(stamps) - min(stamps)) / DAY_MS))
    return MONTH_DAYS


def savings_tip(records: Sequence[ExpenseRecord], breakdown: Sequence[CategoryShare], flt: DateFilter,
                high_daily_spend: float = HIGH_DAILY_SPEND, currency_symbol: str = "₹") -> Tip:
    """First matching rule of a fixed decision table."""
    if not records:
        return Tip("onboarding", "Start tracking your expenses to get personalized saving tips!", "💡")

    total = total_spent(records)
    daily_average = total / elapsed_days(flt, records)

    spent = [c for c in breakdown if c.amount > 0]
    top = max(spent, key=lambda c: c.amount) if spent else None
    if top is not None and top.percentage >= CONCENTRATION_SHARE:
        return Tip(
            "concentration",
            f"{top.name} makes up {top.percentage}% of your spending. "
            "Consider balancing your expenses across categories.",
            "⚠️",
        )

    if daily_average > high_daily_spend:
        return Tip(
            "high_daily_spend",
            f"Your daily average spending is {format_money(round_whole(daily_average), currency_symbol)}. "
            "Consider setting a daily budget to reduce expenses.",
            "📈",
        )

    recent = sorted(records, key=lambda r: r.timestamp)[-RECENT_COUNT:]
    recent_average = sum(r.amount for r in recent) / len(recent)
    if recent_average > daily_average * RECENT_FACTOR:
        return Tip(
            "recent_trend",
            "Your recent spending is higher than your average. "
            "Review your recent expenses to identify areas for savings.",
            "❗",
        )

    if len(spent) <= 2 and len(records) > 5:
        return Tip(
            "diversify",
            "Your expenses are concentrated in very few categories. "
            "Diversifying your budget can help better track and control spending.",
            "🥧",
        )

    return Tip(
        "balanced",
        "Your spending patterns look well-balanced. "
        "Keep tracking your expenses to maintain good financial health!",
        "✅",
    )


def build_report(records: Iterable[ExpenseRecord], flt: DateFilter, today: date,
                 high_daily_spend: float = HIGH_DAILY_SPEND, currency_symbol: str = "₹") -> AnalyticsReport:
    filtered = filter_records(records, flt, today)
    breakdown = category_breakdown(filtered)
    return AnalyticsReport(
        filter=flt,
        records=filtered,
        series=time_series(filtered, flt, today),
        breakdown=tuple(c for c in breakdown if c.amount > 0),
        total=total_spent(filtered),
        tip=savings_tip(filtered, breakdown, flt, high_daily_spend, currency_symbol),
    )
