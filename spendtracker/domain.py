import json
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, Mapping, Optional, Union

KNOWN_CATEGORIES: tuple[tuple[str, str], ...] = (
    ("food", "Food"),
    ("transport", "Transport"),
    ("shopping", "Shopping"),
    ("bills", "Bills"),
    ("entertainment", "Entertainment"),
    ("other", "Other"),
)
DEFAULT_CATEGORY = "other"
PERIODS = ("daily", "weekly", "monthly")

DATE_FORMAT = "%m/%d/%Y"
CalendarDate = date


@dataclass(frozen=True)
class ExpenseInput:
    """Unvalidated form payload. On update, None keeps the current value."""

    description: Optional[str] = None
    amount: Any = None                    # raw form value, parsed by the store
    category: Optional[str] = None
    date: Union[str, CalendarDate, None] = None   # month/day/year


@dataclass(frozen=True)
class ExpenseRecord:
    id: str
    description: str
    amount: float     # cents precision, > 0
    category: str
    date: str         # month/day/year as entered by the user
    timestamp: int    # ms since epoch, creation or last update

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "amount": self.amount,
            "category": self.category,
            "date": self.date,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class Budget:
    amount: float
    period: str  # daily / weekly / monthly
    category_limits: Mapping[str, float] = field(default_factory=dict)

    def limit_for(self, category: str) -> Optional[float]:
        return self.category_limits.get(category)


@dataclass(frozen=True)
class BudgetStatus:
    total: float
    remaining: float
    category_totals: Mapping[str, float]
    is_over_budget: bool


EMPTY_STATUS = BudgetStatus(total=0.0, remaining=0.0, category_totals={}, is_over_budget=False)


def round_money(value: float) -> float:
    """Round to cents, half away from zero. Idempotent on 2-decimal values."""
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def round_whole(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def category_label(category_id: str) -> str:
    for cid, name in KNOWN_CATEGORIES:
        if cid == category_id:
            return name
    return category_id[:1].upper() + category_id[1:]


def to_timestamp(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def from_timestamp(ts: int) -> datetime:
    # local wall-clock time, like the calendar the user sees
    return datetime.fromtimestamp(ts / 1000)


def day_of(ts: int) -> date:
    return from_timestamp(ts).date()


def start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min)


def format_date(day: date) -> str:
    return f"{day.month}/{day.day}/{day.year}"


def format_money(amount: float, symbol: str = "₹") -> str:
    if float(amount).is_integer():
        return f"{symbol}{int(amount):,}"
    return f"{symbol}{amount:,.2f}"


def dump_records(records: Iterable[ExpenseRecord]) -> str:
    return json.dumps([r.to_payload() for r in records], ensure_ascii=False)
