"""Budget evaluation: period windows, totals and pre-mutation projections.

Everything here is a pure function of (records, budget, now). Nothing is
cached or persisted, so the status is recomputed on every read.
"""

import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, Mapping, Optional

from spendtracker.domain import (
    EMPTY_STATUS,
    PERIODS,
    Budget,
    BudgetStatus,
    ExpenseRecord,
    format_money,
    round_money,
    start_of_day,
    to_timestamp,
)
from spendtracker.errors import ValidationError


@dataclass(frozen=True)
class BudgetWarning:
    kind: str            # "period" or "category"
    category: str
    projected: float
    limit: float
    overshoot: float
    message: str


def period_start(period: str, now: datetime) -> datetime:
    today = start_of_day(now.date())
    if period == "daily":
        return today
    if period == "weekly":
        # weeks start on Sunday; Monday is weekday() 0
        return today - timedelta(days=(now.weekday() + 1) % 7)
    if period == "monthly":
        return today.replace(day=1)
    raise ValidationError(f"Unknown budget period {period!r}")


def evaluate(records: Iterable[ExpenseRecord], budget: Optional[Budget], now: datetime) -> BudgetStatus:
    """Totals for the budget's current period.

    The category limits are only consulted when the period total itself
    is still within the cap.
    """
    if budget is None:
        return EMPTY_STATUS

    start = to_timestamp(period_start(budget.period, now))
    total = Decimal(0)
    by_category: Dict[str, Decimal] = defaultdict(Decimal)
    for r in records:
        if r.timestamp >= start:
            amount = Decimal(str(r.amount))
            total += amount
            by_category[r.category] += amount

    category_totals = {cat: float(v) for cat, v in by_category.items()}
    total_f = float(total)
    over = total_f > budget.amount
    if not over:
        over = any(category_totals.get(cat, 0.0) > limit for cat, limit in budget.category_limits.items())

    return BudgetStatus(
        total=total_f,
        remaining=round_money(max(0.0, budget.amount - total_f)),
        category_totals=category_totals,
        is_over_budget=over,
    )


def project(status: BudgetStatus, budget: Optional[Budget], amount: float, category: str, *,
            now: datetime, previous: Optional[ExpenseRecord] = None,
            currency_symbol: str = "₹") -> Optional[BudgetWarning]:
    """Warn when committing ``amount`` in ``category`` would push a total over its cap.

    ``previous`` is the record being replaced by an update. Its amount is
    taken out of the projection only if it currently counts towards the
    period, and out of its own category, which may differ from the new one.
    """
    if budget is None:
        return None

    start = to_timestamp(period_start(budget.period, now))
    old_amount = 0.0
    old_category = None
    if previous is not None and previous.timestamp >= start:
        old_amount = previous.amount
        old_category = previous.category

    noun = "update" if previous is not None else "expense"

    new_total = round_money(status.total - old_amount + amount)
    if new_total > budget.amount and new_total > status.total:
        over = round_money(new_total - budget.amount)
        return BudgetWarning(
            kind="period",
            category=category,
            projected=new_total,
            limit=budget.amount,
            overshoot=over,
            message=f"This {noun} will exceed your {budget.period} budget by {format_money(over, currency_symbol)}",
        )

    limit = budget.limit_for(category)
    if limit is None:
        return None
    current = status.category_totals.get(category, 0.0)
    base = current - old_amount if old_category == category else current
    new_category_total = round_money(base + amount)
    if new_category_total > limit and new_category_total > current:
        over = round_money(new_category_total - limit)
        return BudgetWarning(
            kind="category",
            category=category,
            projected=new_category_total,
            limit=limit,
            overshoot=over,
            message=f"This {noun} will exceed your {category} category limit by {format_money(over, currency_symbol)}",
        )
    return None


def _positive_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if not isinstance(value, (int, float)):
        return None
    value = float(value)
    if not math.isfinite(value) or value <= 0:
        return None
    return value


def validate_budget(amount: Any, period: Any, category_limits: Optional[Mapping[str, Any]] = None) -> Budget:
    """Build a Budget, dropping category limits that are not positive numbers."""
    cap = _positive_number(amount)
    if cap is None:
        raise ValidationError("Please enter a valid budget amount")
    if period not in PERIODS:
        raise ValidationError(f"Budget period must be one of {', '.join(PERIODS)}")

    limits: Dict[str, float] = {}
    for cat, raw in (category_limits or {}).items():
        value = _positive_number(raw)
        if isinstance(cat, str) and cat.strip() and value is not None:
            limits[cat.strip()] = value
    return Budget(amount=cap, period=period, category_limits=limits)


def parse_budget(payload: Any) -> Optional[Budget]:
    """Budget from its stored JSON object, or None when the shape is wrong."""
    if not isinstance(payload, dict):
        return None
    limits = payload.get("categoryLimits")
    if limits is not None and not isinstance(limits, dict):
        limits = None
    try:
        return validate_budget(payload.get("amount"), payload.get("period"), limits)
    except ValidationError:
        return None


def budget_to_payload(budget: Budget) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"amount": budget.amount, "period": budget.period}
    if budget.category_limits:
        payload["categoryLimits"] = dict(budget.category_limits)
    return payload
