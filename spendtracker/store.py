import asyncio
import json
import math
from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, List, Optional, Tuple

from dateutil import parser as dtp

from spendtracker.budget import budget_to_payload, parse_budget, validate_budget
from spendtracker.domain import (
    DATE_FORMAT,
    DEFAULT_CATEGORY,
    Budget,
    ExpenseInput,
    ExpenseRecord,
    format_date,
    from_timestamp,
    round_money,
    to_timestamp,
)
from spendtracker.errors import CorruptPayloadError, NotFoundError, PersistenceError, ValidationError
from spendtracker.logging_setup import get_logger
from spendtracker.storage import BUDGET_KEY, EXPENSES_KEY, KeyValueStorage
from spendtracker.sync import PersistenceSynchronizer

logger = get_logger(__name__)

Clock = Callable[[], datetime]

KNOWN_DATE_FORMATS = (DATE_FORMAT, "%Y-%m-%d", "%d/%m/%Y")


def parse_amount(raw: Any) -> float:
    """Positive amount rounded to cents; raises ValidationError otherwise."""
    if isinstance(raw, bool) or raw is None:
        raise ValidationError("Please enter a valid amount")
    if isinstance(raw, str):
        try:
            value = float(raw.strip().replace(",", ""))
        except ValueError:
            raise ValidationError(f"Amount {raw!r} is not a number") from None
    elif isinstance(raw, (int, float, Decimal)):
        value = float(raw)
    else:
        raise ValidationError(f"Amount of type {type(raw).__name__} is not a number")
    if not math.isfinite(value) or value <= 0:
        raise ValidationError("Amount must be greater than zero")
    rounded = round_money(value)
    if rounded <= 0:
        raise ValidationError("Amount must be at least 0.01")
    return rounded


def parse_record_date(text: str) -> Optional[datetime]:
    s = str(text).strip()
    if not s:
        return None
    for fmt in KNOWN_DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt)
        except ValueError:
            pass
    try:
        return dtp.parse(s)
    except (ValueError, OverflowError):
        return None


def resolve_input(data: ExpenseInput, previous: Optional[ExpenseRecord] = None) -> Tuple[str, float, str, Optional[str]]:
    """Validate a form payload, filling unset fields from ``previous``.

    Returns (description, amount, category, date). The date is None when
    neither the payload nor ``previous`` has one.
    """
    if data.description is None and previous is not None:
        description = previous.description
    else:
        description = (data.description or "").strip()
    if not description:
        raise ValidationError("Please enter a description")

    if data.amount is None and previous is not None:
        amount = previous.amount
    else:
        amount = parse_amount(data.amount)

    if data.category is None and previous is not None:
        category = previous.category
    else:
        category = (data.category or "").strip() or DEFAULT_CATEGORY

    if isinstance(data.date, date):
        day: Optional[str] = format_date(data.date)
    elif data.date and str(data.date).strip():
        day = str(data.date).strip()
    else:
        day = previous.date if previous is not None else None
    return description, amount, category, day


def _valid_timestamp(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not value:
        return False
    try:
        from_timestamp(int(value))
    except (OverflowError, OSError, ValueError):
        return False
    return True


def _coerce_record(item: Any) -> Optional[ExpenseRecord]:
    if not isinstance(item, dict):
        return None
    rid, description, amount, day = item.get("id"), item.get("description"), item.get("amount"), item.get("date")
    if not rid or not isinstance(rid, (str, int)) or isinstance(rid, bool):
        return None
    if not isinstance(description, str) or not description.strip():
        return None
    if isinstance(amount, bool) or not isinstance(amount, (int, float)) or not math.isfinite(amount):
        return None
    if not day or not isinstance(day, str):
        return None

    amount = round_money(amount)
    if amount <= 0:
        return None

    timestamp = item.get("timestamp")
    if not _valid_timestamp(timestamp):
        parsed = parse_record_date(day)
        if parsed is None:
            return None
        try:
            timestamp = to_timestamp(parsed)
        except (OverflowError, OSError, ValueError):
            return None

    category = item.get("category")
    return ExpenseRecord(
        id=str(rid),
        description=description.strip(),
        amount=amount,
        category=category.strip() if isinstance(category, str) and category.strip() else DEFAULT_CATEGORY,
        date=day,
        timestamp=int(timestamp),
    )


class RecordStore:
    """Canonical, ordered list of expenses.

    Readers get tuple snapshots. Mutations are serialised by a lock and are
    written through to storage via the synchronizer before (create, update)
    or right after (delete, optimistically) they become visible.
    """

    def __init__(self, storage: KeyValueStorage, synchronizer: PersistenceSynchronizer,
                 clock: Clock = datetime.now, key: str = EXPENSES_KEY):
        self._storage = storage
        self._sync = synchronizer
        self._clock = clock
        self._key = key
        self._records: Tuple[ExpenseRecord, ...] = ()
        self._issued_ids: set[str] = set()
        self._lock = asyncio.Lock()

    @property
    def records(self) -> Tuple[ExpenseRecord, ...]:
        return self._records

    def snapshot(self) -> Tuple[ExpenseRecord, ...]:
        return self._records

    def __len__(self) -> int:
        return len(self._records)

    def get(self, record_id: str) -> ExpenseRecord:
        return self._records[self._index_of(record_id)]

    def _index_of(self, record_id: str) -> int:
        for i, r in enumerate(self._records):
            if r.id == record_id:
                return i
        raise NotFoundError(record_id)

    def _next_id(self, timestamp: int) -> str:
        base = str(timestamp)
        candidate, n = base, 0
        while candidate in self._issued_ids:
            n += 1
            candidate = f"{base}-{n}"
        self._issued_ids.add(candidate)
        return candidate

    async def load(self) -> Tuple[ExpenseRecord, ...]:
        async with self._lock:
            self._records = await self._read()
            self._issued_ids.update(r.id for r in self._records)
            logger.info("Loaded %d expenses", len(self._records))
            return self._records

    async def _read(self) -> Tuple[ExpenseRecord, ...]:
        try:
            raw = await self._storage.get(self._key)
        except CorruptPayloadError as e:
            logger.warning("Stored expenses are corrupt, discarding: %s", e)
            await self._discard()
            return ()
        except PersistenceError as e:
            logger.warning("Could not read stored expenses, starting empty: %s", e)
            return ()
        if raw is None:
            return ()

        try:
            parsed = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning("Stored expenses are corrupt, discarding: %s", e)
            parsed = None
        if not isinstance(parsed, list):
            if parsed is not None:
                logger.warning("Stored expenses are not a list, discarding")
            await self._discard()
            return ()

        records: List[ExpenseRecord] = []
        seen: set[str] = set()
        for item in parsed:
            record = _coerce_record(item)
            if record is None or record.id in seen:
                continue
            seen.add(record.id)
            records.append(record)
        dropped = len(parsed) - len(records)
        if dropped:
            logger.info("Dropped %d malformed stored expenses", dropped)
        return tuple(records)

    async def _discard(self) -> None:
        try:
            await self._storage.remove(self._key)
        except PersistenceError as e:
            logger.warning("Could not remove corrupt expenses payload: %s", e)

    async def create(self, data: ExpenseInput) -> ExpenseRecord:
        async with self._lock:
            description, amount, category, day = resolve_input(data)
            now = self._clock()
            timestamp = to_timestamp(now)
            record = ExpenseRecord(
                id=self._next_id(timestamp),
                description=description,
                amount=amount,
                category=category,
                date=day or format_date(now.date()),
                timestamp=timestamp,
            )
            await self._commit(self._records + (record,))
            logger.info("Added expense %s (%s %.2f)", record.id, record.category, record.amount)
            return record

    async def update(self, record_id: str, data: ExpenseInput) -> ExpenseRecord:
        async with self._lock:
            index = self._index_of(record_id)
            previous = self._records[index]
            description, amount, category, day = resolve_input(data, previous)
            record = replace(
                previous,
                description=description,
                amount=amount,
                category=category,
                date=day or previous.date,
                timestamp=to_timestamp(self._clock()),
            )
            await self._commit(self._records[:index] + (record,) + self._records[index + 1:])
            logger.info("Updated expense %s", record.id)
            return record

    async def delete(self, record_id: str) -> None:
        async with self._lock:
            index = self._index_of(record_id)
            previous = self._records
            self._records = previous[:index] + previous[index + 1:]
            try:
                await self._sync.write_now(self._records)
            except PersistenceError:
                self._records = previous
                logger.warning("Delete of %s rolled back: storage write failed", record_id)
                raise
            self._sync.schedule(self._records)
            logger.info("Deleted expense %s", record_id)

    async def clear(self) -> None:
        async with self._lock:
            await self._sync.remove_now()
            self._records = ()
            logger.info("Cleared all expenses")

    async def _commit(self, updated: Tuple[ExpenseRecord, ...]) -> None:
        await self._sync.write_now(updated)
        self._records = updated
        self._sync.schedule(updated)


class BudgetRepository:
    """The single budget configuration, replaced wholesale on save."""

    def __init__(self, storage: KeyValueStorage, key: str = BUDGET_KEY):
        self._storage = storage
        self._key = key
        self.budget: Optional[Budget] = None

    async def load(self) -> Optional[Budget]:
        try:
            raw = await self._storage.get(self._key)
        except CorruptPayloadError as e:
            logger.warning("Stored budget is corrupt, discarding: %s", e)
            await self._discard()
            return None
        except PersistenceError as e:
            logger.warning("Could not read stored budget: %s", e)
            return None
        if raw is None:
            return None
        try:
            parsed = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning("Stored budget is corrupt, discarding: %s", e)
            await self._discard()
            return None
        self.budget = parse_budget(parsed)
        if self.budget is None:
            logger.warning("Stored budget has an invalid shape, ignoring it")
        return self.budget

    async def save(self, budget: Budget) -> Budget:
        budget = validate_budget(budget.amount, budget.period, budget.category_limits)
        await self._storage.set(self._key, json.dumps(budget_to_payload(budget)))
        self.budget = budget
        logger.info("Budget set: %s %.2f", budget.period, budget.amount)
        return budget

    async def _discard(self) -> None:
        try:
            await self._storage.remove(self._key)
        except PersistenceError as e:
            logger.warning("Could not remove corrupt budget payload: %s", e)
