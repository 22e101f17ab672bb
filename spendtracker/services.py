import asyncio
from datetime import date, datetime
from typing import Callable, List, Optional, Protocol, Tuple

from spendtracker.analytics import AnalyticsReport, DateFilter, build_report
from spendtracker.budget import BudgetWarning, evaluate, project
from spendtracker.config import Settings
from spendtracker.domain import Budget, BudgetStatus, ExpenseInput, ExpenseRecord
from spendtracker.errors import PersistenceError, SpendTrackerError
from spendtracker.events import (
    BUDGET_SET,
    BUDGET_WARNING,
    EXPENSE_ADDED,
    EXPENSE_CANCELLED,
    EXPENSE_DELETED,
    EXPENSE_UPDATED,
    EXPENSES_CLEARED,
    EventBus,
)
from spendtracker.functional import Cancelled, Err, Ok, Outcome
from spendtracker.logging_setup import get_logger
from spendtracker.storage import JsonFileStorage, KeyValueStorage
from spendtracker.store import BudgetRepository, RecordStore, resolve_input
from spendtracker.sync import PersistenceSynchronizer

logger = get_logger(__name__)

WARNING_TITLE = "Budget Warning"


class ConfirmationService(Protocol):
    async def confirm(self, title: str, message: str) -> bool: ...


class StaticConfirmation:
    """Answers every prompt the same way and remembers what was asked."""

    def __init__(self, answer: bool = True):
        self.answer = answer
        self.prompts: List[Tuple[str, str]] = []

    async def confirm(self, title: str, message: str) -> bool:
        self.prompts.append((title, message))
        return self.answer


class ExpenseService:
    """Facade the UI talks to.

    Mutations return an Outcome: Ok with the result, Err with the
    SpendTrackerError, or Cancelled when the user declined a budget
    warning. Cancelling is not an error: ``last_error`` is left alone and
    nothing is written.
    """

    def __init__(self, store: RecordStore, budgets: BudgetRepository, synchronizer: PersistenceSynchronizer,
                 confirmation: ConfirmationService, bus: EventBus,
                 clock: Callable[[], datetime] = datetime.now, settings: Optional[Settings] = None):
        self.store = store
        self.budgets = budgets
        self.synchronizer = synchronizer
        self.confirmation = confirmation
        self.bus = bus
        self.clock = clock
        self.settings = settings or Settings()
        self.last_error: Optional[str] = None
        self.loaded = False
        self._mutation_lock = asyncio.Lock()

    @property
    def records(self) -> Tuple[ExpenseRecord, ...]:
        return self.store.snapshot()

    @property
    def budget(self) -> Optional[Budget]:
        return self.budgets.budget

    async def start(self) -> None:
        records, budget = await asyncio.gather(self.store.load(), self.budgets.load())
        self.loaded = True
        logger.info("Ready: %d expenses, budget %s", len(records), "set" if budget else "not set")

    def budget_status(self, now: Optional[datetime] = None) -> BudgetStatus:
        return evaluate(self.store.snapshot(), self.budget, now or self.clock())

    def preview(self, data: ExpenseInput, record_id: Optional[str] = None,
                now: Optional[datetime] = None) -> Optional[BudgetWarning]:
        """Warning the mutation would trigger, without changing anything."""
        now = now or self.clock()
        previous = self.store.get(record_id) if record_id is not None else None
        _, amount, category, _ = resolve_input(data, previous)
        status = evaluate(self.store.snapshot(), self.budget, now)
        return project(status, self.budget, amount, category, now=now, previous=previous,
                       currency_symbol=self.settings.currency_symbol)

    def report(self, flt: DateFilter, today: Optional[date] = None) -> AnalyticsReport:
        return build_report(
            self.store.snapshot(),
            flt,
            today or self.clock().date(),
            high_daily_spend=self.settings.high_daily_spend,
            currency_symbol=self.settings.currency_symbol,
        )

    async def add_expense(self, data: ExpenseInput) -> Outcome[ExpenseRecord]:
        async with self._mutation_lock:
            self.last_error = None
            try:
                warning = self.preview(data)
                if warning is not None and not await self._confirm(warning):
                    return self._cancelled("add", warning)
                record = await self.store.create(data)
            except SpendTrackerError as e:
                return self._failed("add expense", e)
            self.bus.publish(EXPENSE_ADDED, {"record": record})
            return Ok(record)

    async def update_expense(self, record_id: str, data: ExpenseInput) -> Outcome[ExpenseRecord]:
        async with self._mutation_lock:
            self.last_error = None
            try:
                warning = self.preview(data, record_id)
                if warning is not None and not await self._confirm(warning):
                    return self._cancelled("update", warning)
                record = await self.store.update(record_id, data)
            except SpendTrackerError as e:
                return self._failed("update expense", e)
            self.bus.publish(EXPENSE_UPDATED, {"record": record})
            return Ok(record)

    async def delete_expense(self, record_id: str) -> Outcome[str]:
        async with self._mutation_lock:
            self.last_error = None
            try:
                await self.store.delete(record_id)
            except SpendTrackerError as e:
                return self._failed("delete expense", e)
            self.bus.publish(EXPENSE_DELETED, {"id": record_id})
            return Ok(record_id)

    async def clear_expenses(self) -> Outcome[int]:
        async with self._mutation_lock:
            self.last_error = None
            count = len(self.store)
            try:
                await self.store.clear()
            except SpendTrackerError as e:
                return self._failed("clear expenses", e)
            self.bus.publish(EXPENSES_CLEARED, {"count": count})
            return Ok(count)

    async def set_budget(self, budget: Budget) -> Outcome[Budget]:
        async with self._mutation_lock:
            self.last_error = None
            try:
                saved = await self.budgets.save(budget)
            except SpendTrackerError as e:
                return self._failed("save budget settings", e)
            self.bus.publish(BUDGET_SET, {"budget": saved})
            return Ok(saved)

    async def aclose(self, flush: bool = True) -> None:
        if flush:
            try:
                await self.synchronizer.flush()
            except PersistenceError as e:
                logger.warning("Final save failed: %s", e)
        self.synchronizer.shutdown()

    async def _confirm(self, warning: BudgetWarning) -> bool:
        self.bus.publish(BUDGET_WARNING, {"warning": warning})
        return await self.confirmation.confirm(WARNING_TITLE, warning.message)

    def _cancelled(self, action: str, warning: BudgetWarning) -> Outcome:
        logger.info("%s cancelled at budget warning: %s", action.capitalize(), warning.message)
        self.bus.publish(EXPENSE_CANCELLED, {"action": action, "warning": warning})
        return Cancelled(warning.message)

    def _failed(self, action: str, error: SpendTrackerError) -> Outcome:
        self.last_error = str(error)
        logger.warning("Failed to %s: %s", action, error)
        return Err(error)


def build_service(settings: Optional[Settings] = None, storage: Optional[KeyValueStorage] = None,
                  confirmation: Optional[ConfirmationService] = None,
                  clock: Callable[[], datetime] = datetime.now,
                  bus: Optional[EventBus] = None) -> ExpenseService:
    """Wire the engine once at startup and hand the service to the UI."""
    settings = settings or Settings.from_env()
    storage = storage if storage is not None else JsonFileStorage(settings.data_dir)
    synchronizer = PersistenceSynchronizer(storage, debounce=settings.save_debounce, retry=settings.save_retry)
    return ExpenseService(
        store=RecordStore(storage, synchronizer, clock=clock),
        budgets=BudgetRepository(storage),
        synchronizer=synchronizer,
        confirmation=confirmation or StaticConfirmation(True),
        bus=bus or EventBus(),
        clock=clock,
        settings=settings,
    )
