import json

import pytest

from spendtracker.analytics import DateFilter
from spendtracker.config import Settings
from spendtracker.domain import Budget, ExpenseInput
from spendtracker.errors import NotFoundError, PersistenceError, ValidationError
from spendtracker.events import (
    ALL_EVENTS,
    BUDGET_WARNING,
    EXPENSE_ADDED,
    EXPENSE_CANCELLED,
    EventBus,
)
from spendtracker.services import StaticConfirmation, build_service
from spendtracker.storage import BUDGET_KEY, EXPENSES_KEY, JsonFileStorage

SETTINGS = Settings(save_debounce_ms=10, save_retry_ms=20)


def make_service(storage, clock, answer=True):
    confirmation = StaticConfirmation(answer)
    bus = EventBus()
    events = []
    bus.subscribe_all(events.append)
    service = build_service(settings=SETTINGS, storage=storage, confirmation=confirmation,
                            clock=clock, bus=bus)
    return service, confirmation, events


def expense(amount, category="food", description="Groceries"):
    return ExpenseInput(description=description, amount=amount, category=category, date="10/18/2026")


async def with_budget(service, amount=5000, period="monthly", **limits):
    res = await service.set_budget(Budget(amount=amount, period=period, category_limits=limits))
    assert res.is_ok()


@pytest.mark.asyncio
async def test_add_without_budget_publishes_event(storage, clock):
    service, confirmation, events = make_service(storage, clock)

    res = await service.add_expense(expense(120))

    assert res.is_ok()
    assert service.records == (res.value,)
    assert confirmation.prompts == []
    assert [e.name for e in events] == [EXPENSE_ADDED]
    assert events[0].payload["record"] is res.value
    await service.aclose()


@pytest.mark.asyncio
async def test_declined_warning_leaves_everything_unchanged(storage, clock):
    service, confirmation, events = make_service(storage, clock, answer=False)
    await with_budget(service)
    await service.add_expense(expense(4500, "bills"))
    before = storage.peek(EXPENSES_KEY)

    res = await service.add_expense(expense(600))

    assert res.is_cancelled()
    assert confirmation.prompts == [("Budget Warning", "This expense will exceed your monthly budget by ₹100")]
    assert service.budget_status().total == 4500
    assert len(service.records) == 1
    assert storage.peek(EXPENSES_KEY) == before
    assert service.last_error is None
    assert [e.name for e in events][-2:] == [BUDGET_WARNING, EXPENSE_CANCELLED]
    await service.aclose()


@pytest.mark.asyncio
async def test_accepted_warning_commits(storage, clock):
    service, confirmation, _ = make_service(storage, clock, answer=True)
    await with_budget(service)
    await service.add_expense(expense(4500, "bills"))

    res = await service.add_expense(expense(600))

    assert res.is_ok()
    assert len(confirmation.prompts) == 1
    status = service.budget_status()
    assert status.total == 5100
    assert status.remaining == 0
    assert status.is_over_budget
    await service.aclose()


@pytest.mark.asyncio
async def test_update_warning_uses_update_wording(storage, clock):
    service, confirmation, _ = make_service(storage, clock, answer=False)
    await with_budget(service, amount=1000, period="daily", food=300)
    record = (await service.add_expense(expense(200))).value

    res = await service.update_expense(record.id, ExpenseInput(amount=350))

    assert res.is_cancelled()
    assert confirmation.prompts[-1][1] == "This update will exceed your food category limit by ₹50"
    assert service.records[0].amount == 200
    await service.aclose()


@pytest.mark.asyncio
async def test_validation_error_is_err(storage, clock):
    service, _, events = make_service(storage, clock)

    res = await service.add_expense(expense("abc"))

    assert res.is_err()
    assert isinstance(res.error, ValidationError)
    assert service.last_error == str(res.error)
    assert events == []
    await service.aclose()


@pytest.mark.asyncio
async def test_unknown_record_is_err(storage, clock):
    service, _, _ = make_service(storage, clock)
    res = await service.update_expense("missing", ExpenseInput(amount=5))
    assert isinstance(res.error, NotFoundError)
    res = await service.delete_expense("missing")
    assert isinstance(res.error, NotFoundError)
    await service.aclose()


@pytest.mark.asyncio
async def test_persistence_failure_is_err_and_next_success_clears_it(storage, clock):
    service, _, _ = make_service(storage, clock)
    storage.fail_set = 1

    res = await service.add_expense(expense(10))
    assert isinstance(res.error, PersistenceError)
    assert service.last_error
    assert service.records == ()

    assert (await service.add_expense(expense(10))).is_ok()
    assert service.last_error is None
    await service.aclose()


@pytest.mark.asyncio
async def test_delete_and_clear(storage, clock):
    service, _, events = make_service(storage, clock)
    first = (await service.add_expense(expense(10))).value
    clock.advance(seconds=1)
    await service.add_expense(expense(20))

    assert (await service.delete_expense(first.id)).value == first.id
    assert len(service.records) == 1

    res = await service.clear_expenses()
    assert res.value == 1
    assert service.records == ()
    assert storage.peek(EXPENSES_KEY) is None
    assert events[-1].name == "EXPENSES_CLEARED"
    await service.aclose()


@pytest.mark.asyncio
async def test_invalid_budget_is_err(storage, clock):
    service, _, _ = make_service(storage, clock)
    res = await service.set_budget(Budget(amount=0, period="monthly"))
    assert isinstance(res.error, ValidationError)
    assert service.budget is None
    assert storage.peek(BUDGET_KEY) is None


@pytest.mark.asyncio
async def test_start_loads_persisted_state(storage, clock):
    first, _, _ = make_service(storage, clock)
    await with_budget(first, amount=300, period="weekly")
    await first.add_expense(expense(120))
    await first.aclose()

    second, _, _ = make_service(storage, clock)
    await second.start()

    assert second.loaded
    assert len(second.records) == 1
    assert second.budget == Budget(300, "weekly")
    assert second.budget_status().total == 120
    await second.aclose()


@pytest.mark.asyncio
async def test_aclose_flushes_pending_save(storage, clock):
    service, _, _ = make_service(storage, clock)
    await service.add_expense(expense(10))
    storage.sets.clear()

    await service.aclose()

    assert len(storage.sets) == 1
    assert len(json.loads(storage.peek(EXPENSES_KEY))) == 1
    assert service.synchronizer.closed


@pytest.mark.asyncio
async def test_report_uses_settings_threshold(storage, clock):
    settings = Settings(high_daily_spend=10, currency_symbol="$")
    service = build_service(settings=settings, storage=storage, clock=clock)
    for category in ("food", "transport", "bills"):
        await service.add_expense(expense(100, category))

    report = service.report(DateFilter("today"))

    assert report.total == 300
    assert report.tip.kind == "high_daily_spend"
    assert "$300" in report.tip.message
    await service.aclose()


def test_event_names_are_unique():
    assert len(set(ALL_EVENTS)) == len(ALL_EVENTS)


@pytest.mark.asyncio
async def test_start_survives_undecodable_files(tmp_path, clock):
    storage = JsonFileStorage(tmp_path)
    storage.path_for(EXPENSES_KEY).write_bytes(b"\xff\xfe[garbage")
    service = build_service(settings=SETTINGS, storage=storage, clock=clock)

    await service.start()

    assert service.loaded
    assert service.records == ()
    assert (await service.add_expense(expense(10))).is_ok()
    await service.aclose()
