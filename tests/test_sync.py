import asyncio

import pytest

from spendtracker.domain import dump_records
from spendtracker.errors import PersistenceError
from spendtracker.storage import EXPENSES_KEY
from spendtracker.sync import PersistenceSynchronizer, SyncState
from tests.helpers import make_record

DEBOUNCE = 0.01


def make_sync(storage, retry=0.02):
    return PersistenceSynchronizer(storage, debounce=DEBOUNCE, retry=retry)


@pytest.mark.asyncio
async def test_rapid_schedules_coalesce_into_one_write(storage):
    sync = make_sync(storage)
    snapshots = [[make_record("1", 10)], [make_record("1", 20)], [make_record("1", 30)]]
    for records in snapshots:
        sync.schedule(records)
    assert sync.state is SyncState.PENDING
    assert sync.pending

    await asyncio.sleep(0.1)

    assert storage.sets == [(EXPENSES_KEY, dump_records(snapshots[-1]))]
    assert sync.state is SyncState.IDLE
    assert not sync.pending


@pytest.mark.asyncio
async def test_failed_write_is_retried(storage):
    sync = make_sync(storage)
    storage.fail_set = 1
    records = [make_record("1", 10)]
    sync.schedule(records)

    await asyncio.sleep(0.15)

    assert sync.failures == 1
    assert storage.sets == [(EXPENSES_KEY, dump_records(records))]
    assert sync.state is SyncState.IDLE


@pytest.mark.asyncio
async def test_persistent_failure_stays_in_retry(storage):
    sync = make_sync(storage)
    storage.fail_set = 1000
    sync.schedule([make_record("1", 10)])

    await asyncio.sleep(0.1)

    assert sync.state is SyncState.PENDING_RETRY
    assert sync.failures >= 2
    assert sync.pending
    sync.shutdown()


@pytest.mark.asyncio
async def test_newer_schedule_supersedes_pending_retry(storage):
    sync = make_sync(storage, retry=0.3)
    storage.fail_set = 1
    sync.schedule([make_record("1", 10)])
    await asyncio.sleep(0.05)
    assert sync.state is SyncState.PENDING_RETRY

    newer = [make_record("1", 10), make_record("2", 5)]
    sync.schedule(newer)
    await asyncio.sleep(0.05)

    assert storage.sets == [(EXPENSES_KEY, dump_records(newer))]
    assert sync.state is SyncState.IDLE
    sync.shutdown()


@pytest.mark.asyncio
async def test_write_now_is_immediate(storage):
    sync = make_sync(storage)
    await sync.write_now([make_record("1", 10)])
    assert storage.peek(EXPENSES_KEY) == dump_records([make_record("1", 10)])


@pytest.mark.asyncio
async def test_write_now_raises(storage):
    sync = make_sync(storage)
    storage.fail_set = 1
    with pytest.raises(PersistenceError):
        await sync.write_now([])


@pytest.mark.asyncio
async def test_remove_now_drops_pending_save(storage):
    sync = make_sync(storage)
    await storage.set(EXPENSES_KEY, "[]")
    sync.schedule([make_record("1", 10)])

    await sync.remove_now()
    await asyncio.sleep(0.05)

    assert storage.peek(EXPENSES_KEY) is None
    assert sync.state is SyncState.IDLE
    assert not sync.pending


@pytest.mark.asyncio
async def test_flush(storage):
    sync = make_sync(storage)
    assert await sync.flush() is False

    records = [make_record("1", 10)]
    sync.schedule(records)
    assert await sync.flush() is True
    assert storage.peek(EXPENSES_KEY) == dump_records(records)
    assert not sync.pending

    await asyncio.sleep(0.05)
    assert len(storage.sets) == 1


@pytest.mark.asyncio
async def test_shutdown_cancels_and_ignores_new_schedules(storage):
    sync = make_sync(storage)
    sync.schedule([make_record("1", 10)])
    sync.shutdown()
    sync.schedule([make_record("2", 10)])

    await asyncio.sleep(0.05)

    assert sync.closed
    assert storage.sets == []
    assert sync.state is SyncState.IDLE


@pytest.mark.asyncio
async def test_cancel_drops_pending_save(storage):
    sync = make_sync(storage)
    sync.schedule([make_record("1", 10)])
    sync.cancel()
    await asyncio.sleep(0.05)
    assert storage.sets == []
    assert not sync.closed


@pytest.mark.asyncio
async def test_failed_remove_keeps_pending_save(storage):
    sync = make_sync(storage)
    records = [make_record("1", 10)]
    sync.schedule(records)
    storage.fail_remove = 1

    with pytest.raises(PersistenceError):
        await sync.remove_now()

    assert sync.pending
    assert sync.state is SyncState.PENDING
    await asyncio.sleep(0.05)
    assert storage.sets == [(EXPENSES_KEY, dump_records(records))]
    assert sync.state is SyncState.IDLE


@pytest.mark.asyncio
async def test_failed_remove_keeps_retry_loop(storage):
    sync = make_sync(storage, retry=0.1)
    storage.fail_set = 1
    records = [make_record("1", 10)]
    sync.schedule(records)
    await asyncio.sleep(0.04)
    assert sync.state is SyncState.PENDING_RETRY

    storage.fail_remove = 1
    with pytest.raises(PersistenceError):
        await sync.remove_now()
    assert sync.state is SyncState.PENDING_RETRY

    await asyncio.sleep(0.15)
    assert storage.sets == [(EXPENSES_KEY, dump_records(records))]
    assert sync.failures == 1
    sync.shutdown()
