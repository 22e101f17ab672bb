"""Debounced, retrying mirror of the expense list into durable storage.

State machine::

    idle -> pending -> writing -> idle
                          \\-> pending-retry -> writing ...

Each ``schedule`` restarts the debounce window. A failed write is retried
after ``retry`` seconds until it succeeds or a newer schedule takes over.
Direct writes from the record store and debounced writes share one lock,
and the debounced path reads the payload inside that lock, so it always
writes the most recently scheduled snapshot.
"""

import asyncio
from enum import Enum
from typing import Iterable, Optional

from spendtracker.domain import ExpenseRecord, dump_records
from spendtracker.errors import PersistenceError
from spendtracker.logging_setup import get_logger
from spendtracker.storage import EXPENSES_KEY, KeyValueStorage

logger = get_logger(__name__)


class SyncState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    WRITING = "writing"
    PENDING_RETRY = "pending-retry"


class PersistenceSynchronizer:

    def __init__(self, storage: KeyValueStorage, key: str = EXPENSES_KEY,
                 debounce: float = 0.3, retry: float = 3.0):
        self._storage = storage
        self._key = key
        self._debounce = debounce
        self._retry = retry
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._payload: Optional[str] = None
        self._closed = False
        self.state = SyncState.IDLE
        self.failures = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> bool:
        return self._payload is not None

    def schedule(self, records: Iterable[ExpenseRecord]) -> None:
        """Replace the pending payload and restart the debounce timer."""
        if self._closed:
            logger.debug("schedule ignored: synchronizer is shut down")
            return
        self._payload = dump_records(records)
        self._cancel_timer()
        self.state = SyncState.PENDING
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.debug("save scheduled in %.3fs", self._debounce)

    async def write_now(self, records: Iterable[ExpenseRecord]) -> None:
        """Write through immediately; raises PersistenceError."""
        payload = dump_records(records)
        async with self._lock:
            await self._storage.set(self._key, payload)

    async def remove_now(self) -> None:
        """Remove the key, then drop any pending save; raises PersistenceError.

        On failure the pending save and its timer are left as they were.
        """
        async with self._lock:
            await self._storage.remove(self._key)
            self._drop_task()

    async def flush(self) -> bool:
        payload = self._payload
        if payload is None:
            return False
        self._drop_task()
        async with self._lock:
            await self._storage.set(self._key, payload)
        return True

    def cancel(self) -> None:
        self._drop_task()

    def shutdown(self) -> None:
        self._closed = True
        self._drop_task()

    def _cancel_timer(self) -> None:
        # an in-flight write is left to finish; it picks up the newest payload
        if self._task is not None and self.state is not SyncState.WRITING:
            self._task.cancel()
        self._task = None

    def _drop_task(self) -> None:
        if self._task is not None:
            self._task.cancel()
        self._task = None
        self._payload = None
        self.state = SyncState.IDLE

    async def _run(self) -> None:
        me = asyncio.current_task()
        await asyncio.sleep(self._debounce)
        while True:
            if self._task is me:
                self.state = SyncState.WRITING
            try:
                async with self._lock:
                    payload = self._payload
                    if payload is None:
                        break
                    await self._storage.set(self._key, payload)
            except PersistenceError as e:
                self.failures += 1
                if self._task is not me or self._closed:
                    return
                logger.warning("Saving expenses failed, retrying in %.1fs: %s", self._retry, e)
                self.state = SyncState.PENDING_RETRY
                await asyncio.sleep(self._retry)
                continue
            if self._task is me and self._payload == payload:
                self._payload = None
            break
        if self._task is me:
            self._task = None
            self.state = SyncState.IDLE
            logger.debug("expenses saved")
