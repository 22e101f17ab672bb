from datetime import datetime, timedelta

from spendtracker.domain import ExpenseRecord, to_timestamp
from spendtracker.errors import PersistenceError
from spendtracker.storage import MemoryStorage


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FlakyStorage(MemoryStorage):
    """MemoryStorage that fails the next N calls of a given kind."""

    def __init__(self, initial=None):
        super().__init__(initial)
        self.fail_get = 0
        self.fail_set = 0
        self.fail_remove = 0
        self.sets = []
        self.on_set = None

    async def get(self, key):
        if self.fail_get:
            self.fail_get -= 1
            raise PersistenceError("disk unavailable", key=key)
        return await super().get(key)

    async def set(self, key, value):
        if self.on_set is not None:
            self.on_set(key, value)
        if self.fail_set:
            self.fail_set -= 1
            raise PersistenceError("disk full", key=key)
        self.sets.append((key, value))
        await super().set(key, value)

    async def remove(self, key):
        if self.fail_remove:
            self.fail_remove -= 1
            raise PersistenceError("disk unavailable", key=key)
        await super().remove(key)


def make_record(id, amount, category="food", when=None, description="item", day="10/18/2026"):
    when = when or datetime(2026, 10, 18, 12, 0)
    return ExpenseRecord(id=id, description=description, amount=amount, category=category,
                         date=day, timestamp=to_timestamp(when))
