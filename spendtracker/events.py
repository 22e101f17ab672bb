from datetime import datetime
from typing import Any, Callable, Dict, List, NamedTuple

__all__ = [
    'Event', 'EventBus', 'EXPENSE_ADDED', 'EXPENSE_UPDATED', 'EXPENSE_DELETED',
    'EXPENSES_CLEARED', 'EXPENSE_CANCELLED', 'BUDGET_SET', 'BUDGET_WARNING', 'ALL_EVENTS',
]

EXPENSE_ADDED = "EXPENSE_ADDED"
EXPENSE_UPDATED = "EXPENSE_UPDATED"
EXPENSE_DELETED = "EXPENSE_DELETED"
EXPENSES_CLEARED = "EXPENSES_CLEARED"
EXPENSE_CANCELLED = "EXPENSE_CANCELLED"
BUDGET_SET = "BUDGET_SET"
BUDGET_WARNING = "BUDGET_WARNING"

ALL_EVENTS = (
    EXPENSE_ADDED, EXPENSE_UPDATED, EXPENSE_DELETED, EXPENSES_CLEARED,
    EXPENSE_CANCELLED, BUDGET_SET, BUDGET_WARNING,
)


class Event(NamedTuple):
    name: str
    ts: str
    payload: dict


Handler = Callable[[Event], Any]


class EventBus:
    """Synchronous publish/subscribe for mutation notifications.

    One bus per application; it is handed to whoever needs it.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[Handler]] = {}

    def subscribe(self, name: str, handler: Handler) -> None:
        if name not in self._subscribers:
            self._subscribers[name] = []
        self._subscribers[name].append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        for name in ALL_EVENTS:
            self.subscribe(name, handler)

    def publish(self, name: str, payload: dict) -> List[Any]:
        if name not in self._subscribers:
            return []

        event = Event(name=name, ts=datetime.now().isoformat(), payload=payload)
        return [handler(event) for handler in list(self._subscribers[name])]

    def unsubscribe(self, name: str, handler: Handler) -> None:
        if name in self._subscribers and handler in self._subscribers[name]:
            self._subscribers[name].remove(handler)
