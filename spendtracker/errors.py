class SpendTrackerError(Exception):
    """Base class for every failure the engine reports to callers."""


class ValidationError(SpendTrackerError):
    """Malformed expense or budget input. The store is left unchanged."""


class NotFoundError(SpendTrackerError):
    def __init__(self, record_id: str):
        super().__init__(f"Expense {record_id} not found")
        self.record_id = record_id


class PersistenceError(SpendTrackerError):
    """Durable storage could not be read or written."""

    def __init__(self, message: str, key: str = ""):
        super().__init__(message)
        self.key = key


class CorruptPayloadError(PersistenceError):
    """A stored value exists but cannot be decoded."""
