"""Key-value storage the engine persists through.

Values are JSON strings. Every backend raises ``PersistenceError`` on
failure so callers never see backend-specific exceptions, and
``CorruptPayloadError`` when a stored value cannot be decoded at all.
"""

import asyncio
import os
import re
import tempfile
from pathlib import Path
from typing import Dict, Optional, Protocol

from spendtracker.errors import CorruptPayloadError, PersistenceError
from spendtracker.logging_setup import get_logger

logger = get_logger(__name__)

EXPENSES_KEY = "expenses"
BUDGET_KEY = "budget"


class KeyValueStorage(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str) -> None: ...

    async def remove(self, key: str) -> None: ...


class MemoryStorage:
    """In-process storage, used by tests and throwaway sessions."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def peek(self, key: str) -> Optional[str]:
        return self._data.get(key)


class JsonFileStorage:
    """One ``<key>.json`` file per key under ``directory``.

    Writes go to a temp file first and are moved into place with
    ``os.replace`` so a crash never leaves a half-written payload.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        safe = re.sub(r"[^A-Za-z0-9_.-]", "_", key)
        return self.directory / f"{safe}.json"

    async def get(self, key: str) -> Optional[str]:
        return await self._run(self._read, key)

    async def set(self, key: str, value: str) -> None:
        await self._run(self._write, key, value)

    async def remove(self, key: str) -> None:
        await self._run(self._unlink, key)

    async def _run(self, fn, key: str, *args):
        try:
            return await asyncio.to_thread(fn, key, *args)
        except UnicodeDecodeError as e:
            raise CorruptPayloadError(f"stored value for {key!r} is not valid UTF-8: {e}", key=key) from e
        except OSError as e:
            raise PersistenceError(f"storage failure for {key!r}: {e}", key=key) from e

    def _read(self, key: str) -> Optional[str]:
        target = self.path_for(key)
        if not target.exists():
            return None
        with target.open("r", encoding="utf-8") as handle:
            return handle.read()

    def _write(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        target = self.path_for(key)
        fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=f".{target.stem}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(value)
            os.replace(tmp, target)
        except OSError:
            Path(tmp).unlink(missing_ok=True)
            raise
        logger.debug("wrote %s (%d bytes)", target, len(value))

    def _unlink(self, key: str) -> None:
        self.path_for(key).unlink(missing_ok=True)
