"""Per-brand notification state.

The last-announced state for each brand is the only thing we persist; it is
what makes alerts fire once per transition. Two stores share one interface:

    MemoryStateStore  -- dict-backed, for tests and ephemeral runs
    JsonStateStore    -- state.json with file locking, survives restarts

Callers serialize read-decide-write per brand with locked():

    with store.locked(brand):
        prev = store.get(brand)
        ...
        store.set(brand, new_state)
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from .file_lock import locked_json, read_json

log = logging.getLogger(__name__)


class NotificationState(str, Enum):
    IN_STOCK = "IN_STOCK"
    OUT_OF_STOCK = "OUT_OF_STOCK"


class StateStore:
    """Base store: get/set per brand plus a per-brand mutex."""

    def __init__(self):
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, brand: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(brand)
            if lock is None:
                lock = self._locks[brand] = threading.Lock()
            return lock

    @contextmanager
    def locked(self, brand: str):
        """Hold the brand's lock across a read-modify-write cycle."""
        with self._lock_for(brand):
            yield

    def get(self, brand: str) -> NotificationState | None:
        raise NotImplementedError

    def set(self, brand: str, state: NotificationState, **extra) -> None:
        raise NotImplementedError

    def all(self) -> dict[str, dict]:
        raise NotImplementedError


def _parse(value) -> NotificationState | None:
    try:
        return NotificationState(value)
    except ValueError:
        log.warning(f"Ignoring unknown stored state {value!r}")
        return None


class MemoryStateStore(StateStore):

    def __init__(self, initial: dict[str, NotificationState] | None = None):
        super().__init__()
        self._data: dict[str, dict] = {}
        for brand, state in (initial or {}).items():
            self.set(brand, state)

    def get(self, brand):
        entry = self._data.get(brand)
        return _parse(entry["state"]) if entry else None

    def set(self, brand, state, **extra):
        self._data[brand] = {
            "state": NotificationState(state).value,
            "updated_at": datetime.now(timezone.utc).isoformat(),
            **{k: v for k, v in extra.items() if v is not None},
        }

    def all(self):
        return {brand: dict(entry) for brand, entry in self._data.items()}


class JsonStateStore(StateStore):
    """state.json schema: {brand: {"state": "OUT_OF_STOCK", "updated_at": iso, ...}}"""

    def __init__(self, path: Path):
        super().__init__()
        self.path = Path(path)

    def get(self, brand):
        data = read_json(self.path)
        entry = data.get(brand) if isinstance(data, dict) else None
        if not isinstance(entry, dict) or "state" not in entry:
            return None
        return _parse(entry["state"])

    def set(self, brand, state, **extra):
        with locked_json(self.path) as data:
            data[brand] = {
                "state": NotificationState(state).value,
                "updated_at": datetime.now(timezone.utc).isoformat(),
                **{k: v for k, v in extra.items() if v is not None},
            }

    def all(self):
        return read_json(self.path)
