"""File-locking helpers for the JSON data files (state, history).

read_json() takes a shared lock for reads; locked_json() holds an exclusive
lock across a read-modify-write cycle and writes back atomically
(tmp + os.replace). Uses fcntl.flock, so it is process-safe but POSIX-only.
"""

import fcntl
import json
import logging
import os
from contextlib import contextmanager
from pathlib import Path

log = logging.getLogger(__name__)


def _coerce(path: Path, data, default_factory):
    default = default_factory()
    if isinstance(data, type(default)):
        return data
    log.warning(f"{path.name} holds {type(data).__name__}, expected {type(default).__name__} — returning default")
    return default


def read_json(path: Path, default_factory=dict):
    """Read a JSON file under a shared lock. Missing, corrupt or wrong shape → default."""
    try:
        with open(path, "r") as f:
            fcntl.flock(f, fcntl.LOCK_SH)
            try:
                return _coerce(path, json.load(f), default_factory)
            except json.JSONDecodeError:
                log.warning(f"{path.name} is corrupt or empty — returning default")
                return default_factory()
            finally:
                fcntl.flock(f, fcntl.LOCK_UN)
    except FileNotFoundError:
        return default_factory()


def _write_atomic(path: Path, data) -> None:
    tmp = str(path) + ".tmp"
    with open(tmp, "w") as f:
        json.dump(data, f, indent=2)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, str(path))


@contextmanager
def locked_json(path: Path, default_factory=dict):
    """Hold exclusive lock across read-modify-write cycle.

    Usage:
        with locked_json(STATE_FILE) as data:
            data["key"] = "value"
        # lock released, file saved automatically on exit

    Nothing is written if the block raises.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    lock_path = str(path) + ".lock"
    fd = os.open(lock_path, os.O_RDWR | os.O_CREAT)
    try:
        fcntl.flock(fd, fcntl.LOCK_EX)
        try:
            with open(path, "r") as f:
                data = _coerce(path, json.load(f), default_factory)
        except (FileNotFoundError, json.JSONDecodeError):
            data = default_factory()

        yield data
        _write_atomic(path, data)
    finally:
        fcntl.flock(fd, fcntl.LOCK_UN)
        os.close(fd)
