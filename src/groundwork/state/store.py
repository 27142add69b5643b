"""State store — JSON persistence with an exclusive apply lock.

Writes are atomic (temp file + ``os.replace``) and bump ``serial``, so a
crash mid-write never leaves a half-written record.  The lock is an
advisory ``fcntl.flock`` on ``<state>.lock``; ``flock`` locks belong to
the open file description, so two applies in the same process exclude
each other exactly like two processes do.
"""

from __future__ import annotations

import fcntl
import json
import os
import socket
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import IO

import structlog
from pydantic import ValidationError

from groundwork.core.errors import StateCorruptError, StateLockError, StateVersionError
from groundwork.state.models import STATE_SCHEMA_VERSION, StateRecord

logger = structlog.get_logger()


class StateLock:
    """Exclusive lock on one state location, held for a whole apply.

    Example::

        with store.lock(timeout=30):
            ...  # single writer
    """

    def __init__(self, path: Path, timeout: float = 0.0, poll_interval: float = 0.1):
        self.path = path
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._fh: IO[str] | None = None

    @property
    def held(self) -> bool:
        return self._fh is not None

    def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fh = open(self.path, "a+", encoding="utf-8")
        deadline = time.monotonic() + self.timeout
        while True:
            try:
                fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    holder = self._read_holder(fh)
                    fh.close()
                    raise StateLockError(str(self.path), holder) from None
                time.sleep(self.poll_interval)

        fh.seek(0)
        fh.truncate()
        fh.write(
            json.dumps(
                {
                    "pid": os.getpid(),
                    "hostname": socket.gethostname(),
                    "locked_at": datetime.now(UTC).isoformat(),
                }
            )
        )
        fh.flush()
        self._fh = fh
        logger.debug("state.lock.acquired", path=str(self.path))

    def release(self) -> None:
        if self._fh is None:
            return
        self._fh.seek(0)
        self._fh.truncate()
        fcntl.flock(self._fh.fileno(), fcntl.LOCK_UN)
        self._fh.close()
        self._fh = None
        logger.debug("state.lock.released", path=str(self.path))

    def __enter__(self) -> StateLock:
        self.acquire()
        return self

    def __exit__(self, *args) -> None:
        self.release()

    @staticmethod
    def _read_holder(fh: IO[str]) -> str | None:
        fh.seek(0)
        raw = fh.read().strip()
        if not raw:
            return None
        try:
            info = json.loads(raw)
        except json.JSONDecodeError:
            return raw
        return f"pid {info.get('pid')} on {info.get('hostname')} since {info.get('locked_at')}"


class StateStore:
    """Reads and writes the state record at one location.

    The record is passed by value: :meth:`load` returns a fresh object
    and :meth:`write` returns the record as persisted (with its new serial).
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    @property
    def lock_path(self) -> Path:
        return self.path.with_name(self.path.name + ".lock")

    def exists(self) -> bool:
        return self.path.exists()

    def lock(self, timeout: float = 0.0) -> StateLock:
        return StateLock(self.lock_path, timeout=timeout)

    def load(self) -> StateRecord:
        """Read the record, or return an empty one if none exists yet.

        Raises:
            StateCorruptError: Unreadable JSON or missing ``schema_version``
            StateVersionError: Written by a newer schema version
        """
        if not self.path.exists():
            return StateRecord()

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise StateCorruptError(f"State at {self.path} is not valid JSON: {e}", cause=e) from e

        if not isinstance(data, dict) or "schema_version" not in data:
            raise StateCorruptError(f"State at {self.path} has no schema_version field")
        version = data["schema_version"]
        if not isinstance(version, int):
            raise StateCorruptError(f"State at {self.path} has non-integer schema_version {version!r}")
        if version > STATE_SCHEMA_VERSION:
            raise StateVersionError(version, STATE_SCHEMA_VERSION)

        try:
            record = StateRecord.model_validate(data)
        except ValidationError as e:
            raise StateCorruptError(f"State at {self.path} is malformed: {e}", cause=e) from e
        return record.model_copy(update={"schema_version": STATE_SCHEMA_VERSION})

    def write(self, record: StateRecord) -> StateRecord:
        """Persist ``record`` atomically, incrementing its serial."""
        persisted = record.model_copy(
            update={"serial": record.serial + 1, "schema_version": STATE_SCHEMA_VERSION}
        )
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        with open(tmp, "w", encoding="utf-8") as fh:
            fh.write(persisted.model_dump_json(indent=2))
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, self.path)

        logger.debug(
            "state.written",
            path=str(self.path),
            serial=persisted.serial,
            resources=len(persisted.resources),
        )
        return persisted
