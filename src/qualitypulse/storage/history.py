"""JSON history series on disk.

Each history file holds a JSON array of snapshot objects, sorted by their
``timestamp`` (epoch milliseconds). Writers serialize on a sibling
``.lock`` file and replace the series atomically, so a crashed writer
never leaves a half-written file behind.

Example:
    >>> store = HistoryStore("quality-tracking/trend-history.json")
    >>> store.append({"date": "2026-10-18", "timestamp": 1792310400000}, retention_days=90)
    >>> len(store.load())
    1
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from qualitypulse.errors import (
    ErrorContext,
    HistoryCorruptedError,
    HistoryError,
    HistoryLockError,
    HistoryWriteError,
)

logger = logging.getLogger(__name__)

LOCK_POLL_INTERVAL = 0.05


def to_epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


class HistoryStore:
    """A retention-pruned series of snapshots in one JSON file.

    Args:
        path: Location of the JSON file.
        lock_timeout: Seconds to wait for the write lock.
    """

    def __init__(self, path: str | Path, lock_timeout: float = 10.0) -> None:
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self.lock_timeout = lock_timeout

    def load(self) -> list[dict[str, Any]]:
        """Load the series, treating a missing or corrupt file as empty."""
        try:
            return self.read()
        except HistoryError as e:
            logger.warning("Ignoring unreadable history %s: %s", self.path, e)
            return []

    def read(self) -> list[dict[str, Any]]:
        """Load the series, raising ``HistoryCorruptedError`` on bad content."""
        if not self.path.exists():
            return []

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise HistoryCorruptedError(
                message=f"History file is not valid JSON: {e.msg}",
                context=ErrorContext(history_file=str(self.path)),
                cause=e,
            ) from e
        except OSError as e:
            raise HistoryError(
                message=f"Cannot read history file: {e}",
                context=ErrorContext(history_file=str(self.path)),
                cause=e,
            ) from e

        if not isinstance(data, list) or not all(isinstance(entry, dict) for entry in data):
            raise HistoryCorruptedError(
                message="History file must hold a JSON array of objects",
                context=ErrorContext(history_file=str(self.path)),
            )
        return data

    def append(
        self,
        entry: dict[str, Any],
        retention_days: int,
        now: datetime | None = None,
    ) -> list[dict[str, Any]]:
        """Append a snapshot, prune expired ones and persist the series.

        Returns:
            The series as written.
        """
        return self.update(lambda history: entry, retention_days, now=now)

    def update(
        self,
        build_entry: Callable[[list[dict[str, Any]]], dict[str, Any]],
        retention_days: int,
        now: datetime | None = None,
    ) -> list[dict[str, Any]]:
        """Append the snapshot ``build_entry`` derives from the current series.

        ``build_entry`` runs while the write lock is held, so it always sees
        the latest stored series.
        """
        now = now or datetime.now()
        cutoff = to_epoch_ms(now - timedelta(days=retention_days))

        with self.locked():
            history = self.load()
            history.append(build_entry(list(history)))
            kept = [item for item in history if _timestamp(item) >= cutoff]
            kept.sort(key=_timestamp)
            self.write(kept)

        dropped = len(history) - len(kept)
        if dropped:
            logger.debug("Pruned %d snapshots older than %d days from %s", dropped, retention_days, self.path)
        return kept

    def write(self, history: list[dict[str, Any]]) -> None:
        """Replace the series atomically."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(history, f, indent=2, default=str)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise HistoryWriteError(
                message=f"Cannot write history file: {e}",
                context=ErrorContext(history_file=str(self.path)),
                cause=e,
            ) from e

    @contextmanager
    def locked(self) -> Iterator[None]:
        """Hold the exclusive write lock for this series."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        deadline = time.monotonic() + self.lock_timeout
        while True:
            try:
                fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
                break
            except FileExistsError:
                if self._lock_is_stale():
                    logger.warning("Removing stale lock %s", self.lock_path)
                    self.lock_path.unlink(missing_ok=True)
                    continue
                if time.monotonic() >= deadline:
                    raise HistoryLockError(
                        context=ErrorContext(
                            history_file=str(self.path),
                            extra={"lock_file": str(self.lock_path), "timeout": self.lock_timeout},
                        )
                    ) from None
                time.sleep(LOCK_POLL_INTERVAL)

        try:
            try:
                os.write(fd, str(os.getpid()).encode())
            finally:
                os.close(fd)
            yield
        finally:
            self.lock_path.unlink(missing_ok=True)

    def _lock_is_stale(self) -> bool:
        """A lock is stale when its owner is gone.

        Live writers record their PID right after creating the lock, so a
        lock without a PID only counts as stale once it is older than
        ``lock_timeout``.
        """
        try:
            content = self.lock_path.read_text(encoding="utf-8").strip()
            age = time.time() - self.lock_path.stat().st_mtime
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.debug("Cannot inspect lock %s: %s", self.lock_path, e)
            return False

        if content.isdigit() and int(content) > 0:
            return not _process_alive(int(content))
        return age >= self.lock_timeout


def _process_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


def _timestamp(entry: dict[str, Any]) -> float:
    value = entry.get("timestamp", 0)
    return value if isinstance(value, (int, float)) else 0
