"""Tests for the JSON history store."""

from __future__ import annotations

import json
import os
import time
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from qualitypulse.errors import HistoryCorruptedError, HistoryLockError, HistoryWriteError
from qualitypulse.storage import HistoryStore, to_epoch_ms

NOW = datetime(2026, 10, 18, 12, 0, 0)


def entry(moment: datetime, **fields: object) -> dict[str, object]:
    return {"date": moment.date().isoformat(), "timestamp": to_epoch_ms(moment), **fields}


@pytest.fixture
def store(data_dir: Path) -> HistoryStore:
    return HistoryStore(data_dir / "trend-history.json", lock_timeout=0.2)


class TestHistoryStore:
    """Tests for HistoryStore reads and writes."""

    def test_missing_file_is_empty(self, store: HistoryStore) -> None:
        assert store.read() == []
        assert store.load() == []

    def test_append_persists(self, store: HistoryStore) -> None:
        store.append(entry(NOW, score=1), retention_days=30, now=NOW)

        on_disk = json.loads(store.path.read_text(encoding="utf-8"))
        assert on_disk == [entry(NOW, score=1)]
        assert store.load() == on_disk

    def test_append_keeps_timestamp_order(self, store: HistoryStore) -> None:
        store.append(entry(NOW), retention_days=30, now=NOW)
        store.append(entry(NOW - timedelta(days=2)), retention_days=30, now=NOW)

        dates = [item["date"] for item in store.load()]
        assert dates == ["2026-10-16", "2026-10-18"]

    def test_append_prunes_expired_entries(self, store: HistoryStore) -> None:
        store.write([entry(NOW - timedelta(days=45)), entry(NOW - timedelta(days=10))])

        kept = store.append(entry(NOW), retention_days=30, now=NOW)

        assert [item["date"] for item in kept] == ["2026-10-08", "2026-10-18"]

    def test_creates_missing_directory(self, tmp_path: Path) -> None:
        store = HistoryStore(tmp_path / "nested" / "dir" / "history.json")

        store.append(entry(NOW), retention_days=30, now=NOW)

        assert store.path.exists()

    def test_update_sees_stored_series(self, store: HistoryStore) -> None:
        store.append(entry(NOW - timedelta(days=1), failed=["login works"]), retention_days=30, now=NOW)

        def next_entry(history: list[dict[str, object]]) -> dict[str, object]:
            return entry(NOW, previous_failed=history[-1]["failed"])

        written = store.update(next_entry, retention_days=30, now=NOW)

        assert written[-1]["previous_failed"] == ["login works"]
        assert len(store.load()) == 2

    def test_no_leftover_files(self, store: HistoryStore, data_dir: Path) -> None:
        store.append(entry(NOW), retention_days=30, now=NOW)
        store.append(entry(NOW), retention_days=30, now=NOW)

        assert [p.name for p in data_dir.iterdir()] == ["trend-history.json"]


class TestCorruption:
    """Tests for unreadable history files."""

    def test_invalid_json(self, store: HistoryStore) -> None:
        store.path.write_text("[{", encoding="utf-8")

        with pytest.raises(HistoryCorruptedError) as exc_info:
            store.read()

        assert exc_info.value.context.history_file == str(store.path)
        assert store.load() == []

    def test_wrong_shape(self, store: HistoryStore) -> None:
        store.path.write_text(json.dumps({"date": "2026-10-18"}), encoding="utf-8")

        with pytest.raises(HistoryCorruptedError):
            store.read()

    def test_append_replaces_corrupt_file(self, store: HistoryStore) -> None:
        store.path.write_text("not json", encoding="utf-8")

        store.append(entry(NOW), retention_days=30, now=NOW)

        assert len(store.read()) == 1

    def test_write_failure(self, store: HistoryStore, data_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        def fail_replace(src: str, dst: str) -> None:
            raise OSError("disk full")

        monkeypatch.setattr("qualitypulse.storage.history.os.replace", fail_replace)

        with pytest.raises(HistoryWriteError) as exc_info:
            store.write([entry(NOW)])

        assert isinstance(exc_info.value.cause, OSError)
        assert list(data_dir.iterdir()) == []


class TestLocking:
    """Tests for the writer lock."""

    def test_lock_is_released(self, store: HistoryStore) -> None:
        store.append(entry(NOW), retention_days=30, now=NOW)

        assert not store.lock_path.exists()

    def test_lock_is_released_on_error(self, store: HistoryStore) -> None:
        with pytest.raises(RuntimeError):
            with store.locked():
                assert store.lock_path.exists()
                raise RuntimeError("boom")

        assert not store.lock_path.exists()

    def test_lock_timeout(self, store: HistoryStore) -> None:
        store.lock_path.write_text(str(os.getpid()), encoding="utf-8")

        with pytest.raises(HistoryLockError) as exc_info:
            store.append(entry(NOW), retention_days=30, now=NOW)

        assert exc_info.value.context.extra["lock_file"] == str(store.lock_path)
        assert not store.path.exists()
        assert store.lock_path.exists()

    def test_lock_of_dead_process_is_removed(self, store: HistoryStore, monkeypatch: pytest.MonkeyPatch) -> None:
        store.lock_path.write_text("999999", encoding="utf-8")
        monkeypatch.setattr("qualitypulse.storage.history._process_alive", lambda pid: False)

        for day in range(3):
            store.append(entry(NOW + timedelta(hours=day)), retention_days=30, now=NOW)

        assert len(store.load()) == 3
        assert not store.lock_path.exists()

    def test_abandoned_empty_lock_is_removed(self, store: HistoryStore) -> None:
        store.lock_path.write_text("", encoding="utf-8")
        past = time.time() - 60
        os.utime(store.lock_path, (past, past))

        store.append(entry(NOW), retention_days=30, now=NOW)

        assert len(store.load()) == 1
        assert not store.lock_path.exists()

    def test_fresh_empty_lock_expires_after_timeout(self, store: HistoryStore) -> None:
        store.lock_path.write_text("", encoding="utf-8")

        store.append(entry(NOW), retention_days=30, now=NOW)

        assert len(store.load()) == 1
