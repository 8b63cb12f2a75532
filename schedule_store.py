"""Key/value persistence for per-document scheduling records."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Protocol

from models import ScheduleRecord

SCHEDULE_STORE_PATH = os.getenv("SCHEDULE_STORE_PATH", "schedule_store.json")
KEY_PREFIX = "schedule:"

LOGGER = logging.getLogger(__name__)


class SchedulingStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class InMemorySchedulingStore:
    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileSchedulingStore:
    """A single JSON object on disk, rewritten atomically on every change."""

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path or SCHEDULE_STORE_PATH)
        self._lock = threading.Lock()
        self._data = self._load()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value
            self._flush()

    def remove(self, key: str) -> None:
        with self._lock:
            if self._data.pop(key, None) is not None:
                self._flush()

    def _load(self) -> dict[str, str]:
        if not self.path.exists() or self.path.stat().st_size == 0:
            return {}
        with self.path.open(encoding="utf-8") as fh:
            data = json.load(fh)
        if not isinstance(data, dict):
            raise RuntimeError(f"Schedule store {self.path} does not contain a JSON object")
        return {str(key): str(value) for key, value in data.items()}

    def _flush(self) -> None:
        directory = self.path.parent if str(self.path.parent) else Path(".")
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=directory, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(self._data, fh, indent=2, sort_keys=True)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


def record_key(document_id: str) -> str:
    return f"{KEY_PREFIX}{document_id}"


def load_record(store: SchedulingStore, document_id: str) -> ScheduleRecord:
    """Read the record for ``document_id``; unreadable entries start over."""
    raw = store.get(record_key(document_id))
    if not raw:
        return ScheduleRecord(document_id=document_id)
    try:
        data = json.loads(raw)
        return ScheduleRecord(
            document_id=document_id,
            last_processed_at=_parse_time(data.get("last_processed_at")),
            failure_count=int(data.get("failure_count") or 0),
            next_eligible_at=_parse_time(data.get("next_eligible_at")),
        )
    except (ValueError, TypeError, AttributeError) as exc:
        LOGGER.warning("Discarding unreadable schedule record for %s: %s", document_id, exc)
        return ScheduleRecord(document_id=document_id)


def save_record(store: SchedulingStore, record: ScheduleRecord) -> None:
    payload = {
        "last_processed_at": _format_time(record.last_processed_at),
        "failure_count": record.failure_count,
        "next_eligible_at": _format_time(record.next_eligible_at),
    }
    store.set(record_key(record.document_id), json.dumps(payload))


def is_due(record: ScheduleRecord, now: datetime, lookback: timedelta) -> bool:
    """A record is due once its cooldown has passed, or its last run left the lookback window."""
    if record.next_eligible_at is not None:
        return now >= record.next_eligible_at
    if record.last_processed_at is None:
        return True
    return now - record.last_processed_at >= lookback


def _parse_time(value: object) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(str(value))


def _format_time(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
