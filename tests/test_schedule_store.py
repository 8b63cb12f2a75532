import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from models import ScheduleRecord
from schedule_store import (
    InMemorySchedulingStore,
    JsonFileSchedulingStore,
    is_due,
    load_record,
    record_key,
    save_record,
)

_NOW = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)
_LOOKBACK = timedelta(hours=24)


def test_json_store_persists_records_across_instances(tmp_path: Path) -> None:
    path = tmp_path / "state" / "schedule.json"
    record = ScheduleRecord(
        document_id="https://example.com/tomato-guide/",
        last_processed_at=_NOW,
        failure_count=2,
        next_eligible_at=_NOW + timedelta(minutes=30),
    )

    save_record(JsonFileSchedulingStore(path), record)
    reloaded = load_record(JsonFileSchedulingStore(path), record.document_id)

    assert reloaded == record
    on_disk = json.loads(path.read_text(encoding="utf-8"))
    assert list(on_disk) == [record_key(record.document_id)]
    assert list(path.parent.glob("*.tmp")) == []


def test_json_store_remove(tmp_path: Path) -> None:
    store = JsonFileSchedulingStore(tmp_path / "schedule.json")
    store.set("schedule:a", "{}")

    store.remove("schedule:a")

    assert store.get("schedule:a") is None
    assert JsonFileSchedulingStore(tmp_path / "schedule.json").get("schedule:a") is None


def test_json_store_rejects_non_object_file(tmp_path: Path) -> None:
    path = tmp_path / "schedule.json"
    path.write_text("[1, 2, 3]", encoding="utf-8")

    with pytest.raises(RuntimeError, match="JSON object"):
        JsonFileSchedulingStore(path)


def test_unreadable_record_starts_fresh() -> None:
    store = InMemorySchedulingStore()
    store.set(record_key("doc"), "not json")

    record = load_record(store, "doc")

    assert record == ScheduleRecord(document_id="doc")


def test_missing_record_is_due() -> None:
    assert is_due(ScheduleRecord(document_id="doc"), _NOW, _LOOKBACK) is True


def test_recently_processed_record_is_not_due() -> None:
    record = ScheduleRecord(document_id="doc", last_processed_at=_NOW - timedelta(hours=2))

    assert is_due(record, _NOW, _LOOKBACK) is False
    assert is_due(record, _NOW + timedelta(hours=22), _LOOKBACK) is True


def test_cooldown_overrides_lookback() -> None:
    record = ScheduleRecord(
        document_id="doc",
        last_processed_at=_NOW - timedelta(days=3),
        failure_count=3,
        next_eligible_at=_NOW + timedelta(hours=24),
    )

    assert is_due(record, _NOW, _LOOKBACK) is False
    assert is_due(record, _NOW + timedelta(hours=24), _LOOKBACK) is True
