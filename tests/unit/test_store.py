"""Unit tests for the record stores and the atomic write protocol."""
import os
from datetime import date, time

import pytest

from clinic_ledger import store as store_module
from clinic_ledger.errors import StoreIOFailure
from clinic_ledger.record import AppointmentRecord
from clinic_ledger.status import AppointmentStatus
from clinic_ledger.store import (
    FileBlockedSlotStore,
    FileRecordStore,
    InMemoryBlockedSlotStore,
    InMemoryRecordStore,
    atomic_write_lines,
    read_lines,
)


def _record(appointment_id, hour=10, status=AppointmentStatus.SCHEDULED):
    return AppointmentRecord(
        appointment_id=appointment_id,
        patient_id=1001,
        provider_id="D001",
        appointment_date=date(2024, 12, 2),
        appointment_time=time(hour, 0),
        status=status,
    )


def test_missing_file_is_empty_store(tmp_path):
    assert FileRecordStore(tmp_path / "nope.txt").load() == []
    assert FileBlockedSlotStore(tmp_path / "nope.txt").load() == set()


def test_save_and_load_preserves_order(record_path):
    file_store = FileRecordStore(record_path)
    records = [_record("A2", 11), _record("A1", 9)]

    file_store.save(records)

    assert file_store.load() == records
    assert record_path.read_text(encoding="utf-8").splitlines() == [
        "A2,1001,D001,2024-12-02,11:00,Scheduled",
        "A1,1001,D001,2024-12-02,09:00,Scheduled",
    ]


def test_save_creates_parent_directory(tmp_path):
    path = tmp_path / "nested" / "data" / "appointments.txt"

    FileRecordStore(path).save([_record("A1")])

    assert path.exists()


def test_malformed_lines_are_skipped(record_path):
    record_path.write_text(
        "A1,1001,D001,2024-12-02,10:00,Scheduled\n"
        "garbage line\n"
        "\n"
        "A2,1002,D001,2024-12-02,11:00,Confirmed\n",
        encoding="utf-8"
    )

    loaded = FileRecordStore(record_path).load()

    assert [r.appointment_id for r in loaded] == ["A1", "A2"]


def test_no_temp_files_left_after_save(record_path):
    FileRecordStore(record_path).save([_record("A1")])

    assert sorted(os.listdir(record_path.parent)) == [record_path.name]


def test_failed_replace_leaves_original_untouched(record_path, monkeypatch):
    file_store = FileRecordStore(record_path)
    file_store.save([_record("A1")])
    before = record_path.read_bytes()

    def broken_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(store_module.os, "replace", broken_replace)

    with pytest.raises(StoreIOFailure, match="disk full"):
        file_store.save([_record("A1"), _record("A2", 11)])

    assert record_path.read_bytes() == before
    # Temp file cleaned up
    assert sorted(os.listdir(record_path.parent)) == [record_path.name]


def test_read_failure_raises_store_io_failure(tmp_path):
    directory_as_file = tmp_path / "appointments.txt"
    directory_as_file.mkdir()

    with pytest.raises(StoreIOFailure):
        read_lines(directory_as_file)


def test_undecodable_bytes_raise_store_io_failure(record_path):
    record_path.write_bytes(b"A1,1001,D001,2024-12-02,10:00,Scheduled\n\xff\xfe,bad\n")

    with pytest.raises(StoreIOFailure, match="Could not read"):
        FileRecordStore(record_path).load()


def test_save_keeps_malformed_lines(record_path):
    record_path.write_text(
        "A1,1001,D001,2024-12-02,10:00,Scheduled\n"
        "hand edited, do not lose\n",
        encoding="utf-8"
    )
    file_store = FileRecordStore(record_path)

    file_store.save(file_store.load() + [_record("A2", 11)])

    assert record_path.read_text(encoding="utf-8").splitlines() == [
        "A1,1001,D001,2024-12-02,10:00,Scheduled",
        "A2,1001,D001,2024-12-02,11:00,Scheduled",
        "hand edited, do not lose",
    ]
    assert [r.appointment_id for r in file_store.load()] == ["A1", "A2"]


def test_blocked_store_keeps_malformed_lines(blocked_path):
    blocked_path.write_text("D001,someday,10:00,UNAVAILABLE\n", encoding="utf-8")
    file_store = FileBlockedSlotStore(blocked_path)

    file_store.save({("D001", date(2024, 12, 2), time(15, 0))})

    assert blocked_path.read_text(encoding="utf-8").splitlines() == [
        "D001,2024-12-02,15:00,UNAVAILABLE",
        "D001,someday,10:00,UNAVAILABLE",
    ]


def test_atomic_write_lines(tmp_path):
    path = tmp_path / "lines.txt"

    atomic_write_lines(path, ["one", "two"])

    assert read_lines(path) == ["one", "two"]


def test_in_memory_record_store_round_trips_like_file():
    memory = InMemoryRecordStore([_record("A1")])
    memory.save([_record("A1", status=AppointmentStatus.CONFIRMED)])

    assert memory.lines == ["A1,1001,D001,2024-12-02,10:00,Confirmed"]
    assert memory.load()[0].status == AppointmentStatus.CONFIRMED


def test_in_memory_stores_keep_malformed_lines():
    memory = InMemoryRecordStore([_record("A1")])
    memory._lines.append("not,a,record")

    memory.save([_record("A2", 11)])

    assert memory.lines == ["A2,1001,D001,2024-12-02,11:00,Scheduled", "not,a,record"]

    blocked = InMemoryBlockedSlotStore()
    blocked._lines.append("garbage")
    blocked.save(set())

    assert blocked.load() == set()
    assert blocked._lines == ["garbage"]


def test_loaded_records_are_fresh_objects():
    memory = InMemoryRecordStore([_record("A1")])

    first, second = memory.load()[0], memory.load()[0]

    assert first == second
    assert first is not second


def test_blocked_slot_stores_sort_lines(blocked_path):
    keys = {
        ("D002", date(2024, 12, 2), time(9, 0)),
        ("D001", date(2024, 12, 2), time(15, 0)),
    }
    file_store = FileBlockedSlotStore(blocked_path)

    file_store.save(keys)

    assert blocked_path.read_text(encoding="utf-8").splitlines() == [
        "D001,2024-12-02,15:00,UNAVAILABLE",
        "D002,2024-12-02,09:00,UNAVAILABLE",
    ]
    assert file_store.load() == keys
    assert InMemoryBlockedSlotStore(keys).load() == keys
