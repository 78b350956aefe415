"""Concurrency tests: many threads sharing one ledger."""
from concurrent.futures import ThreadPoolExecutor
from datetime import time

from clinic_ledger.status import AppointmentStatus


def test_concurrent_schedules_book_slot_once(file_ledger, record_path, booking_day, ten_am):
    """Only one of many simultaneous requests for a slot may win."""
    with ThreadPoolExecutor(max_workers=20) as executor:
        results = list(executor.map(
            lambda patient_id: file_ledger.schedule(patient_id, "D001", booking_day, ten_am),
            range(20)
        ))

    winners = [r for r in results if r.success]
    assert len(winners) == 1
    assert all(r.code == "SLOT_CONFLICT" for r in results if not r.success)
    assert len(record_path.read_text(encoding="utf-8").splitlines()) == 1


def test_concurrent_schedules_distinct_slots_all_persist(file_ledger, booking_day):
    """Whole-file rewrites under the lock never lose a concurrent booking."""
    starts = [s.start_time for s in file_ledger.list_available("D001", booking_day)]

    with ThreadPoolExecutor(max_workers=8) as executor:
        results = list(executor.map(
            lambda start: file_ledger.schedule(1001, "D001", booking_day, start),
            starts
        ))

    assert all(r.success for r in results)
    assert len(file_ledger.list_by_provider("D001")) == len(starts)
    assert file_ledger.list_available("D001", booking_day) == []


def test_concurrent_reschedules_into_one_slot(file_ledger, booking_day):
    """Several appointments racing into the same free slot: one moves."""
    ids = [
        file_ledger.schedule(1000 + hour, "D001", booking_day, time(hour, 0)).unwrap().appointment_id
        for hour in (9, 10, 11, 12)
    ]
    target = time(15, 0)

    with ThreadPoolExecutor(max_workers=4) as executor:
        results = list(executor.map(
            lambda appointment_id: file_ledger.reschedule(appointment_id, booking_day, target),
            ids
        ))

    assert sum(r.success for r in results) == 1
    holders = [
        r for r in file_ledger.list_by_provider("D001")
        if r.time == target and r.status == AppointmentStatus.SCHEDULED
    ]
    assert len(holders) == 1


def test_readers_run_alongside_writers(file_ledger, booking_day):
    """Listing while writing always sees a consistent snapshot."""
    starts = [s.start_time for s in file_ledger.list_available("D001", booking_day)]

    def write(start):
        return file_ledger.schedule(2002, "D001", booking_day, start).success

    def read(_):
        records = file_ledger.list_by_patient(2002)
        return len(records) == len({r.appointment_id for r in records})

    with ThreadPoolExecutor(max_workers=8) as executor:
        writes = [executor.submit(write, start) for start in starts]
        reads = [executor.submit(read, i) for i in range(50)]

    assert all(f.result() for f in writes)
    assert all(f.result() for f in reads)
