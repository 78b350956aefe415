"""Shared test fixtures."""
from datetime import date, time

import pytest

from clinic_ledger.directory import ProviderDirectory
from clinic_ledger.ledger import AppointmentLedger
from clinic_ledger.slots import SlotCalendar
from clinic_ledger.store import (
    FileBlockedSlotStore,
    FileRecordStore,
    InMemoryBlockedSlotStore,
    InMemoryRecordStore,
)

MIN_BOOKING_DATE = date(2024, 11, 20)
BOOKING_DAY = date(2024, 12, 2)


@pytest.fixture
def booking_day() -> date:
    return BOOKING_DAY


@pytest.fixture
def ten_am() -> time:
    return time(10, 0)


@pytest.fixture
def calendar() -> SlotCalendar:
    return SlotCalendar()


@pytest.fixture
def directory() -> ProviderDirectory:
    return ProviderDirectory.from_config()


@pytest.fixture
def record_path(tmp_path):
    return tmp_path / "appointments.txt"


@pytest.fixture
def blocked_path(tmp_path):
    return tmp_path / "unavailable_slots.txt"


@pytest.fixture
def file_ledger(record_path, blocked_path, directory) -> AppointmentLedger:
    """Ledger backed by real files in a temp directory."""
    return AppointmentLedger(
        store=FileRecordStore(record_path),
        blocked_store=FileBlockedSlotStore(blocked_path),
        min_booking_date=MIN_BOOKING_DATE,
        directory=directory,
    )


@pytest.fixture
def memory_ledger() -> AppointmentLedger:
    """Ledger backed by in-memory stores, no provider directory."""
    return AppointmentLedger(
        store=InMemoryRecordStore(),
        blocked_store=InMemoryBlockedSlotStore(),
        min_booking_date=MIN_BOOKING_DATE,
    )


@pytest.fixture
def scheduled(file_ledger, booking_day, ten_am):
    """A Scheduled appointment for patient 1001 with D001 at 10:00."""
    return file_ledger.schedule(1001, "D001", booking_day, ten_am).unwrap()


@pytest.fixture
def confirmed(file_ledger, scheduled):
    return file_ledger.respond_to_request(scheduled.appointment_id, True).unwrap()
