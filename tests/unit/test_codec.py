"""Unit tests for the store line codec."""
from datetime import date, time

import pytest

from clinic_ledger import codec
from clinic_ledger.record import AppointmentOutcome, AppointmentRecord, PrescribedMedicine
from clinic_ledger.status import AppointmentStatus


def _record(status=AppointmentStatus.SCHEDULED, outcome=None):
    return AppointmentRecord(
        appointment_id="A1700000000000",
        patient_id=1001,
        provider_id="D001",
        appointment_date=date(2024, 12, 2),
        appointment_time=time(10, 0),
        status=status,
        outcome=outcome,
    )


def test_scheduled_record_line():
    assert codec.serialize_record(_record()) == "A1700000000000,1001,D001,2024-12-02,10:00,Scheduled"


def test_completed_record_line():
    outcome = AppointmentOutcome(
        service_type="Consultation",
        consultation_notes="Mild fever",
        medicines=[
            PrescribedMedicine(name="Paracetamol", quantity=10),
            PrescribedMedicine(name="Vitamin C", quantity=5),
        ],
    )
    line = codec.serialize_record(_record(AppointmentStatus.COMPLETED, outcome))

    assert line == (
        "A1700000000000,1001,D001,2024-12-02,10:00,Completed,"
        "Consultation,Mild fever,Paracetamol;Vitamin C,10;5,Prescribed"
    )


def test_completed_record_round_trip_with_commas_in_notes():
    outcome = AppointmentOutcome(
        service_type="Check-up",
        consultation_notes='BP normal, pulse 72, "stable"',
        medicines=[PrescribedMedicine(name="Aspirin", quantity=1)],
        prescription_status="Dispensed",
    )
    original = _record(AppointmentStatus.COMPLETED, outcome)

    parsed = codec.parse_record(codec.serialize_record(original))

    assert parsed == original
    assert parsed.outcome.consultation_notes == 'BP normal, pulse 72, "stable"'


def test_completed_record_without_medicines():
    original = _record(AppointmentStatus.COMPLETED, AppointmentOutcome(service_type="Follow-up"))

    parsed = codec.parse_record(codec.serialize_record(original))

    assert parsed.outcome.medicines == []
    assert parsed.outcome.service_type == "Follow-up"


def test_short_completed_line_gets_empty_outcome():
    parsed = codec.parse_record("A1,1001,D001,2024-12-02,10:00,Completed")

    assert parsed.status == AppointmentStatus.COMPLETED
    assert parsed.outcome == AppointmentOutcome()


@pytest.mark.parametrize("line", [
    "A1,1001,D001,2024-12-02,10:00",
    "A1,not-a-number,D001,2024-12-02,10:00,Scheduled",
    "A1,1001,D001,02/12/2024,10:00,Scheduled",
    "A1,1001,D001,2024-12-02,10:00,Pending",
    "A1,1001,D001,2024-12-02,10:00,Completed,Consultation,notes",
    "A1,1001,D001,2024-12-02,10:00,Completed,Consultation,notes,A;B,1,Prescribed",
    ",1001,D001,2024-12-02,10:00,Scheduled",
])
def test_malformed_record_lines_raise(line):
    with pytest.raises(ValueError):
        codec.parse_record(line)


def test_blocked_slot_line():
    key = ("D001", date(2024, 12, 2), time(15, 30))

    line = codec.serialize_blocked_slot(key)

    assert line == "D001,2024-12-02,15:30,UNAVAILABLE"
    assert codec.parse_blocked_slot(line) == key


def test_blocked_slot_line_requires_marker():
    with pytest.raises(ValueError, match="not a blocked-slot line"):
        codec.parse_blocked_slot("D001,2024-12-02,15:30,AVAILABLE")
