"""Unit tests for the appointment record entity."""
from datetime import date, time

import pytest
from pydantic import ValidationError

from clinic_ledger.errors import InvalidTransition, LedgerError
from clinic_ledger.record import (
    AppointmentOutcome,
    AppointmentRecord,
    PrescribedMedicine,
    generate_appointment_id,
)
from clinic_ledger.status import AppointmentStatus


@pytest.fixture
def record():
    return AppointmentRecord(
        appointment_id="APT-000000000001",
        patient_id=1001,
        provider_id="D001",
        appointment_date=date(2024, 12, 2),
        appointment_time=time(10, 0),
    )


def test_new_record_is_scheduled(record):
    assert record.status == AppointmentStatus.SCHEDULED
    assert record.outcome is None
    assert record.is_active
    assert record.slot_key == ("D001", date(2024, 12, 2), time(10, 0))


def test_generate_appointment_id_unique():
    first, second = generate_appointment_id(), generate_appointment_id()

    assert first.startswith("APT-")
    assert len(first) == 16
    assert first != second


def test_check_transition_lists_allowed_targets(record):
    with pytest.raises(InvalidTransition, match="allowed: Cancelled, Confirmed"):
        record.check_transition(AppointmentStatus.COMPLETED)


def test_check_transition_from_terminal(record):
    record.status = AppointmentStatus.CANCELLED

    with pytest.raises(InvalidTransition, match="Cancelled is final"):
        record.check_transition(AppointmentStatus.CONFIRMED)


def test_apply_status_to_completed_sets_empty_outcome(record):
    record.apply_status(AppointmentStatus.CONFIRMED)
    record.apply_status(AppointmentStatus.COMPLETED)

    assert record.outcome == AppointmentOutcome()


def test_apply_reschedule_resets_to_scheduled(record):
    record.status = AppointmentStatus.CONFIRMED

    record.apply_reschedule(date(2024, 12, 3), time(11, 30))

    assert record.status == AppointmentStatus.SCHEDULED
    assert (record.date, record.time) == (date(2024, 12, 3), time(11, 30))


def test_apply_reschedule_rejected_when_completed(record):
    record.status = AppointmentStatus.COMPLETED

    with pytest.raises(InvalidTransition, match="Cannot reschedule"):
        record.apply_reschedule(date(2024, 12, 3), time(11, 30))
    assert record.date == date(2024, 12, 2)


def test_apply_outcome_requires_confirmation(record):
    with pytest.raises(InvalidTransition, match="must be Confirmed first"):
        record.apply_outcome(AppointmentOutcome(service_type="Consultation"))


def test_apply_outcome_copies_payload(record):
    record.status = AppointmentStatus.CONFIRMED
    outcome = AppointmentOutcome(medicines=[PrescribedMedicine(name="Aspirin", quantity=2)])

    record.apply_outcome(outcome)
    outcome.medicines.append(PrescribedMedicine(name="Ibuprofen", quantity=1))

    assert record.status == AppointmentStatus.COMPLETED
    assert len(record.outcome.medicines) == 1


def test_apply_prescription_status_only_when_completed(record):
    with pytest.raises(InvalidTransition, match="no completed outcome"):
        record.apply_prescription_status("Dispensed")

    record.status = AppointmentStatus.COMPLETED
    record.outcome = AppointmentOutcome()
    record.apply_prescription_status("Dispensed")
    assert record.outcome.prescription_status == "Dispensed"


def test_copy_is_independent(record):
    record.status = AppointmentStatus.COMPLETED
    record.outcome = AppointmentOutcome(service_type="Consultation")

    clone = record.copy()
    clone.outcome.service_type = "Changed"

    assert record.outcome.service_type == "Consultation"


def test_detached_record_operations_fail(record):
    result = record.confirm()

    assert not result.success
    assert isinstance(result.error, LedgerError)
    assert "not attached" in result.reason
    assert record.status == AppointmentStatus.SCHEDULED


def test_outcome_summary(record):
    assert "not completed" in record.outcome_summary()

    record.status = AppointmentStatus.COMPLETED
    record.outcome = AppointmentOutcome(service_type="Consultation", consultation_notes="Rest")
    assert record.outcome_summary() == "Service Provided: Consultation, Consultation Notes: Rest"


def test_to_dict(record):
    data = record.to_dict()

    assert data["appointment_id"] == "APT-000000000001"
    assert data["date"] == "2024-12-02"
    assert data["time"] == "10:00"
    assert data["status"] == "Scheduled"
    assert data["outcome"] is None


@pytest.mark.parametrize("name", ["A;B", "Line\nbreak", "Line\rbreak", "", " ", "   "])
def test_medicine_name_validation(name):
    with pytest.raises(ValidationError):
        PrescribedMedicine(name=name, quantity=1)


def test_outcome_rejects_multiline_notes():
    with pytest.raises(ValidationError):
        AppointmentOutcome(consultation_notes="first\nsecond")


def test_medicine_name_is_stripped():
    assert PrescribedMedicine(name="  Paracetamol ", quantity=1).name == "Paracetamol"
