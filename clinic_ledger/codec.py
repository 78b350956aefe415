"""Line codec for the record store and the blocked-slot side store.

Record line:
    id,patientID,providerID,YYYY-MM-DD,HH:MM,status[,serviceType,notes,med1;med2,qty1;qty2,prescriptionStatus]

Blocked-slot line:
    providerID,YYYY-MM-DD,HH:MM,UNAVAILABLE

Fields are written with the csv module, so a value is only quoted when it
contains a comma or a quote; plain records look exactly like the format above.
"""
import csv
import io
from datetime import date, time
from typing import Iterable, List, Tuple

from clinic_ledger.record import AppointmentOutcome, AppointmentRecord, PrescribedMedicine
from clinic_ledger.status import AppointmentStatus

SlotKey = Tuple[str, date, time]

BASE_FIELD_COUNT = 6
COMPLETED_FIELD_COUNT = 11
LIST_SEPARATOR = ";"
BLOCKED_MARKER = "UNAVAILABLE"


def format_time(value: time) -> str:
    return value.strftime("%H:%M")


def parse_time(value: str) -> time:
    return time.fromisoformat(value.strip())


def _join_line(fields: Iterable[str]) -> str:
    buffer = io.StringIO()
    csv.writer(buffer, lineterminator="").writerow(list(fields))
    return buffer.getvalue()


def split_line(line: str) -> List[str]:
    """Split one stored line into its fields."""
    rows = list(csv.reader([line]))
    return rows[0] if rows else []


def record_to_fields(record: AppointmentRecord) -> List[str]:
    fields = [
        record.appointment_id,
        str(record.patient_id),
        record.provider_id,
        record.date.isoformat(),
        format_time(record.time),
        record.status.value,
    ]

    if record.status == AppointmentStatus.COMPLETED:
        outcome = record.outcome or AppointmentOutcome()
        fields.extend([
            outcome.service_type,
            outcome.consultation_notes,
            LIST_SEPARATOR.join(m.name for m in outcome.medicines),
            LIST_SEPARATOR.join(str(m.quantity) for m in outcome.medicines),
            outcome.prescription_status,
        ])

    return fields


def serialize_record(record: AppointmentRecord) -> str:
    """Serialize a record to one store line (no trailing newline)."""
    return _join_line(record_to_fields(record))


def _parse_medicines(names_field: str, quantities_field: str) -> List[PrescribedMedicine]:
    names = names_field.split(LIST_SEPARATOR) if names_field else []
    quantities = quantities_field.split(LIST_SEPARATOR) if quantities_field else []

    if len(names) != len(quantities):
        raise ValueError(
            f"{len(names)} medicines but {len(quantities)} quantities"
        )

    return [
        PrescribedMedicine(name=name, quantity=int(quantity.strip()))
        for name, quantity in zip(names, quantities)
    ]


def fields_to_record(fields: List[str]) -> AppointmentRecord:
    """
    Build a record from stored fields.

    Args:
        fields: Fields of one record line

    Returns:
        Detached AppointmentRecord

    Raises:
        ValueError: If the line is malformed
    """
    if len(fields) < BASE_FIELD_COUNT:
        raise ValueError(f"expected at least {BASE_FIELD_COUNT} fields, got {len(fields)}")

    appointment_id = fields[0].strip()
    if not appointment_id:
        raise ValueError("empty appointment ID")

    status = AppointmentStatus.parse(fields[5])
    outcome = None

    if status == AppointmentStatus.COMPLETED:
        if len(fields) >= COMPLETED_FIELD_COUNT:
            outcome = AppointmentOutcome(
                service_type=fields[6],
                consultation_notes=fields[7],
                medicines=_parse_medicines(fields[8], fields[9]),
                prescription_status=fields[10],
            )
        elif len(fields) == BASE_FIELD_COUNT:
            outcome = AppointmentOutcome()
        else:
            raise ValueError(
                f"completed record needs {COMPLETED_FIELD_COUNT} fields, got {len(fields)}"
            )

    return AppointmentRecord(
        appointment_id=appointment_id,
        patient_id=int(fields[1]),
        provider_id=fields[2].strip(),
        appointment_date=date.fromisoformat(fields[3].strip()),
        appointment_time=parse_time(fields[4]),
        status=status,
        outcome=outcome,
    )


def parse_record(line: str) -> AppointmentRecord:
    return fields_to_record(split_line(line))


def serialize_blocked_slot(key: SlotKey) -> str:
    provider_id, day, start = key
    return _join_line([provider_id, day.isoformat(), format_time(start), BLOCKED_MARKER])


def parse_blocked_slot(line: str) -> SlotKey:
    """
    Parse a blocked-slot line.

    Raises:
        ValueError: If the line is malformed
    """
    fields = split_line(line)
    if len(fields) != 4 or fields[3].strip().upper() != BLOCKED_MARKER:
        raise ValueError(f"not a blocked-slot line: {line!r}")
    return (fields[0].strip(), date.fromisoformat(fields[1].strip()), parse_time(fields[2]))
