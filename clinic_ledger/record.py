"""Appointment entity and its outcome payload.

An AppointmentRecord owns its transition rules but never writes itself to the
store: every mutating method hands the request to the ledger, which performs
the locked read-modify-write and then the record refreshes itself from the
committed copy.
"""
import uuid
from datetime import date, time
from typing import List, Optional, TYPE_CHECKING

from pydantic import BaseModel, Field, field_validator

from clinic_ledger.errors import InvalidTransition, LedgerError, OperationResult
from clinic_ledger.status import (
    AppointmentStatus,
    VALID_TRANSITIONS,
    is_active,
    validate_transition,
)

if TYPE_CHECKING:
    from clinic_ledger.ledger import AppointmentLedger


DEFAULT_PRESCRIPTION_STATUS = "Prescribed"


def generate_appointment_id() -> str:
    """Generate a unique appointment ID."""
    return f"APT-{uuid.uuid4().hex[:12]}"


class PrescribedMedicine(BaseModel):
    """One prescribed medicine and its quantity."""
    name: str = Field(..., min_length=1, max_length=100)
    quantity: int = Field(..., ge=0)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        # ';' separates medicines on disk
        if ";" in v or "\n" in v or "\r" in v:
            raise ValueError("medicine name cannot contain ';' or line breaks")
        v = v.strip()
        if not v:
            raise ValueError("medicine name cannot be blank")
        return v


class AppointmentOutcome(BaseModel):
    """Result of a completed consultation."""
    service_type: str = Field(default="", max_length=200)
    consultation_notes: str = Field(default="", max_length=4000)
    medicines: List[PrescribedMedicine] = Field(default_factory=list)
    prescription_status: str = Field(default=DEFAULT_PRESCRIPTION_STATUS, max_length=50)

    @field_validator("service_type", "consultation_notes", "prescription_status")
    @classmethod
    def single_line(cls, v):
        if "\n" in v or "\r" in v:
            raise ValueError("line breaks are not allowed")
        return v


class AppointmentRecord:
    """One scheduled encounter between a patient and a provider."""

    def __init__(
        self,
        appointment_id: str,
        patient_id: int,
        provider_id: str,
        appointment_date: date,
        appointment_time: time,
        status: AppointmentStatus = AppointmentStatus.SCHEDULED,
        outcome: Optional[AppointmentOutcome] = None,
        ledger: Optional["AppointmentLedger"] = None
    ):
        self.appointment_id = appointment_id
        self.patient_id = patient_id
        self.provider_id = provider_id
        self.date = appointment_date
        self.time = appointment_time
        self.status = status
        self.outcome = outcome
        self._ledger = ledger

    # -- identity ---------------------------------------------------------

    @property
    def slot_key(self):
        return (self.provider_id, self.date, self.time)

    @property
    def is_active(self) -> bool:
        return is_active(self.status)

    def copy(self) -> "AppointmentRecord":
        """Detached copy sharing the ledger back-reference."""
        return AppointmentRecord(
            appointment_id=self.appointment_id,
            patient_id=self.patient_id,
            provider_id=self.provider_id,
            appointment_date=self.date,
            appointment_time=self.time,
            status=self.status,
            outcome=self.outcome.model_copy(deep=True) if self.outcome else None,
            ledger=self._ledger,
        )

    def attach(self, ledger: "AppointmentLedger") -> "AppointmentRecord":
        self._ledger = ledger
        return self

    def __eq__(self, other) -> bool:
        if not isinstance(other, AppointmentRecord):
            return NotImplemented
        return (
            self.appointment_id == other.appointment_id
            and self.patient_id == other.patient_id
            and self.provider_id == other.provider_id
            and self.date == other.date
            and self.time == other.time
            and self.status == other.status
            and self.outcome == other.outcome
        )

    def __hash__(self):
        return hash(self.appointment_id)

    def __repr__(self) -> str:
        return (
            f"<AppointmentRecord {self.appointment_id} patient={self.patient_id} "
            f"provider={self.provider_id} {self.date} {self.time:%H:%M} {self.status.value}>"
        )

    # -- transition rules -------------------------------------------------

    def can_transition_to(self, new_status: AppointmentStatus) -> bool:
        return validate_transition(self.status, new_status)

    def check_transition(self, new_status: AppointmentStatus) -> None:
        """
        Raise if ``new_status`` is not reachable from the current status.

        Raises:
            InvalidTransition: With the allowed targets in the message
        """
        if self.can_transition_to(new_status):
            return

        allowed = sorted(s.value for s in VALID_TRANSITIONS[self.status])
        if allowed:
            detail = f"allowed: {', '.join(allowed)}"
        else:
            detail = f"{self.status.value} is final"
        raise InvalidTransition(
            f"Cannot change appointment {self.appointment_id} from "
            f"{self.status.value} to {new_status.value} ({detail})"
        )

    def check_reschedulable(self) -> None:
        if not self.is_active:
            raise InvalidTransition(
                f"Cannot reschedule appointment {self.appointment_id}: it is {self.status.value}"
            )

    # Mutators below are called by the ledger on a working copy, inside its lock.

    def apply_status(self, new_status: AppointmentStatus) -> None:
        self.check_transition(new_status)
        self.status = new_status
        if new_status == AppointmentStatus.COMPLETED and self.outcome is None:
            self.outcome = AppointmentOutcome()

    def apply_reschedule(self, new_date: date, new_time: time) -> None:
        self.check_reschedulable()
        self.date = new_date
        self.time = new_time
        # Reschedule needs fresh approval from the provider
        self.status = AppointmentStatus.SCHEDULED

    def apply_outcome(self, outcome: AppointmentOutcome) -> None:
        """
        Attach a consultation outcome.

        Confirmed appointments move to Completed; Completed ones get their
        payload replaced. Anything else has not been seen by the provider.
        """
        if self.status not in (AppointmentStatus.CONFIRMED, AppointmentStatus.COMPLETED):
            raise InvalidTransition(
                f"Cannot record an outcome for appointment {self.appointment_id}: "
                f"it is {self.status.value}, it must be Confirmed first"
            )
        self.status = AppointmentStatus.COMPLETED
        self.outcome = outcome.model_copy(deep=True)

    def apply_prescription_status(self, prescription_status: str) -> None:
        if self.status != AppointmentStatus.COMPLETED or self.outcome is None:
            raise InvalidTransition(
                f"Appointment {self.appointment_id} has no completed outcome "
                f"(status {self.status.value})"
            )
        self.outcome = self.outcome.model_copy(update={"prescription_status": prescription_status})

    # -- caller-facing operations -----------------------------------------

    def confirm(self) -> OperationResult:
        return self._delegate(lambda ledger: ledger.respond_to_request(self.appointment_id, True))

    def reject(self) -> OperationResult:
        return self._delegate(lambda ledger: ledger.respond_to_request(self.appointment_id, False))

    def cancel(self) -> OperationResult:
        return self._delegate(lambda ledger: ledger.cancel(self.appointment_id))

    def set_status(self, new_status: AppointmentStatus) -> OperationResult:
        return self._delegate(lambda ledger: ledger.update_status(self.appointment_id, new_status))

    def reschedule(self, new_date: date, new_time: time) -> OperationResult:
        return self._delegate(lambda ledger: ledger.reschedule(self.appointment_id, new_date, new_time))

    def record_outcome(self, outcome: AppointmentOutcome) -> OperationResult:
        return self._delegate(lambda ledger: ledger.record_outcome(self.appointment_id, outcome))

    def set_prescription_status(self, prescription_status: str) -> OperationResult:
        return self._delegate(
            lambda ledger: ledger.update_prescription_status(self.appointment_id, prescription_status)
        )

    def outcome_summary(self) -> str:
        if self.status != AppointmentStatus.COMPLETED or self.outcome is None:
            return "No outcome record available as the appointment is not completed."
        return (
            f"Service Provided: {self.outcome.service_type}, "
            f"Consultation Notes: {self.outcome.consultation_notes}"
        )

    def to_dict(self) -> dict:
        data = {
            "appointment_id": self.appointment_id,
            "patient_id": self.patient_id,
            "provider_id": self.provider_id,
            "date": self.date.isoformat(),
            "time": self.time.strftime("%H:%M"),
            "status": self.status.value,
            "outcome": None,
        }
        if self.outcome is not None:
            data["outcome"] = self.outcome.model_dump(mode="json")
        return data

    def _delegate(self, operation) -> OperationResult:
        if self._ledger is None:
            return OperationResult.fail(LedgerError(
                f"Appointment {self.appointment_id} is not attached to a ledger"
            ))

        result = operation(self._ledger)
        if result.success and result.record is not None:
            self._refresh_from(result.record)
        return result

    def _refresh_from(self, committed: "AppointmentRecord") -> None:
        self.date = committed.date
        self.time = committed.time
        self.status = committed.status
        self.outcome = committed.outcome.model_copy(deep=True) if committed.outcome else None
