"""Pydantic models for API request/response validation."""
import datetime as dt
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from clinic_ledger.slots import TimeOfDay


def _parse_start_time(v):
    # Only HH:MM is accepted on the wire
    if isinstance(v, str):
        return dt.datetime.strptime(v.strip(), "%H:%M").time()
    return v


class SlotRequest(BaseModel):
    """A (date, start_time) pair addressing one slot."""
    date: dt.date = Field(..., description="Slot date (YYYY-MM-DD)")
    start_time: dt.time = Field(..., description="Slot start (HH:MM)")

    @field_validator("start_time", mode="before")
    @classmethod
    def parse_start_time(cls, v):
        return _parse_start_time(v)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"date": "2025-01-15", "start_time": "10:00"}
        }
    )


class ScheduleRequest(SlotRequest):
    """Request schema for POST /appointments."""
    patient_id: int = Field(..., ge=0, description="Patient identifier")
    provider_id: str = Field(..., min_length=1, max_length=50, description="Provider identifier")

    @field_validator("provider_id")
    @classmethod
    def validate_provider_id(cls, v):
        if "\n" in v or "\r" in v:
            raise ValueError("provider_id cannot contain line breaks")
        return v.strip()

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "patient_id": 1001,
                "provider_id": "D001",
                "date": "2025-01-15",
                "start_time": "10:00"
            }
        }
    )


class RescheduleRequest(SlotRequest):
    """Request schema for PUT /appointments/<id>/reschedule."""


class ProviderResponseRequest(BaseModel):
    """Provider's decision on a Scheduled appointment."""
    accept: bool = Field(..., description="True to confirm, False to reject")


class PrescriptionStatusRequest(BaseModel):
    prescription_status: str = Field(..., min_length=1, max_length=50)

    @field_validator("prescription_status")
    @classmethod
    def single_line(cls, v):
        if "\n" in v or "\r" in v:
            raise ValueError("line breaks are not allowed")
        return v.strip()


class AvailabilityQuery(BaseModel):
    """Query string for GET /providers/<id>/availability."""
    date: dt.date
    time_of_day: TimeOfDay = TimeOfDay.ANY
    available_only: bool = False


class ErrorResponse(BaseModel):
    """Error response schema."""
    success: bool = False
    error: str = Field(..., description="Error message")
    code: Optional[str] = Field(None, description="Error code")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "success": False,
                "error": "Slot 2025-01-15 10:00 with provider D001 is already booked",
                "code": "SLOT_CONFLICT"
            }
        }
    )
