"""Configuration for the appointment ledger.

All business rules centralized here - operating hours, booking policy and data
file locations. Defaults can be overridden per deployment through
``CLINIC_LEDGER_*`` environment variables (a ``.env`` file is honoured).
"""
import os
from datetime import date, datetime, time
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator


OPERATING_HOURS = {
    "open": "09:00",
    "close": "17:00",
    "slot_duration_minutes": 30,
    "break": {
        "start": "13:00",
        "end": "14:00"
    }
}

DEFAULT_PROVIDERS = [
    {"provider_id": "D001", "name": "Dr. Garcia", "specialization": "General Practice"},
    {"provider_id": "D002", "name": "Dr. Chen", "specialization": "Cardiology"},
]

RECORD_FILE_NAME = "appointments.txt"
BLOCKED_SLOTS_FILE_NAME = "unavailable_slots.txt"

API_HOST = "0.0.0.0"
API_PORT = 5000


def _parse_hhmm(value) -> time:
    if isinstance(value, time):
        return value
    return datetime.strptime(value, "%H:%M").time()


def _minutes(value: time) -> int:
    return value.hour * 60 + value.minute


class OperatingHours(BaseModel):
    """Daily grid a provider can be booked on."""
    open: time = Field(..., description="First bookable slot start")
    close: time = Field(..., description="Time the last slot must end by")
    slot_duration_minutes: int = Field(30, gt=0, le=240, description="Slot width")
    break_start: time = Field(..., description="Start of the daily break (inclusive)")
    break_end: time = Field(..., description="End of the daily break (exclusive)")

    @field_validator("open", "close", "break_start", "break_end", mode="before")
    @classmethod
    def parse_time(cls, v):
        return _parse_hhmm(v)

    @model_validator(mode="after")
    def check_grid(self):
        """Reject grids that cannot produce a consistent day."""
        if self.open >= self.close:
            raise ValueError("open must be before close")
        if not (self.open <= self.break_start < self.break_end <= self.close):
            raise ValueError("break window must sit inside operating hours")
        day_length = _minutes(self.close) - _minutes(self.open)
        if day_length % self.slot_duration_minutes:
            raise ValueError("slot duration must divide the operating day evenly")
        return self

    @classmethod
    def from_config(cls, hours: Optional[dict] = None) -> "OperatingHours":
        """Build from an ``OPERATING_HOURS``-shaped dict."""
        hours = hours or OPERATING_HOURS
        return cls(
            open=hours["open"],
            close=hours["close"],
            slot_duration_minutes=hours["slot_duration_minutes"],
            break_start=hours["break"]["start"],
            break_end=hours["break"]["end"],
        )


class LedgerSettings(BaseModel):
    """Runtime settings for a ledger deployment."""
    data_dir: Path = Field(default=Path("data"), description="Directory holding the store files")
    record_file: str = Field(default=RECORD_FILE_NAME)
    blocked_slots_file: str = Field(default=BLOCKED_SLOTS_FILE_NAME)
    min_booking_date: Optional[date] = Field(
        default=None,
        description="Earliest bookable date (None means today)"
    )
    operating_hours: OperatingHours = Field(default_factory=OperatingHours.from_config)
    providers_file: Optional[str] = Field(
        default=None,
        description="JSON provider directory inside data_dir (optional)"
    )
    api_host: str = Field(default=API_HOST)
    api_port: int = Field(default=API_PORT, gt=0, lt=65536)
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return v

    @property
    def record_path(self) -> Path:
        return self.data_dir / self.record_file

    @property
    def blocked_slots_path(self) -> Path:
        return self.data_dir / self.blocked_slots_file

    @property
    def providers_path(self) -> Optional[Path]:
        if not self.providers_file:
            return None
        return self.data_dir / self.providers_file

    def effective_min_booking_date(self) -> date:
        """Minimum bookable date, falling back to today."""
        return self.min_booking_date or date.today()

    @classmethod
    def from_env(cls) -> "LedgerSettings":
        """
        Load settings from environment variables.

        Recognised variables:
            CLINIC_LEDGER_DATA_DIR, CLINIC_LEDGER_RECORD_FILE,
            CLINIC_LEDGER_BLOCKED_SLOTS_FILE, CLINIC_LEDGER_PROVIDERS_FILE,
            CLINIC_LEDGER_MIN_BOOKING_DATE (YYYY-MM-DD),
            CLINIC_LEDGER_API_HOST, CLINIC_LEDGER_API_PORT,
            CLINIC_LEDGER_LOG_LEVEL

        Returns:
            LedgerSettings with unset variables left at their defaults
        """
        load_dotenv()

        env_map = {
            "data_dir": "CLINIC_LEDGER_DATA_DIR",
            "record_file": "CLINIC_LEDGER_RECORD_FILE",
            "blocked_slots_file": "CLINIC_LEDGER_BLOCKED_SLOTS_FILE",
            "providers_file": "CLINIC_LEDGER_PROVIDERS_FILE",
            "min_booking_date": "CLINIC_LEDGER_MIN_BOOKING_DATE",
            "api_host": "CLINIC_LEDGER_API_HOST",
            "api_port": "CLINIC_LEDGER_API_PORT",
            "log_level": "CLINIC_LEDGER_LOG_LEVEL",
        }
        values = {}
        for field_name, env_name in env_map.items():
            raw = os.getenv(env_name)
            if raw:
                values[field_name] = raw

        return cls(**values)
