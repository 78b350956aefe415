"""Daily slot grid and time-of-day filtering.

The grid is a pure function of the date and the operating hours: the same
date always yields the same slots, with break-window slots pre-marked
UNAVAILABLE. Booking and blocking state is layered on top by the ledger.
"""
import datetime as dt
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel

from clinic_ledger.config import OperatingHours


class SlotStatus(str, Enum):
    """Availability of a single slot."""
    AVAILABLE = "AVAILABLE"
    UNAVAILABLE = "UNAVAILABLE"
    BOOKED = "BOOKED"


class TimeOfDay(str, Enum):
    """Time of day preferences."""
    MORNING = "morning"  # Before 12:00
    AFTERNOON = "afternoon"  # 12:00 and after
    ANY = "any"


class TimeSlot(BaseModel):
    """One fixed-width bookable unit on a provider's day."""
    date: dt.date
    start_time: dt.time
    end_time: dt.time
    status: SlotStatus = SlotStatus.AVAILABLE

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "start_time": self.start_time.strftime("%H:%M"),
            "end_time": self.end_time.strftime("%H:%M"),
            "status": self.status.value,
        }


class SlotCalendar:
    """Generates the daily grid and answers operating-hours questions."""

    MORNING_CUTOFF = 12  # 12:00 (noon)

    def __init__(self, hours: Optional[OperatingHours] = None):
        self.hours = hours or OperatingHours.from_config()

    @property
    def slot_width(self) -> timedelta:
        return timedelta(minutes=self.hours.slot_duration_minutes)

    def slot_end(self, start: time) -> time:
        """End time of the slot starting at ``start``."""
        return (datetime.combine(date.min, start) + self.slot_width).time()

    def generate_daily_slots(self, day: date) -> List[TimeSlot]:
        """
        Generate the ordered slot grid for a day.

        Args:
            day: Date to generate slots for

        Returns:
            Slots from opening to closing time; break-window slots UNAVAILABLE
        """
        slots = []
        current = datetime.combine(day, self.hours.open)
        closing = datetime.combine(day, self.hours.close)

        while current + self.slot_width <= closing:
            start = current.time()
            status = SlotStatus.UNAVAILABLE if self.is_break_time(start) else SlotStatus.AVAILABLE
            slots.append(TimeSlot(
                date=day,
                start_time=start,
                end_time=(current + self.slot_width).time(),
                status=status,
            ))
            current += self.slot_width

        return slots

    def is_within_operating_hours(self, value: time) -> bool:
        """True if a slot starting at ``value`` opens and ends inside hours."""
        if value < self.hours.open:
            return False
        end = datetime.combine(date.min, value) + self.slot_width
        return end <= datetime.combine(date.min, self.hours.close)

    def is_break_time(self, value: time) -> bool:
        """True if ``value`` falls inside the daily break window."""
        return self.hours.break_start <= value < self.hours.break_end

    def is_on_grid(self, value: time) -> bool:
        """True if ``value`` is exactly a slot boundary."""
        if value.second or value.microsecond:
            return False
        offset = (value.hour * 60 + value.minute) - (self.hours.open.hour * 60 + self.hours.open.minute)
        return offset >= 0 and offset % self.hours.slot_duration_minutes == 0

    def filter_by_time_of_day(
        self,
        slots: List[TimeSlot],
        preference: TimeOfDay
    ) -> List[TimeSlot]:
        """
        Filter slots by time of day preference.

        Args:
            slots: Slots to filter
            preference: Morning, afternoon, or any

        Returns:
            Filtered slots
        """
        if preference == TimeOfDay.ANY:
            return slots

        filtered = []
        for slot in slots:
            hour = slot.start_time.hour

            if preference == TimeOfDay.MORNING and hour < self.MORNING_CUTOFF:
                filtered.append(slot)
            elif preference == TimeOfDay.AFTERNOON and hour >= self.MORNING_CUTOFF:
                filtered.append(slot)

        return filtered

    @staticmethod
    def format_slots(slots: List[TimeSlot]) -> str:
        """
        Format slots as a fixed-width table for display.

        Example:
            | 2025-01-10 | 09:00 | 09:30 | AVAILABLE   |
        """
        if not slots:
            return "No slots."

        return "\n".join(
            f"| {slot.date.isoformat():<10} | {slot.start_time.strftime('%H:%M'):<5} | "
            f"{slot.end_time.strftime('%H:%M'):<5} | {slot.status.value:<11} |"
            for slot in slots
        )
