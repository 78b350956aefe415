"""Clinic appointment ledger.

Thread-safe scheduling of patient appointments on a fixed daily slot grid,
persisted to plain text files by whole-file atomic replacement.
"""
from clinic_ledger.errors import (
    InvalidTransition,
    LedgerError,
    NotFound,
    OperationResult,
    OutOfPolicy,
    SlotConflict,
    StoreIOFailure,
)
from clinic_ledger.ledger import AppointmentLedger
from clinic_ledger.record import AppointmentOutcome, AppointmentRecord, PrescribedMedicine
from clinic_ledger.slots import SlotCalendar, SlotStatus, TimeSlot
from clinic_ledger.status import AppointmentStatus
from clinic_ledger.store import (
    FileBlockedSlotStore,
    FileRecordStore,
    InMemoryBlockedSlotStore,
    InMemoryRecordStore,
)

__version__ = "0.1.0"

__all__ = [
    "AppointmentLedger",
    "AppointmentOutcome",
    "AppointmentRecord",
    "AppointmentStatus",
    "FileBlockedSlotStore",
    "FileRecordStore",
    "InMemoryBlockedSlotStore",
    "InMemoryRecordStore",
    "InvalidTransition",
    "LedgerError",
    "NotFound",
    "OperationResult",
    "OutOfPolicy",
    "PrescribedMedicine",
    "SlotCalendar",
    "SlotConflict",
    "SlotStatus",
    "StoreIOFailure",
    "TimeSlot",
]
