"""Error taxonomy for ledger operations.

Every failure a caller can observe is one of these classes. They are raised
inside the ledger and recovered at its boundary into ``OperationResult`` so
interactive callers always get a specific reason instead of a crash.
"""
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from clinic_ledger.record import AppointmentRecord


class LedgerError(Exception):
    """Base class for every ledger failure."""
    code = "LEDGER_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class SlotConflict(LedgerError):
    """Requested (provider, date, time) is already held or blocked."""
    code = "SLOT_CONFLICT"

    def __init__(self, message: str, holder_id: Optional[str] = None):
        super().__init__(message)
        self.holder_id = holder_id


class InvalidTransition(LedgerError):
    """Requested status change is not allowed from the current status."""
    code = "INVALID_TRANSITION"


class OutOfPolicy(LedgerError):
    """Date or time violates the booking policy."""
    code = "OUT_OF_POLICY"


class NotFound(LedgerError):
    """Referenced appointment ID is absent from the store."""
    code = "NOT_FOUND"


class StoreIOFailure(LedgerError):
    """Reading, writing or replacing a store file failed."""
    code = "STORE_IO_FAILURE"


class OperationResult:
    """Outcome of a ledger operation.

    Attributes:
        success: True if the operation committed
        record: Affected record (fresh copy from the store) on success
        error: Typed error on failure
    """

    def __init__(
        self,
        success: bool,
        record: Optional["AppointmentRecord"] = None,
        error: Optional[LedgerError] = None
    ):
        self.success = success
        self.record = record
        self.error = error

    @classmethod
    def ok(cls, record: Optional["AppointmentRecord"] = None) -> "OperationResult":
        return cls(True, record=record)

    @classmethod
    def fail(cls, error: LedgerError) -> "OperationResult":
        return cls(False, error=error)

    @property
    def reason(self) -> Optional[str]:
        """Human-readable reason for a failure."""
        return self.error.message if self.error else None

    @property
    def code(self) -> Optional[str]:
        return self.error.code if self.error else None

    def unwrap(self) -> Optional["AppointmentRecord"]:
        """Return the record, re-raising the error if the operation failed."""
        if self.error is not None:
            raise self.error
        return self.record

    def __bool__(self) -> bool:
        return self.success

    def __repr__(self) -> str:
        if self.success:
            return f"<OperationResult ok record={getattr(self.record, 'appointment_id', None)}>"
        return f"<OperationResult failed {self.code}: {self.reason}>"
