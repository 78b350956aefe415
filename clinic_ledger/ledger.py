"""AppointmentLedger: the single authority over appointment state.

Responsibilities:
- Load / reload every record and blocked slot from the stores
- Answer availability questions from a freshly reloaded view
- Run every mutation as one locked cycle:
  reload -> validate -> write whole store -> reload

Pattern: in-memory index rebuilt from the store on every reload, never
patched incrementally. The index is an immutable snapshot swapped in as a
single object, so readers never see a half-built index.
"""
import threading
from datetime import date, time
from typing import Callable, Dict, List, Optional, Set

from clinic_ledger.codec import SlotKey
from clinic_ledger.config import LedgerSettings
from clinic_ledger.directory import ProviderDirectory
from clinic_ledger.errors import (
    InvalidTransition,
    LedgerError,
    NotFound,
    OperationResult,
    OutOfPolicy,
    SlotConflict,
    StoreIOFailure,
)
from clinic_ledger.logging_config import get_logger
from clinic_ledger.record import AppointmentOutcome, AppointmentRecord, generate_appointment_id
from clinic_ledger.slots import SlotCalendar, SlotStatus, TimeSlot
from clinic_ledger.status import AppointmentStatus
from clinic_ledger.store import (
    BlockedSlotStore,
    FileBlockedSlotStore,
    FileRecordStore,
    InMemoryBlockedSlotStore,
    RecordStore,
)

logger = get_logger(__name__)


class LedgerIndex:
    """Snapshot of the stores at one reload."""

    __slots__ = ("records", "active_slots", "blocked")

    def __init__(
        self,
        records: Dict[str, AppointmentRecord],
        active_slots: Dict[SlotKey, str],
        blocked: Set[SlotKey]
    ):
        self.records = records
        self.active_slots = active_slots
        self.blocked = blocked


def _sort_key(record: AppointmentRecord):
    return (record.date, record.time, record.appointment_id)


class AppointmentLedger:
    """Owns the record map, the slot index and the persistence protocol."""

    def __init__(
        self,
        store: RecordStore,
        blocked_store: Optional[BlockedSlotStore] = None,
        calendar: Optional[SlotCalendar] = None,
        min_booking_date: Optional[date] = None,
        directory: Optional[ProviderDirectory] = None
    ):
        """
        Initialize the ledger and load the stores.

        Args:
            store: Appointment record repository
            blocked_store: Provider-blocked slot repository (in-memory if None)
            calendar: Slot grid and hours policy (default operating hours if None)
            min_booking_date: Earliest bookable date (today if None)
            directory: Provider directory; when given, unknown providers are rejected
        """
        self._store = store
        self._blocked_store = blocked_store if blocked_store is not None else InMemoryBlockedSlotStore()
        self.calendar = calendar or SlotCalendar()
        self._min_booking_date = min_booking_date
        self.directory = directory

        # Serializes every read-modify-write cycle
        self._lock = threading.RLock()

        self._index_lock = threading.Lock()
        self._index = LedgerIndex({}, {}, set())
        self._load_seq = 0
        self._index_seq = 0

        self.reload()

    @classmethod
    def from_settings(
        cls,
        settings: LedgerSettings,
        directory: Optional[ProviderDirectory] = None
    ) -> "AppointmentLedger":
        """Build a file-backed ledger from settings."""
        return cls(
            store=FileRecordStore(settings.record_path),
            blocked_store=FileBlockedSlotStore(settings.blocked_slots_path),
            calendar=SlotCalendar(settings.operating_hours),
            min_booking_date=settings.min_booking_date,
            directory=directory,
        )

    @property
    def min_booking_date(self) -> date:
        return self._min_booking_date or date.today()

    @property
    def records(self) -> Dict[str, AppointmentRecord]:
        """Last loaded ID -> record map (read-only view)."""
        return dict(self._index.records)

    # -- loading ----------------------------------------------------------

    def _build_index(self, records: List[AppointmentRecord], blocked: Set[SlotKey]) -> LedgerIndex:
        by_id: Dict[str, AppointmentRecord] = {}
        for record in records:
            by_id[record.appointment_id] = record.attach(self)

        active: Dict[SlotKey, str] = {}
        for record in by_id.values():
            if not record.is_active:
                continue
            holder = active.get(record.slot_key)
            if holder is not None:
                # Only reachable if something outside the ledger wrote the file
                logger.warning(
                    "double_booking_in_store",
                    provider_id=record.provider_id,
                    date=record.date.isoformat(),
                    time=record.time.strftime("%H:%M"),
                    kept=holder,
                    ignored=record.appointment_id
                )
                continue
            active[record.slot_key] = record.appointment_id

        return LedgerIndex(by_id, active, set(blocked))

    def _load_index(self) -> LedgerIndex:
        """
        Read both stores and swap in a new index.

        Raises:
            StoreIOFailure: If a store cannot be read; the old index stays
        """
        with self._index_lock:
            self._load_seq += 1
            seq = self._load_seq

        index = self._build_index(self._store.load(), self._blocked_store.load())

        with self._index_lock:
            # A slower, older load must not overwrite a newer snapshot
            if seq > self._index_seq:
                self._index = index
                self._index_seq = seq
        return index

    def reload(self) -> bool:
        """
        Rebuild the in-memory index from the stores.

        Returns:
            True on success; False if the stores could not be read, in which
            case the last-known-good index is kept
        """
        try:
            self._load_index()
        except StoreIOFailure as e:
            logger.error("reload_failed", error=e.message)
            return False
        return True

    def _current_index(self) -> LedgerIndex:
        """Fresh index for readers, falling back to the last good one."""
        try:
            return self._load_index()
        except StoreIOFailure as e:
            logger.error("reload_failed", error=e.message)
            return self._index

    # -- policy -----------------------------------------------------------

    def check_policy(self, day: date, start: time) -> None:
        """
        Reject dates and times no booking may use.

        Raises:
            OutOfPolicy: With the violated rule in the message
        """
        hours = self.calendar.hours
        if day < self.min_booking_date:
            raise OutOfPolicy(
                f"Appointments can only be booked on or after {self.min_booking_date.isoformat()}"
            )
        if not self.calendar.is_within_operating_hours(start):
            raise OutOfPolicy(
                f"{start.strftime('%H:%M')} is outside operating hours "
                f"({hours.open.strftime('%H:%M')} to {hours.close.strftime('%H:%M')}, "
                f"last slot must end by closing)"
            )
        if self.calendar.is_break_time(start):
            raise OutOfPolicy(
                f"{start.strftime('%H:%M')} falls in the break "
                f"({hours.break_start.strftime('%H:%M')} - {hours.break_end.strftime('%H:%M')})"
            )
        if not self.calendar.is_on_grid(start):
            raise OutOfPolicy(
                f"{start.strftime('%H:%M')} is not a slot start; slots are "
                f"{hours.slot_duration_minutes} minutes from {hours.open.strftime('%H:%M')}"
            )

    def _check_provider(self, provider_id: str) -> None:
        if self.directory is not None and not self.directory.has_provider(provider_id):
            raise NotFound(f"Provider {provider_id} not found")

    @staticmethod
    def _require(index: LedgerIndex, appointment_id: str) -> AppointmentRecord:
        record = index.records.get(appointment_id)
        if record is None:
            raise NotFound(f"Appointment {appointment_id} not found")
        return record

    @staticmethod
    def _check_slot_free(
        index: LedgerIndex,
        key: SlotKey,
        exclude_id: Optional[str] = None
    ) -> None:
        provider_id, day, start = key
        holder = index.active_slots.get(key)
        if holder is not None and holder != exclude_id:
            raise SlotConflict(
                f"Slot {day.isoformat()} {start.strftime('%H:%M')} with provider "
                f"{provider_id} is already booked",
                holder_id=holder
            )
        if key in index.blocked:
            raise SlotConflict(
                f"Slot {day.isoformat()} {start.strftime('%H:%M')} has been marked "
                f"unavailable by provider {provider_id}"
            )

    # -- persistence ------------------------------------------------------

    def _commit(
        self,
        index: LedgerIndex,
        upsert: Optional[AppointmentRecord] = None,
        remove_id: Optional[str] = None
    ) -> Optional[AppointmentRecord]:
        """
        Write a new store generation and reload.

        Must be called with ``self._lock`` held and ``index`` freshly loaded.

        Returns:
            Committed copy of ``upsert`` from the reloaded index

        Raises:
            StoreIOFailure: If the write fails, or ``upsert`` does not read
                back from the new generation
        """
        records = []
        replaced = False
        for record in index.records.values():
            if record.appointment_id == remove_id:
                continue
            if upsert is not None and record.appointment_id == upsert.appointment_id:
                records.append(upsert)
                replaced = True
            else:
                records.append(record)
        if upsert is not None and not replaced:
            records.append(upsert)

        self._store.save(records)
        new_index = self._load_index()

        if upsert is None:
            return None
        committed = new_index.records.get(upsert.appointment_id)
        if committed is None:
            raise StoreIOFailure(
                f"Appointment {upsert.appointment_id} was written but could not be read back"
            )
        return committed

    def _release_block(self, key: SlotKey) -> None:
        """Drop ``key`` from the blocked-slot store if it is held there."""
        blocked = self._blocked_store.load()
        if key not in blocked:
            return
        blocked.discard(key)
        self._blocked_store.save(blocked)
        self._load_index()

    def _release_after_commit(self, key: SlotKey, appointment_id: str) -> None:
        # The appointment change is already committed; a failure here leaves a
        # stale block (slot stays closed), never a double booking.
        try:
            self._release_block(key)
        except StoreIOFailure as e:
            logger.error(
                "slot_release_failed",
                appointment_id=appointment_id,
                provider_id=key[0],
                date=key[1].isoformat(),
                time=key[2].strftime("%H:%M"),
                error=e.message
            )

    @staticmethod
    def _rejected(event: str, error: LedgerError, context: dict) -> OperationResult:
        if isinstance(error, SlotConflict):
            logger.info("slot_conflict", operation=event, reason=error.message, **context)
        elif isinstance(error, StoreIOFailure):
            logger.error("operation_failed", operation=event, reason=error.message, **context)
        else:
            logger.info("operation_rejected", operation=event, code=error.code, reason=error.message, **context)
        return OperationResult.fail(error)

    def _run(self, event: str, body: Callable[[], Optional[AppointmentRecord]], **context) -> OperationResult:
        """Run ``body`` under the ledger lock and turn errors into a result."""
        with self._lock:
            try:
                record = body()
            except LedgerError as e:
                return self._rejected(event, e, context)

        if record is not None:
            context.setdefault("appointment_id", record.appointment_id)
        logger.info(event, **context)
        return OperationResult.ok(record)

    # -- mutations --------------------------------------------------------

    def schedule(
        self,
        patient_id: int,
        provider_id: str,
        appointment_date: date,
        appointment_time: time
    ) -> OperationResult:
        """
        Book a new appointment.

        Availability check, append and persist happen in one critical
        section, so two concurrent calls for the same slot cannot both win.

        Args:
            patient_id: Patient identifier
            provider_id: Provider identifier
            appointment_date: Date of the appointment
            appointment_time: Slot start time

        Returns:
            OperationResult with the new Scheduled record, or SlotConflict /
            OutOfPolicy / NotFound / StoreIOFailure
        """
        context = {
            "patient_id": patient_id,
            "provider_id": provider_id,
            "date": appointment_date.isoformat(),
            "time": appointment_time.strftime("%H:%M"),
        }
        try:
            self.check_policy(appointment_date, appointment_time)
            self._check_provider(provider_id)
        except LedgerError as e:
            return self._rejected("appointment_scheduled", e, context)

        def body():
            index = self._load_index()
            key = (provider_id, appointment_date, appointment_time)
            self._check_slot_free(index, key)

            record = AppointmentRecord(
                appointment_id=generate_appointment_id(),
                patient_id=patient_id,
                provider_id=provider_id,
                appointment_date=appointment_date,
                appointment_time=appointment_time,
                ledger=self,
            )
            return self._commit(index, upsert=record)

        return self._run("appointment_scheduled", body, **context)

    def update_status(self, appointment_id: str, new_status: AppointmentStatus) -> OperationResult:
        """
        Move an appointment along the transition table.

        Cancelling through here releases the held slot like ``cancel``.
        """
        def body():
            index = self._load_index()
            current = self._require(index, appointment_id)
            updated = current.copy()
            updated.apply_status(new_status)
            committed = self._commit(index, upsert=updated)
            if new_status == AppointmentStatus.CANCELLED:
                self._release_after_commit(current.slot_key, appointment_id)
            return committed

        return self._run(
            "appointment_status_updated", body,
            appointment_id=appointment_id, new_status=new_status.value
        )

    def respond_to_request(self, appointment_id: str, accept: bool) -> OperationResult:
        """
        Provider decision on a Scheduled appointment: confirm or reject.

        Rejecting cancels the request and frees its slot. Only Scheduled
        appointments can be rejected; a Confirmed one is cancelled instead.
        """
        if accept:
            return self.update_status(appointment_id, AppointmentStatus.CONFIRMED)
        return self._run(
            "appointment_rejected",
            lambda: self._cancel_body(appointment_id, "reject", (AppointmentStatus.SCHEDULED,)),
            appointment_id=appointment_id
        )

    def cancel(self, appointment_id: str) -> OperationResult:
        """
        Cancel an active appointment and free its slot.

        Cancelling a Completed or Cancelled appointment fails with
        InvalidTransition and changes nothing.
        """
        return self._run(
            "appointment_cancelled",
            lambda: self._cancel_body(
                appointment_id, "cancel",
                (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED)
            ),
            appointment_id=appointment_id
        )

    def _cancel_body(self, appointment_id: str, verb: str, allowed) -> AppointmentRecord:
        index = self._load_index()
        current = self._require(index, appointment_id)
        if current.status not in allowed:
            raise InvalidTransition(
                f"Cannot {verb} appointment {appointment_id}: it is {current.status.value}"
            )
        updated = current.copy()
        updated.apply_status(AppointmentStatus.CANCELLED)
        committed = self._commit(index, upsert=updated)
        self._release_after_commit(current.slot_key, appointment_id)
        return committed

    def reschedule(
        self,
        appointment_id: str,
        new_date: date,
        new_time: time
    ) -> OperationResult:
        """
        Move an active appointment to another slot.

        Checks, in order: booking policy, appointment status, target slot
        availability against the freshly reloaded store. On success the old
        slot is released and the appointment goes back to Scheduled. Any
        failure leaves the stored record untouched.
        """
        context = {
            "appointment_id": appointment_id,
            "date": new_date.isoformat(),
            "time": new_time.strftime("%H:%M"),
        }
        try:
            self.check_policy(new_date, new_time)
        except OutOfPolicy as e:
            return self._rejected("appointment_rescheduled", e, context)

        def body():
            index = self._load_index()
            current = self._require(index, appointment_id)
            current.check_reschedulable()

            old_key = current.slot_key
            new_key = (current.provider_id, new_date, new_time)
            if new_key != old_key:
                self._check_slot_free(index, new_key, exclude_id=appointment_id)

            updated = current.copy()
            updated.apply_reschedule(new_date, new_time)
            committed = self._commit(index, upsert=updated)
            self._release_after_commit(old_key, appointment_id)
            return committed

        return self._run("appointment_rescheduled", body, **context)

    def record_outcome(self, appointment_id: str, outcome: AppointmentOutcome) -> OperationResult:
        """
        Record the consultation outcome.

        Confirmed appointments become Completed. Recording again on a
        Completed appointment replaces the payload; the latest call wins.
        """
        def body():
            index = self._load_index()
            updated = self._require(index, appointment_id).copy()
            updated.apply_outcome(outcome)
            return self._commit(index, upsert=updated)

        return self._run("outcome_recorded", body, appointment_id=appointment_id)

    def update_prescription_status(self, appointment_id: str, prescription_status: str) -> OperationResult:
        """Set the fulfillment status of a Completed appointment's prescription."""
        def body():
            index = self._load_index()
            updated = self._require(index, appointment_id).copy()
            updated.apply_prescription_status(prescription_status)
            return self._commit(index, upsert=updated)

        return self._run(
            "prescription_status_updated", body,
            appointment_id=appointment_id, prescription_status=prescription_status
        )

    def update_record(self, record: AppointmentRecord) -> OperationResult:
        """
        Upsert ``record`` as-is: replace the stored line with the same ID or
        append a new one.

        An active record may not take a slot another active record holds.
        """
        def body():
            index = self._load_index()
            if record.is_active:
                holder = index.active_slots.get(record.slot_key)
                if holder is not None and holder != record.appointment_id:
                    raise SlotConflict(
                        f"Slot {record.date.isoformat()} {record.time.strftime('%H:%M')} with "
                        f"provider {record.provider_id} is already booked",
                        holder_id=holder
                    )
            return self._commit(index, upsert=record.copy().attach(self))

        return self._run("appointment_upserted", body, appointment_id=record.appointment_id)

    def remove_record(self, appointment_id: str) -> OperationResult:
        """Delete an appointment from the store entirely (not a cancellation)."""
        def body():
            index = self._load_index()
            removed = self._require(index, appointment_id)
            self._commit(index, remove_id=appointment_id)
            return removed

        return self._run("appointment_removed", body, appointment_id=appointment_id)

    def block_slot(self, provider_id: str, day: date, start: time) -> OperationResult:
        """Mark a slot unavailable for booking on the provider's calendar."""
        context = {
            "provider_id": provider_id,
            "date": day.isoformat(),
            "time": start.strftime("%H:%M"),
        }

        def body():
            if not self.calendar.is_within_operating_hours(start) or not self.calendar.is_on_grid(start):
                raise OutOfPolicy(f"{start.strftime('%H:%M')} is not a slot on the daily grid")
            if self.calendar.is_break_time(start):
                raise OutOfPolicy(f"{start.strftime('%H:%M')} is already unavailable (break)")
            self._check_provider(provider_id)

            blocked = self._blocked_store.load()
            blocked.add((provider_id, day, start))
            self._blocked_store.save(blocked)
            self._load_index()
            return None

        return self._run("slot_blocked", body, **context)

    def release_slot(self, provider_id: str, day: date, start: time) -> OperationResult:
        """Reopen a slot the provider blocked."""
        key = (provider_id, day, start)

        def body():
            blocked = self._blocked_store.load()
            if key not in blocked:
                raise NotFound(
                    f"Slot {day.isoformat()} {start.strftime('%H:%M')} is not blocked for provider {provider_id}"
                )
            self._release_block(key)
            return None

        return self._run(
            "slot_released", body,
            provider_id=provider_id, date=day.isoformat(), time=start.strftime("%H:%M")
        )

    # -- queries ----------------------------------------------------------

    def is_slot_available(self, provider_id: str, day: date, start: time) -> bool:
        """True iff no Scheduled/Confirmed appointment holds the slot."""
        index = self._current_index()
        return (provider_id, day, start) not in index.active_slots

    def get(self, appointment_id: str) -> Optional[AppointmentRecord]:
        return self._current_index().records.get(appointment_id)

    def list_by_patient(self, patient_id: int) -> List[AppointmentRecord]:
        index = self._current_index()
        return sorted(
            (r for r in index.records.values() if r.patient_id == patient_id),
            key=_sort_key
        )

    def list_by_provider(self, provider_id: str) -> List[AppointmentRecord]:
        index = self._current_index()
        wanted = provider_id.lower()
        return sorted(
            (r for r in index.records.values() if r.provider_id.lower() == wanted),
            key=_sort_key
        )

    def list_upcoming_by_provider(self, provider_id: str) -> List[AppointmentRecord]:
        """Scheduled and Confirmed appointments for a provider."""
        return [r for r in self.list_by_provider(provider_id) if r.is_active]

    def list_completed_by_patient(self, patient_id: int) -> List[AppointmentRecord]:
        """Completed appointments, e.g. for prescription dispensing."""
        return [
            r for r in self.list_by_patient(patient_id)
            if r.status == AppointmentStatus.COMPLETED
        ]

    def daily_schedule(self, provider_id: str, day: date) -> List[TimeSlot]:
        """
        Provider's grid for a day with booking state applied.

        Returns:
            Every slot; BOOKED where an active appointment holds it,
            UNAVAILABLE for the break and provider-blocked slots
        """
        index = self._current_index()
        slots = self.calendar.generate_daily_slots(day)

        for slot in slots:
            key = (provider_id, day, slot.start_time)
            if key in index.active_slots:
                slot.status = SlotStatus.BOOKED
            elif key in index.blocked:
                slot.status = SlotStatus.UNAVAILABLE

        return slots

    def list_available(self, provider_id: str, day: date) -> List[TimeSlot]:
        """Slots a patient could book right now."""
        if day < self.min_booking_date:
            return []
        return [
            slot for slot in self.daily_schedule(provider_id, day)
            if slot.status == SlotStatus.AVAILABLE
        ]
