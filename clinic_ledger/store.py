"""Record stores: the ledger's only I/O dependency.

Handles:
- Loading every record (or blocked slot) from a line-oriented file
- Saving a complete new generation of the file via temp file + os.replace
- Carrying lines the codec cannot read over into every new generation
- In-memory stand-ins with the same contract for tests and embedding

Readers never observe a half-written file: a save either replaces the whole
file or leaves the previous version in place.
"""
import contextlib
import os
import tempfile
import threading
from pathlib import Path
from typing import Callable, Iterable, List, Set, Tuple, TypeVar, Union

from clinic_ledger import codec
from clinic_ledger.codec import SlotKey
from clinic_ledger.errors import StoreIOFailure
from clinic_ledger.logging_config import get_logger
from clinic_ledger.record import AppointmentRecord

logger = get_logger(__name__)

T = TypeVar("T")


def read_lines(path: Path) -> List[str]:
    """
    Read non-blank lines from a store file.

    A missing file is an empty store.

    Raises:
        StoreIOFailure: If the file exists but cannot be read or is not UTF-8
    """
    if not path.exists():
        return []

    try:
        with open(path, 'r', encoding='utf-8', newline='') as f:
            return [line.rstrip("\r\n") for line in f if line.strip()]
    except (OSError, UnicodeDecodeError) as e:
        raise StoreIOFailure(f"Could not read {path}: {e}") from e


def atomic_write_lines(path: Path, lines: Iterable[str]) -> None:
    """
    Write a complete new version of ``path``.

    The lines go to a temp file in the same directory, which is fsynced and
    then renamed over the original.

    Raises:
        StoreIOFailure: If any step fails; the original file is untouched
    """
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{path.name}.",
            suffix=".tmp",
            dir=path.parent
        )
        with os.fdopen(fd, 'w', encoding='utf-8', newline='') as f:
            for line in lines:
                f.write(line + "\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except OSError as e:
        if tmp_name is not None:
            with contextlib.suppress(OSError):
                os.unlink(tmp_name)
        logger.error("store_write_failed", path=str(path), error=str(e))
        raise StoreIOFailure(f"Could not write {path}: {e}") from e


def _partition(lines: List[str], parse: Callable[[str], T]) -> Tuple[List[T], List[Tuple[int, str, str]]]:
    """Split lines into parsed values and (line_number, line, error) leftovers."""
    parsed = []
    unparsed = []
    for line_number, line in enumerate(lines, start=1):
        try:
            parsed.append(parse(line))
        except ValueError as e:
            unparsed.append((line_number, line, str(e)))
    return parsed, unparsed


def _parse_records(lines: List[str], source: str) -> List[AppointmentRecord]:
    records, unparsed = _partition(lines, codec.parse_record)
    for line_number, _, error in unparsed:
        logger.warning(
            "malformed_record_skipped",
            source=source,
            line_number=line_number,
            error=error
        )
    return records


def _parse_blocked(lines: List[str], source: str) -> Set[SlotKey]:
    keys, unparsed = _partition(lines, codec.parse_blocked_slot)
    for line_number, _, error in unparsed:
        logger.warning(
            "malformed_blocked_slot_skipped",
            source=source,
            line_number=line_number,
            error=error
        )
    return set(keys)


def _unparsed_lines(lines: List[str], parse: Callable[[str], T], source: str) -> List[str]:
    """Lines the codec cannot read; a save writes them back unchanged."""
    _, unparsed = _partition(lines, parse)
    if unparsed:
        logger.warning("malformed_lines_preserved", source=source, count=len(unparsed))
    return [line for _, line, _ in unparsed]


def _sorted_blocked_lines(keys: Iterable[SlotKey]) -> List[str]:
    return [codec.serialize_blocked_slot(key) for key in sorted(keys)]


class RecordStore:
    """Repository for appointment records.

    Contract:
        load() returns every stored record, in store order
        save(records) replaces the whole store with ``records``; lines that
            load() could not parse are written back unchanged
    """

    def load(self) -> List[AppointmentRecord]:
        raise NotImplementedError

    def save(self, records: List[AppointmentRecord]) -> None:
        raise NotImplementedError


class FileRecordStore(RecordStore):
    """Line-per-record text file."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> List[AppointmentRecord]:
        return _parse_records(read_lines(self.path), str(self.path))

    def save(self, records: List[AppointmentRecord]) -> None:
        kept = _unparsed_lines(read_lines(self.path), codec.parse_record, str(self.path))
        atomic_write_lines(self.path, [codec.serialize_record(r) for r in records] + kept)

    def __repr__(self) -> str:
        return f"<FileRecordStore {self.path}>"


class InMemoryRecordStore(RecordStore):
    """Keeps serialized lines in memory, so records round-trip like on disk."""

    def __init__(self, records: Iterable[AppointmentRecord] = ()):
        self._lines = [codec.serialize_record(r) for r in records]
        self._lock = threading.Lock()

    @property
    def lines(self) -> List[str]:
        with self._lock:
            return list(self._lines)

    def load(self) -> List[AppointmentRecord]:
        return _parse_records(self.lines, "memory")

    def save(self, records: List[AppointmentRecord]) -> None:
        new_lines = [codec.serialize_record(r) for r in records]
        with self._lock:
            kept = _unparsed_lines(self._lines, codec.parse_record, "memory")
            self._lines = new_lines + kept


class BlockedSlotStore:
    """Repository for slots a provider explicitly marked unavailable.

    Contract:
        load() returns the set of (provider_id, date, time) keys
        save(keys) replaces the whole store with ``keys``
    """

    def load(self) -> Set[SlotKey]:
        raise NotImplementedError

    def save(self, keys: Set[SlotKey]) -> None:
        raise NotImplementedError


class FileBlockedSlotStore(BlockedSlotStore):

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> Set[SlotKey]:
        return _parse_blocked(read_lines(self.path), str(self.path))

    def save(self, keys: Set[SlotKey]) -> None:
        kept = _unparsed_lines(read_lines(self.path), codec.parse_blocked_slot, str(self.path))
        atomic_write_lines(self.path, _sorted_blocked_lines(keys) + kept)

    def __repr__(self) -> str:
        return f"<FileBlockedSlotStore {self.path}>"


class InMemoryBlockedSlotStore(BlockedSlotStore):

    def __init__(self, keys: Iterable[SlotKey] = ()):
        self._lines = _sorted_blocked_lines(keys)
        self._lock = threading.Lock()

    def load(self) -> Set[SlotKey]:
        with self._lock:
            lines = list(self._lines)
        return _parse_blocked(lines, "memory")

    def save(self, keys: Set[SlotKey]) -> None:
        new_lines = _sorted_blocked_lines(keys)
        with self._lock:
            kept = _unparsed_lines(self._lines, codec.parse_blocked_slot, "memory")
            self._lines = new_lines + kept
