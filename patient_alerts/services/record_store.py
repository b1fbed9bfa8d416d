"""
Concurrent per-patient record repository.

Key patterns:
- Shared-read / exclusive-write locking around a plain dict
- Snapshot reads: callers never see a live view of store internals
- Explicit construction, no module-level singleton
"""

import threading
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager

import structlog

from patient_alerts.domain.errors import InvalidRangeError
from patient_alerts.domain.models import Patient, PatientRecord

logger = structlog.get_logger(__name__)

RecordListener = Callable[[PatientRecord], None]


class ReadWriteLock:
    """
    Many concurrent readers or one writer.

    Writers are preferred once waiting: new readers queue behind a pending
    writer so a busy evaluation loop cannot starve ingestion.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            self._waiting_writers += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._waiting_writers -= 1
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


class RecordStore:
    """
    Process-scoped store mapping patient id to Patient.

    Patients are created lazily on their first record. Records are append-only
    and may arrive out of timestamp order; rules that need ordering sort their
    own copy.
    """

    def __init__(self) -> None:
        self._patients: dict[int, Patient] = {}
        self._lock = ReadWriteLock()
        self._listeners: list[RecordListener] = []
        self.logger = logger.bind(component="record_store")

    def add_listener(self, listener: RecordListener) -> None:
        """Register a callback invoked with every accepted record."""
        self._listeners.append(listener)

    def add_record(
        self, patient_id: int, value: float, record_type: str, timestamp: int
    ) -> PatientRecord:
        """Append one record, creating the patient if absent."""
        record = PatientRecord(
            patient_id=patient_id, record_type=record_type, value=value, timestamp=timestamp
        )
        with self._lock.write_locked():
            self._append(record)
        self._notify([record])
        return record

    def add_records(self, records: Iterable[PatientRecord]) -> int:
        """Append a batch of records under a single write-lock acquisition."""
        batch = list(records)
        with self._lock.write_locked():
            accepted = [self._append(record) for record in batch]
        self._notify(accepted)
        self.logger.debug("records_added", count=len(accepted))
        return len(accepted)

    def get_records(self, patient_id: int, start: int, end: int) -> list[PatientRecord]:
        """
        Records for one patient with start <= timestamp <= end, in store order.

        Raises:
            InvalidRangeError: if start > end.
        """
        with self._lock.read_locked():
            patient = self._patients.get(patient_id)
            if patient is None:
                if start > end:
                    raise InvalidRangeError(start, end)
                return []
            return patient.get_records(start, end)

    def get_patient(self, patient_id: int) -> Patient | None:
        with self._lock.read_locked():
            patient = self._patients.get(patient_id)
            return patient.snapshot() if patient is not None else None

    def get_all_patients(self) -> list[Patient]:
        """Snapshot copies of every patient, not live views."""
        with self._lock.read_locked():
            return [patient.snapshot() for patient in self._patients.values()]

    def patient_ids(self) -> list[int]:
        with self._lock.read_locked():
            return list(self._patients)

    def record_count(self) -> int:
        with self._lock.read_locked():
            return sum(len(p.records) for p in self._patients.values())

    def clear(self) -> None:
        """Remove all patients. Used for test isolation and stream restarts."""
        with self._lock.write_locked():
            dropped = len(self._patients)
            self._patients.clear()
        self.logger.info("record_store_cleared", patients_dropped=dropped)

    def _append(self, record: PatientRecord) -> PatientRecord:
        patient = self._patients.get(record.patient_id)
        if patient is None:
            patient = Patient(patient_id=record.patient_id)
            self._patients[record.patient_id] = patient
            self.logger.debug("patient_created", patient_id=record.patient_id)
        patient.append(record)
        return record

    def _notify(self, records: list[PatientRecord]) -> None:
        for listener in self._listeners:
            for record in records:
                try:
                    listener(record)
                except Exception as e:
                    self.logger.error(
                        "record_listener_failed",
                        error=str(e),
                        patient_id=record.patient_id,
                        listener=getattr(listener, "__name__", type(listener).__name__),
                    )
