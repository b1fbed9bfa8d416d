"""
Line-based record ingestion.

Two comma-separated layouts are in use by the upstream generators:

- file:   patientId,measurementValue,recordType,timestamp
- stream: patientId,timestamp,recordType,measurementValue

Manual alert records may carry "triggered" / "resolved" instead of a number.
Decoding errors raise MalformedRecordError; FileRecordReader logs and skips
them so one bad line never aborts a load.
"""

from enum import Enum
from pathlib import Path

import structlog
from pydantic import BaseModel, Field, ValidationError

from patient_alerts.domain.errors import MalformedRecordError
from patient_alerts.domain.models import PatientRecord, RecordType
from patient_alerts.services.record_store import RecordStore

logger = structlog.get_logger(__name__)

_MANUAL_ALERT_VALUES = {"triggered": 1.0, "resolved": 0.0, "untriggered": 0.0}


class LineLayout(str, Enum):
    FILE = "file"
    STREAM = "stream"


class IngestionReport(BaseModel):
    """Outcome of loading one source into the store."""

    source: str
    accepted: int = Field(default=0, ge=0)
    malformed: int = Field(default=0, ge=0)
    blank: int = Field(default=0, ge=0)


def _parse_value(raw: str, record_type: str, line: str) -> float:
    if record_type == RecordType.MANUAL_ALERT.value:
        mapped = _MANUAL_ALERT_VALUES.get(raw.lower())
        if mapped is not None:
            return mapped
    try:
        return float(raw)
    except ValueError:
        raise MalformedRecordError(line, f"measurement value {raw!r} is not a number") from None


def parse_record_line(line: str, layout: LineLayout = LineLayout.FILE) -> PatientRecord:
    """
    Decode one line into a PatientRecord.

    Raises:
        MalformedRecordError: wrong field count, non-numeric fields, or
            a record that fails validation (e.g. non-positive patient id).
    """
    parts = [p.strip() for p in line.strip().split(",")]
    if len(parts) != 4:
        raise MalformedRecordError(line, f"expected 4 fields, got {len(parts)}")

    if layout is LineLayout.FILE:
        raw_id, raw_value, raw_type, raw_timestamp = parts
    else:
        raw_id, raw_timestamp, raw_type, raw_value = parts

    if not raw_type:
        raise MalformedRecordError(line, "record type is empty")
    record_type = RecordType.normalize(raw_type)

    try:
        patient_id = int(raw_id)
        timestamp = int(raw_timestamp)
    except ValueError:
        raise MalformedRecordError(line, "patient id and timestamp must be integers") from None

    value = _parse_value(raw_value, record_type, line)
    try:
        return PatientRecord(
            patient_id=patient_id, record_type=record_type, value=value, timestamp=timestamp
        )
    except ValidationError as e:
        raise MalformedRecordError(line, str(e)) from e


class FileRecordReader:
    """Loads a whole file of records into a RecordStore."""

    def __init__(self, path: str | Path, layout: LineLayout = LineLayout.FILE) -> None:
        self.path = Path(path)
        self.layout = layout
        self.logger = logger.bind(component="file_record_reader", path=str(self.path))

    def read_into(self, store: RecordStore) -> IngestionReport:
        report = IngestionReport(source=str(self.path))
        records: list[PatientRecord] = []

        with self.path.open(encoding="utf-8") as handle:
            for line_number, line in enumerate(handle, start=1):
                if not line.strip():
                    report.blank += 1
                    continue
                try:
                    records.append(parse_record_line(line, self.layout))
                except MalformedRecordError as e:
                    report.malformed += 1
                    self.logger.warning(
                        "malformed_record_skipped", line_number=line_number, reason=e.reason
                    )

        report.accepted = store.add_records(records)
        self.logger.info(
            "records_loaded",
            accepted=report.accepted,
            malformed=report.malformed,
            blank=report.blank,
        )
        return report
