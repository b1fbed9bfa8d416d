"""
Domain models for patient vital-sign alerting.

These models represent the core clinical concepts and are framework-agnostic.
They use Pydantic for validation; records and alerts are immutable once built.
"""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from patient_alerts.domain.errors import InvalidRangeError


class RecordType(str, Enum):
    """Vital-sign tags the rule strategies understand."""

    SYSTOLIC_PRESSURE = "SystolicPressure"
    DIASTOLIC_PRESSURE = "DiastolicPressure"
    SATURATION = "Saturation"
    ECG = "ECG"
    HEART_RATE = "HeartRate"
    MANUAL_ALERT = "Alert"  # nurse call / manual alert button

    @classmethod
    def normalize(cls, label: str) -> str:
        """Map a wire label onto its canonical tag. Unknown labels pass through."""
        label = label.strip()
        alias = _RECORD_TYPE_ALIASES.get(label.lower())
        return alias.value if alias is not None else label


_RECORD_TYPE_ALIASES: dict[str, RecordType] = {
    "systolicpressure": RecordType.SYSTOLIC_PRESSURE,
    "systolicbloodpressure": RecordType.SYSTOLIC_PRESSURE,
    "bloodpressuresystolic": RecordType.SYSTOLIC_PRESSURE,
    "bloodpressure": RecordType.SYSTOLIC_PRESSURE,
    "diastolicpressure": RecordType.DIASTOLIC_PRESSURE,
    "diastolicbloodpressure": RecordType.DIASTOLIC_PRESSURE,
    "bloodpressurediastolic": RecordType.DIASTOLIC_PRESSURE,
    "saturation": RecordType.SATURATION,
    "bloodsaturation": RecordType.SATURATION,
    "ecg": RecordType.ECG,
    "heartrate": RecordType.HEART_RATE,
    "alert": RecordType.MANUAL_ALERT,
    "manualalert": RecordType.MANUAL_ALERT,
}


class PatientRecord(BaseModel):
    """One timestamped measurement for one patient."""

    model_config = ConfigDict(frozen=True)

    patient_id: int = Field(gt=0)
    record_type: str = Field(min_length=1)
    value: float
    timestamp: int = Field(description="Milliseconds since the Unix epoch, may precede it")

    @field_validator("record_type", mode="before")
    @classmethod
    def canonical_record_type(cls, v: Any) -> Any:
        if isinstance(v, RecordType):
            return v.value
        if isinstance(v, str):
            return RecordType.normalize(v)
        return v

    def is_type(self, record_type: RecordType) -> bool:
        return self.record_type == record_type.value


class Patient(BaseModel):
    """All records for one patient, in insertion order."""

    patient_id: int = Field(gt=0)
    records: list[PatientRecord] = Field(default_factory=list)

    def append(self, record: PatientRecord) -> None:
        if record.patient_id != self.patient_id:
            raise ValueError(
                f"Record for patient {record.patient_id} "
                f"cannot be added to patient {self.patient_id}"
            )
        self.records.append(record)

    def get_records(self, start: int, end: int) -> list[PatientRecord]:
        """Records with start <= timestamp <= end, in insertion order."""
        if start > end:
            raise InvalidRangeError(start, end)
        return [r for r in self.records if start <= r.timestamp <= end]

    def snapshot(self) -> "Patient":
        return Patient(patient_id=self.patient_id, records=list(self.records))


class AlertCategory(str, Enum):
    """Alert families. Each maps to one concrete alert model."""

    BLOOD_PRESSURE = "blood_pressure"
    BLOOD_OXYGEN = "blood_oxygen"
    ECG = "ecg"
    MANUAL = "manual"

    @classmethod
    def parse(cls, value: "AlertCategory | str") -> "AlertCategory | None":
        """Resolve a category tag, accepting legacy spellings. None if unknown."""
        if isinstance(value, AlertCategory):
            return value
        key = str(value).strip().lower().replace("-", "_")
        try:
            return cls(key)
        except ValueError:
            return _CATEGORY_ALIASES.get(key)


_CATEGORY_ALIASES: dict[str, AlertCategory] = {
    "bloodpressure": AlertCategory.BLOOD_PRESSURE,
    "bloodoxygen": AlertCategory.BLOOD_OXYGEN,
    "oxygen": AlertCategory.BLOOD_OXYGEN,
    "heart_rate": AlertCategory.ECG,
    "heartrate": AlertCategory.ECG,
}


class AlertTrigger(BaseModel):
    """Raw rule firing produced by a strategy, before an alert is built."""

    model_config = ConfigDict(frozen=True)

    category: AlertCategory
    condition: str
    timestamp: int
    extras: dict[str, Any] = Field(default_factory=dict)


class AlertDelivery(BaseModel):
    """What crosses the sink boundary."""

    model_config = ConfigDict(frozen=True)

    patient_id: int
    timestamp: int
    label: str
    condition_text: str


class Alert(BaseModel):
    """
    Base alert.

    Annotation metadata (repeat count, priority) is carried as plain fields and
    only rendered into the condition text at the sink boundary.
    """

    model_config = ConfigDict(frozen=True)

    category: AlertCategory
    patient_id: int = Field(gt=0)
    condition: str = Field(min_length=1)
    timestamp: int
    repeat_count: int | None = Field(default=None, ge=0)
    priority: int | None = Field(default=None, ge=0)

    @property
    def label(self) -> str:
        return "Alert"

    def render_condition(self) -> str:
        """Condition text with annotation layers, priority outermost."""
        text = self.condition
        if self.repeat_count is not None:
            text = f"[Repeated {self.repeat_count} times] {text}"
        if self.priority is not None:
            text = f"[Priority {self.priority}] {text}"
        return text

    def to_delivery(self) -> AlertDelivery:
        return AlertDelivery(
            patient_id=self.patient_id,
            timestamp=self.timestamp,
            label=self.label,
            condition_text=self.render_condition(),
        )


class BloodPressureAlert(Alert):
    category: Literal[AlertCategory.BLOOD_PRESSURE] = AlertCategory.BLOOD_PRESSURE

    @property
    def label(self) -> str:
        return "BloodPressureAlert"


class BloodOxygenAlert(Alert):
    category: Literal[AlertCategory.BLOOD_OXYGEN] = AlertCategory.BLOOD_OXYGEN

    @property
    def label(self) -> str:
        return "BloodOxygenAlert"


class ECGAlert(Alert):
    category: Literal[AlertCategory.ECG] = AlertCategory.ECG

    @property
    def label(self) -> str:
        return "ECGAlert"


class ManualAlert(Alert):
    category: Literal[AlertCategory.MANUAL] = AlertCategory.MANUAL
    triggered: bool = True

    @property
    def label(self) -> str:
        return "ManualAlert"
