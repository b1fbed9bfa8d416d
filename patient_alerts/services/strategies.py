"""
Clinical rule strategies.

Each strategy is stateless: it looks at one patient's record snapshot and
returns zero or more AlertTrigger values. Strategies never build alerts
themselves; the evaluation cycle hands triggers to the alert factory.

Pattern: Protocol-based registry. New rules are added by appending to
default_strategies(), the evaluation cycle never changes.
"""

from collections.abc import Iterable
from typing import Protocol

from patient_alerts.config import RuleConfig
from patient_alerts.domain.models import (
    AlertCategory,
    AlertTrigger,
    Patient,
    PatientRecord,
    RecordType,
)
from patient_alerts.services.record_store import RecordStore


class AlertStrategy(Protocol):
    """
    Protocol for a single clinical rule.

    Design: the patient passed in is the snapshot fetched by the evaluation
    cycle and must be treated as read-only. The store is available for rules
    that need more history than the snapshot carries.
    """

    name: str

    def evaluate(self, patient: Patient, store: RecordStore) -> list[AlertTrigger]: ...


def _of_type(records: Iterable[PatientRecord], record_type: RecordType) -> list[PatientRecord]:
    return [r for r in records if r.is_type(record_type)]


def _by_time(records: Iterable[PatientRecord]) -> list[PatientRecord]:
    # stable: equal timestamps keep store order
    return sorted(records, key=lambda r: r.timestamp)


class _RuleBase:
    name = "rule"

    def __init__(self, config: RuleConfig | None = None) -> None:
        self.config = config or RuleConfig()


class BloodPressureThresholdStrategy(_RuleBase):
    """Critical systolic / diastolic readings. Bounds are exclusive."""

    name = "blood_pressure_threshold"

    def evaluate(self, patient: Patient, store: RecordStore) -> list[AlertTrigger]:
        cfg = self.config
        triggers: list[AlertTrigger] = []
        for record in patient.records:
            if record.is_type(RecordType.SYSTOLIC_PRESSURE):
                label, high, low = "Systolic", cfg.systolic_high, cfg.systolic_low
            elif record.is_type(RecordType.DIASTOLIC_PRESSURE):
                label, high, low = "Diastolic", cfg.diastolic_high, cfg.diastolic_low
            else:
                continue

            if record.value > high:
                condition = f"Critical: {label} BP above {high:g} mmHg"
            elif record.value < low:
                condition = f"Critical: {label} BP below {low:g} mmHg"
            else:
                continue
            triggers.append(
                AlertTrigger(
                    category=AlertCategory.BLOOD_PRESSURE,
                    condition=condition,
                    timestamp=record.timestamp,
                )
            )
        return triggers


class BloodPressureTrendStrategy(_RuleBase):
    """Three time-ordered readings that each step by more than trend_delta."""

    name = "blood_pressure_trend"

    def evaluate(self, patient: Patient, store: RecordStore) -> list[AlertTrigger]:
        systolic = _of_type(patient.records, RecordType.SYSTOLIC_PRESSURE)
        diastolic = _of_type(patient.records, RecordType.DIASTOLIC_PRESSURE)
        return self._trend(systolic, "systolic") + self._trend(diastolic, "diastolic")

    def _trend(self, records: list[PatientRecord], kind: str) -> list[AlertTrigger]:
        if len(records) < 3:
            return []

        delta = self.config.trend_delta
        ordered = _by_time(records)
        triggers: list[AlertTrigger] = []
        for r1, r2, r3 in zip(ordered, ordered[1:], ordered[2:]):
            v1, v2, v3 = r1.value, r2.value, r3.value
            if v2 - v1 > delta and v3 - v2 > delta:
                direction = "increases"
            elif v1 - v2 > delta and v2 - v3 > delta:
                direction = "decreases"
            else:
                continue
            triggers.append(
                AlertTrigger(
                    category=AlertCategory.BLOOD_PRESSURE,
                    condition=f"Trend: Three consecutive {kind} BP {direction} > {delta:g} mmHg",
                    timestamp=r3.timestamp,
                )
            )
        return triggers


class SaturationThresholdStrategy(_RuleBase):
    name = "saturation_threshold"

    def evaluate(self, patient: Patient, store: RecordStore) -> list[AlertTrigger]:
        low = self.config.saturation_low
        return [
            AlertTrigger(
                category=AlertCategory.BLOOD_OXYGEN,
                condition=f"Low Blood Saturation: Below {low:g}%",
                timestamp=record.timestamp,
            )
            for record in _of_type(patient.records, RecordType.SATURATION)
            if record.value < low
        ]


class SaturationRapidDropStrategy(_RuleBase):
    """Adjacent saturation readings falling by rapid_drop_points or more inside the window."""

    name = "saturation_rapid_drop"

    def evaluate(self, patient: Patient, store: RecordStore) -> list[AlertTrigger]:
        cfg = self.config
        minutes = cfg.rapid_drop_window_ms / 60_000
        condition = (
            f"Rapid Blood Saturation Drop: {cfg.rapid_drop_points:g}% or more "
            f"in {minutes:g} minutes"
        )

        ordered = _by_time(_of_type(patient.records, RecordType.SATURATION))
        triggers: list[AlertTrigger] = []
        for previous, current in zip(ordered, ordered[1:]):
            within_window = current.timestamp - previous.timestamp <= cfg.rapid_drop_window_ms
            if within_window and previous.value - current.value >= cfg.rapid_drop_points:
                triggers.append(
                    AlertTrigger(
                        category=AlertCategory.BLOOD_OXYGEN,
                        condition=condition,
                        timestamp=current.timestamp,
                    )
                )
        return triggers


class HeartRateThresholdStrategy(_RuleBase):
    name = "heart_rate_threshold"

    def evaluate(self, patient: Patient, store: RecordStore) -> list[AlertTrigger]:
        cfg = self.config
        triggers: list[AlertTrigger] = []
        for record in _of_type(patient.records, RecordType.HEART_RATE):
            if record.value < cfg.heart_rate_low:
                condition = f"Abnormal Heart Rate: Low heart rate {record.value} bpm"
            elif record.value > cfg.heart_rate_high:
                condition = f"Abnormal Heart Rate: High heart rate {record.value} bpm"
            else:
                continue
            triggers.append(
                AlertTrigger(
                    category=AlertCategory.ECG, condition=condition, timestamp=record.timestamp
                )
            )
        return triggers


class ECGPeakStrategy(_RuleBase):
    """
    Sliding-window peak detection over time-ordered ECG samples.

    For every index i >= window - 1 the mean of samples [i - window + 1 .. i]
    is computed (current sample included); the sample is a peak when it exceeds
    ecg_peak_factor times that mean.

    With fewer samples than the window nothing fires, unless
    ecg_fallback_alert is set, in which case the largest observed sample
    produces a single alert.
    """

    name = "ecg_peak"
    condition = "Abnormal ECG Peak"

    def evaluate(self, patient: Patient, store: RecordStore) -> list[AlertTrigger]:
        window = self.config.ecg_window_size
        ordered = _by_time(_of_type(patient.records, RecordType.ECG))
        if not ordered:
            return []
        if len(ordered) < window:
            return self._fallback(ordered)

        values = [r.value for r in ordered]
        triggers: list[AlertTrigger] = []
        for i in range(window - 1, len(values)):
            mean = sum(values[i - window + 1 : i + 1]) / window
            if values[i] > mean * self.config.ecg_peak_factor:
                triggers.append(
                    AlertTrigger(
                        category=AlertCategory.ECG,
                        condition=self.condition,
                        timestamp=ordered[i].timestamp,
                    )
                )
        return triggers

    def _fallback(self, ordered: list[PatientRecord]) -> list[AlertTrigger]:
        if not self.config.ecg_fallback_alert:
            return []
        largest = max(ordered, key=lambda r: r.value)
        return [
            AlertTrigger(
                category=AlertCategory.ECG, condition=self.condition, timestamp=largest.timestamp
            )
        ]


class HypotensiveHypoxemiaStrategy(_RuleBase):
    """Low systolic pressure paired with low saturation within the correlation window."""

    name = "hypotensive_hypoxemia"
    condition = "Hypotensive Hypoxemia: Low BP and Low Saturation"

    def evaluate(self, patient: Patient, store: RecordStore) -> list[AlertTrigger]:
        cfg = self.config
        saturation = _of_type(patient.records, RecordType.SATURATION)
        triggers: list[AlertTrigger] = []
        for bp in _of_type(patient.records, RecordType.SYSTOLIC_PRESSURE):
            if bp.value >= cfg.correlation_systolic_low:
                continue
            for sat in saturation:
                if (
                    abs(sat.timestamp - bp.timestamp) < cfg.correlation_window_ms
                    and sat.value < cfg.correlation_saturation_low
                ):
                    triggers.append(
                        AlertTrigger(
                            category=AlertCategory.BLOOD_OXYGEN,
                            condition=self.condition,
                            timestamp=bp.timestamp,
                        )
                    )
        return triggers


class ManualAlertStrategy(_RuleBase):
    """Pass manual alert records through 1:1. A value of 1.0 means triggered."""

    name = "manual_alert"

    def evaluate(self, patient: Patient, store: RecordStore) -> list[AlertTrigger]:
        triggers: list[AlertTrigger] = []
        for record in _of_type(patient.records, RecordType.MANUAL_ALERT):
            triggered = record.value == 1.0
            state = "Triggered" if triggered else "Untriggered"
            triggers.append(
                AlertTrigger(
                    category=AlertCategory.MANUAL,
                    condition=f"Manual Alert: {state}",
                    timestamp=record.timestamp,
                    extras={"triggered": triggered},
                )
            )
        return triggers


def default_strategies(config: RuleConfig | None = None) -> list[AlertStrategy]:
    """The registered rules, in evaluation order."""
    config = config or RuleConfig()
    return [
        BloodPressureThresholdStrategy(config),
        BloodPressureTrendStrategy(config),
        SaturationThresholdStrategy(config),
        SaturationRapidDropStrategy(config),
        HeartRateThresholdStrategy(config),
        ECGPeakStrategy(config),
        HypotensiveHypoxemiaStrategy(config),
        ManualAlertStrategy(config),
    ]
