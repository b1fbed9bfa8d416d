"""
Tests for the asynchronous monitoring loop.

Follows the collector tests: real service, test-double cycles where failure or
timing matters.
"""

import asyncio
import threading
import time

import pytest

from patient_alerts.adapters.sinks import CollectingAlertSink
from patient_alerts.config import AppConfig, MonitoringConfig, get_config
from patient_alerts.domain.models import Alert, Patient
from patient_alerts.services.evaluation import EvaluationCycle
from patient_alerts.services.monitoring import MonitoringService, main
from patient_alerts.services.record_store import RecordStore


class FlakyCycle(EvaluationCycle):
    """Fails for one patient id, delegates for the rest."""

    def __init__(self, *args, failing_patient: int, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.failing_patient = failing_patient

    def run(self, patient: Patient | int) -> list[Alert]:
        if patient == self.failing_patient:
            raise OSError("store read failed")
        return super().run(patient)


class OverlapDetectingCycle(EvaluationCycle):
    """Records the peak number of concurrent runs, globally and per patient."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._lock = threading.Lock()
        self._active: dict[int, int] = {}
        self.peak_total = 0
        self.peak_per_patient = 0

    def run(self, patient: Patient | int) -> list[Alert]:
        patient_id = patient.patient_id if isinstance(patient, Patient) else patient
        with self._lock:
            self._active[patient_id] = self._active.get(patient_id, 0) + 1
            self.peak_per_patient = max(self.peak_per_patient, self._active[patient_id])
            self.peak_total = max(self.peak_total, sum(self._active.values()))
        try:
            time.sleep(0.02)
            return super().run(patient)
        finally:
            with self._lock:
                self._active[patient_id] -= 1


@pytest.fixture
def populated_store(now: int) -> RecordStore:
    store = RecordStore()
    for patient_id in range(1, 6):
        store.add_record(patient_id, 200.0, "SystolicPressure", now - 1_000)
    return store


class TestMonitoringService:
    @pytest.mark.asyncio
    async def test_run_once_evaluates_every_patient(
        self, populated_store: RecordStore, sink: CollectingAlertSink, now: int
    ) -> None:
        cycle = EvaluationCycle(populated_store, sink, clock=lambda: now)
        service = MonitoringService(populated_store, cycle)

        summary = await service.run_once()

        assert summary.patients_evaluated == 5
        assert summary.alerts_delivered == 5
        assert summary.failed_patients == []
        assert sorted(d.patient_id for d in sink.deliveries) == [1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_failing_patient_does_not_cancel_round(
        self, populated_store: RecordStore, sink: CollectingAlertSink, now: int
    ) -> None:
        cycle = FlakyCycle(populated_store, sink, clock=lambda: now, failing_patient=3)
        service = MonitoringService(populated_store, cycle)

        summary = await service.run_once()

        assert summary.failed_patients == [3]
        assert summary.patients_evaluated == 4
        assert 3 not in {d.patient_id for d in sink.deliveries}

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded_and_patients_never_overlap(
        self, populated_store: RecordStore, sink: CollectingAlertSink, now: int
    ) -> None:
        cycle = OverlapDetectingCycle(populated_store, sink, clock=lambda: now)
        service = MonitoringService(
            populated_store, cycle, MonitoringConfig(max_concurrent_evaluations=2)
        )

        await service.run_once()
        await service.run_once()

        assert cycle.peak_total <= 2
        assert cycle.peak_per_patient == 1

    @pytest.mark.asyncio
    async def test_empty_store_round(self, sink: CollectingAlertSink) -> None:
        store = RecordStore()
        service = MonitoringService(store, EvaluationCycle(store, sink))

        summary = await service.run_once()

        assert summary.patients_evaluated == 0
        assert summary.alerts_delivered == 0

    @pytest.mark.asyncio
    async def test_continuous_monitoring_stops_gracefully(
        self, populated_store: RecordStore, sink: CollectingAlertSink, now: int
    ) -> None:
        cycle = EvaluationCycle(populated_store, sink, clock=lambda: now)
        service = MonitoringService(
            populated_store, cycle, MonitoringConfig(evaluation_interval_seconds=0.01)
        )

        rounds = []
        async for summary in service.run_continuously():
            rounds.append(summary)
            assert service.is_running
            if len(rounds) >= 3:
                await service.stop()

        assert len(rounds) == 3
        assert not service.is_running
        assert len(sink.deliveries) == 15

    @pytest.mark.asyncio
    async def test_continuous_monitoring_can_be_cancelled(
        self, populated_store: RecordStore, sink: CollectingAlertSink, now: int
    ) -> None:
        cycle = EvaluationCycle(populated_store, sink, clock=lambda: now)
        service = MonitoringService(
            populated_store, cycle, MonitoringConfig(evaluation_interval_seconds=10.0)
        )

        async def consume() -> None:
            async for _ in service.run_continuously():
                pass

        task = asyncio.create_task(consume())
        await asyncio.sleep(0.1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert not service.is_running

    @pytest.mark.asyncio
    async def test_from_config_wires_rules_and_annotation(
        self, populated_store: RecordStore, sink: CollectingAlertSink
    ) -> None:
        config = AppConfig.model_validate(
            {"annotation": {"priority_level": 4}, "rules": {"systolic_high": 210.0}}
        )
        service = MonitoringService.from_config(populated_store, sink, config)
        populated_store.add_record(1, 230.0, "SystolicPressure", 1_000)

        await service.run_once()

        assert sink.conditions == [
            "[Priority 4] [Repeated 1 times] Critical: Systolic BP above 210 mmHg"
        ]


@pytest.mark.asyncio
async def test_demo_main_alerts_on_freshly_seeded_records(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setenv("EVALUATION_INTERVAL_SECONDS", "0.01")
    get_config.cache_clear()
    try:
        await main()
    finally:
        get_config.cache_clear()

    out = capsys.readouterr().out
    assert "Round 1: 4 alerts" in out
    assert "Round 2: 4 alerts" in out
