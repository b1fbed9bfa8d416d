"""
Continuous monitoring loop over every patient in the store.

Key patterns:
- Structured concurrency with asyncio.TaskGroup, one task per patient per round
- Blocking evaluation work pushed to threads via asyncio.to_thread
- Backpressure with a semaphore (max_concurrent_evaluations)
- Error boundaries per patient: one failing cycle never cancels the round
"""

import asyncio
import time
from collections.abc import AsyncIterator

import structlog
from pydantic import BaseModel, Field

from patient_alerts.config import AppConfig, MonitoringConfig, get_config
from patient_alerts.domain.models import Alert
from patient_alerts.services.alert_factory import AlertFactory
from patient_alerts.services.annotators import AnnotationPipeline
from patient_alerts.services.evaluation import AlertSink, EvaluationCycle, now_ms
from patient_alerts.services.record_store import RecordStore
from patient_alerts.services.strategies import default_strategies

logger = structlog.get_logger(__name__)


class MonitoringRound(BaseModel):
    """Summary of one pass over all patients."""

    patients_evaluated: int = Field(ge=0)
    alerts_delivered: int = Field(ge=0)
    failed_patients: list[int] = Field(default_factory=list)
    duration_seconds: float = Field(ge=0.0)


class MonitoringService:
    """
    Evaluates every known patient on a fixed interval.

    Cycles for the same patient never overlap: each round creates exactly one
    task per patient and waits for all of them before the next round starts.
    """

    def __init__(
        self,
        store: RecordStore,
        cycle: EvaluationCycle,
        config: MonitoringConfig | None = None,
    ) -> None:
        self.store = store
        self.cycle = cycle
        self.config = config or MonitoringConfig()
        self.logger = logger.bind(component="monitoring_service")
        self._is_running = False

    @classmethod
    def from_config(
        cls, store: RecordStore, sink: AlertSink, config: AppConfig | None = None
    ) -> "MonitoringService":
        """Wire the default strategies, factory and annotators from configuration."""
        config = config or get_config()
        cycle = EvaluationCycle(
            store,
            sink,
            strategies=default_strategies(config.rules),
            factory=AlertFactory(),
            pipeline=AnnotationPipeline(config.annotation),
        )
        return cls(store, cycle, config.monitoring)

    @property
    def is_running(self) -> bool:
        return self._is_running

    async def run_once(self) -> MonitoringRound:
        """Evaluate every patient currently in the store once."""
        start_time = time.perf_counter()
        patient_ids = self.store.patient_ids()
        semaphore = asyncio.Semaphore(self.config.max_concurrent_evaluations)

        async with asyncio.TaskGroup() as task_group:
            tasks = {
                patient_id: task_group.create_task(self._evaluate(patient_id, semaphore))
                for patient_id in patient_ids
            }

        alerts_delivered = 0
        failed_patients: list[int] = []
        for patient_id, task in tasks.items():
            alerts = task.result()
            if alerts is None:
                failed_patients.append(patient_id)
            else:
                alerts_delivered += len(alerts)

        duration = time.perf_counter() - start_time
        self.logger.info(
            "monitoring_round_completed",
            patients=len(patient_ids),
            alerts_delivered=alerts_delivered,
            failed_patients=len(failed_patients),
            duration_seconds=round(duration, 3),
        )
        return MonitoringRound(
            patients_evaluated=len(patient_ids) - len(failed_patients),
            alerts_delivered=alerts_delivered,
            failed_patients=failed_patients,
            duration_seconds=duration,
        )

    async def _evaluate(self, patient_id: int, semaphore: asyncio.Semaphore) -> list[Alert] | None:
        async with semaphore:
            try:
                return await asyncio.to_thread(self.cycle.run, patient_id)
            except Exception as e:
                self.logger.exception(
                    "patient_evaluation_failed", patient_id=patient_id, error=str(e)
                )
                return None

    async def run_continuously(self) -> AsyncIterator[MonitoringRound]:
        """
        Yield one MonitoringRound per interval until stop() is called.

        Rounds that overrun the interval start the next one immediately.
        """
        self.logger.info(
            "continuous_monitoring_starting",
            interval_seconds=self.config.evaluation_interval_seconds,
        )
        self._is_running = True

        try:
            while self._is_running:
                round_start = time.perf_counter()
                yield await self.run_once()

                elapsed = time.perf_counter() - round_start
                sleep_time = max(0.0, self.config.evaluation_interval_seconds - elapsed)
                if sleep_time > 0:
                    await asyncio.sleep(sleep_time)
                else:
                    self.logger.warning(
                        "monitoring_round_slower_than_interval",
                        elapsed_seconds=round(elapsed, 3),
                        interval_seconds=self.config.evaluation_interval_seconds,
                    )
        except asyncio.CancelledError:
            self.logger.info("continuous_monitoring_cancelled")
            raise
        finally:
            self._is_running = False

    async def stop(self) -> None:
        """Gracefully stop the monitoring loop after the current round."""
        self.logger.info("stopping_monitoring_service")
        self._is_running = False


async def main() -> None:
    """Demonstrate the monitoring loop against a small in-memory store."""

    from patient_alerts.adapters.sinks import ConsoleAlertSink
    from patient_alerts.observability import configure_logging

    config = get_config()
    configure_logging(config.logging)

    store = RecordStore()
    now = now_ms()
    store.add_record(1, 185.0, "SystolicPressure", now - 3_000)
    store.add_record(1, 89.0, "Saturation", now - 2_000)
    store.add_record(2, 45.0, "HeartRate", now - 1_000)
    store.add_record(2, 1.0, "Alert", now - 500)

    service = MonitoringService.from_config(store, ConsoleAlertSink(), config)

    rounds = 0
    async for summary in service.run_continuously():
        rounds += 1
        print(f"Round {rounds}: {summary.alerts_delivered} alerts")
        if rounds >= 2:
            await service.stop()


if __name__ == "__main__":
    asyncio.run(main())
