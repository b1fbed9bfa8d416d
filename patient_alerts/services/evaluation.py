"""
Per-patient evaluation cycle.

One call to EvaluationCycle.run():
1. Fetch the patient's records from time 0 to now
2. Run every registered strategy against that snapshot
3. Build each alert through the factory
4. Annotate (repeat, then priority)
5. Hand the finished alert to the sink

Error boundaries: a failing strategy is logged and skipped, and so is an alert
that cannot be built or annotated. A failing sink is logged and ignored
(fire-and-forget). A failing store read aborts this cycle only.
"""

import time
from collections.abc import Callable, Sequence
from typing import Protocol

import structlog

from patient_alerts.domain.errors import UnknownCategoryError
from patient_alerts.domain.models import Alert, AlertDelivery, Patient
from patient_alerts.services.alert_factory import AlertFactory
from patient_alerts.services.annotators import AnnotationPipeline, CycleCounts
from patient_alerts.services.record_store import RecordStore
from patient_alerts.services.strategies import AlertStrategy, default_strategies

logger = structlog.get_logger(__name__)

Clock = Callable[[], int]


def now_ms() -> int:
    return time.time_ns() // 1_000_000


class AlertSink(Protocol):
    """
    Protocol for the external delivery layer.

    Delivery is fire-and-forget: the cycle does not wait for acknowledgement
    and never retries.
    """

    def deliver(self, delivery: AlertDelivery) -> None: ...


class EvaluationCycle:
    """Runs all strategies for one patient and delivers the annotated alerts."""

    def __init__(
        self,
        store: RecordStore,
        sink: AlertSink,
        strategies: Sequence[AlertStrategy] | None = None,
        factory: AlertFactory | None = None,
        pipeline: AnnotationPipeline | None = None,
        clock: Clock = now_ms,
    ) -> None:
        self.store = store
        self.sink = sink
        self.strategies: list[AlertStrategy] = list(
            default_strategies() if strategies is None else strategies
        )
        self.factory = factory or AlertFactory()
        self.pipeline = pipeline or AnnotationPipeline()
        self.clock = clock
        self.logger = logger.bind(component="evaluation_cycle")

    def register(self, strategy: AlertStrategy) -> None:
        """Add a strategy after the existing ones."""
        if not hasattr(strategy, "evaluate"):
            raise TypeError(f"Strategy {strategy} must implement AlertStrategy protocol")
        self.strategies.append(strategy)
        self.logger.info("strategy_registered", strategy=strategy.name)

    def run(self, patient: Patient | int) -> list[Alert]:
        """
        Evaluate one patient now.

        Returns:
            list[Alert]: the annotated alerts handed to the sink, in emission order.

        Raises:
            Whatever the record store raises; nothing is delivered in that case.
        """
        patient_id = patient.patient_id if isinstance(patient, Patient) else patient
        log = self.logger.bind(patient_id=patient_id)

        records = self.store.get_records(patient_id, 0, self.clock())
        snapshot = Patient(patient_id=patient_id, records=records)

        delivered: list[Alert] = []
        cycle_counts: CycleCounts = {}
        failed_strategies = 0
        for strategy in self.strategies:
            try:
                triggers = strategy.evaluate(snapshot, self.store)
            except Exception as e:
                failed_strategies += 1
                log.exception("strategy_failed", strategy=strategy.name, error=str(e))
                continue

            for trigger in triggers:
                try:
                    alert = self.factory.from_trigger(patient_id, trigger)
                except UnknownCategoryError as e:
                    log.error(
                        "alert_creation_failed",
                        strategy=strategy.name,
                        category=str(e.category),
                        error=str(e),
                    )
                    continue
                except Exception as e:
                    log.exception(
                        "alert_creation_failed",
                        strategy=strategy.name,
                        trigger=repr(trigger),
                        error=str(e),
                    )
                    continue

                try:
                    annotated = self.pipeline.apply(alert, cycle_counts)
                except Exception as e:
                    log.exception(
                        "alert_annotation_failed",
                        strategy=strategy.name,
                        condition=alert.condition,
                        error=str(e),
                    )
                    continue

                self._deliver(annotated)
                delivered.append(annotated)

        log.info(
            "evaluation_completed",
            records=len(records),
            alerts=len(delivered),
            failed_strategies=failed_strategies,
        )
        return delivered

    def _deliver(self, alert: Alert) -> None:
        try:
            self.sink.deliver(alert.to_delivery())
        except Exception as e:
            self.logger.error(
                "alert_delivery_failed",
                error=str(e),
                patient_id=alert.patient_id,
                condition=alert.condition,
            )
