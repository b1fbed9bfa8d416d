"""
Alert sinks implementing the AlertSink protocol.

Real transports (TCP, WebSocket, paging) live outside this package; these
sinks cover local development, log shipping and batch/test runs.
"""

import threading
from datetime import UTC, datetime

import structlog

from patient_alerts.domain.models import AlertDelivery

logger = structlog.get_logger(__name__)


class LoggingAlertSink:
    """Emits one structured log event per alert."""

    def __init__(self, event: str = "alert_delivered") -> None:
        self.event = event
        self.logger = logger.bind(component="logging_alert_sink")

    def deliver(self, delivery: AlertDelivery) -> None:
        self.logger.warning(
            self.event,
            patient_id=delivery.patient_id,
            timestamp=delivery.timestamp,
            label=delivery.label,
            condition=delivery.condition_text,
        )


class ConsoleAlertSink:
    """Development sink that prints to console."""

    def deliver(self, delivery: AlertDelivery) -> None:
        when = datetime.fromtimestamp(delivery.timestamp / 1000, tz=UTC)
        print(
            f"Patient ID: {delivery.patient_id}, "
            f"Time: {when.strftime('%Y-%m-%d %H:%M:%S UTC')}, "
            f"Label: {delivery.label}, "
            f"Alert: {delivery.condition_text}"
        )


class CollectingAlertSink:
    """Keeps every delivery in memory. Safe to share between evaluation threads."""

    def __init__(self) -> None:
        self._deliveries: list[AlertDelivery] = []
        self._lock = threading.Lock()

    def deliver(self, delivery: AlertDelivery) -> None:
        with self._lock:
            self._deliveries.append(delivery)

    @property
    def deliveries(self) -> list[AlertDelivery]:
        with self._lock:
            return list(self._deliveries)

    @property
    def conditions(self) -> list[str]:
        return [d.condition_text for d in self.deliveries]

    def clear(self) -> None:
        with self._lock:
            self._deliveries.clear()
