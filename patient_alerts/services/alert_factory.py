"""
Alert factory: maps an alert category onto a concrete alert model.

The mapping is resolved once at construction. Unknown categories fail fast
with UnknownCategoryError instead of falling through to a generic alert.
"""

from collections.abc import Callable, Mapping
from typing import Any

import structlog

from patient_alerts.domain.errors import UnknownCategoryError
from patient_alerts.domain.models import (
    Alert,
    AlertCategory,
    AlertTrigger,
    BloodOxygenAlert,
    BloodPressureAlert,
    ECGAlert,
    ManualAlert,
)

logger = structlog.get_logger(__name__)

AlertConstructor = Callable[..., Alert]

DEFAULT_CONSTRUCTORS: Mapping[AlertCategory, AlertConstructor] = {
    AlertCategory.BLOOD_PRESSURE: BloodPressureAlert,
    AlertCategory.BLOOD_OXYGEN: BloodOxygenAlert,
    AlertCategory.ECG: ECGAlert,
    AlertCategory.MANUAL: ManualAlert,
}


class AlertFactory:
    """Registry of alert constructors keyed by category."""

    def __init__(
        self, constructors: Mapping[AlertCategory, AlertConstructor] | None = None
    ) -> None:
        self._constructors: dict[AlertCategory, AlertConstructor] = dict(
            DEFAULT_CONSTRUCTORS if constructors is None else constructors
        )
        self.logger = logger.bind(component="alert_factory")

    @property
    def categories(self) -> list[AlertCategory]:
        return list(self._constructors)

    def register(self, category: AlertCategory, constructor: AlertConstructor) -> None:
        """Add or replace the constructor for a category."""
        self._constructors[category] = constructor
        self.logger.info("alert_family_registered", category=category.value)

    def create_alert(
        self,
        category: AlertCategory | str,
        patient_id: int,
        condition: str,
        timestamp: int,
        **extras: Any,
    ) -> Alert:
        """
        Build the concrete alert for a category.

        Raises:
            UnknownCategoryError: if the category is not registered.
        """
        resolved = AlertCategory.parse(category)
        constructor = self._constructors.get(resolved) if resolved is not None else None
        if constructor is None:
            raise UnknownCategoryError(category)
        return constructor(
            patient_id=patient_id, condition=condition, timestamp=timestamp, **extras
        )

    def from_trigger(self, patient_id: int, trigger: AlertTrigger) -> Alert:
        return self.create_alert(
            trigger.category, patient_id, trigger.condition, trigger.timestamp, **trigger.extras
        )
