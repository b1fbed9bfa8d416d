"""
Alert annotators: repeat count and priority.

Annotation metadata is stored as fields on the (frozen) alert and rendered into
the condition text only at delivery time, so every accessor except the
condition text passes through untouched. The pipeline always applies the
repeat annotator first and the priority annotator second, which gives
"[Priority p] [Repeated n times] <condition>".
"""

import threading
from collections.abc import Callable

import structlog

from patient_alerts.config import AnnotationConfig
from patient_alerts.domain.models import Alert, AlertCategory

logger = structlog.get_logger(__name__)

RepeatHook = Callable[[Alert, str], None]
RepeatKey = tuple[int, AlertCategory]
CycleCounts = dict[RepeatKey, int]


class RepeatTracker:
    """
    Thread-safe repeat counts keyed by (patient, category).

    The condition text is not part of the key: several rules share a category
    and some texts embed the measured value.
    """

    def __init__(self) -> None:
        self._counts: dict[RepeatKey, int] = {}
        self._lock = threading.Lock()

    @staticmethod
    def key_for(alert: Alert) -> RepeatKey:
        return (alert.patient_id, alert.category)

    def get(self, alert: Alert) -> int:
        with self._lock:
            return self._counts.get(self.key_for(alert), 0)

    def increment(self, alert: Alert, cap: int) -> tuple[int, bool]:
        """Bump the count up to cap. Returns (count, whether it changed)."""
        key = self.key_for(alert)
        with self._lock:
            current = self._counts.get(key, 0)
            if current >= cap:
                return current, False
            self._counts[key] = current + 1
            return current + 1, True

    def reset(self) -> None:
        with self._lock:
            self._counts.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._counts)


class RepeatAnnotator:
    """
    Stamps a repeat count onto an alert.

    Without a tracker every alert starts from zero, so one check_and_repeat()
    always yields a count of 1. With a shared tracker the count accumulates
    across evaluation cycles for the same patient and category. Passing the
    same cycle_counts dict for every alert of one cycle bumps each key at most
    once per cycle; later alerts with that key reuse the count.
    """

    def __init__(
        self,
        max_repeats: int = 3,
        tracker: RepeatTracker | None = None,
        on_repeat: RepeatHook | None = None,
    ) -> None:
        self.max_repeats = max_repeats
        self.tracker = tracker
        self.on_repeat = on_repeat
        self.logger = logger.bind(component="repeat_annotator")

    def check_and_repeat(self, alert: Alert, cycle_counts: CycleCounts | None = None) -> Alert:
        if self.tracker is not None:
            key = self.tracker.key_for(alert)
            if cycle_counts is not None and key in cycle_counts:
                return alert.model_copy(update={"repeat_count": cycle_counts[key]})
            count, changed = self.tracker.increment(alert, self.max_repeats)
            previous = count - 1 if changed else count
            if cycle_counts is not None:
                cycle_counts[key] = count
        else:
            previous = alert.repeat_count or 0
            changed = previous < self.max_repeats
            count = previous + 1 if changed else previous

        if changed:
            text = alert.model_copy(update={"repeat_count": previous}).render_condition()
            self.logger.debug(
                "alert_repeated",
                patient_id=alert.patient_id,
                repeat_count=count,
                condition_text=text,
            )
            if self.on_repeat is not None:
                try:
                    self.on_repeat(alert, text)
                except Exception as e:
                    self.logger.error(
                        "repeat_hook_failed", patient_id=alert.patient_id, error=str(e)
                    )

        return alert.model_copy(update={"repeat_count": count})


class PriorityAnnotator:
    """Stamps a fixed priority level onto every alert."""

    def __init__(self, priority_level: int = 2) -> None:
        self.priority_level = priority_level

    def annotate(self, alert: Alert) -> Alert:
        return alert.model_copy(update={"priority": self.priority_level})


class AnnotationPipeline:
    """Repeat annotation, then priority annotation, in that fixed order."""

    def __init__(
        self,
        config: AnnotationConfig | None = None,
        tracker: RepeatTracker | None = None,
        on_repeat: RepeatHook | None = None,
    ) -> None:
        self.config = config or AnnotationConfig()
        if tracker is None and self.config.repeat_tracking == "persistent":
            tracker = RepeatTracker()
        self.tracker = tracker
        self.on_repeat = on_repeat
        self.priority = PriorityAnnotator(self.config.priority_level)

    def _repeat_annotator(self) -> RepeatAnnotator:
        # per_alert mode: a fresh annotator, and so a fresh count, for each alert
        return RepeatAnnotator(self.config.max_repeats, self.tracker, self.on_repeat)

    def apply(self, alert: Alert, cycle_counts: CycleCounts | None = None) -> Alert:
        repeated = self._repeat_annotator().check_and_repeat(alert, cycle_counts)
        return self.priority.annotate(repeated)
