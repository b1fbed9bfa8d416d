"""
Tests for alert construction and annotation.

Covers:
- Factory dispatch by category (enum and legacy string tags)
- UnknownCategoryError for unregistered categories
- Repeat / priority annotation order and rendering
- Per-alert versus persistent repeat tracking
"""

import threading

import pytest

from patient_alerts.config import AnnotationConfig
from patient_alerts.domain.errors import UnknownCategoryError
from patient_alerts.domain.models import (
    Alert,
    AlertCategory,
    BloodOxygenAlert,
    BloodPressureAlert,
    ECGAlert,
    ManualAlert,
)
from patient_alerts.services.alert_factory import AlertFactory
from patient_alerts.services.annotators import (
    AnnotationPipeline,
    CycleCounts,
    PriorityAnnotator,
    RepeatAnnotator,
    RepeatTracker,
)


@pytest.fixture
def factory() -> AlertFactory:
    return AlertFactory()


@pytest.fixture
def raw_alert(factory: AlertFactory) -> Alert:
    return factory.create_alert(AlertCategory.BLOOD_PRESSURE, 1, "X", 1_000)


class TestAlertFactory:
    @pytest.mark.parametrize(
        "category,expected_type",
        [
            (AlertCategory.BLOOD_PRESSURE, BloodPressureAlert),
            ("bloodpressure", BloodPressureAlert),
            ("BloodOxygen", BloodOxygenAlert),
            ("blood_oxygen", BloodOxygenAlert),
            ("ecg", ECGAlert),
            ("heart-rate", ECGAlert),
            ("manual", ManualAlert),
        ],
    )
    def test_category_selects_alert_family(
        self, factory: AlertFactory, category: AlertCategory | str, expected_type: type
    ) -> None:
        alert = factory.create_alert(category, 3, "Some condition", 5_000)

        assert type(alert) is expected_type
        assert alert.patient_id == 3
        assert alert.condition == "Some condition"
        assert alert.timestamp == 5_000

    @pytest.mark.parametrize("category", ["temperature", "", "blood pressure!"])
    def test_unknown_category_fails_fast(self, factory: AlertFactory, category: str) -> None:
        with pytest.raises(UnknownCategoryError) as exc_info:
            factory.create_alert(category, 1, "X", 0)

        assert exc_info.value.category == category

    def test_unregistered_known_category_fails(self) -> None:
        factory = AlertFactory({AlertCategory.ECG: ECGAlert})

        with pytest.raises(UnknownCategoryError):
            factory.create_alert(AlertCategory.MANUAL, 1, "X", 0)

    def test_register_new_family(self) -> None:
        factory = AlertFactory({})
        factory.register(AlertCategory.MANUAL, ManualAlert)

        alert = factory.create_alert("manual", 1, "Manual Alert: Untriggered", 0, triggered=False)

        assert isinstance(alert, ManualAlert)
        assert alert.triggered is False
        assert factory.categories == [AlertCategory.MANUAL]

    def test_alerts_are_immutable(self, raw_alert: Alert) -> None:
        with pytest.raises(ValueError, match="frozen"):
            raw_alert.condition = "changed"  # type: ignore[misc]


class TestRendering:
    def test_unannotated_alert_renders_bare_condition(self, raw_alert: Alert) -> None:
        assert raw_alert.render_condition() == "X"

    def test_delivery_carries_label_and_rendered_text(self, raw_alert: Alert) -> None:
        annotated = raw_alert.model_copy(update={"repeat_count": 1, "priority": 2})

        delivery = annotated.to_delivery()

        assert delivery.patient_id == 1
        assert delivery.timestamp == 1_000
        assert delivery.label == "BloodPressureAlert"
        assert delivery.condition_text == "[Priority 2] [Repeated 1 times] X"


class TestRepeatAnnotator:
    def test_single_check_yields_one(self, raw_alert: Alert) -> None:
        annotated = RepeatAnnotator().check_and_repeat(raw_alert)

        assert annotated.repeat_count == 1
        assert annotated.render_condition() == "[Repeated 1 times] X"

    def test_count_is_capped(self, raw_alert: Alert) -> None:
        annotator = RepeatAnnotator(max_repeats=3)
        alert = raw_alert
        for _ in range(5):
            alert = annotator.check_and_repeat(alert)

        assert alert.repeat_count == 3

    def test_other_fields_pass_through(self, raw_alert: Alert) -> None:
        annotated = RepeatAnnotator().check_and_repeat(raw_alert)

        assert annotated.patient_id == raw_alert.patient_id
        assert annotated.timestamp == raw_alert.timestamp
        assert annotated.condition == raw_alert.condition
        assert type(annotated) is type(raw_alert)

    def test_trace_hook_fires_only_when_count_changes(self, raw_alert: Alert) -> None:
        traces: list[str] = []
        annotator = RepeatAnnotator(max_repeats=1, on_repeat=lambda _a, text: traces.append(text))

        once = annotator.check_and_repeat(raw_alert)
        annotator.check_and_repeat(once)

        assert traces == ["[Repeated 0 times] X"]

    def test_shared_tracker_counts_across_calls(self, raw_alert: Alert) -> None:
        tracker = RepeatTracker()
        counts = [
            RepeatAnnotator(max_repeats=3, tracker=tracker).check_and_repeat(raw_alert).repeat_count
            for _ in range(4)
        ]

        assert counts == [1, 2, 3, 3]

    def test_tracker_keys_by_patient_and_category(self, factory: AlertFactory) -> None:
        tracker = RepeatTracker()
        annotator = RepeatAnnotator(tracker=tracker)
        high_rate = "Abnormal Heart Rate: High heart rate 150.0 bpm"

        annotator.check_and_repeat(factory.create_alert("ecg", 1, "Abnormal ECG Peak", 0))
        annotator.check_and_repeat(factory.create_alert("ecg", 2, "Abnormal ECG Peak", 0))
        annotator.check_and_repeat(factory.create_alert("ecg", 1, high_rate, 0))
        annotator.check_and_repeat(factory.create_alert("blood_pressure", 1, "Other", 0))
        again = annotator.check_and_repeat(factory.create_alert("ecg", 1, "Abnormal ECG Peak", 9))

        assert len(tracker) == 3
        assert again.repeat_count == 3

        tracker.reset()
        assert len(tracker) == 0

    def test_cycle_counts_bump_each_key_once(self, factory: AlertFactory) -> None:
        annotator = RepeatAnnotator(tracker=RepeatTracker())

        def one_cycle() -> list[int | None]:
            cycle_counts: CycleCounts = {}
            alerts = [
                factory.create_alert("ecg", 1, f"Abnormal Heart Rate: High heart rate {v} bpm", 0)
                for v in (150.0, 160.0)
            ]
            return [annotator.check_and_repeat(a, cycle_counts).repeat_count for a in alerts]

        assert one_cycle() == [1, 1]
        assert one_cycle() == [2, 2]

    def test_tracker_is_thread_safe(self, raw_alert: Alert) -> None:
        tracker = RepeatTracker()

        def bump() -> None:
            for _ in range(1_000):
                tracker.increment(raw_alert, cap=1_000_000)

        threads = [threading.Thread(target=bump) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert tracker.get(raw_alert) == 4_000


class TestAnnotationPipeline:
    def test_repeat_then_priority(self, raw_alert: Alert) -> None:
        annotated = AnnotationPipeline().apply(raw_alert)

        assert annotated.render_condition() == "[Priority 2] [Repeated 1 times] X"

    def test_per_alert_mode_never_accumulates(self, raw_alert: Alert) -> None:
        pipeline = AnnotationPipeline(AnnotationConfig(repeat_tracking="per_alert"))

        results = [pipeline.apply(raw_alert).repeat_count for _ in range(3)]

        assert results == [1, 1, 1]
        assert pipeline.tracker is None

    def test_persistent_mode_accumulates(self, raw_alert: Alert) -> None:
        pipeline = AnnotationPipeline(AnnotationConfig(repeat_tracking="persistent"))

        rendered = [pipeline.apply(raw_alert).render_condition() for _ in range(4)]

        assert rendered == [
            "[Priority 2] [Repeated 1 times] X",
            "[Priority 2] [Repeated 2 times] X",
            "[Priority 2] [Repeated 3 times] X",
            "[Priority 2] [Repeated 3 times] X",
        ]

    def test_priority_level_is_configurable(self, raw_alert: Alert) -> None:
        assert PriorityAnnotator(5).annotate(raw_alert).render_condition() == "[Priority 5] X"
