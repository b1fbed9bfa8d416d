"""Shared fixtures for alert engine tests."""

import pytest

from patient_alerts.adapters.sinks import CollectingAlertSink
from patient_alerts.services.evaluation import EvaluationCycle
from patient_alerts.services.record_store import RecordStore

# Fixed "now" so every test record is inside the evaluation window
NOW_MS = 1_700_000_000_000


@pytest.fixture
def store() -> RecordStore:
    return RecordStore()


@pytest.fixture
def sink() -> CollectingAlertSink:
    return CollectingAlertSink()


@pytest.fixture
def cycle(store: RecordStore, sink: CollectingAlertSink) -> EvaluationCycle:
    return EvaluationCycle(store, sink, clock=lambda: NOW_MS)


@pytest.fixture
def now() -> int:
    return NOW_MS
