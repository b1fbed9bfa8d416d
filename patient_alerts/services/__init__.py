"""
Core services for the alert engine.

This package contains the record store, the rule strategies, alert
construction and annotation, and the evaluation/monitoring orchestration.
"""

from .alert_factory import AlertFactory
from .annotators import AnnotationPipeline, PriorityAnnotator, RepeatAnnotator, RepeatTracker
from .evaluation import AlertSink, EvaluationCycle
from .monitoring import MonitoringRound, MonitoringService
from .record_store import ReadWriteLock, RecordStore
from .strategies import AlertStrategy, default_strategies

__all__ = [
    "AlertFactory",
    "AlertSink",
    "AlertStrategy",
    "AnnotationPipeline",
    "EvaluationCycle",
    "MonitoringRound",
    "MonitoringService",
    "PriorityAnnotator",
    "ReadWriteLock",
    "RecordStore",
    "RepeatAnnotator",
    "RepeatTracker",
    "default_strategies",
]
