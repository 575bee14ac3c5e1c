"""Detection layer - Transaction classification and pattern matching."""

from pioneer_tracker.detector.catalog import PATTERN_CATALOG, PIONEER_PATTERNS
from pioneer_tracker.detector.classifier import TransactionClassifier
from pioneer_tracker.detector.matcher import SlidingWindowMatcher
from pioneer_tracker.detector.models import (
    ClassifiedTransaction,
    Observation,
    PatternDefinition,
    PatternMatch,
    PioneerCategory,
    Signal,
    SignalStatus,
)

__all__ = [
    "PATTERN_CATALOG",
    "PIONEER_PATTERNS",
    "ClassifiedTransaction",
    "Observation",
    "PatternDefinition",
    "PatternMatch",
    "PioneerCategory",
    "Signal",
    "SignalStatus",
    "SlidingWindowMatcher",
    "TransactionClassifier",
]
