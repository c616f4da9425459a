#
# src/testrecon/engine/__init__.py
#
"""
Result reconciliation engine: name matching, streaming classification,
report reconciliation, fatal-error extraction and hierarchical aggregation.
"""
from .aggregator import AggregationResult, HierarchicalAggregator
from .classifier import Channel, StreamingOutcomeClassifier, StreamOutcome, classify_line
from .fatal import FatalErrorExtractor, FatalErrorInfo
from .name_index import CanonicalNameIndex, canonical_variants
from .report import CorrectionSet, ReportEntry, ReportReconciler, ReportStatus, parse_junit_report

__all__ = [
    "AggregationResult",
    "CanonicalNameIndex",
    "Channel",
    "CorrectionSet",
    "FatalErrorExtractor",
    "FatalErrorInfo",
    "HierarchicalAggregator",
    "ReportEntry",
    "ReportReconciler",
    "ReportStatus",
    "StreamOutcome",
    "StreamingOutcomeClassifier",
    "canonical_variants",
    "classify_line",
    "parse_junit_report",
]

# 🔼⚙️
