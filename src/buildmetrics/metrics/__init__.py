"""Build metric aggregation for buildmetrics.

This module derives per-job delivery metrics from build completions. State
is held in memory for the lifetime of the process.

Architecture:
    host build-finished callback
            |
            v
    BuildCompletionHandler (handler module)
            | job, result, duration, start time
            v
    MetricAggregator (aggregator module)
            | reads/updates JobRunState under the job's lock
            v
    MetricBundle -> metric sink
"""

from buildmetrics.metrics.aggregator import (
    METRIC_PREFIX,
    JobRunState,
    JobStateStore,
    MetricAggregator,
    MetricBundle,
    to_seconds,
)

__all__ = [
    "METRIC_PREFIX",
    "JobRunState",
    "JobStateStore",
    "MetricAggregator",
    "MetricBundle",
    "to_seconds",
]
