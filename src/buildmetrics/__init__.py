"""buildmetrics - Build metrics and tags for CI monitoring.

buildmetrics turns build-finished callbacks from a CI server into metrics,
service checks and events for a monitoring backend, with tags derived from
job, global and pipeline configuration.
"""

__version__ = "0.1.0"
__author__ = "buildmetrics maintainers"

from buildmetrics.config import Config, ConfigError, GlobalConfig, JobConfig, PatternConfigError
from buildmetrics.events import BuildCompletionEvent, JobIdentity, Result
from buildmetrics.handler import BuildCompletionHandler, HandlerResult
from buildmetrics.metrics import MetricAggregator, MetricBundle
from buildmetrics.resolver import TagResolver
from buildmetrics.status import classify_flow_node, to_trace_status, to_webhook_status
from buildmetrics.tags import TagSet

__all__ = [
    "BuildCompletionEvent",
    "BuildCompletionHandler",
    "Config",
    "ConfigError",
    "GlobalConfig",
    "HandlerResult",
    "JobConfig",
    "JobIdentity",
    "MetricAggregator",
    "MetricBundle",
    "PatternConfigError",
    "Result",
    "TagResolver",
    "TagSet",
    "classify_flow_node",
    "to_trace_status",
    "to_webhook_status",
]
