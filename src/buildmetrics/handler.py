"""Build completion handling.

Turns a finished build into metrics, a service check and an event, and sends
them through the host's transport.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from buildmetrics.client import MetricsClient, resolve_hostname
from buildmetrics.config import Config, ConfigHolder
from buildmetrics.events import BuildCompletionEvent, BuildFinishedEvent
from buildmetrics.metrics.aggregator import METRIC_PREFIX, MetricAggregator, MetricBundle
from buildmetrics.resolver import TagResolver
from buildmetrics.status import to_webhook_status
from buildmetrics.tags import TagSet

logger = logging.getLogger(__name__)

SERVICE_CHECK_NAME = f"{METRIC_PREFIX}.status"
COMPLETED_METRIC = f"{METRIC_PREFIX}.completed"


@dataclass
class HandlerResult:
    """Outcome of handling one build completion.

    Attributes:
        emitted: Whether anything was sent for the build.
        skipped_reason: Why the build was skipped, if it was.
        tags: The rendered tags attached to every emission.
        bundle: The metrics computed for the build.
        status: The webhook-normalized build status.
        errors: Transport failures, one message per failed emission.
    """

    emitted: bool
    skipped_reason: str | None = None
    tags: list[str] = field(default_factory=list)
    bundle: MetricBundle | None = None
    status: str | None = None
    errors: list[str] = field(default_factory=list)

    @classmethod
    def skipped(cls, reason: str) -> HandlerResult:
        return cls(emitted=False, skipped_reason=reason)


class BuildCompletionHandler:
    """Handles build-finished callbacks from the host.

    Safe to call concurrently: tag resolution works on the event and a
    configuration snapshot, and the aggregator serializes per job.
    """

    def __init__(
        self,
        client: MetricsClient,
        config: Config | ConfigHolder | None = None,
        aggregator: MetricAggregator | None = None,
        resolver: TagResolver | None = None,
    ):
        """Initialize the handler.

        Args:
            client: Transport used for emission.
            config: Configuration, or a holder that may be reloaded while
                the handler runs. Defaults to an empty configuration.
            aggregator: Aggregator holding per-job state.
            resolver: Tag resolver. Defaults to one using the current
                process environment.
        """
        self.client = client
        if isinstance(config, ConfigHolder):
            self.config_holder = config
        else:
            self.config_holder = ConfigHolder(config)
        self.aggregator = aggregator if aggregator is not None else MetricAggregator()
        self.resolver = resolver if resolver is not None else TagResolver(dict(os.environ))

    def on_build_finished(self, event: BuildCompletionEvent) -> HandlerResult:
        """Handle a finished build.

        Args:
            event: Snapshot of the finished build.

        Returns:
            HandlerResult describing what was emitted.
        """
        config = self.config_holder.get()
        global_config = config.global_config
        job_name = event.job.full_name

        if not global_config.is_job_tracked(job_name):
            logger.debug(f"Job {job_name} is not tracked, skipping")
            return HandlerResult.skipped("not tracked")

        if not global_config.has_api_key:
            logger.debug(f"No API key configured, skipping build of {job_name}")
            return HandlerResult.skipped("no api key")

        if event.result is None:
            logger.debug(f"Build #{event.build_number} of {job_name} has no result, skipping")
            return HandlerResult.skipped("no result")

        job_config = config.job_config_for(job_name)
        tags = self.resolver.resolve_build_tags(event, job_config, global_config)
        rendered = tags.to_list()
        hostname = resolve_hostname(global_config, event.env)

        bundle = self.aggregator.on_completion(
            event.job, event.result, event.duration_ms, event.start_time_ms
        )
        status = to_webhook_status(event.result)

        result = HandlerResult(emitted=True, tags=rendered, bundle=bundle, status=status)

        for name, value in bundle.metrics().items():
            self._emit(result, self.client.emit_metric, name, value, hostname, rendered)

        if bundle.service_check is not None:
            self._emit(
                result,
                self.client.emit_service_check,
                SERVICE_CHECK_NAME,
                int(bundle.service_check),
                hostname,
                rendered,
            )
        else:
            logger.debug(f"Build #{event.build_number} of {job_name} was aborted, no service check")

        if global_config.emit_build_events:
            payload = BuildFinishedEvent.from_build(event, status, rendered, hostname)
            self._emit(result, self.client.emit_event, payload.to_dict())

        logger.info(
            f"Reported build #{event.build_number} of {job_name} ({status}): "
            f"{len(bundle.metrics())} metrics"
        )
        return result

    def flush_counters(self) -> int:
        """Emit the number of completions per job since the last flush.

        Returns:
            Number of jobs reported.
        """
        config = self.config_holder.get()
        hostname = resolve_hostname(config.global_config)
        counts = self.aggregator.drain_completed_counts()
        for job, count in counts.items():
            tags = TagSet()
            tags.add("job", job.full_name)
            try:
                self.client.emit_metric(COMPLETED_METRIC, count, hostname, tags.to_list())
            except Exception as e:
                logger.error(f"Failed to emit {COMPLETED_METRIC} for {job}: {e}", exc_info=True)
        return len(counts)

    @staticmethod
    def _emit(result: HandlerResult, emit: Callable[..., Any], *args: Any) -> None:
        # A failed emission must not stop the remaining ones for the build
        try:
            emit(*args)
        except Exception as e:
            logger.error(f"Failed to send to the monitoring backend: {e}", exc_info=True)
            result.errors.append(str(e))
