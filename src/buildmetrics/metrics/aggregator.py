"""Per-job timing metrics for buildmetrics.

This module keeps the running state of every job seen so far and derives
delivery metrics from consecutive build completions.

Usage:
    from buildmetrics.metrics import MetricAggregator

    aggregator = MetricAggregator()
    bundle = aggregator.on_completion(job, Result.SUCCESS, 123000, start_ms)
    bundle.metrics()  # {"jenkins.job.duration": 123, "jenkins.job.leadtime": ...}

Metrics, per completion:
    duration      build duration
    leadtime      duration plus the time since the job's previous build ended
    cycletime     (success) time since the previous successful build ended
    mttr          (success after failure) time since the last failure ended
    feedbacktime  (failure) build duration
    mtbf          (failure) time since the previous failure ended
"""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass, replace
from typing import Any

from buildmetrics.events import JobIdentity, Result, result_token
from buildmetrics.lock import KeyedLock
from buildmetrics.status import ServiceCheckStatus, service_check_status

logger = logging.getLogger(__name__)

METRIC_PREFIX = "jenkins.job"


@dataclass
class JobRunState:
    """Running state of a single job.

    Attributes:
        last_build_end_ms: End time of the job's last completed build.
        last_failure_end_ms: End time of the job's last failed build.
        last_success_end_ms: End time of the job's last successful build.
        completions: Number of completions applied to this state.
    """

    last_build_end_ms: int | None = None
    last_failure_end_ms: int | None = None
    last_success_end_ms: int | None = None
    completions: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {k: v for k, v in asdict(self).items() if v is not None}


class JobStateStore:
    """Concurrent store of JobRunState keyed by job identity.

    Callers must hold the job's lock from ``lock`` while reading and
    mutating a state obtained with ``get_or_create``.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._states: dict[JobIdentity, JobRunState] = {}
        self._completed: dict[JobIdentity, int] = {}
        self.lock = KeyedLock()

    def get_or_create(self, job: JobIdentity) -> JobRunState:
        with self._guard:
            state = self._states.get(job)
            if state is None:
                state = JobRunState()
                self._states[job] = state
            return state

    def get(self, job: JobIdentity) -> JobRunState | None:
        with self._guard:
            return self._states.get(job)

    def count_completion(self, job: JobIdentity) -> None:
        with self._guard:
            self._completed[job] = self._completed.get(job, 0) + 1

    def drain_completed(self) -> dict[JobIdentity, int]:
        """Return the completion counts since the last drain and reset them."""
        with self._guard:
            counts = self._completed
            self._completed = {}
            return counts

    def __len__(self) -> int:
        with self._guard:
            return len(self._states)


@dataclass
class MetricBundle:
    """Metrics derived from one build completion.

    All durations are in milliseconds; ``metrics`` converts them to whole
    seconds for the metric sink. Optional metrics are None when they do not
    apply to the completion.
    """

    job: JobIdentity
    result: str
    duration_ms: int
    leadtime_ms: int
    cycletime_ms: int | None = None
    mttr_ms: int | None = None
    feedbacktime_ms: int | None = None
    mtbf_ms: int | None = None
    service_check: ServiceCheckStatus | None = None

    def metrics(self) -> dict[str, int]:
        """Return ``{metric name: seconds}`` for every metric present."""
        values = {
            "duration": self.duration_ms,
            "leadtime": self.leadtime_ms,
            "cycletime": self.cycletime_ms,
            "mttr": self.mttr_ms,
            "feedbacktime": self.feedbacktime_ms,
            "mtbf": self.mtbf_ms,
        }
        return {
            f"{METRIC_PREFIX}.{name}": to_seconds(value)
            for name, value in values.items()
            if value is not None
        }


def to_seconds(millis: int) -> int:
    """Truncate milliseconds to whole seconds."""
    return int(millis / 1000)


class MetricAggregator:
    """Derives timing metrics from build completions.

    State is kept per job. Completions of the same job are serialized;
    completions of different jobs run independently.
    """

    def __init__(self, store: JobStateStore | None = None):
        """Initialize the aggregator.

        Args:
            store: State store to use. Defaults to a fresh, empty store.
        """
        self.store = store if store is not None else JobStateStore()

    def on_completion(
        self,
        job: JobIdentity,
        result: Result | str,
        duration_ms: int,
        start_time_ms: int,
    ) -> MetricBundle:
        """Record a build completion and compute its metrics.

        Args:
            job: The job that completed.
            result: The build result.
            duration_ms: Build duration in milliseconds.
            start_time_ms: Build start time, epoch milliseconds.

        Returns:
            MetricBundle with the metrics for this completion.
        """
        token = result_token(result)
        end_ms = start_time_ms + duration_ms

        with self.store.lock.hold(job):
            state = self.store.get_or_create(job)

            # No previous build: the gap is measured from zero
            gap_ms = end_ms - (state.last_build_end_ms or 0)
            bundle = MetricBundle(
                job=job,
                result=token,
                duration_ms=duration_ms,
                leadtime_ms=duration_ms + gap_ms,
                service_check=service_check_status(token),
            )

            if token == Result.SUCCESS.value:
                if state.last_success_end_ms is not None:
                    bundle.cycletime_ms = end_ms - state.last_success_end_ms
                if state.last_failure_end_ms is not None and (
                    state.last_success_end_ms is None
                    or state.last_failure_end_ms > state.last_success_end_ms
                ):
                    bundle.mttr_ms = end_ms - state.last_failure_end_ms
                state.last_success_end_ms = end_ms
            elif token == Result.FAILURE.value:
                bundle.feedbacktime_ms = duration_ms
                if state.last_failure_end_ms is not None:
                    bundle.mtbf_ms = end_ms - state.last_failure_end_ms
                state.last_failure_end_ms = end_ms

            state.last_build_end_ms = end_ms
            state.completions += 1

        self.store.count_completion(job)
        logger.debug(f"Computed metrics for {job}: {bundle.metrics()}")
        return bundle

    def snapshot(self, job: JobIdentity) -> JobRunState | None:
        """Return a copy of a job's state, or None if the job is unknown."""
        with self.store.lock.hold(job):
            state = self.store.get(job)
            return replace(state) if state is not None else None

    def job_count(self) -> int:
        return len(self.store)

    def drain_completed_counts(self) -> dict[JobIdentity, int]:
        """Return per-job completion counts since the last drain."""
        return self.store.drain_completed()
