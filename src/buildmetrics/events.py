"""Build event types for buildmetrics.

Defines the build-completion snapshot the host hands to the handler and the
build-finished event payload sent back through the transport.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


class Result(Enum):
    """Build outcomes reported by the CI server."""

    SUCCESS = "SUCCESS"
    UNSTABLE = "UNSTABLE"
    FAILURE = "FAILURE"
    NOT_BUILT = "NOT_BUILT"
    ABORTED = "ABORTED"

    @classmethod
    def parse(cls, value: str | Result | None) -> Result | str | None:
        """Parse a result token case-insensitively.

        Unknown tokens are returned upper-cased as plain strings so they can
        still be reported.
        """
        if value is None or isinstance(value, Result):
            return value
        token = value.strip().upper()
        if not token:
            return None
        try:
            return cls(token)
        except ValueError:
            return token


def result_token(result: Result | str) -> str:
    """Return the upper-case token for a parsed result."""
    return result.value if isinstance(result, Result) else str(result).upper()


@dataclass(frozen=True)
class JobIdentity:
    """Stable identity of a job across its builds.

    Attributes:
        parent_full_name: Slash-joined names of the enclosing folders/groups.
        name: The job's short name.
    """

    parent_full_name: str
    name: str

    @property
    def full_name(self) -> str:
        if self.parent_full_name:
            return f"{self.parent_full_name}/{self.name}"
        return self.name

    @classmethod
    def from_full_name(cls, full_name: str) -> JobIdentity:
        parent, _, name = full_name.rpartition("/")
        return cls(parent_full_name=parent, name=name)

    def __str__(self) -> str:
        return self.full_name


@dataclass(frozen=True)
class BuildCompletionEvent:
    """Snapshot of a finished build.

    Attributes:
        job: Identity of the job that produced the build.
        result: Parsed build result, None while the build has no result.
        duration_ms: Build duration in milliseconds.
        build_number: The build number.
        start_time_ms: Build start time, epoch milliseconds.
        env: Environment variables of the build.
        pipeline_tags: Tags declared by the pipeline itself.
        workspace: Build workspace, used to resolve relative tag files.
        user_id: User that triggered the build, if known.
    """

    job: JobIdentity
    result: Result | str | None
    duration_ms: int = 0
    build_number: int = 0
    start_time_ms: int = 0
    env: Mapping[str, str] = field(default_factory=dict)
    pipeline_tags: tuple[str, ...] = ()
    workspace: Path | None = None
    user_id: str | None = None

    @property
    def end_time_ms(self) -> int:
        return self.start_time_ms + self.duration_ms

    @property
    def result_token(self) -> str | None:
        if self.result is None:
            return None
        return result_token(self.result)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BuildCompletionEvent:
        """Create an event from a JSON-style payload.

        Accepts either ``job`` (full name) or ``parent`` plus ``name``.

        Raises:
            ValueError: If the job name is missing or a number is invalid.
        """
        if data.get("name"):
            job = JobIdentity(parent_full_name=data.get("parent") or "", name=data["name"])
        elif data.get("job"):
            job = JobIdentity.from_full_name(data["job"])
        else:
            raise ValueError("Build event missing required field 'job'")

        workspace = data.get("workspace")
        return cls(
            job=job,
            result=Result.parse(data.get("result")),
            duration_ms=int(data.get("duration_ms", 0)),
            build_number=int(data.get("build_number", 0)),
            start_time_ms=int(data.get("start_time_ms", 0)),
            env=dict(data.get("env") or {}),
            pipeline_tags=tuple(data.get("pipeline_tags") or ()),
            workspace=Path(workspace) if workspace else None,
            user_id=data.get("user_id"),
        )


@dataclass
class BuildFinishedEvent:
    """Event payload describing a finished build.

    Attributes:
        title: Short, human-readable summary.
        text: Longer description.
        alert_type: One of success, warning, error, info.
        priority: normal or low.
        aggregation_key: Groups events of the same job in the backend.
        date_happened: End time of the build, epoch seconds.
        hostname: Reporting host, if known.
        tags: Rendered tag list.
    """

    title: str
    text: str
    alert_type: str
    priority: str
    aggregation_key: str
    date_happened: int
    hostname: str | None = None
    tags: list[str] = field(default_factory=list)

    @classmethod
    def from_build(
        cls,
        event: BuildCompletionEvent,
        status: str,
        tags: list[str],
        hostname: str | None = None,
    ) -> BuildFinishedEvent:
        """Describe a completed build.

        Args:
            event: The completed build.
            status: The webhook-normalized status of the build.
            tags: Rendered tags to attach.
            hostname: Reporting host.
        """
        job_name = event.job.full_name
        token = event.result_token or "UNKNOWN"
        alert_type = {
            "success": "success",
            "error": "error",
            "canceled": "warning",
            "skipped": "info",
        }.get(status, "warning")
        if token == Result.UNSTABLE.value:
            alert_type = "warning"

        text = (
            f"Build #{event.build_number} of {job_name} finished with status "
            f"{token} ({event.duration_ms // 1000} secs)"
        )
        if hostname:
            text += f" on {hostname}"

        return cls(
            title=f"{job_name} build #{event.build_number} {status} on {hostname or 'unknown host'}",
            text=text,
            alert_type=alert_type,
            priority="low" if alert_type == "success" else "normal",
            aggregation_key=job_name,
            date_happened=event.end_time_ms // 1000,
            hostname=hostname,
            tags=list(tags),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = {
            "title": self.title,
            "text": self.text,
            "alert_type": self.alert_type,
            "priority": self.priority,
            "aggregation_key": self.aggregation_key,
            "date_happened": self.date_happened,
            "tags": list(self.tags),
        }
        if self.hostname:
            data["host"] = self.hostname
        return data
