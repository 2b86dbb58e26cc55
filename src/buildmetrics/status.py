"""Outcome normalization for builds and pipeline steps.

Two tables map CI result tokens to the vocabularies used downstream: the
trace vocabulary keeps ``unstable``, the webhook vocabulary does not accept
it and reports such builds as ``success``.

Pipeline steps are classified from the evidence attached to their flow node.
A node may carry several pieces of evidence at once; the first kind in
``EVIDENCE_PRIORITY`` wins.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum, IntEnum

from buildmetrics.events import Result, result_token


class ServiceCheckStatus(IntEnum):
    """Service check codes understood by the monitoring backend."""

    OK = 0
    WARNING = 1
    CRITICAL = 2
    UNKNOWN = 3


def to_trace_status(result: Result | str) -> str:
    """Normalize a result for traces.

    failure -> error, aborted/not_built -> canceled, anything else is
    lower-cased as-is (so unstable stays unstable).
    """
    token = result_token(result).lower()
    if token == "failure":
        return "error"
    if token in ("aborted", "not_built"):
        return "canceled"
    return token


def to_webhook_status(result: Result | str) -> str:
    """Normalize a result for the webhooks API, which has no unstable status."""
    token = result_token(result).lower()
    return {
        "failure": "error",
        "aborted": "canceled",
        "not_built": "skipped",
        "unstable": "success",
    }.get(token, token)


def service_check_status(result: Result | str) -> ServiceCheckStatus | None:
    """Map a build result to a service check code.

    Returns:
        The status code, or None for aborted builds, which emit no check.
    """
    token = result_token(result)
    if token == Result.ABORTED.value:
        return None
    if token == Result.SUCCESS.value:
        return ServiceCheckStatus.OK
    if token == Result.FAILURE.value:
        return ServiceCheckStatus.CRITICAL
    return ServiceCheckStatus.WARNING


class EvidenceKind(Enum):
    """Kinds of markers a flow node can carry."""

    SKIPPED_STAGE = "skipped_stage"
    ERROR = "error"
    WARNING = "warning"
    QUEUE_CANCELLED = "queue_cancelled"
    EXECUTED = "executed"
    # Structural markers, not used for the result
    STAGE = "stage"
    LABEL = "label"
    THREAD_NAME = "thread_name"
    FLOW_END = "flow_end"


# Order in which evidence decides a node's result
EVIDENCE_PRIORITY = (
    EvidenceKind.SKIPPED_STAGE,
    EvidenceKind.ERROR,
    EvidenceKind.WARNING,
    EvidenceKind.QUEUE_CANCELLED,
    EvidenceKind.EXECUTED,
)


@dataclass(frozen=True)
class Evidence:
    """A marker attached to a flow node.

    Attributes:
        kind: What the marker says.
        result: For warnings, the result token recorded with the warning.
    """

    kind: EvidenceKind
    result: str | None = None

    @classmethod
    def skipped(cls) -> Evidence:
        return cls(EvidenceKind.SKIPPED_STAGE)

    @classmethod
    def error(cls) -> Evidence:
        return cls(EvidenceKind.ERROR)

    @classmethod
    def warning(cls, result: Result | str) -> Evidence:
        return cls(EvidenceKind.WARNING, result_token(result))

    @classmethod
    def cancelled(cls) -> Evidence:
        return cls(EvidenceKind.QUEUE_CANCELLED)

    @classmethod
    def executed(cls) -> Evidence:
        return cls(EvidenceKind.EXECUTED)


@dataclass
class FlowNode:
    """A step in a pipeline's execution graph.

    Attributes:
        node_id: Identifier of the node within its graph.
        evidence: Markers attached to the node.
        start_node: For block-end nodes, the matching block-start node.
        execution_complete: Whether the owning flow graph has completed.
    """

    node_id: str
    evidence: tuple[Evidence, ...] = ()
    start_node: FlowNode | None = None
    execution_complete: bool = False
    _kinds: frozenset[EvidenceKind] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.evidence = tuple(self.evidence)
        self._kinds = frozenset(e.kind for e in self.evidence)

    def has(self, kind: EvidenceKind) -> bool:
        return kind in self._kinds

    def first(self, kind: EvidenceKind) -> Evidence | None:
        for item in self.evidence:
            if item.kind is kind:
                return item
        return None

    @property
    def is_block_end(self) -> bool:
        return self.start_node is not None


def _skipped(node: FlowNode) -> str | None:
    if node.has(EvidenceKind.SKIPPED_STAGE):
        return "SKIPPED"
    if node.start_node is not None and node.start_node.has(EvidenceKind.SKIPPED_STAGE):
        return "SKIPPED"
    return None


def _error(node: FlowNode) -> str | None:
    return "ERROR" if node.has(EvidenceKind.ERROR) else None


def _warning(node: FlowNode) -> str | None:
    warning = node.first(EvidenceKind.WARNING)
    if warning is None:
        return None
    return warning.result or "UNKNOWN"


def _cancelled(node: FlowNode) -> str | None:
    return "CANCELED" if node.has(EvidenceKind.QUEUE_CANCELLED) else None


def _executed(node: FlowNode) -> str | None:
    if node.execution_complete or node.has(EvidenceKind.EXECUTED):
        return "SUCCESS"
    return None


# Result check for each kind in EVIDENCE_PRIORITY
_CLASSIFIERS: dict[EvidenceKind, Callable[[FlowNode], str | None]] = {
    EvidenceKind.SKIPPED_STAGE: _skipped,
    EvidenceKind.ERROR: _error,
    EvidenceKind.WARNING: _warning,
    EvidenceKind.QUEUE_CANCELLED: _cancelled,
    EvidenceKind.EXECUTED: _executed,
}


def classify_flow_node(
    node: FlowNode, priority: tuple[EvidenceKind, ...] = EVIDENCE_PRIORITY
) -> str:
    """Determine the result of a pipeline step.

    Args:
        node: The flow node to classify.
        priority: Evidence kinds in the order they are checked.

    Returns:
        SKIPPED, ERROR, the warning's result token, CANCELED, SUCCESS or
        UNKNOWN.
    """
    for kind in priority:
        result = _CLASSIFIERS[kind](node)
        if result is not None:
            return result
    return "UNKNOWN"


def is_stage_node(node: FlowNode | None) -> bool:
    """Check if a block-start node opens a stage.

    Legacy stages carry a stage marker. Declarative stages carry a label; a
    label on a node that also names a thread marks a parallel branch.
    """
    if node is None:
        return False
    if node.has(EvidenceKind.STAGE):
        return True
    if node.has(EvidenceKind.THREAD_NAME):
        return False
    return node.has(EvidenceKind.LABEL)


def is_pipeline_node(node: FlowNode | None) -> bool:
    """Check if a node is the end node of the whole pipeline."""
    return node is not None and node.has(EvidenceKind.FLOW_END)
