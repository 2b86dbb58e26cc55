"""Tests for outcome normalization."""

import pytest

from buildmetrics.events import Result
from buildmetrics.status import (
    EVIDENCE_PRIORITY,
    Evidence,
    EvidenceKind,
    FlowNode,
    ServiceCheckStatus,
    classify_flow_node,
    is_pipeline_node,
    is_stage_node,
    service_check_status,
    to_trace_status,
    to_webhook_status,
)


class TestTraceStatus:
    """Tests for to_trace_status."""

    @pytest.mark.parametrize(
        "result,expected",
        [
            ("FAILURE", "error"),
            ("ABORTED", "canceled"),
            ("NOT_BUILT", "canceled"),
            ("UNSTABLE", "unstable"),
            ("SUCCESS", "success"),
            ("Skipped", "skipped"),
        ],
    )
    def test_mapping(self, result, expected):
        """Test the trace table."""
        assert to_trace_status(result) == expected

    def test_accepts_enum(self):
        """Test Result members are accepted."""
        assert to_trace_status(Result.FAILURE) == "error"


class TestWebhookStatus:
    """Tests for to_webhook_status."""

    @pytest.mark.parametrize(
        "result,expected",
        [
            ("failure", "error"),
            ("ABORTED", "canceled"),
            ("NOT_BUILT", "skipped"),
            ("UNSTABLE", "success"),
            ("SUCCESS", "success"),
            ("unknown", "unknown"),
        ],
    )
    def test_mapping(self, result, expected):
        """Test the webhook table."""
        assert to_webhook_status(result) == expected


class TestServiceCheckStatus:
    """Tests for service_check_status."""

    def test_codes(self):
        """Test the service check code for each result."""
        assert service_check_status(Result.SUCCESS) == ServiceCheckStatus.OK
        assert service_check_status("UNSTABLE") == ServiceCheckStatus.WARNING
        assert service_check_status("failure") == ServiceCheckStatus.CRITICAL
        assert service_check_status("NOT_BUILT") == ServiceCheckStatus.WARNING

    def test_aborted_has_no_check(self):
        """Test aborted builds skip the service check."""
        assert service_check_status(Result.ABORTED) is None

    def test_codes_are_ints(self):
        """Test codes compare as the backend's integers."""
        assert int(ServiceCheckStatus.CRITICAL) == 2
        assert ServiceCheckStatus.UNKNOWN == 3


class TestClassifyFlowNode:
    """Tests for the flow node classifier."""

    def test_no_evidence_is_unknown(self):
        """Test a bare node is UNKNOWN."""
        assert classify_flow_node(FlowNode("1")) == "UNKNOWN"

    def test_skip_beats_stale_warning(self):
        """Test a skipped stage wins over a warning on the same node."""
        node = FlowNode("2", evidence=(Evidence.warning("UNSTABLE"), Evidence.skipped()))
        assert classify_flow_node(node) == "SKIPPED"

    def test_block_end_uses_start_node_skip(self):
        """Test a block end is skipped when its start node is."""
        start = FlowNode("3", evidence=(Evidence.skipped(),))
        end = FlowNode("4", evidence=(Evidence.error(),), start_node=start)
        assert classify_flow_node(end) == "SKIPPED"

    def test_error_beats_warning(self):
        """Test an error wins over a warning."""
        node = FlowNode("5", evidence=(Evidence.warning("UNSTABLE"), Evidence.error()))
        assert classify_flow_node(node) == "ERROR"

    def test_warning_result_verbatim(self):
        """Test the warning's result token is returned as recorded."""
        node = FlowNode("6", evidence=(Evidence.warning(Result.UNSTABLE),))
        assert classify_flow_node(node) == "UNSTABLE"

    def test_warning_beats_cancel(self):
        """Test a warning wins over a queue cancellation."""
        node = FlowNode("7", evidence=(Evidence.cancelled(), Evidence.warning("FAILURE")))
        assert classify_flow_node(node) == "FAILURE"

    def test_cancelled(self):
        """Test queue cancellation."""
        node = FlowNode("8", evidence=(Evidence.cancelled(),), execution_complete=True)
        assert classify_flow_node(node) == "CANCELED"

    def test_complete_execution_is_success(self):
        """Test nodes of a completed execution succeed."""
        assert classify_flow_node(FlowNode("9", execution_complete=True)) == "SUCCESS"

    def test_executed_marker_is_success(self):
        """Test an executed marker succeeds while the graph still runs."""
        node = FlowNode("10", evidence=(Evidence.executed(),))
        assert classify_flow_node(node) == "SUCCESS"

    def test_block_end_start_without_skip(self):
        """Test a block end with an ordinary start node falls through."""
        start = FlowNode("11")
        end = FlowNode("12", start_node=start, execution_complete=True)
        assert end.is_block_end
        assert classify_flow_node(end) == "SUCCESS"

    def test_priority_order_drives_result(self):
        """Test the evidence order decides which marker wins."""
        node = FlowNode(
            "13",
            evidence=(Evidence.error(), Evidence.warning("UNSTABLE")),
            execution_complete=True,
        )
        warning_first = (
            EvidenceKind.WARNING,
            EvidenceKind.ERROR,
            EvidenceKind.EXECUTED,
        )

        assert classify_flow_node(node) == "ERROR"
        assert classify_flow_node(node, warning_first) == "UNSTABLE"
        assert classify_flow_node(node, (EvidenceKind.EXECUTED,)) == "SUCCESS"
        assert EVIDENCE_PRIORITY[0] is EvidenceKind.SKIPPED_STAGE


class TestNodeKinds:
    """Tests for stage and pipeline node detection."""

    def test_legacy_stage(self):
        """Test a stage marker makes a stage node."""
        assert is_stage_node(FlowNode("1", evidence=(Evidence(EvidenceKind.STAGE),)))

    def test_labelled_stage(self):
        """Test a label without thread name makes a stage node."""
        assert is_stage_node(FlowNode("2", evidence=(Evidence(EvidenceKind.LABEL),)))

    def test_parallel_branch_is_not_stage(self):
        """Test a labelled parallel branch is not a stage."""
        node = FlowNode(
            "3", evidence=(Evidence(EvidenceKind.LABEL), Evidence(EvidenceKind.THREAD_NAME))
        )
        assert not is_stage_node(node)

    def test_none(self):
        """Test None is neither a stage nor a pipeline node."""
        assert not is_stage_node(None)
        assert not is_pipeline_node(None)

    def test_pipeline_node(self):
        """Test the flow end node is the pipeline node."""
        assert is_pipeline_node(FlowNode("4", evidence=(Evidence(EvidenceKind.FLOW_END),)))
        assert not is_pipeline_node(FlowNode("5"))
