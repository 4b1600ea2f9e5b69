"""
Reviewer decision parsing and application
"""
from uuid import uuid4

import pytest
from pydantic import ValidationError

from letterflow.errors import DataValidationError, InvalidTransitionError, NotFoundError
from letterflow.models.approval import ApprovalState
from letterflow.workflow.decisions import (
    REJECTION_REASON,
    ApprovalDecision,
    DecisionType,
    apply_decision,
    parse_callback_data,
)


class TestCallbackParsing:
    def test_known_prefixes(self):
        approval_id = uuid4()
        assert parse_callback_data(f"approve_{approval_id}") == (DecisionType.APPROVE, approval_id)
        assert parse_callback_data(f"change_{approval_id}") == (DecisionType.REQUEST_CHANGES, approval_id)
        assert parse_callback_data(f"reject_{approval_id}") == (DecisionType.REJECT, approval_id)

    def test_unknown_prefix(self):
        with pytest.raises(DataValidationError):
            parse_callback_data(f"maybe_{uuid4()}")

    def test_malformed_id(self):
        with pytest.raises(DataValidationError):
            parse_callback_data("approve_not-a-uuid")


class TestApprovalDecision:
    def test_feedback_required_for_changes(self):
        with pytest.raises(ValidationError):
            ApprovalDecision(approval_id=uuid4(), decision=DecisionType.REQUEST_CHANGES, feedback="  ")

    def test_feedback_optional_for_approve(self):
        decision = ApprovalDecision(approval_id=uuid4(), decision=DecisionType.APPROVE)
        assert decision.feedback is None


class TestApplyDecision:
    def test_approve(self, queue, create_awaiting):
        approval_id = create_awaiting()

        updated = apply_decision(queue, ApprovalDecision(approval_id=approval_id, decision="approve"))

        assert updated.state == ApprovalState.APPROVED

    def test_request_changes(self, queue, create_awaiting):
        approval_id = create_awaiting()

        updated = apply_decision(
            queue,
            ApprovalDecision(approval_id=approval_id, decision="request_changes", feedback="too formal", user_id=7),
        )

        assert updated.state == ApprovalState.NEEDS_IMPROVEMENT
        assert updated.latest_feedback().text == "too formal"
        assert updated.latest_feedback().provided_by == 7

    def test_reject(self, queue, create_awaiting):
        approval_id = create_awaiting()

        updated = apply_decision(queue, ApprovalDecision(approval_id=approval_id, decision="reject"))

        assert updated.state == ApprovalState.FAILED
        assert updated.failure_reason == REJECTION_REASON

    def test_unknown_record(self, queue):
        with pytest.raises(NotFoundError):
            apply_decision(queue, ApprovalDecision(approval_id=uuid4(), decision="approve"))

    def test_wrong_state(self, queue, letter):
        approval_id = queue.create_approval("t", "c", "Jane", "Acme", letter)

        with pytest.raises(InvalidTransitionError):
            apply_decision(queue, ApprovalDecision(approval_id=approval_id, decision="approve"))
        assert queue.get_approval(approval_id).state == ApprovalState.PENDING_APPROVAL

    def test_second_decision_is_rejected(self, queue, create_awaiting):
        approval_id = create_awaiting()
        apply_decision(queue, ApprovalDecision(approval_id=approval_id, decision="approve"))

        with pytest.raises(InvalidTransitionError):
            apply_decision(queue, ApprovalDecision(approval_id=approval_id, decision="reject"))
        assert queue.get_approval(approval_id).state == ApprovalState.APPROVED
