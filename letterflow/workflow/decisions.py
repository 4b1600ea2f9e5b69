"""
Reviewer decisions

A decision arrives either through the HTTP API or as a button callback from
the approval channel (``approve_<id>``, ``change_<id>``, ``reject_<id>``).
Each one maps to exactly one approval queue transition.
"""
from enum import Enum
from typing import Optional, Tuple
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from letterflow.errors import DataValidationError, InvalidTransitionError, NotFoundError
from letterflow.models.approval import ApprovalData, ApprovalState, SYSTEM_USER, UserId
from letterflow.repositories.approval_queue import ApprovalQueue
from letterflow.utils.logger import get_logger

logger = get_logger(__name__)

REJECTION_REASON = "Rejected by reviewer"


class DecisionType(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_CHANGES = "request_changes"


CALLBACK_PREFIXES = {
    "approve_": DecisionType.APPROVE,
    "change_": DecisionType.REQUEST_CHANGES,
    "reject_": DecisionType.REJECT,
}


class ApprovalDecision(BaseModel):
    """A reviewer's verdict on one approval record"""
    approval_id: UUID
    decision: DecisionType
    feedback: Optional[str] = Field(None, max_length=5000)
    user_id: UserId = SYSTEM_USER

    @model_validator(mode="after")
    def require_feedback_for_changes(self) -> "ApprovalDecision":
        if self.decision == DecisionType.REQUEST_CHANGES and not (self.feedback or "").strip():
            raise ValueError("feedback is required when requesting changes")
        return self


def parse_callback_data(data: str) -> Tuple[DecisionType, UUID]:
    """
    Parse inline button callback data

    Raises:
        DataValidationError: Unknown prefix or malformed id
    """
    for prefix, decision in CALLBACK_PREFIXES.items():
        if data.startswith(prefix):
            try:
                return decision, UUID(data[len(prefix):])
            except ValueError as e:
                raise DataValidationError(f"Invalid approval id in callback data: {data}") from e
    raise DataValidationError(f"Unknown callback data: {data}")


def apply_decision(queue: ApprovalQueue, decision: ApprovalDecision) -> ApprovalData:
    """
    Apply a decision to a record awaiting a response

    Raises:
        NotFoundError: No record with this id
        InvalidTransitionError: Record is not awaiting a response
    """
    current = queue.get_approval(decision.approval_id)
    if current is None:
        raise NotFoundError(f"Approval {decision.approval_id} not found")
    if current.state != ApprovalState.AWAITING_USER_RESPONSE:
        raise InvalidTransitionError(
            decision.approval_id, current.state, ApprovalState.AWAITING_USER_RESPONSE
        )

    if decision.decision == DecisionType.APPROVE:
        updated = queue.handle_approval(decision.approval_id)
    elif decision.decision == DecisionType.REQUEST_CHANGES:
        updated = queue.handle_feedback(decision.approval_id, decision.feedback, decision.user_id)
    else:
        updated = queue.get_approval(decision.approval_id) if queue.mark_failed(
            decision.approval_id, REJECTION_REASON
        ) else None

    if updated is None:
        # state changed between the check and the transition
        latest = queue.get_approval(decision.approval_id)
        raise InvalidTransitionError(
            decision.approval_id,
            latest.state if latest else "missing",
            ApprovalState.AWAITING_USER_RESPONSE,
        )
    logger.info(
        f"Applied {decision.decision.value} to approval {decision.approval_id} "
        f"by user {decision.user_id}: now {updated.state.value}"
    )
    return updated
