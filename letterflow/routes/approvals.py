"""
Approval API routes

- GET  /api/approvals?state=...           records in one state
- GET  /api/approvals/{id}                one record
- POST /api/approvals/{id}/decision       approve / reject / request changes
- POST /api/approvals/callback            approval channel button callback
"""
import asyncio
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, ValidationError

from letterflow.dependencies import get_queue
from letterflow.errors import DataValidationError, InvalidTransitionError, NotFoundError
from letterflow.models.approval import SYSTEM_USER, ApprovalData, ApprovalState
from letterflow.repositories.approval_queue import ApprovalQueue
from letterflow.utils.logger import get_logger
from letterflow.workflow.decisions import (
    ApprovalDecision,
    DecisionType,
    apply_decision,
    parse_callback_data,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/api/approvals", tags=["approvals"])


class ApprovalSummary(BaseModel):
    """Listing view of an approval record"""
    approval_id: UUID
    task_id: str
    state: ApprovalState
    recipient_name: str
    company_name: str
    subject: str
    iteration: int
    updated_at: datetime

    @classmethod
    def from_record(cls, record: ApprovalData) -> "ApprovalSummary":
        return cls(
            approval_id=record.approval_id,
            task_id=record.task_id,
            state=record.state,
            recipient_name=record.recipient_name,
            company_name=record.company_name,
            subject=record.current_letter.subject,
            iteration=record.current_iteration(),
            updated_at=record.updated_at,
        )


class DecisionRequest(BaseModel):
    decision: DecisionType
    feedback: Optional[str] = Field(None, max_length=5000)
    user_id: int = SYSTEM_USER


class CallbackRequest(BaseModel):
    callback_data: str
    user_id: int = SYSTEM_USER
    feedback: Optional[str] = None


async def _apply(queue: ApprovalQueue, decision: ApprovalDecision) -> ApprovalSummary:
    try:
        record = await asyncio.to_thread(apply_decision, queue, decision)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=e.message)
    return ApprovalSummary.from_record(record)


@router.get("", response_model=List[ApprovalSummary])
async def list_approvals(
    state: ApprovalState = ApprovalState.AWAITING_USER_RESPONSE,
    queue: ApprovalQueue = Depends(get_queue),
):
    records = await queue.list_by_state_async(state)
    return [ApprovalSummary.from_record(record) for record in records]


@router.get(
    "/{approval_id}",
    response_model=ApprovalData,
    response_model_exclude={"pdf_base64"},
)
async def get_approval(approval_id: UUID, queue: ApprovalQueue = Depends(get_queue)):
    record = await queue.get_approval_async(approval_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Approval {approval_id} not found")
    return record


@router.post("/{approval_id}/decision", response_model=ApprovalSummary)
async def submit_decision(
    approval_id: UUID,
    request: DecisionRequest,
    queue: ApprovalQueue = Depends(get_queue),
):
    """
    Record a reviewer decision

    - approve: AwaitingUserResponse -> Approved (the approval watcher mails it)
    - request_changes: -> NeedsImprovement, feedback required
    - reject: -> Failed
    """
    try:
        decision = ApprovalDecision(approval_id=approval_id, **request.model_dump())
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return await _apply(queue, decision)


@router.post("/callback", response_model=ApprovalSummary)
async def handle_callback(request: CallbackRequest, queue: ApprovalQueue = Depends(get_queue)):
    """Decision from an approval channel button press"""
    try:
        decision_type, approval_id = parse_callback_data(request.callback_data)
        decision = ApprovalDecision(
            approval_id=approval_id,
            decision=decision_type,
            feedback=request.feedback,
            user_id=request.user_id,
        )
    except DataValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return await _apply(queue, decision)
