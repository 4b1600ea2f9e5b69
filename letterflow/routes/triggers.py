"""
Workflow trigger API routes
"""
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from letterflow.dependencies import get_queue
from letterflow.models.approval import SYSTEM_USER, WorkflowTrigger
from letterflow.repositories.approval_queue import ApprovalQueue

router = APIRouter(prefix="/api/triggers", tags=["triggers"])


class TriggerRequest(BaseModel):
    """Batch request"""
    max_tasks: int = Field(1, ge=1, le=100, description="Upper bound on tasks in this batch")
    dry_run: bool = Field(False, description="List candidate tasks without processing them")
    requested_by: int = SYSTEM_USER


class TriggerCreated(BaseModel):
    trigger_id: UUID


@router.post("", response_model=TriggerCreated, status_code=status.HTTP_201_CREATED)
async def create_trigger(request: TriggerRequest, queue: ApprovalQueue = Depends(get_queue)):
    """Queue a batch; the trigger monitor picks it up on its next poll."""
    trigger_id = await queue.create_trigger_async(request.requested_by, request.max_tasks, request.dry_run)
    return TriggerCreated(trigger_id=trigger_id)


@router.get("", response_model=List[WorkflowTrigger])
async def list_pending_triggers(queue: ApprovalQueue = Depends(get_queue)):
    return await queue.list_pending_triggers_async()


@router.get("/{trigger_id}", response_model=WorkflowTrigger)
async def get_trigger(trigger_id: UUID, queue: ApprovalQueue = Depends(get_queue)):
    trigger = queue.get_trigger(trigger_id)
    if trigger is None:
        raise HTTPException(status_code=404, detail=f"Trigger {trigger_id} not found")
    return trigger
