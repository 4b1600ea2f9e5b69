"""
Approval record models

An ``ApprovalData`` record follows one drafted letter through human review.
Its state only changes through the transition methods below; each one checks
the current state and raises ``InvalidTransitionError`` otherwise.

    PendingApproval -> AwaitingUserResponse -> Approved
                                            -> NeedsImprovement -> PendingApproval
    any non-terminal -> Failed
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, NewType, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from letterflow.errors import InvalidTransitionError
from letterflow.models.crm import MailingAddress
from letterflow.utils.validators import unescape_newlines


ApprovalId = UUID
TaskId = NewType("TaskId", str)
ContactId = NewType("ContactId", str)
UserId = NewType("UserId", int)

SYSTEM_USER = UserId(1)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Enums
# ============================================================================

class ApprovalState(str, Enum):
    """Lifecycle state of an approval record"""
    PENDING_APPROVAL = "PendingApproval"
    AWAITING_USER_RESPONSE = "AwaitingUserResponse"
    APPROVED = "Approved"
    NEEDS_IMPROVEMENT = "NeedsImprovement"
    FAILED = "Failed"

    @property
    def directory_name(self) -> str:
        """Name of the storage partition holding records in this state"""
        return _DIRECTORY_NAMES[self]

    @property
    def is_terminal(self) -> bool:
        return self in (ApprovalState.APPROVED, ApprovalState.FAILED)

    @property
    def rank(self) -> int:
        """Position along the review cycle, used to order duplicate copies"""
        return _RANKS[self]


_DIRECTORY_NAMES: Dict[ApprovalState, str] = {
    ApprovalState.PENDING_APPROVAL: "pending_approval",
    ApprovalState.AWAITING_USER_RESPONSE: "awaiting_response",
    ApprovalState.APPROVED: "approved",
    ApprovalState.NEEDS_IMPROVEMENT: "needs_improvement",
    ApprovalState.FAILED: "failed",
}

_RANKS: Dict[ApprovalState, int] = {
    ApprovalState.PENDING_APPROVAL: 0,
    ApprovalState.AWAITING_USER_RESPONSE: 1,
    ApprovalState.NEEDS_IMPROVEMENT: 2,
    ApprovalState.APPROVED: 3,
    ApprovalState.FAILED: 4,
}


# ============================================================================
# Letter content and history
# ============================================================================

class LetterContent(BaseModel):
    """Immutable snapshot of one drafted letter"""
    model_config = ConfigDict(frozen=True)

    subject: str
    greeting: str
    body: str
    sender_name: str
    recipient_name: str
    company_name: str

    def unescaped(self) -> "LetterContent":
        """Copy with literal `\\n` sequences turned into line breaks"""
        return LetterContent(
            **{
                name: unescape_newlines(value)
                for name, value in self.model_dump().items()
            }
        )


class Feedback(BaseModel):
    """Reviewer comment attached to a letter iteration"""
    text: str
    provided_by: UserId
    provided_at: datetime = Field(default_factory=utcnow)


class LetterHistoryEntry(BaseModel):
    """One iteration of the letter, 1-based"""
    iteration: int = Field(..., ge=1)
    content: LetterContent
    feedback: Optional[Feedback] = None
    created_at: datetime = Field(default_factory=utcnow)


class MessageRef(BaseModel):
    """Reference to an approval prompt sent through the messaging channel"""
    message_id: int
    chat_id: str


# ============================================================================
# Approval record
# ============================================================================

class ApprovalData(BaseModel):
    """
    One letter under review, with its full revision history.

    Attributes:
        approval_id: Unique identifier, also the storage key
        task_id / contact_id: CRM references
        state: Current lifecycle state (see module docstring)
        current_letter: Always equal to the last history entry's content
        letter_history: Contiguous iterations starting at 1
        telegram_message_id / telegram_chat_id: Reference to the live prompt
        mailing_address: Postal destination; required before sending
        pdf_base64: The rendered document the reviewer saw
    """
    approval_id: ApprovalId = Field(default_factory=uuid4)
    workflow_id: UUID = Field(default_factory=uuid4)
    task_id: TaskId
    contact_id: ContactId
    state: ApprovalState = ApprovalState.PENDING_APPROVAL
    recipient_name: str
    recipient_email: Optional[str] = None
    recipient_title: Optional[str] = None
    company_name: str
    current_letter: LetterContent
    letter_history: List[LetterHistoryEntry]
    requested_at: datetime = Field(default_factory=utcnow)
    requested_by: UserId = SYSTEM_USER
    telegram_message_id: Optional[int] = None
    telegram_chat_id: Optional[str] = None
    updated_at: datetime = Field(default_factory=utcnow)
    mailing_address: Optional[MailingAddress] = None
    pdf_base64: Optional[str] = None
    person_dossier: Optional[str] = None
    company_dossier: Optional[str] = None
    industry: Optional[str] = None
    website: Optional[str] = None
    failure_reason: Optional[str] = None

    @field_validator("letter_history")
    @classmethod
    def validate_history(cls, v: List[LetterHistoryEntry]) -> List[LetterHistoryEntry]:
        """History is non-empty and numbered 1..n without gaps"""
        if not v:
            raise ValueError("letter_history must contain at least one entry")
        for index, entry in enumerate(v, start=1):
            if entry.iteration != index:
                raise ValueError(
                    f"letter_history iterations must be contiguous from 1, "
                    f"found {entry.iteration} at position {index}"
                )
        return v

    @model_validator(mode="after")
    def validate_current_letter(self) -> "ApprovalData":
        if self.current_letter != self.letter_history[-1].content:
            raise ValueError("current_letter must equal the last letter_history entry")
        return self

    @classmethod
    def new(
        cls,
        task_id: str,
        contact_id: str,
        recipient_name: str,
        company_name: str,
        letter: LetterContent,
        requested_by: int = SYSTEM_USER,
        **optional,
    ) -> "ApprovalData":
        """Create a fresh record in PendingApproval with a one-entry history"""
        now = utcnow()
        return cls(
            task_id=TaskId(task_id),
            contact_id=ContactId(contact_id),
            recipient_name=recipient_name,
            company_name=company_name,
            current_letter=letter,
            letter_history=[LetterHistoryEntry(iteration=1, content=letter, created_at=now)],
            requested_at=now,
            requested_by=UserId(requested_by),
            updated_at=now,
            **optional,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def current_iteration(self) -> int:
        return len(self.letter_history)

    def latest_feedback(self) -> Optional[Feedback]:
        return self.letter_history[-1].feedback

    def with_unescaped_letters(self) -> "ApprovalData":
        """Copy with literal `\\n` sequences in every letter turned into line breaks"""
        history = [
            entry.model_copy(update={"content": entry.content.unescaped()})
            for entry in self.letter_history
        ]
        return self.model_copy(
            update={"letter_history": history, "current_letter": history[-1].content}
        )

    @property
    def message_ref(self) -> Optional[MessageRef]:
        if self.telegram_message_id is None or self.telegram_chat_id is None:
            return None
        return MessageRef(message_id=self.telegram_message_id, chat_id=self.telegram_chat_id)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def _require(self, *expected: ApprovalState) -> None:
        if self.state not in expected:
            raise InvalidTransitionError(
                self.approval_id,
                self.state,
                expected[0] if len(expected) == 1 else "/".join(s.value for s in expected),
            )

    def _touch(self, state: ApprovalState) -> None:
        self.state = state
        self.updated_at = utcnow()

    def mark_awaiting_response(self, message_ref: Optional[MessageRef] = None) -> None:
        """PendingApproval -> AwaitingUserResponse"""
        self._require(ApprovalState.PENDING_APPROVAL)
        if message_ref is not None:
            self.telegram_message_id = message_ref.message_id
            self.telegram_chat_id = message_ref.chat_id
        self._touch(ApprovalState.AWAITING_USER_RESPONSE)

    def mark_approved(self) -> None:
        """AwaitingUserResponse -> Approved"""
        self._require(ApprovalState.AWAITING_USER_RESPONSE)
        self._touch(ApprovalState.APPROVED)

    def add_feedback(self, text: str, user_id: int) -> None:
        """AwaitingUserResponse -> NeedsImprovement, feedback on the last entry"""
        self._require(ApprovalState.AWAITING_USER_RESPONSE)
        last = self.letter_history[-1]
        self.letter_history[-1] = last.model_copy(
            update={"feedback": Feedback(text=text, provided_by=UserId(user_id))}
        )
        self._touch(ApprovalState.NEEDS_IMPROVEMENT)

    def add_improved_letter(self, letter: LetterContent) -> None:
        """NeedsImprovement -> PendingApproval with a new history entry.

        The previous prompt no longer matches the letter, so its message
        reference is cleared.
        """
        self._require(ApprovalState.NEEDS_IMPROVEMENT)
        self.letter_history.append(
            LetterHistoryEntry(iteration=self.current_iteration() + 1, content=letter)
        )
        self.current_letter = letter
        self.telegram_message_id = None
        self.telegram_chat_id = None
        self._touch(ApprovalState.PENDING_APPROVAL)

    def mark_failed(self, reason: Optional[str] = None) -> None:
        """Any non-terminal state -> Failed"""
        self._require(
            ApprovalState.PENDING_APPROVAL,
            ApprovalState.AWAITING_USER_RESPONSE,
            ApprovalState.NEEDS_IMPROVEMENT,
        )
        self.failure_reason = reason
        self._touch(ApprovalState.FAILED)


# ============================================================================
# Triggers and health
# ============================================================================

class WorkflowTrigger(BaseModel):
    """Batch invocation request; tasks are selected when it runs"""
    model_config = ConfigDict(extra="ignore")

    trigger_id: UUID = Field(default_factory=uuid4)
    requested_by: UserId = SYSTEM_USER
    requested_at: datetime = Field(default_factory=utcnow)
    max_tasks: int = Field(1, ge=1)
    dry_run: bool = False
    processed: bool = False
    processed_at: Optional[datetime] = None
    result: Optional[str] = None
    error: Optional[str] = None

    def mark_processed(self, result: str) -> "WorkflowTrigger":
        return self.model_copy(
            update={"processed": True, "processed_at": utcnow(), "result": result}
        )


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class HealthCheckResult(BaseModel):
    """Approval queue health projection"""
    status: HealthStatus
    counts: Dict[ApprovalState, int]
    total_workflows: int
    root_path: str
    file_locking_enabled: bool = True
    last_check: datetime = Field(default_factory=utcnow)
