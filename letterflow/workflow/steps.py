"""
Workflow Steps interface

Every external effect the orchestrator needs is an operation here. The
orchestrator only ever talks to this interface, so tests drive it with an
in-memory implementation and production uses ``WorkflowProcessor``.
"""
from abc import ABC, abstractmethod
from typing import List
from uuid import UUID

from letterflow.models.approval import ApprovalData, ApprovalState, LetterContent, MessageRef
from letterflow.models.crm import Contact, CrmTask, DossierResult, LinkedInProfile, MailingAddress


def shorten_feedback(feedback: str, page_count: int) -> str:
    """Reviewer feedback extended with the instruction to fit one page"""
    instruction = (
        f"Der Brief hat {page_count} Seiten und muss auf eine Seite passen. "
        "Bitte kürzen Sie den Text entsprechend."
    )
    return f"{feedback}\n\n{instruction}" if feedback else instruction


class WorkflowSteps(ABC):
    """Atomic operations composed by the WorkflowOrchestrator"""

    # Task selection ------------------------------------------------------
    @abstractmethod
    async def load_available_tasks(self, max_count: int) -> List[CrmTask]:
        """Open outreach tasks, oldest first, at most `max_count`"""

    @abstractmethod
    async def load_task(self, task_id: str) -> CrmTask:
        ...

    @abstractmethod
    async def mark_task_in_progress(self, task_id: str) -> None:
        ...

    # Pipeline steps 1-4 --------------------------------------------------
    @abstractmethod
    async def load_contact(self, task: CrmTask) -> Contact:
        ...

    @abstractmethod
    async def load_profile(self, contact: Contact) -> LinkedInProfile:
        ...

    @abstractmethod
    async def generate_dossiers(self, profile: LinkedInProfile, contact_id: str) -> DossierResult:
        ...

    @abstractmethod
    async def update_contact_address(self, contact_id: str, address: MailingAddress) -> None:
        ...

    @abstractmethod
    async def generate_letter(
        self, contact: Contact, profile: LinkedInProfile, dossier: DossierResult
    ) -> LetterContent:
        ...

    # Approval ------------------------------------------------------------
    @abstractmethod
    async def approval_start(
        self, task_id: str, contact: Contact, letter: LetterContent, dossier: DossierResult
    ) -> UUID:
        """Render the document and persist a PendingApproval record"""

    @abstractmethod
    async def request_approval(
        self, approval_id: UUID, letter: LetterContent, contact: Contact
    ) -> ApprovalState:
        """Send the approval prompt and move the record to AwaitingUserResponse"""

    # Delivery ------------------------------------------------------------
    @abstractmethod
    async def send_document(self, document: bytes, address: MailingAddress) -> str:
        """Dispatch an already rendered document; returns the tracking id"""

    @abstractmethod
    async def attach_file_to_task(self, task_id: str, data: bytes, filename: str) -> None:
        ...

    @abstractmethod
    async def update_task_completed_status(self, task_id: str, message: str) -> None:
        ...

    @abstractmethod
    async def create_follow_up_task(self, contact_id: str, task_id: str) -> str:
        ...

    # Failure reporting ---------------------------------------------------
    @abstractmethod
    async def send_error_notification(
        self, task_id: str, contact_name: str, company_name: str, message: str
    ) -> None:
        ...

    @abstractmethod
    async def update_task_error_status(self, task_id: str, message: str) -> None:
        ...

    # Improvement cycle ---------------------------------------------------
    @abstractmethod
    async def generate_improved_letter(self, approval: ApprovalData, feedback: str) -> LetterContent:
        ...

    @abstractmethod
    async def render_document(self, letter: LetterContent, address: MailingAddress) -> bytes:
        ...

    @abstractmethod
    async def send_improved_approval(self, approval: ApprovalData) -> MessageRef:
        """Send the prompt for a re-rendered iteration; returns the new message reference"""
