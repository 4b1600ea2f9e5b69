"""
pytest configuration and shared fixtures
"""
import base64
from typing import Dict, List, Optional
from uuid import UUID, uuid4

import httpx
import pytest

from letterflow.errors import NotFoundError, PageLimitExceededError
from letterflow.models.approval import ApprovalState, LetterContent, MessageRef
from letterflow.models.crm import Contact, ContactRef, CrmTask, DossierResult, LinkedInProfile, MailingAddress
from letterflow.repositories.approval_queue import ApprovalQueue
from letterflow.workflow.steps import WorkflowSteps

FAKE_PDF = b"%PDF-1.4 fake letter"


def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line(
        "markers", "requires_external_services: mark test as requiring live collaborator services"
    )


def make_response(status_code: int = 200, json=None, content: bytes = None, url: str = "https://api.test/x") -> httpx.Response:
    """Real httpx response bound to a request so raise_for_status works"""
    request = httpx.Request("GET", url)
    if json is not None:
        return httpx.Response(status_code, json=json, request=request)
    return httpx.Response(status_code, content=content or b"", request=request)


@pytest.fixture
def queue(tmp_path) -> ApprovalQueue:
    return ApprovalQueue(root=tmp_path / "workflows")


@pytest.fixture
def letter() -> LetterContent:
    return LetterContent(
        subject="Zusammenarbeit mit Acme",
        greeting="Sehr geehrte Frau Smith,",
        body="wir würden uns freuen.\\nMit freundlichen Grüßen",
        sender_name="Max Mustermann",
        recipient_name="Jane Smith",
        company_name="Acme",
    )


@pytest.fixture
def address() -> MailingAddress:
    return MailingAddress(
        street="Hauptstraße 1",
        city="Berlin",
        postal_code="10115",
        country="Germany",
    )


@pytest.fixture
def create_awaiting(queue, letter, address):
    """Factory: persist a record and move it to AwaitingUserResponse"""
    def _create(**overrides) -> UUID:
        fields = dict(
            task_id="task-1",
            contact_id="contact-1",
            recipient_name="Jane Smith",
            company_name="Acme",
            letter=letter,
            mailing_address=address,
            pdf_base64=base64.b64encode(FAKE_PDF).decode("ascii"),
        )
        fields.update(overrides)
        approval_id = queue.create_approval(**fields)
        queue.mark_awaiting_response(approval_id, MessageRef(message_id=10, chat_id="chat-1"))
        return approval_id
    return _create


def make_task(task_id: str, contact_id: Optional[str] = None, name: str = "Jane Smith") -> CrmTask:
    return CrmTask(
        id=task_id,
        subject="Brief senden",
        status="Nicht gestartet",
        who_id=ContactRef(id=contact_id or f"contact-{task_id}", name=name),
    )


def make_contact(contact_id: str, name: str = "Jane Smith", address: Optional[MailingAddress] = None) -> Contact:
    return Contact(
        id=contact_id,
        full_name=name,
        email="jane@acme.example",
        company="Acme",
        linkedin_id=f"li-{contact_id}",
        mailing_address=address,
    )


class FakeSteps(WorkflowSteps):
    """
    In-memory WorkflowSteps

    - `tasks` is what load_available_tasks returns
    - `contacts` maps contact id -> Contact; a missing id fails step 1
    - `failures` maps a method name to the exception it raises
    - `page_overflows` makes render_document overflow that many times
    """

    def __init__(self, queue: Optional[ApprovalQueue] = None):
        self.queue = queue
        self.tasks: List[CrmTask] = []
        self.contacts: Dict[str, Contact] = {}
        self.dossier_address: Optional[MailingAddress] = None
        self.failures: Dict[str, Exception] = {}
        self.page_overflows = 0
        self.calls: List[str] = []
        self.sent: List[bytes] = []
        self.error_notices: List[tuple] = []
        self.error_statuses: List[tuple] = []
        self.completed: List[tuple] = []
        self.attachments: List[tuple] = []
        self.follow_ups: List[tuple] = []
        self.improvement_feedback: List[str] = []
        self.stored_addresses: Dict[str, MailingAddress] = {}

    def _call(self, name: str) -> None:
        self.calls.append(name)
        if name in self.failures:
            raise self.failures[name]

    async def load_available_tasks(self, max_count: int) -> List[CrmTask]:
        self._call("load_available_tasks")
        return list(self.tasks)

    async def load_task(self, task_id: str) -> CrmTask:
        self._call("load_task")
        for task in self.tasks:
            if task.id == task_id:
                return task
        raise NotFoundError(f"Task {task_id} not found")

    async def mark_task_in_progress(self, task_id: str) -> None:
        self._call("mark_task_in_progress")

    async def load_contact(self, task: CrmTask) -> Contact:
        self._call("load_contact")
        contact = self.contacts.get(task.who_id.id) if task.who_id else None
        if contact is None:
            raise NotFoundError(f"Contact for task {task.id} not found")
        return contact

    async def load_profile(self, contact: Contact) -> LinkedInProfile:
        self._call("load_profile")
        return LinkedInProfile(profile_id=contact.linkedin_id or "", full_name=contact.full_name)

    async def generate_dossiers(self, profile: LinkedInProfile, contact_id: str) -> DossierResult:
        self._call("generate_dossiers")
        return DossierResult(
            person_dossier_content="**Email**: jane@acme.example\n**Headline**: CTO",
            company_dossier_content="- **Industry**: Software\n- **Website**: [acme.example](https://acme.example)",
            company_name="Acme",
            mailing_address=self.dossier_address,
        )

    async def update_contact_address(self, contact_id: str, address: MailingAddress) -> None:
        self._call("update_contact_address")
        self.stored_addresses[contact_id] = address

    async def generate_letter(self, contact: Contact, profile: LinkedInProfile, dossier: DossierResult) -> LetterContent:
        self._call("generate_letter")
        return LetterContent(
            subject=f"Brief an {contact.full_name}",
            greeting="Hallo,",
            body="Text",
            sender_name="Max",
            recipient_name=contact.full_name,
            company_name=dossier.company_name,
        )

    async def approval_start(self, task_id: str, contact: Contact, letter: LetterContent, dossier: DossierResult) -> UUID:
        self._call("approval_start")
        if self.queue is None:
            return uuid4()
        return self.queue.create_approval(
            task_id=task_id,
            contact_id=contact.id,
            recipient_name=contact.full_name,
            company_name=dossier.company_name,
            letter=letter,
            mailing_address=contact.mailing_address,
            pdf_base64=base64.b64encode(FAKE_PDF).decode("ascii"),
        )

    async def request_approval(self, approval_id: UUID, letter: LetterContent, contact: Contact) -> ApprovalState:
        self._call("request_approval")
        if self.queue is not None:
            return self.queue.mark_awaiting_response(approval_id, MessageRef(message_id=1, chat_id="chat")).state
        return ApprovalState.AWAITING_USER_RESPONSE

    async def send_document(self, document: bytes, address: MailingAddress) -> str:
        self._call("send_document")
        self.sent.append(document)
        return "job-42"

    async def attach_file_to_task(self, task_id: str, data: bytes, filename: str) -> None:
        self._call("attach_file_to_task")
        self.attachments.append((task_id, filename))

    async def update_task_completed_status(self, task_id: str, message: str) -> None:
        self._call("update_task_completed_status")
        self.completed.append((task_id, message))

    async def create_follow_up_task(self, contact_id: str, task_id: str) -> str:
        self._call("create_follow_up_task")
        self.follow_ups.append((contact_id, task_id))
        return "follow-up-1"

    async def send_error_notification(self, task_id: str, contact_name: str, company_name: str, message: str) -> None:
        self._call("send_error_notification")
        self.error_notices.append((task_id, contact_name, company_name, message))

    async def update_task_error_status(self, task_id: str, message: str) -> None:
        self._call("update_task_error_status")
        self.error_statuses.append((task_id, message))

    async def generate_improved_letter(self, approval, feedback: str) -> LetterContent:
        self._call("generate_improved_letter")
        self.improvement_feedback.append(feedback)
        return approval.current_letter.model_copy(update={"body": f"Improved: {feedback}"})

    async def render_document(self, letter: LetterContent, address: MailingAddress) -> bytes:
        self._call("render_document")
        if self.page_overflows > 0:
            self.page_overflows -= 1
            raise PageLimitExceededError(page_count=2)
        return b"%PDF-" + letter.body.encode("utf-8")

    async def send_improved_approval(self, approval) -> MessageRef:
        self._call("send_improved_approval")
        return MessageRef(message_id=100 + approval.current_iteration(), chat_id="chat")


@pytest.fixture
def steps(queue) -> FakeSteps:
    return FakeSteps(queue)
