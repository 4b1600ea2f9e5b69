"""
Workflow Processor

Production ``WorkflowSteps``: wires the CRM, profile store, dossier and
letter services, PDF renderer, mail dispatch and approval channel to the
approval queue.
"""
import base64
from datetime import datetime, timezone
from typing import List, Optional, Tuple
from uuid import UUID

from letterflow.config import get_settings
from letterflow.errors import PageLimitExceededError, WorkflowError
from letterflow.models.approval import (
    SYSTEM_USER,
    ApprovalData,
    ApprovalState,
    LetterContent,
    MessageRef,
)
from letterflow.models.crm import Contact, CrmTask, DossierResult, LinkedInProfile, MailingAddress
from letterflow.models.documents import PdfTemplateData, PrintOptions
from letterflow.repositories.approval_queue import ApprovalQueue
from letterflow.services.baserow import BaserowClient
from letterflow.services.dossier import DossierClient
from letterflow.services.letter_service import LetterServiceClient
from letterflow.services.letterexpress import LetterExpressClient, default_sender_address
from letterflow.services.pdf import PdfService
from letterflow.services.telegram import Notifier
from letterflow.services.zoho import ZohoClient
from letterflow.utils.logger import get_logger
from letterflow.utils.validators import (
    extract_markdown_field,
    sanitize_filename,
    strip_markdown_link,
    validate_email,
)
from letterflow.workflow.steps import WorkflowSteps, shorten_feedback

settings = get_settings()
logger = get_logger(__name__)


def extract_person_metadata(person_dossier: str) -> Tuple[Optional[str], Optional[str]]:
    """(email, title) from the `**Email**:` and `**Headline**:` dossier lines"""
    return (
        extract_markdown_field(person_dossier, "**Email**:"),
        extract_markdown_field(person_dossier, "**Headline**:"),
    )


def extract_company_metadata(company_dossier: str) -> Tuple[Optional[str], Optional[str]]:
    """(industry, website) from the `- **Industry**:` and `- **Website**:` dossier lines"""
    industry = extract_markdown_field(company_dossier, "- **Industry**:")
    website = strip_markdown_link(extract_markdown_field(company_dossier, "- **Website**:"))
    return industry, website


def _created_key(task: CrmTask) -> datetime:
    return task.created_time or datetime.max.replace(tzinfo=timezone.utc)


class WorkflowProcessor(WorkflowSteps):
    """WorkflowSteps backed by the real collaborator clients"""

    def __init__(
        self,
        zoho: ZohoClient,
        baserow: BaserowClient,
        dossier: DossierClient,
        letters: LetterServiceClient,
        pdf: PdfService,
        letterexpress: LetterExpressClient,
        notifier: Notifier,
        queue: ApprovalQueue,
        page_limit_retries: Optional[int] = None,
    ):
        self.zoho = zoho
        self.baserow = baserow
        self.dossier = dossier
        self.letters = letters
        self.pdf = pdf
        self.letterexpress = letterexpress
        self.notifier = notifier
        self.queue = queue
        self.page_limit_retries = (
            page_limit_retries if page_limit_retries is not None
            else settings.pdf_page_limit_max_retries
        )

    # ------------------------------------------------------------------
    # Task selection
    # ------------------------------------------------------------------
    async def load_available_tasks(self, max_count: int) -> List[CrmTask]:
        filters = [
            ("Subject", settings.zoho_task_subject),
            ("Status", settings.zoho_task_status),
        ]
        if settings.zoho_task_owner_id:
            filters.append(("Owner", settings.zoho_task_owner_id))
        tasks = await self.zoho.search_tasks(filters)
        tasks.sort(key=_created_key)
        tasks = tasks[:max_count]
        logger.info(f"Found {len(tasks)} available tasks for processing")
        for task in tasks:
            contact = f"{task.who_id.id} ({task.contact_name})" if task.who_id else "No contact"
            logger.info(f"  - Task {task.id}: {task.subject} (Contact: {contact})")
        return tasks

    async def load_task(self, task_id: str) -> CrmTask:
        task = await self.zoho.get_task_by_id(task_id)
        if task is None:
            raise WorkflowError(f"Task {task_id} not found")
        return task

    async def mark_task_in_progress(self, task_id: str) -> None:
        await self.zoho.update_task_status(
            task_id, settings.zoho_status_in_progress, "Brief-Workflow gestartet"
        )

    # ------------------------------------------------------------------
    # Steps 1-4
    # ------------------------------------------------------------------
    async def load_contact(self, task: CrmTask) -> Contact:
        if task.who_id is None:
            raise WorkflowError("Task has no associated contact")
        contact = await self.zoho.get_contact(task.who_id.id)
        if contact is None:
            raise WorkflowError(f"Contact {task.who_id.id} not found")
        return contact

    async def load_profile(self, contact: Contact) -> LinkedInProfile:
        if not contact.linkedin_id:
            raise WorkflowError("Contact has no LinkedIn ID")
        profile = await self.baserow.get_profile(contact.linkedin_id)
        if profile is None:
            raise WorkflowError(f"LinkedIn profile {contact.linkedin_id} not found")
        return profile

    async def generate_dossiers(self, profile: LinkedInProfile, contact_id: str) -> DossierResult:
        result = await self.dossier.generate(profile, contact_id)
        self._save_dossiers(contact_id, result)
        return result

    def _save_dossiers(self, contact_id: str, result: DossierResult) -> None:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        directory = self.queue.data_dir("dossiers")
        name = sanitize_filename(contact_id)
        try:
            (directory / f"{name}_{stamp}_person.md").write_text(result.person_dossier_content, encoding="utf-8")
            (directory / f"{name}_{stamp}_company.md").write_text(result.company_dossier_content, encoding="utf-8")
        except OSError as e:
            logger.warning(f"Failed to save dossiers for {contact_id}: {e}")

    async def update_contact_address(self, contact_id: str, address: MailingAddress) -> None:
        await self.zoho.update_contact_address(contact_id, address)

    async def generate_letter(
        self, contact: Contact, profile: LinkedInProfile, dossier: DossierResult
    ) -> LetterContent:
        return await self.letters.generate(contact, profile, dossier)

    # ------------------------------------------------------------------
    # Approval
    # ------------------------------------------------------------------
    async def _render_within_page_limit(
        self,
        letter: LetterContent,
        address: MailingAddress,
        draft: ApprovalData,
    ) -> Tuple[LetterContent, bytes]:
        """Render, regenerating a shorter letter while the renderer reports overflow"""
        attempt = 0
        while True:
            try:
                return letter, await self.render_document(letter, address)
            except PageLimitExceededError as e:
                attempt += 1
                if attempt > self.page_limit_retries:
                    raise
                logger.warning(
                    f"Letter for {draft.recipient_name} has {e.page_count} pages, "
                    f"shortening (attempt {attempt}/{self.page_limit_retries})"
                )
                letter = await self.letters.regenerate(draft, shorten_feedback("", e.page_count))
                draft = ApprovalData.new(
                    task_id=draft.task_id,
                    contact_id=draft.contact_id,
                    recipient_name=draft.recipient_name,
                    company_name=draft.company_name,
                    letter=letter,
                    person_dossier=draft.person_dossier,
                    company_dossier=draft.company_dossier,
                )

    async def approval_start(
        self, task_id: str, contact: Contact, letter: LetterContent, dossier: DossierResult
    ) -> UUID:
        logger.info(f"Starting approval for task {task_id} and contact {contact.full_name}")
        address = contact.mailing_address
        if address is None:
            raise WorkflowError(f"Contact {contact.full_name} has no mailing address")

        company_name = dossier.company_name or contact.company or "Unknown Company"
        draft = ApprovalData.new(
            task_id=task_id,
            contact_id=contact.id,
            recipient_name=contact.full_name,
            company_name=company_name,
            letter=letter,
            person_dossier=dossier.person_dossier_content,
            company_dossier=dossier.company_dossier_content,
        )
        letter, document = await self._render_within_page_limit(letter, address, draft)
        logger.info(f"PDF generated successfully, {len(document)} bytes")

        email, title = extract_person_metadata(dossier.person_dossier_content)
        industry, website = extract_company_metadata(dossier.company_dossier_content)
        logger.info(
            f"Extracted metadata - Email: {email}, Title: {title}, Industry: {industry}, Website: {website}"
        )

        return await self.queue.create_approval_async(
            task_id=task_id,
            contact_id=contact.id,
            recipient_name=contact.full_name,
            company_name=company_name,
            letter=letter,
            requested_by=SYSTEM_USER,
            recipient_email=email if email and validate_email(email) else contact.email,
            recipient_title=title,
            mailing_address=address,
            pdf_base64=base64.b64encode(document).decode("ascii"),
            person_dossier=dossier.person_dossier_content,
            company_dossier=dossier.company_dossier_content,
            industry=industry,
            website=website,
        )

    async def request_approval(
        self, approval_id: UUID, letter: LetterContent, contact: Contact
    ) -> ApprovalState:
        approval = await self.queue.get_approval_async(approval_id)
        if approval is None:
            raise WorkflowError(f"Approval {approval_id} not found")
        if not approval.pdf_base64:
            raise WorkflowError("Approval has no PDF data")
        document = base64.b64decode(approval.pdf_base64)

        message_ref = await self.notifier.send_approval_prompt(
            approval.current_letter, contact.full_name, str(approval_id), document
        )
        updated = await self.queue.mark_awaiting_response_async(approval_id, message_ref)
        logger.info(f"Transitioned approval {approval_id} to {updated.state.value}")
        return updated.state

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------
    async def send_document(self, document: bytes, address: MailingAddress) -> str:
        self._save_letter_copy(document, address)
        return await self.letterexpress.send(document, address, default_sender_address(), PrintOptions())

    def _save_letter_copy(self, document: bytes, address: MailingAddress) -> None:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        path = self.queue.data_dir("letters") / f"letter_{sanitize_filename(address.city)}_{stamp}.pdf"
        try:
            path.write_bytes(document)
            logger.info(f"PDF saved locally at: {path}")
        except OSError as e:
            logger.warning(f"Failed to save PDF locally: {e}")

    async def attach_file_to_task(self, task_id: str, data: bytes, filename: str) -> None:
        await self.zoho.attach_file(task_id, data, filename)

    async def update_task_completed_status(self, task_id: str, message: str) -> None:
        await self.zoho.update_task_status(task_id, settings.zoho_status_completed, message)

    async def create_follow_up_task(self, contact_id: str, task_id: str) -> str:
        return await self.zoho.create_follow_up_task(contact_id, task_id)

    # ------------------------------------------------------------------
    # Failure reporting
    # ------------------------------------------------------------------
    async def send_error_notification(
        self, task_id: str, contact_name: str, company_name: str, message: str
    ) -> None:
        await self.notifier.send_error_notice(task_id, contact_name, company_name, message)

    async def update_task_error_status(self, task_id: str, message: str) -> None:
        await self.zoho.update_task_status(
            task_id, settings.zoho_status_error, f"Workflow failed: {message}"
        )

    # ------------------------------------------------------------------
    # Improvement cycle
    # ------------------------------------------------------------------
    async def generate_improved_letter(self, approval: ApprovalData, feedback: str) -> LetterContent:
        logger.info(
            f"Generating improved letter for {approval.recipient_name} at {approval.company_name}"
        )
        return await self.letters.regenerate(approval, feedback)

    async def render_document(self, letter: LetterContent, address: MailingAddress) -> bytes:
        logger.info(f"Generating PDF for letter with subject: {letter.subject}")
        return await self.pdf.render(
            settings.letter_template, PdfTemplateData.from_letter_and_address(letter, address)
        )

    async def send_improved_approval(self, approval: ApprovalData) -> MessageRef:
        if not approval.pdf_base64:
            raise WorkflowError("Approval has no PDF data")
        previous = approval.letter_history[-2].feedback if len(approval.letter_history) > 1 else None
        return await self.notifier.send_approval_prompt(
            approval.current_letter,
            approval.recipient_name,
            str(approval.approval_id),
            base64.b64decode(approval.pdf_base64),
            iteration=approval.current_iteration(),
            feedback=previous.text if previous else None,
        )
