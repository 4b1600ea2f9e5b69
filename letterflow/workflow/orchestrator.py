"""
Workflow Orchestrator

Drives CRM tasks through the letter pipeline:

    1   load contact
    2   load profile
    3   generate dossiers
    3.5 resolve and persist the mailing address
    4   generate letter
    5a  render the document and create the approval record
    5b  send the approval prompt

After 5b the task is suspended until a reviewer decides. The watchers
resume it through ``continue_after_approval`` (step 6, physical mail) or
``process_improvement_request`` (new iteration, new prompt).

The orchestrator holds no mutable state of its own; everything goes
through ``WorkflowSteps``.
"""
import base64
import binascii
from typing import List, Optional

from letterflow.config import get_settings
from letterflow.errors import (
    DataValidationError,
    PageLimitExceededError,
    WorkflowError,
    WorkflowStepError,
)
from letterflow.models.approval import ApprovalData, ApprovalState, WorkflowTrigger
from letterflow.models.crm import CrmTask
from letterflow.utils.logger import get_logger
from letterflow.workflow.steps import WorkflowSteps, shorten_feedback

settings = get_settings()
logger = get_logger(__name__)

UNKNOWN_COMPANY = "Unknown Company"
AWAITING_RESPONSE_MESSAGE = "Awaiting user response via Telegram"
NO_TASKS_MESSAGE = "No tasks available for processing"


def decode_document(approval: ApprovalData) -> bytes:
    if not approval.pdf_base64:
        raise WorkflowError(f"Approval {approval.approval_id} missing PDF data")
    try:
        return base64.b64decode(approval.pdf_base64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise WorkflowError(f"Failed to decode PDF: {e}") from e


class WorkflowOrchestrator:
    """Stateless coordinator over a WorkflowSteps implementation"""

    def __init__(self, steps: WorkflowSteps, page_limit_retries: Optional[int] = None):
        self.steps = steps
        self.page_limit_retries = (
            page_limit_retries if page_limit_retries is not None
            else settings.pdf_page_limit_max_retries
        )

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------
    async def process_workflow(self, trigger: WorkflowTrigger) -> WorkflowTrigger:
        """Run one batch and return the trigger marked processed with the result text."""
        logger.info(
            f"Processing workflow trigger {trigger.trigger_id} for up to {trigger.max_tasks} tasks"
            + (" (dry run)" if trigger.dry_run else "")
        )
        tasks = await self.steps.load_available_tasks(trigger.max_tasks)
        tasks = tasks[:trigger.max_tasks]

        if not tasks:
            logger.info("No available tasks found for processing")
            return trigger.mark_processed(NO_TASKS_MESSAGE)

        if trigger.dry_run:
            lines = [f"🔍 Task {task.id}: would process '{task.subject}' ({task.contact_name})" for task in tasks]
            return trigger.mark_processed(
                f"Dry run: {len(tasks)} tasks would be processed:\n" + "\n".join(lines)
            )

        results: List[str] = []
        processed_count = 0
        for task in tasks:
            logger.info(f"Processing task: {task.id} - {task.subject}")
            try:
                message = await self.process_single_task(task)
            except Exception as e:
                results.append(f"❌ Task {task.id}: {e}")
                logger.error(f"Failed to process task {task.id}: {e}")
                if not (isinstance(e, WorkflowStepError) and e.notified):
                    await self.handle_task_error(task, str(e))
                continue
            processed_count += 1
            results.append(f"✅ Task {task.id}: {message}")
            logger.info(f"Successfully processed task {task.id}: {message}")

        if processed_count > 0:
            summary = f"Processed {processed_count} tasks:\n" + "\n".join(results)
        else:
            summary = "No tasks were successfully processed:\n" + "\n".join(results)
        return trigger.mark_processed(summary)

    async def process_task_by_id(self, task_id: str) -> str:
        """Run the pipeline for one explicitly named task"""
        task = await self.steps.load_task(task_id)
        try:
            return await self.process_single_task(task)
        except WorkflowStepError as e:
            if not e.notified:
                await self.handle_task_error(task, str(e))
            raise

    async def handle_task_error(
        self,
        task: CrmTask,
        error_message: str,
        contact_name: Optional[str] = None,
        company_name: Optional[str] = None,
    ) -> None:
        """Best-effort: notify the reviewer and flag the CRM task. Never raises."""
        try:
            await self.steps.send_error_notification(
                task.id,
                contact_name or task.contact_name,
                company_name or UNKNOWN_COMPANY,
                error_message,
            )
        except Exception as e:
            logger.error(f"Failed to send error notification for task {task.id}: {e}")

        try:
            await self.steps.update_task_error_status(task.id, error_message)
        except Exception as e:
            logger.error(f"Failed to update CRM status of task {task.id}: {e}")

    async def report_approval_error(self, approval: ApprovalData, error_message: str) -> None:
        """Best-effort reviewer notice about a record that left the review cycle. Never raises."""
        try:
            await self.steps.send_error_notification(
                approval.task_id, approval.recipient_name, approval.company_name, error_message
            )
        except Exception as e:
            logger.error(f"Failed to send error notification for approval {approval.approval_id}: {e}")

    async def _step_failed(
        self,
        task: CrmTask,
        step: str,
        cause: Exception,
        contact_name: Optional[str] = None,
        company_name: Optional[str] = None,
    ) -> WorkflowStepError:
        error = WorkflowStepError(step, cause, notified=True)
        logger.error(f"Task {task.id}: {error}")
        await self.handle_task_error(task, str(error), contact_name, company_name)
        return error

    # ------------------------------------------------------------------
    # Single task
    # ------------------------------------------------------------------
    async def process_single_task(self, task: CrmTask) -> str:
        """
        Run steps 1 to 5b for one task

        Returns:
            Status text once the approval prompt is out

        Raises:
            WorkflowStepError: naming the failed step
        """
        logger.info(f"Starting workflow for task: {task.id}")

        try:
            await self.steps.mark_task_in_progress(task.id)
        except Exception as e:
            raise await self._step_failed(task, "0 (mark in progress)", e)

        try:
            contact = await self.steps.load_contact(task)
        except Exception as e:
            raise await self._step_failed(task, "1 (load contact)", e)
        logger.info(f"Step 1: Loaded contact '{contact.full_name}'")

        try:
            profile = await self.steps.load_profile(contact)
        except Exception as e:
            raise await self._step_failed(task, "2 (load profile)", e, contact.full_name)
        logger.info(f"Step 2: Loaded LinkedIn profile for '{profile.full_name}'")

        try:
            dossier = await self.steps.generate_dossiers(profile, contact.id)
        except Exception as e:
            raise await self._step_failed(task, "3 (generate dossiers)", e, contact.full_name)
        company_name = dossier.company_name or UNKNOWN_COMPANY
        logger.info(f"Step 3: Generated dossiers with company: {company_name}")

        try:
            if contact.mailing_address is None:
                address = dossier.mailing_address
                if address is None:
                    raise DataValidationError(
                        f"Failed to extract mailing address for {contact.full_name}. "
                        "Cannot proceed without recipient address."
                    )
                if not address.is_valid():
                    raise DataValidationError(
                        f"Extracted address for {contact.full_name} is invalid (empty fields). "
                        "Cannot proceed without valid recipient address."
                    )
                await self.steps.update_contact_address(contact.id, address)
                contact = contact.model_copy(update={"mailing_address": address})
                logger.info(f"Step 3.5: Stored extracted mailing address for {contact.full_name}")
            elif not contact.mailing_address.is_valid():
                raise DataValidationError(
                    f"Contact {contact.full_name} has invalid mailing address (empty fields). Cannot proceed."
                )
        except Exception as e:
            raise await self._step_failed(task, "3.5 (mailing address)", e, contact.full_name, company_name)

        try:
            letter = await self.steps.generate_letter(contact, profile, dossier)
        except Exception as e:
            raise await self._step_failed(task, "4 (generate letter)", e, contact.full_name, company_name)
        logger.info(f"Step 4: Generated letter with subject '{letter.subject}'")

        try:
            approval_id = await self.steps.approval_start(task.id, contact, letter, dossier)
        except Exception as e:
            raise await self._step_failed(task, "5a (approval start)", e, contact.full_name, company_name)
        logger.info(f"Step 5a: Created approval with ID: {approval_id}")

        try:
            state = await self.steps.request_approval(approval_id, letter, contact)
        except Exception as e:
            raise await self._step_failed(task, "5b (request approval)", e, contact.full_name, company_name)
        logger.info(f"Step 5b: Approval status: {state.value}")

        return AWAITING_RESPONSE_MESSAGE

    # ------------------------------------------------------------------
    # Continuations
    # ------------------------------------------------------------------
    async def continue_after_approval(self, approval: ApprovalData) -> str:
        """
        Step 6: mail the document the reviewer approved

        The stored document is sent as-is, never re-rendered. CRM bookkeeping
        after dispatch (attachment, status, follow-up) is best-effort.

        Raises:
            WorkflowError: record not approved, or address/document missing
        """
        if approval.state != ApprovalState.APPROVED:
            raise WorkflowError(
                f"Approval {approval.approval_id} is {approval.state.value}, not Approved"
            )
        if approval.mailing_address is None:
            raise WorkflowError(f"Approval {approval.approval_id} missing mailing address")
        document = decode_document(approval)

        logger.info(f"Sending approved PDF for task {approval.task_id} (not regenerating)")
        try:
            tracking_id = await self.steps.send_document(document, approval.mailing_address)
        except Exception as e:
            raise WorkflowStepError("6 (send approved PDF)", e) from e
        logger.info(f"Step 6: Letter sent successfully after approval, tracking: {tracking_id}")

        task_id = approval.task_id
        try:
            await self.steps.attach_file_to_task(task_id, document, f"Brief_{approval.contact_id}.pdf")
            logger.info(f"Attached PDF letter to task {task_id}")
        except Exception as e:
            logger.error(f"Failed to attach PDF to task {task_id}: {e}")

        try:
            await self.steps.update_task_completed_status(
                task_id, f"Brief erfolgreich versendet. Tracking: {tracking_id}"
            )
        except Exception as e:
            logger.error(f"Failed to mark task {task_id} completed: {e}")

        try:
            follow_up_id = await self.steps.create_follow_up_task(approval.contact_id, task_id)
            logger.info(f"Created follow-up task {follow_up_id} for contact {approval.contact_id}")
        except Exception as e:
            logger.error(f"Failed to create follow-up task for contact {approval.contact_id}: {e}")

        return f"Letter sent successfully after approval, tracking: {tracking_id}"

    async def process_improvement_request(self, approval: ApprovalData, feedback: str) -> ApprovalData:
        """
        Produce the next iteration for a NeedsImprovement record

        Regenerates the letter from the feedback, renders it to the stored
        address (shortening it while it overflows one page), sends a new
        prompt and returns the record in AwaitingUserResponse. The input
        record is not modified.
        """
        logger.info(f"Processing improvement request for approval {approval.approval_id}: {feedback}")
        if approval.state != ApprovalState.NEEDS_IMPROVEMENT:
            raise WorkflowError(
                f"Approval {approval.approval_id} is {approval.state.value}, not NeedsImprovement"
            )
        address = approval.mailing_address
        if address is None:
            raise WorkflowError("Missing mailing address in approval data")

        letter = await self.steps.generate_improved_letter(approval, feedback)
        document = None
        for attempt in range(self.page_limit_retries + 1):
            try:
                document = await self.steps.render_document(letter, address)
                break
            except PageLimitExceededError as e:
                if attempt >= self.page_limit_retries:
                    raise
                logger.warning(
                    f"Improved letter for {approval.approval_id} has {e.page_count} pages, "
                    f"shortening (attempt {attempt + 1}/{self.page_limit_retries})"
                )
                letter = await self.steps.generate_improved_letter(
                    approval, shorten_feedback(feedback, e.page_count)
                )

        improved = approval.model_copy(deep=True)
        improved.add_improved_letter(letter)
        improved.pdf_base64 = base64.b64encode(document).decode("ascii")

        message_ref = await self.steps.send_improved_approval(improved)
        improved.mark_awaiting_response(message_ref)
        logger.info(
            f"Approval {improved.approval_id} iteration {improved.current_iteration()} sent for review"
        )
        return improved
