"""
Unit tests for WorkflowProcessor, the production WorkflowSteps
"""
import base64
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from conftest import make_contact, make_task
from letterflow.errors import PageLimitExceededError, WorkflowError
from letterflow.models.approval import ApprovalState, MessageRef
from letterflow.models.crm import DossierResult
from letterflow.services.workflow_processor import (
    WorkflowProcessor,
    extract_company_metadata,
    extract_person_metadata,
)


@pytest.fixture
def collaborators(letter):
    zoho = MagicMock()
    zoho.search_tasks = AsyncMock(return_value=[])
    zoho.get_task_by_id = AsyncMock(return_value=None)
    zoho.get_contact = AsyncMock(return_value=None)
    zoho.update_task_status = AsyncMock()
    baserow = MagicMock()
    baserow.get_profile = AsyncMock(return_value=None)
    letters = MagicMock()
    letters.regenerate = AsyncMock(return_value=letter.model_copy(update={"body": "short"}))
    pdf = MagicMock()
    pdf.render = AsyncMock(return_value=b"%PDF-rendered")
    notifier = MagicMock()
    notifier.send_approval_prompt = AsyncMock(return_value=MessageRef(message_id=5, chat_id="chat"))
    letterexpress = MagicMock()
    letterexpress.send = AsyncMock(return_value="job-1")
    return {
        "zoho": zoho,
        "baserow": baserow,
        "dossier": MagicMock(),
        "letters": letters,
        "pdf": pdf,
        "letterexpress": letterexpress,
        "notifier": notifier,
    }


@pytest.fixture
def processor(collaborators, queue):
    return WorkflowProcessor(queue=queue, page_limit_retries=2, **collaborators)


@pytest.fixture
def dossier(address):
    return DossierResult(
        person_dossier_content="# Jane\n**Email**: jane@acme.example\n**Headline**: CTO at Acme",
        company_dossier_content="- **Industry**: Software\n- **Website**: [acme.example](https://acme.example)",
        company_name="Acme",
        mailing_address=address,
    )


class TestMetadataExtraction:
    def test_person_metadata(self, dossier):
        assert extract_person_metadata(dossier.person_dossier_content) == ("jane@acme.example", "CTO at Acme")

    def test_company_metadata_strips_link(self, dossier):
        assert extract_company_metadata(dossier.company_dossier_content) == ("Software", "acme.example")

    def test_missing_fields(self):
        assert extract_person_metadata("nothing here") == (None, None)


class TestTaskLoading:
    @pytest.mark.asyncio
    async def test_tasks_sorted_and_capped(self, processor, collaborators):
        older = make_task("old").model_copy(update={"created_time": datetime(2026, 1, 1, tzinfo=timezone.utc)})
        newer = make_task("new").model_copy(update={"created_time": datetime(2026, 2, 1, tzinfo=timezone.utc)})
        collaborators["zoho"].search_tasks.return_value = [newer, older, make_task("undated")]

        tasks = await processor.load_available_tasks(2)

        assert [task.id for task in tasks] == ["old", "new"]

    @pytest.mark.asyncio
    async def test_missing_task(self, processor):
        with pytest.raises(WorkflowError):
            await processor.load_task("x")

    @pytest.mark.asyncio
    async def test_contact_required(self, processor):
        task = make_task("t1").model_copy(update={"who_id": None})
        with pytest.raises(WorkflowError):
            await processor.load_contact(task)

    @pytest.mark.asyncio
    async def test_linkedin_id_required(self, processor):
        contact = make_contact("c1").model_copy(update={"linkedin_id": None})
        with pytest.raises(WorkflowError):
            await processor.load_profile(contact)


class TestApprovalStart:
    @pytest.mark.asyncio
    async def test_creates_pending_record_with_rendered_document(self, processor, queue, letter, address, dossier):
        contact = make_contact("c1", address=address)

        approval_id = await processor.approval_start("t1", contact, letter, dossier)

        approval = queue.get_approval(approval_id)
        assert approval.state == ApprovalState.PENDING_APPROVAL
        assert base64.b64decode(approval.pdf_base64) == b"%PDF-rendered"
        assert approval.mailing_address == address
        assert approval.recipient_email == "jane@acme.example"
        assert approval.recipient_title == "CTO at Acme"
        assert approval.industry == "Software"
        assert approval.website == "acme.example"

    @pytest.mark.asyncio
    async def test_page_overflow_shortens_before_persisting(self, processor, collaborators, queue, letter, address, dossier):
        collaborators["pdf"].render.side_effect = [PageLimitExceededError(page_count=2), b"%PDF-short"]

        approval_id = await processor.approval_start("t1", make_contact("c1", address=address), letter, dossier)

        approval = queue.get_approval(approval_id)
        assert approval.current_letter.body == "short"
        assert approval.current_iteration() == 1
        assert base64.b64decode(approval.pdf_base64) == b"%PDF-short"

    @pytest.mark.asyncio
    async def test_page_overflow_exhausts_retries(self, processor, collaborators, queue, letter, address, dossier):
        collaborators["pdf"].render.side_effect = PageLimitExceededError(page_count=2)

        with pytest.raises(PageLimitExceededError):
            await processor.approval_start("t1", make_contact("c1", address=address), letter, dossier)
        assert collaborators["letters"].regenerate.await_count == 2
        assert queue.counts_by_state()[ApprovalState.PENDING_APPROVAL] == 0

    @pytest.mark.asyncio
    async def test_requires_address(self, processor, letter, dossier):
        with pytest.raises(WorkflowError):
            await processor.approval_start("t1", make_contact("c1"), letter, dossier)


class TestRequestApproval:
    @pytest.mark.asyncio
    async def test_sends_stored_document_and_transitions(self, processor, collaborators, queue, letter, address, dossier):
        contact = make_contact("c1", address=address)
        approval_id = await processor.approval_start("t1", contact, letter, dossier)

        state = await processor.request_approval(approval_id, letter, contact)

        assert state == ApprovalState.AWAITING_USER_RESPONSE
        args = collaborators["notifier"].send_approval_prompt.await_args.args
        assert args[2] == str(approval_id)
        assert args[3] == b"%PDF-rendered"
        assert queue.get_approval(approval_id).message_ref == MessageRef(message_id=5, chat_id="chat")

    @pytest.mark.asyncio
    async def test_unknown_approval(self, processor, letter, address):
        with pytest.raises(WorkflowError):
            await processor.request_approval(uuid4(), letter, make_contact("c1", address=address))


class TestDelivery:
    @pytest.mark.asyncio
    async def test_send_document_keeps_local_copy(self, processor, queue, address):
        tracking_id = await processor.send_document(b"%PDF", address)

        assert tracking_id == "job-1"
        copies = list(queue.data_dir("letters").glob("letter_Berlin_*.pdf"))
        assert len(copies) == 1
        assert copies[0].read_bytes() == b"%PDF"

    @pytest.mark.asyncio
    async def test_error_status_message(self, processor, collaborators):
        await processor.update_task_error_status("t1", "boom")

        args = collaborators["zoho"].update_task_status.await_args.args
        assert args[0] == "t1"
        assert args[2] == "Workflow failed: boom"
