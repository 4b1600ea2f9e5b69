"""
Unit tests for approval models and the approval state machine
"""
import pytest
from pydantic import ValidationError

from letterflow.errors import InvalidTransitionError
from letterflow.models.approval import (
    ApprovalData,
    ApprovalState,
    LetterHistoryEntry,
    MessageRef,
    WorkflowTrigger,
)
from letterflow.models.crm import MailingAddress
from letterflow.models.documents import PdfTemplateData


@pytest.fixture
def approval(letter):
    return ApprovalData.new(
        task_id="task-1",
        contact_id="contact-1",
        recipient_name="Jane Smith",
        company_name="Acme",
        letter=letter,
    )


class TestApprovalDataInvariants:
    def test_new_record_starts_pending_with_one_iteration(self, approval, letter):
        assert approval.state == ApprovalState.PENDING_APPROVAL
        assert approval.current_iteration() == 1
        assert approval.current_letter == letter
        assert approval.letter_history[0].iteration == 1

    def test_history_must_not_be_empty(self, letter):
        with pytest.raises(ValidationError):
            ApprovalData(
                task_id="t", contact_id="c", recipient_name="r", company_name="c",
                current_letter=letter, letter_history=[],
            )

    def test_history_must_be_contiguous(self, letter):
        with pytest.raises(ValidationError):
            ApprovalData(
                task_id="t", contact_id="c", recipient_name="r", company_name="c",
                current_letter=letter,
                letter_history=[LetterHistoryEntry(iteration=2, content=letter)],
            )

    def test_current_letter_must_match_last_entry(self, letter):
        other = letter.model_copy(update={"subject": "Other"})
        with pytest.raises(ValidationError):
            ApprovalData(
                task_id="t", contact_id="c", recipient_name="r", company_name="c",
                current_letter=other,
                letter_history=[LetterHistoryEntry(iteration=1, content=letter)],
            )

    def test_round_trip_preserves_all_fields(self, approval, address):
        approval.mailing_address = address
        approval.pdf_base64 = "JVBERi0="
        approval.mark_awaiting_response(MessageRef(message_id=5, chat_id="c"))
        approval.add_feedback("too formal", 7)

        restored = ApprovalData.model_validate_json(approval.model_dump_json())

        assert restored == approval


class TestTransitions:
    def test_full_approval_path(self, approval):
        approval.mark_awaiting_response(MessageRef(message_id=5, chat_id="chat"))
        assert approval.state == ApprovalState.AWAITING_USER_RESPONSE
        assert approval.message_ref == MessageRef(message_id=5, chat_id="chat")

        approval.mark_approved()
        assert approval.state == ApprovalState.APPROVED
        assert approval.state.is_terminal

    def test_approve_from_pending_is_rejected(self, approval):
        with pytest.raises(InvalidTransitionError) as exc_info:
            approval.mark_approved()
        assert exc_info.value.current_state == ApprovalState.PENDING_APPROVAL
        assert approval.state == ApprovalState.PENDING_APPROVAL

    def test_feedback_attaches_to_last_entry(self, approval):
        approval.mark_awaiting_response()
        approval.add_feedback("too formal", 7)

        assert approval.state == ApprovalState.NEEDS_IMPROVEMENT
        assert approval.latest_feedback().text == "too formal"
        assert approval.latest_feedback().provided_by == 7

    def test_improved_letter_appends_iteration_and_clears_message_ref(self, approval, letter):
        approval.mark_awaiting_response(MessageRef(message_id=5, chat_id="chat"))
        approval.add_feedback("shorter", 1)
        improved = letter.model_copy(update={"body": "short"})

        approval.add_improved_letter(improved)

        assert approval.state == ApprovalState.PENDING_APPROVAL
        assert approval.current_iteration() == 2
        assert approval.current_letter == improved
        assert approval.letter_history[0].feedback.text == "shorter"
        assert approval.telegram_message_id is None
        assert approval.telegram_chat_id is None

    def test_mark_failed_from_terminal_state_is_rejected(self, approval):
        approval.mark_awaiting_response()
        approval.mark_approved()
        with pytest.raises(InvalidTransitionError):
            approval.mark_failed("late")

    def test_mark_failed_records_reason(self, approval):
        approval.mark_failed("renderer down")
        assert approval.state == ApprovalState.FAILED
        assert approval.failure_reason == "renderer down"


class TestUnescaping:
    def test_with_unescaped_letters_converts_literal_newlines(self, approval):
        unescaped = approval.with_unescaped_letters()

        assert "\\n" not in unescaped.current_letter.body
        assert "\n" in unescaped.current_letter.body
        assert unescaped.current_letter == unescaped.letter_history[-1].content
        assert "\\n" in approval.current_letter.body


class TestMailingAddress:
    def test_state_is_optional(self, address):
        assert address.state is None
        assert address.is_valid()

    def test_blank_required_field_is_invalid(self, address):
        assert not address.model_copy(update={"city": "  "}).is_valid()

    def test_single_line(self, address):
        assert address.single_line() == "Hauptstraße 1, 10115 Berlin, Germany"


class TestPdfTemplateData:
    def test_payload_uses_bookmark_names(self, letter, address):
        payload = PdfTemplateData.from_letter_and_address(letter, address).to_payload()

        assert payload["Betreff"] == letter.subject
        assert payload["Anrede"] == letter.greeting
        assert payload["Street 1"] == "Hauptstraße 1"
        assert payload["ZipCode"] == "10115"
        assert payload["Street-2"] is None


class TestWorkflowTrigger:
    def test_max_tasks_must_be_positive(self):
        with pytest.raises(ValidationError):
            WorkflowTrigger(max_tasks=0)

    def test_unknown_fields_are_ignored(self):
        trigger = WorkflowTrigger.model_validate({"max_tasks": 2, "legacy_field": "x"})
        assert trigger.max_tasks == 2

    def test_mark_processed(self):
        trigger = WorkflowTrigger(max_tasks=1).mark_processed("done")
        assert trigger.processed
        assert trigger.processed_at is not None
        assert trigger.result == "done"
