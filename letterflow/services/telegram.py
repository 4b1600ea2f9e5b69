"""
Telegram notifications for the human approval channel

Sends approval prompts (the rendered letter as a document with inline
approve / change / reject buttons) and error notices to one chat.
"""
import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from letterflow.config import get_settings
from letterflow.errors import ServiceUnavailableError
from letterflow.models.approval import LetterContent, MessageRef
from letterflow.services.base import ApiClient
from letterflow.utils.logger import get_logger

settings = get_settings()
logger = get_logger(__name__)

APPROVE_PREFIX = "approve_"
CHANGE_PREFIX = "change_"
REJECT_PREFIX = "reject_"

# sendDocument caption limit
CAPTION_LIMIT = 1024
FIELD_LIMIT = 200


def escape_html(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def approval_keyboard(approval_id: str) -> Dict[str, List[List[Dict[str, str]]]]:
    return {
        "inline_keyboard": [
            [
                {"text": "✅ Genehmigen", "callback_data": f"{APPROVE_PREFIX}{approval_id}"},
                {"text": "📝 Änderungen anfordern", "callback_data": f"{CHANGE_PREFIX}{approval_id}"},
            ],
            [
                {"text": "❌ Ablehnen", "callback_data": f"{REJECT_PREFIX}{approval_id}"},
            ],
        ]
    }


def truncate_escaped(text: str, limit: int) -> str:
    """HTML-escape `text`, cutting it with "…" so the result fits in `limit` characters.

    The cut is made before escaping so an entity is never split.
    """
    escaped = escape_html(text)
    if len(escaped) <= limit:
        return escaped
    if limit <= 0:
        return ""
    cut = min(len(text), limit - 1)
    while cut > 0 and len(escape_html(text[:cut])) > limit - 1:
        cut -= 1
    return escape_html(text[:cut].rstrip()) + "…"


def approval_caption(
    letter: LetterContent,
    recipient_name: str,
    iteration: int = 1,
    feedback: Optional[str] = None,
) -> str:
    if iteration > 1:
        header = f"🔄 <b>Überarbeiteter Brief (Version {iteration})</b>"
    else:
        header = "📬 <b>Neue Briefgenehmigung erforderlich</b>"
    lines = [
        header,
        "",
        f"<b>Empfänger:</b> {truncate_escaped(recipient_name, FIELD_LIMIT)}",
        f"<b>Firma:</b> {truncate_escaped(letter.company_name, FIELD_LIMIT)}",
        f"<b>Betreff:</b> {truncate_escaped(letter.subject, FIELD_LIMIT)}",
    ]
    footer = ["", "Bitte prüfen Sie den angehängten Brief."]
    if feedback:
        label = "<b>Feedback:</b> "
        budget = CAPTION_LIMIT - len("\n".join(lines + footer)) - len("\n") - len(label)
        if budget > 0:
            lines.append(label + truncate_escaped(feedback, budget))
    return "\n".join(lines + footer)


def error_notice(task_id: str, contact_name: str, company_name: str, error_message: str) -> str:
    return (
        "❌ <b>Workflow fehlgeschlagen!</b>\n\n"
        f"👤 <b>Kontakt:</b> {escape_html(contact_name)}\n"
        f"🏢 <b>Firma:</b> {escape_html(company_name)}\n"
        f"📋 <b>Task ID:</b> {escape_html(task_id[:8])}...\n"
        f"❗ <b>Fehler:</b> {escape_html(error_message)}\n"
        f"⏰ <b>Zeit:</b> {datetime.now().strftime('%H:%M:%S')}\n\n"
        f"Bitte prüfen Sie die Task in Zoho CRM (Status: {escape_html(settings.zoho_status_error)})."
    )


def document_filename(recipient_name: str) -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    return f"Brief_{recipient_name.replace(' ', '_')}_{stamp}.pdf"


class Notifier(ABC):
    """Human approval channel"""

    @abstractmethod
    async def send_approval_prompt(
        self,
        letter: LetterContent,
        recipient_name: str,
        approval_id: str,
        document: bytes,
        iteration: int = 1,
        feedback: Optional[str] = None,
    ) -> MessageRef:
        """Send the rendered letter with decision buttons"""

    @abstractmethod
    async def send_error_notice(
        self,
        task_id: str,
        contact_name: str,
        company_name: str,
        error_message: str,
    ) -> None:
        """Tell the reviewer a task failed"""


class TelegramNotifier(ApiClient, Notifier):
    """Telegram Bot API implementation of the approval channel"""

    service_name = "Telegram"

    def __init__(
        self,
        bot_token: Optional[str] = None,
        chat_id: Optional[str] = None,
        base_url: Optional[str] = None,
    ):
        self.bot_token = bot_token if bot_token is not None else settings.telegram_bot_token
        self.chat_id = chat_id if chat_id is not None else settings.telegram_chat_id
        super().__init__(f"{(base_url or settings.telegram_base_url).rstrip('/')}/bot{self.bot_token}")

    @staticmethod
    def _message_ref(body: Dict[str, Any]) -> MessageRef:
        if not body.get("ok", False):
            raise ServiceUnavailableError(f"Telegram API error: {body.get('description', body)}")
        result = body.get("result") or {}
        return MessageRef(
            message_id=int(result.get("message_id", 0)),
            chat_id=str((result.get("chat") or {}).get("id", "")),
        )

    async def send_approval_prompt(
        self,
        letter: LetterContent,
        recipient_name: str,
        approval_id: str,
        document: bytes,
        iteration: int = 1,
        feedback: Optional[str] = None,
    ) -> MessageRef:
        data = {
            "chat_id": self.chat_id,
            "caption": approval_caption(letter, recipient_name, iteration, feedback),
            "parse_mode": "HTML",
            "reply_markup": json.dumps(approval_keyboard(approval_id)),
        }
        files = {"document": (document_filename(recipient_name), document, "application/pdf")}
        body = await self._request_json("POST", "sendDocument", data=data, files=files)
        message = self._message_ref(body)
        logger.info(
            f"Approval prompt for {approval_id} sent (iteration {iteration}, message {message.message_id})"
        )
        return message

    async def send_error_notice(
        self,
        task_id: str,
        contact_name: str,
        company_name: str,
        error_message: str,
    ) -> None:
        payload = {
            "chat_id": self.chat_id,
            "text": error_notice(task_id, contact_name, company_name, error_message),
            "parse_mode": "HTML",
        }
        body = await self._request_json("POST", "sendMessage", json=payload)
        self._message_ref(body)
        logger.info(f"Error notice sent for task {task_id}")
