"""
Letter generation client

Drafts a personalised letter from the contact, profile and dossiers, and
regenerates it from reviewer feedback with the full revision history.
"""
from typing import Any, Dict, Optional

from letterflow.config import get_settings
from letterflow.errors import ServiceUnavailableError
from letterflow.models.approval import ApprovalData, LetterContent
from letterflow.models.crm import Contact, DossierResult, LinkedInProfile
from letterflow.services.base import ApiClient
from letterflow.utils.logger import get_logger

settings = get_settings()
logger = get_logger(__name__)


def _flatten(letter: LetterContent) -> str:
    return f"{letter.subject}\n{letter.greeting}\n{letter.body}"


class LetterServiceClient(ApiClient):
    service_name = "Letter service"

    def __init__(self, base_url: Optional[str] = None):
        super().__init__(base_url or settings.letter_service_url, timeout=120.0)

    def _to_letter(self, body: Dict[str, Any], recipient_name: str, company_name: str) -> LetterContent:
        if not body.get("success", True):
            raise ServiceUnavailableError(f"Letter generation failed: {body.get('error_message', '')}")
        letter = body.get("letter") or {}
        return LetterContent(
            subject=letter.get("subject", ""),
            greeting=letter.get("greeting", ""),
            body=letter.get("body", ""),
            sender_name=letter.get("sender_name", ""),
            recipient_name=recipient_name,
            company_name=company_name,
        )

    async def generate(
        self,
        contact: Contact,
        profile: LinkedInProfile,
        dossier: DossierResult,
    ) -> LetterContent:
        first_name, _, last_name = contact.full_name.partition(" ")
        address = contact.mailing_address
        payload = {
            "letter_type": "sales_introduction",
            "recipient": {
                "first_name": first_name,
                "last_name": last_name,
                "full_name": contact.full_name,
                "email": contact.email or "",
                "title": profile.headline or "",
                "account_name": contact.company or "",
                "mailing_street": address.street if address else "",
                "mailing_city": address.city if address else "",
                "mailing_zip": address.postal_code if address else "",
                "mailing_country": address.country if address else "",
            },
            "dossiers": {
                "person": dossier.person_dossier_content,
                "company": dossier.company_dossier_content,
            },
            "feedback_history": [],
        }
        logger.info(
            f"Generating letter for {contact.full_name} at {dossier.company_name} "
            f"(person dossier {len(dossier.person_dossier_content)} chars, "
            f"company dossier {len(dossier.company_dossier_content)} chars)"
        )
        body = await self._request_json("POST", "letters/generate", json=payload)
        return self._to_letter(body, contact.full_name, dossier.company_name)

    async def regenerate(self, approval: ApprovalData, feedback: str) -> LetterContent:
        """New iteration from the reviewer's feedback and every previous iteration"""
        payload = {
            "approval_id": str(approval.approval_id),
            "task_id": approval.task_id,
            "contact_name": approval.recipient_name,
            "company_name": approval.company_name,
            "recipient_email": approval.recipient_email or "",
            "recipient_title": approval.recipient_title or "",
            "industry": approval.industry or "",
            "website": approval.website or "",
            "dossiers": {
                "person": approval.person_dossier or "",
                "company": approval.company_dossier or "",
            },
            "current_letter": _flatten(approval.current_letter),
            "current_iteration": approval.current_iteration() + 1,
            "letter_history": [
                {
                    "iteration": entry.iteration,
                    "content": _flatten(entry.content),
                    "feedback": entry.feedback.text if entry.feedback else "",
                    "timestamp": entry.created_at.isoformat(),
                }
                for entry in approval.letter_history
            ],
            "feedback_text": feedback,
        }
        logger.info(
            f"Regenerating letter for approval {approval.approval_id} "
            f"(iteration {approval.current_iteration() + 1})"
        )
        body = await self._request_json("POST", "letters/regenerate", json=payload)
        return self._to_letter(body, approval.recipient_name, approval.company_name)
