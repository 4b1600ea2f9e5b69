"""
Dossier generation client

The dossier service researches the person and their company and returns
markdown dossiers plus the extracted company name and postal address.
"""
from typing import Any, Dict, Optional

from letterflow.config import get_settings
from letterflow.errors import ServiceUnavailableError
from letterflow.models.crm import DossierResult, LinkedInProfile, MailingAddress
from letterflow.services.base import ApiClient
from letterflow.utils.logger import get_logger

settings = get_settings()
logger = get_logger(__name__)


def _parse_address(data: Optional[Dict[str, Any]]) -> Optional[MailingAddress]:
    if not data:
        return None
    return MailingAddress(
        street=data.get("street") or "",
        city=data.get("city") or "",
        state=data.get("state") or None,
        postal_code=data.get("postal_code") or "",
        country=data.get("country") or "",
    )


class DossierClient(ApiClient):
    service_name = "Dossier service"

    def __init__(self, base_url: Optional[str] = None):
        super().__init__(base_url or settings.dossier_service_url, timeout=300.0)

    async def generate(self, profile: LinkedInProfile, contact_id: str) -> DossierResult:
        payload = {
            "zoho_contact_id": contact_id,
            "linkedin_id": profile.profile_id,
            "linkedin_profile": profile.raw_data or profile.model_dump(),
            "extract_address": True,
            "extract_company_name": True,
        }
        logger.info(f"Requesting dossiers for contact {contact_id} ({profile.full_name})")
        body = await self._request_json("POST", "dossiers", json=payload)

        company = body.get("company_dossier")
        if not company:
            raise ServiceUnavailableError("No company dossier in response")
        person = body.get("person_dossier") or {}

        result = DossierResult(
            person_dossier_content=person.get("content") or "",
            company_dossier_content=company.get("content") or "",
            company_name=company.get("company_name") or "",
            mailing_address=_parse_address(company.get("mailing_address")),
        )
        logger.info(
            f"Dossiers generated for {contact_id}: company '{result.company_name}', "
            f"address {'found' if result.mailing_address else 'missing'}"
        )
        return result
