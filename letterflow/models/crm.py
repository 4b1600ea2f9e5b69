"""
CRM, profile and dossier models

Shapes of the data the pipeline reads from its collaborators: CRM tasks and
contacts, stored LinkedIn profiles and generated dossiers.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class MailingAddress(BaseModel):
    """Postal address; `state` is optional, every other field is required"""
    street: str = ""
    city: str = ""
    state: Optional[str] = None
    postal_code: str = ""
    country: str = ""

    def is_valid(self) -> bool:
        return all(
            value.strip()
            for value in (self.street, self.city, self.postal_code, self.country)
        )

    def single_line(self) -> str:
        parts = [self.street, f"{self.postal_code} {self.city}".strip(), self.state or "", self.country]
        return ", ".join(part for part in parts if part)


class ContactRef(BaseModel):
    """Contact reference embedded in a CRM task (`Who_Id`)"""
    id: str
    name: Optional[str] = None


class CrmTask(BaseModel):
    """CRM task linking an outreach action to a contact"""
    model_config = ConfigDict(extra="ignore")

    id: str
    subject: str = ""
    status: Optional[str] = None
    who_id: Optional[ContactRef] = None
    created_time: Optional[datetime] = None

    @property
    def contact_name(self) -> str:
        if self.who_id and self.who_id.name:
            return self.who_id.name
        return "Unknown Contact"


class Contact(BaseModel):
    """CRM contact"""
    id: str
    full_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    linkedin_id: Optional[str] = None
    mailing_address: Optional[MailingAddress] = None


class LinkedInProfile(BaseModel):
    """Stored LinkedIn profile export"""
    profile_id: str
    profile_url: str = ""
    full_name: str
    headline: Optional[str] = None
    location: Optional[str] = None
    company: Optional[str] = None
    raw_data: Dict[str, Any] = Field(default_factory=dict)


class DossierResult(BaseModel):
    """Research output for one contact"""
    person_dossier_content: str = ""
    company_dossier_content: str = ""
    company_name: str = ""
    mailing_address: Optional[MailingAddress] = None
