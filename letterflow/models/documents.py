"""
Document rendering and mail dispatch models
"""
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from letterflow.models.approval import LetterContent
from letterflow.models.crm import MailingAddress


class PrintColor(str, Enum):
    COLOR = "color"
    BLACK_WHITE = "black_white"


class PrintMode(str, Enum):
    DUPLEX = "duplex"
    SIMPLEX = "simplex"


class ShippingType(str, Enum):
    STANDARD = "national"
    INTERNATIONAL = "international"


class PrintOptions(BaseModel):
    """Print and shipping options for physical mail"""
    color: PrintColor = PrintColor.COLOR
    mode: PrintMode = PrintMode.DUPLEX
    shipping: ShippingType = ShippingType.STANDARD


class PdfTemplateData(BaseModel):
    """
    Bookmark values for the letter template.

    Field aliases are the bookmark names inside the template document, so
    ``model_dump(by_alias=True)`` produces the payload the renderer expects.
    """
    model_config = ConfigDict(populate_by_name=True)

    subject: str = Field(..., alias="Betreff")
    greeting: str = Field(..., alias="Anrede")
    body: str = Field(..., alias="Brieftext")
    sender_name: str = Field(..., alias="Sender-Name")
    company: str = Field(..., alias="Company")
    recipient: str = Field(..., alias="Recipient")
    street_1: str = Field(..., alias="Street 1")
    street_2: Optional[str] = Field(None, alias="Street-2")
    city: str = Field(..., alias="City")
    zip_code: str = Field(..., alias="ZipCode")
    country: str = Field(..., alias="Country")

    @classmethod
    def from_letter_and_address(cls, letter: LetterContent, address: MailingAddress) -> "PdfTemplateData":
        return cls(
            subject=letter.subject,
            greeting=letter.greeting,
            body=letter.body,
            sender_name=letter.sender_name,
            company=letter.company_name,
            recipient=letter.recipient_name,
            street_1=address.street,
            street_2=address.state,
            city=address.city,
            zip_code=address.postal_code,
            country=address.country,
        )

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)
