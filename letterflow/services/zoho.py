"""
Zoho CRM Client

Provides the CRM operations the workflow needs:
- Task lookup and search (by subject / status / owner)
- Contact lookup and mailing address updates
- Task status updates, file attachments and follow-up tasks

Privileged operations live on ``ZohoClient``, which is only handed out by
``ZohoAuthenticator.authenticate()`` after a token has been obtained.
"""
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Tuple

from letterflow.config import get_settings
from letterflow.errors import AuthenticationError, ServiceUnavailableError, WorkflowError
from letterflow.models.crm import Contact, ContactRef, CrmTask, MailingAddress
from letterflow.services.base import ApiClient
from letterflow.services.nango import NangoClient
from letterflow.utils.logger import get_logger

settings = get_settings()
logger = get_logger(__name__)

CRITERIA_FIELDS = {
    "Subject": "Subject",
    "Status": "Status",
    "Owner": "Owner.id",
}


def build_search_criteria(filters: List[Tuple[str, str]]) -> str:
    """
    Build a Zoho search criteria expression

    >>> build_search_criteria([("Subject", "Call"), ("Owner", "42")])
    '((Subject:equals:Call)and(Owner.id:equals:42))'
    """
    parts = [
        f"({CRITERIA_FIELDS.get(key, key)}:equals:{value})"
        for key, value in filters
    ]
    if len(parts) == 1:
        return parts[0]
    return f"({'and'.join(parts)})"


def parse_mailing_address(data: Dict[str, Any]) -> Optional[MailingAddress]:
    """Mailing address from Zoho contact fields; None unless the required fields are present"""
    street = data.get("Mailing_Street")
    city = data.get("Mailing_City")
    postal_code = data.get("Mailing_Code")
    country = data.get("Mailing_Country")
    if not all(isinstance(value, str) for value in (street, city, postal_code, country)):
        return None
    return MailingAddress(
        street=street,
        city=city,
        state=data.get("Mailing_State"),
        postal_code=postal_code,
        country=country,
    )


def parse_contact(data: Dict[str, Any]) -> Contact:
    account = data.get("Account_Name")
    if isinstance(account, dict):
        account = account.get("name")
    return Contact(
        id=str(data.get("id", "")),
        full_name=data.get("Full_Name") or "",
        email=data.get("Email"),
        phone=data.get("Phone"),
        company=account,
        linkedin_id=data.get("LinkedIn_ID"),
        mailing_address=parse_mailing_address(data),
    )


def parse_task(data: Dict[str, Any]) -> CrmTask:
    who = data.get("Who_Id")
    return CrmTask(
        id=str(data.get("id", "")),
        subject=data.get("Subject") or "",
        status=data.get("Status"),
        who_id=ContactRef(id=str(who["id"]), name=who.get("name")) if isinstance(who, dict) and who.get("id") else None,
        created_time=data.get("Created_Time"),
    )


class ZohoAuthenticator:
    """Entry point to the CRM: proves a token can be obtained, then hands out a client."""

    def __init__(
        self,
        nango: Optional[NangoClient] = None,
        connection_id: Optional[str] = None,
        integration_id: Optional[str] = None,
        base_url: Optional[str] = None,
    ):
        self.nango = nango or NangoClient()
        self.connection_id = connection_id or settings.nango_connection_id
        self.integration_id = integration_id or settings.nango_integration_id
        self.base_url = base_url or settings.zoho_base_url

    async def authenticate(self) -> "ZohoClient":
        """
        Fetch an initial token and return an authenticated client

        Raises:
            AuthenticationError: If no token is available
        """
        await self.nango.get_token(self.connection_id, self.integration_id)
        logger.info("Authenticated against Zoho CRM via connection %s", self.connection_id)
        return ZohoClient(self, _token=_AUTH_TOKEN)


_AUTH_TOKEN = object()


class ZohoClient(ApiClient):
    """
    Zoho CRM v2 API client with token refresh and retry logic
    """

    service_name = "Zoho CRM"

    def __init__(self, authenticator: ZohoAuthenticator, _token: object = None):
        if _token is not _AUTH_TOKEN:
            raise AuthenticationError("ZohoClient must be obtained from ZohoAuthenticator.authenticate()")
        super().__init__(authenticator.base_url)
        self.auth = authenticator

    async def _headers(self) -> Dict[str, str]:
        token = await self.auth.nango.get_token(self.auth.connection_id, self.auth.integration_id)
        return {"Authorization": f"Zoho-oauthtoken {token}"}

    async def _make_request(self, method: str, endpoint: str, allow_status=(), **kwargs):
        """Retry once with a refreshed token when Zoho rejects the current one"""
        try:
            return await super()._make_request(method, endpoint, allow_status=allow_status, **kwargs)
        except AuthenticationError:
            logger.warning("Zoho rejected access token, forcing refresh")
            await self.auth.nango.get_token(
                self.auth.connection_id, self.auth.integration_id, force_refresh=True
            )
            return await super()._make_request(method, endpoint, allow_status=allow_status, **kwargs)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------
    async def get_task_by_id(self, task_id: str) -> Optional[CrmTask]:
        """Fetch a task; None if Zoho does not know it"""
        response = await self._make_request("GET", f"crm/v2/Tasks/{task_id}", allow_status=(204, 404))
        if response.status_code in (204, 404):
            return None
        records = response.json().get("data") or []
        return parse_task(records[0]) if records else None

    async def search_tasks(self, filters: List[Tuple[str, str]]) -> List[CrmTask]:
        """
        Search tasks matching all filters

        Args:
            filters: (field, value) pairs; field is Subject, Status, Owner or a raw API name

        Returns:
            Matching tasks, empty when Zoho answers 204
        """
        criteria = build_search_criteria(filters)
        logger.info(f"Searching Zoho tasks: {criteria}")
        response = await self._make_request(
            "GET", "crm/v2/Tasks/search", params={"criteria": criteria}, allow_status=(204,)
        )
        if response.status_code == 204:
            return []
        return [parse_task(record) for record in response.json().get("data") or []]

    async def update_task_status(self, task_id: str, status: str, description: str) -> None:
        payload = {"data": [{"Status": status, "Description": description}]}
        await self._make_request("PUT", f"crm/v2/Tasks/{task_id}", json=payload)
        logger.info(f"Updated task {task_id} status to '{status}'")

    async def attach_file(self, task_id: str, data: bytes, filename: str) -> None:
        files = {"file": (filename, data, "application/pdf")}
        await self._make_request("POST", f"crm/v2/Tasks/{task_id}/Attachments", files=files)
        logger.info(f"Attached {filename} ({len(data)} bytes) to task {task_id}")

    async def create_follow_up_task(
        self,
        contact_id: str,
        source_task_id: str,
        due_date: Optional[date] = None,
    ) -> str:
        """Create a follow-up task for the contact and return its id"""
        due_date = due_date or date.today() + timedelta(days=settings.follow_up_days)
        record: Dict[str, Any] = {
            "Subject": settings.zoho_follow_up_subject,
            "Who_Id": contact_id,
            "Status": settings.zoho_task_status,
            "Due_Date": due_date.isoformat(),
            "Description": f"Follow-up for letter sent in task {source_task_id}",
        }
        if settings.zoho_task_owner_id:
            record["Owner"] = settings.zoho_task_owner_id
        body = await self._request_json("POST", "crm/v2/Tasks", json={"data": [record]})
        try:
            return str(body["data"][0]["details"]["id"])
        except (KeyError, IndexError, TypeError) as e:
            raise ServiceUnavailableError(f"Unexpected Zoho create-task response: {body}") from e

    # ------------------------------------------------------------------
    # Contacts
    # ------------------------------------------------------------------
    async def get_contact(self, contact_id: str) -> Optional[Contact]:
        response = await self._make_request("GET", f"crm/v2/Contacts/{contact_id}", allow_status=(204, 404))
        if response.status_code in (204, 404):
            return None
        records = response.json().get("data") or []
        return parse_contact(records[0]) if records else None

    async def update_contact_address(self, contact_id: str, address: MailingAddress) -> None:
        record: Dict[str, Any] = {
            "Mailing_Street": address.street,
            "Mailing_City": address.city,
            "Mailing_Code": address.postal_code,
            "Mailing_Country": address.country,
        }
        if address.state:
            record["Mailing_State"] = address.state
        try:
            await self._make_request("PUT", f"crm/v2/Contacts/{contact_id}", json={"data": [record]})
        except ServiceUnavailableError as e:
            raise WorkflowError(f"Failed to update contact address: {e}") from e
        logger.info(f"Updated mailing address of contact {contact_id}")
