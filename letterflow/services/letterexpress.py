"""
LetterExpress client for physical mail dispatch
"""
import base64
from typing import Any, Dict, Optional

from letterflow.config import get_settings
from letterflow.errors import ServiceUnavailableError
from letterflow.models.crm import MailingAddress
from letterflow.models.documents import PrintColor, PrintMode, PrintOptions
from letterflow.services.base import ApiClient
from letterflow.utils.logger import get_logger

settings = get_settings()
logger = get_logger(__name__)


def extract_tracking_id(result: Dict[str, Any]) -> str:
    for key in ("job_id", "id", "jid"):
        value = result.get(key)
        if value not in (None, ""):
            return str(value)
    data = result.get("data")
    if isinstance(data, dict):
        for key in ("job_id", "id", "jid"):
            if data.get(key) not in (None, ""):
                return str(data[key])
    return "unknown"


def default_sender_address() -> MailingAddress:
    return MailingAddress(
        street=settings.sender_street,
        city=settings.sender_city,
        state=settings.sender_state or None,
        postal_code=settings.sender_postal_code,
        country=settings.sender_country,
    )


class LetterExpressClient(ApiClient):
    service_name = "LetterExpress"

    def __init__(
        self,
        base_url: Optional[str] = None,
        username: Optional[str] = None,
        api_key: Optional[str] = None,
        mode: Optional[str] = None,
    ):
        super().__init__(base_url or settings.letterexpress_base_url, timeout=60.0)
        self.username = username if username is not None else settings.letterexpress_username
        self.api_key = api_key if api_key is not None else settings.letterexpress_api_key
        self.mode = mode or settings.letterexpress_mode

    def _auth(self) -> Dict[str, str]:
        return {"username": self.username, "apikey": self.api_key, "mode": self.mode}

    async def send(
        self,
        document: bytes,
        recipient: MailingAddress,
        sender: Optional[MailingAddress] = None,
        options: Optional[PrintOptions] = None,
    ) -> str:
        """
        Submit a print job

        The recipient and sender are printed from the document itself; they
        are used here for validation and logging.

        Returns:
            Tracking id of the job
        """
        options = options or PrintOptions()
        sender = sender or default_sender_address()
        if not recipient.is_valid():
            raise ServiceUnavailableError("Recipient address incomplete, refusing to submit print job")

        payload = {
            "auth": self._auth(),
            "letter": {
                "base64_file": base64.b64encode(document).decode("ascii"),
                "base64_checksum": "",
                "specification": {
                    "color": 1 if options.color == PrintColor.COLOR else 0,
                    "mode": "duplex" if options.mode == PrintMode.DUPLEX else "simplex",
                    "ship": options.shipping.value,
                },
            },
        }
        logger.info(
            f"Submitting letter to {recipient.single_line()} "
            f"(sender {sender.city}, {options.color.value}/{options.mode.value}/{options.shipping.value})"
        )
        result = await self._request_json("POST", "setJob", json=payload)
        tracking_id = extract_tracking_id(result)
        logger.info(f"LetterExpress accepted job, tracking id {tracking_id}")
        return tracking_id

    async def check_balance(self) -> Optional[float]:
        """Account balance, None when the response carries none"""
        body = await self._request_json("GET", "balance", json={"auth": self._auth()})
        data = body.get("data") or {}
        if body.get("status") == 200 and "balance" in data:
            logger.info(f"LetterExpress balance: {data['balance']} {data.get('currency', '')}")
            return float(data["balance"])
        logger.warning(f"Unexpected LetterExpress balance response: {body}")
        return None
