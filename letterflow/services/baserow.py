"""
Baserow client for stored LinkedIn profiles
"""
import json
from typing import Any, Dict, Optional

from letterflow.config import get_settings
from letterflow.errors import WorkflowError
from letterflow.models.crm import LinkedInProfile
from letterflow.services.base import ApiClient
from letterflow.utils.logger import get_logger

settings = get_settings()
logger = get_logger(__name__)


def parse_profile(row: Dict[str, Any], json_field: str) -> LinkedInProfile:
    """Build a profile from a Baserow row whose `json_field` holds the export as a JSON string"""
    raw = row.get(json_field)
    if not isinstance(raw, str):
        raise WorkflowError(f"Missing LinkedIn JSON data in {json_field}")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise WorkflowError(f"Failed to parse LinkedIn JSON: {e}") from e
    return LinkedInProfile(
        profile_id=str(data.get("id") or ""),
        profile_url=data.get("profile_url") or "",
        full_name=data.get("full_name") or "",
        headline=data.get("headline"),
        location=data.get("location_name"),
        company=data.get("current_company"),
        raw_data=data if isinstance(data, dict) else {},
    )


class BaserowClient(ApiClient):
    """Looks up LinkedIn profile exports by profile id"""

    service_name = "Baserow"

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        table_id: Optional[str] = None,
        id_field: Optional[int] = None,
    ):
        super().__init__(base_url or settings.baserow_base_url)
        self.api_key = api_key if api_key is not None else settings.baserow_api_key
        self.table_id = table_id or settings.baserow_table_id
        self.id_field = id_field or settings.baserow_profile_id_field
        self.json_field = f"field_{self.id_field + 1}"

    async def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Token {self.api_key}"}

    async def get_profile(self, profile_id: str) -> Optional[LinkedInProfile]:
        """First row whose id field equals `profile_id`, or None"""
        filters = {
            "filter_type": "AND",
            "filters": [{"type": "equal", "field": self.id_field, "value": profile_id}],
        }
        body = await self._request_json(
            "GET",
            f"api/database/rows/table/{self.table_id}/",
            params={"filters": json.dumps(filters)},
        )
        results = body.get("results") or []
        if not results:
            logger.info(f"No Baserow profile found for {profile_id}")
            return None
        return parse_profile(results[0], self.json_field)
