"""
PDF rendering client

Uploads the letter template together with the bookmark values and returns
the rendered PDF. The renderer refuses letters longer than one page with an
HTTP 400 whose detail mentions the page count.
"""
import json
import re
from pathlib import Path
from typing import Optional

from letterflow.config import get_settings
from letterflow.errors import ConfigurationError, PageLimitExceededError, ServiceUnavailableError
from letterflow.models.documents import PdfTemplateData
from letterflow.services.base import ApiClient
from letterflow.utils.logger import get_logger

settings = get_settings()
logger = get_logger(__name__)

PAGE_COUNT_PATTERN = re.compile(r"generated (\d+) pages")
DEFAULT_PAGE_COUNT = 2


def parse_page_limit_error(detail: str) -> Optional[PageLimitExceededError]:
    """PageLimitExceededError for a renderer error detail, None if it is a different error"""
    if "exceeds one page limit" not in detail and not ("exceeds" in detail and "page" in detail):
        return None
    match = PAGE_COUNT_PATTERN.search(detail)
    page_count = int(match.group(1)) if match else DEFAULT_PAGE_COUNT
    return PageLimitExceededError(page_count=page_count, limit=1, message=detail)


class PdfService(ApiClient):
    service_name = "PDF service"

    def __init__(self, base_url: Optional[str] = None, templates_dir: Optional[str] = None):
        super().__init__(base_url or settings.pdf_service_url, timeout=60.0)
        self.templates_dir = Path(templates_dir or settings.templates_dir)

    async def render(self, template_name: str, data: PdfTemplateData) -> bytes:
        """
        Render the template with the given bookmark values

        Raises:
            ConfigurationError: Template file missing
            PageLimitExceededError: Letter does not fit on one page
            ServiceUnavailableError: Any other renderer failure
        """
        template_path = self.templates_dir / template_name
        try:
            template_bytes = template_path.read_bytes()
        except OSError as e:
            raise ConfigurationError(f"Failed to read template file {template_path}: {e}") from e

        files = {
            "odt_file": (template_name, template_bytes, "application/vnd.oasis.opendocument.text"),
            "json_data": ("data.json", json.dumps(data.to_payload()), "application/json"),
        }
        response = await self._make_request("POST", "generate-pdf", files=files, allow_status=(400,))
        if response.status_code == 400:
            detail = response.text
            try:
                detail = response.json().get("detail", detail)
            except ValueError:
                pass
            page_error = parse_page_limit_error(str(detail))
            if page_error:
                logger.warning(f"Rendered letter too long: {page_error.message}")
                raise page_error
            raise ServiceUnavailableError(f"PDF service returned 400 - {detail}")

        logger.info(f"Rendered {template_name}: {len(response.content)} bytes")
        return response.content
