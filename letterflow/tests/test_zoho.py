"""
Unit tests for the Zoho CRM client

Tests:
- Client is only obtainable through the authenticator
- Token refresh on rejected credentials
- Task/contact parsing and search criteria
- Status updates, follow-up creation and address updates
"""
from datetime import date
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio

from conftest import make_response
from letterflow.errors import AuthenticationError, ServiceUnavailableError, WorkflowError
from letterflow.models.crm import MailingAddress
from letterflow.services.zoho import (
    ZohoAuthenticator,
    ZohoClient,
    build_search_criteria,
    parse_contact,
    parse_task,
)


@pytest.fixture
def nango():
    nango = MagicMock()
    nango.get_token = AsyncMock(return_value="token-1")
    return nango


@pytest.fixture
def authenticator(nango):
    return ZohoAuthenticator(
        nango=nango,
        connection_id="conn",
        integration_id="zoho-crm",
        base_url="https://zoho.test",
    )


@pytest_asyncio.fixture
async def zoho(authenticator):
    return await authenticator.authenticate()


@pytest.fixture
def mock_request():
    with patch("httpx.AsyncClient") as mock_client:
        request = AsyncMock()
        mock_client.return_value.__aenter__.return_value.request = request
        yield request


class TestAuthentication:
    def test_direct_construction_is_refused(self, authenticator):
        with pytest.raises(AuthenticationError):
            ZohoClient(authenticator)

    @pytest.mark.asyncio
    async def test_authenticate_fetches_token(self, authenticator, nango):
        client = await authenticator.authenticate()

        assert isinstance(client, ZohoClient)
        nango.get_token.assert_awaited_with("conn", "zoho-crm")

    @pytest.mark.asyncio
    async def test_authenticate_propagates_token_failure(self, authenticator, nango):
        nango.get_token.side_effect = AuthenticationError("no token")

        with pytest.raises(AuthenticationError):
            await authenticator.authenticate()

    @pytest.mark.asyncio
    async def test_rejected_token_is_refreshed_once(self, authenticator, nango, mock_request):
        client = await authenticator.authenticate()
        mock_request.side_effect = [
            make_response(401),
            make_response(200, json={"data": [{"id": "1", "Subject": "Brief"}]}),
        ]

        task = await client.get_task_by_id("1")

        assert task.id == "1"
        assert nango.get_token.await_args_list[-2].kwargs == {"force_refresh": True}
        headers = mock_request.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Zoho-oauthtoken token-1"


class TestParsing:
    def test_search_criteria_single(self):
        assert build_search_criteria([("Subject", "Brief")]) == "(Subject:equals:Brief)"

    def test_search_criteria_combined(self):
        criteria = build_search_criteria([("Subject", "Brief"), ("Owner", "42")])
        assert criteria == "((Subject:equals:Brief)and(Owner.id:equals:42))"

    def test_parse_task(self):
        task = parse_task({
            "id": 10,
            "Subject": "Brief",
            "Status": "Nicht gestartet",
            "Who_Id": {"id": "c1", "name": "Jane Smith"},
            "Created_Time": "2026-01-01T10:00:00+01:00",
        })
        assert task.id == "10"
        assert task.who_id.id == "c1"
        assert task.contact_name == "Jane Smith"
        assert task.created_time is not None

    def test_parse_task_without_contact(self):
        task = parse_task({"id": "10", "Subject": "Brief"})
        assert task.who_id is None
        assert task.contact_name == "Unknown Contact"

    def test_parse_contact_with_account_object(self):
        contact = parse_contact({
            "id": "c1",
            "Full_Name": "Jane Smith",
            "Account_Name": {"name": "Acme", "id": "a1"},
            "LinkedIn_ID": "jane",
            "Mailing_Street": "Hauptstraße 1",
            "Mailing_City": "Berlin",
            "Mailing_Code": "10115",
            "Mailing_Country": "Germany",
        })
        assert contact.company == "Acme"
        assert contact.mailing_address.city == "Berlin"
        assert contact.mailing_address.state is None

    def test_parse_contact_with_partial_address(self):
        contact = parse_contact({"id": "c1", "Full_Name": "Jane", "Mailing_City": "Berlin"})
        assert contact.mailing_address is None


class TestTasks:
    @pytest.mark.asyncio
    async def test_search_no_content_returns_empty(self, zoho, mock_request):
        mock_request.return_value = make_response(204)

        assert await zoho.search_tasks([("Subject", "Brief")]) == []

    @pytest.mark.asyncio
    async def test_search_returns_tasks(self, zoho, mock_request):
        mock_request.return_value = make_response(200, json={"data": [{"id": "1"}, {"id": "2"}]})

        tasks = await zoho.search_tasks([("Subject", "Brief")])

        assert [task.id for task in tasks] == ["1", "2"]
        assert mock_request.call_args.kwargs["params"] == {"criteria": "(Subject:equals:Brief)"}

    @pytest.mark.asyncio
    async def test_get_missing_task(self, zoho, mock_request):
        mock_request.return_value = make_response(404)
        assert await zoho.get_task_by_id("x") is None

    @pytest.mark.asyncio
    async def test_update_task_status(self, zoho, mock_request):
        mock_request.return_value = make_response(200, json={"data": []})

        await zoho.update_task_status("1", "Abgeschlossen", "done")

        kwargs = mock_request.call_args.kwargs
        assert kwargs["method"] == "PUT"
        assert kwargs["url"] == "https://zoho.test/crm/v2/Tasks/1"
        assert kwargs["json"] == {"data": [{"Status": "Abgeschlossen", "Description": "done"}]}

    @pytest.mark.asyncio
    async def test_create_follow_up_task(self, zoho, mock_request):
        mock_request.return_value = make_response(
            201, json={"data": [{"code": "SUCCESS", "details": {"id": "99"}}]}
        )

        follow_up = await zoho.create_follow_up_task("c1", "t1", due_date=date(2026, 2, 1))

        assert follow_up == "99"
        record = mock_request.call_args.kwargs["json"]["data"][0]
        assert record["Who_Id"] == "c1"
        assert record["Due_Date"] == "2026-02-01"

    @pytest.mark.asyncio
    async def test_create_follow_up_unexpected_body(self, zoho, mock_request):
        mock_request.return_value = make_response(201, json={"data": []})

        with pytest.raises(ServiceUnavailableError):
            await zoho.create_follow_up_task("c1", "t1")


class TestContacts:
    @pytest.mark.asyncio
    async def test_update_contact_address(self, zoho, mock_request):
        mock_request.return_value = make_response(200, json={"data": []})
        address = MailingAddress(street="S 1", city="Berlin", state="BE", postal_code="10115", country="DE")

        await zoho.update_contact_address("c1", address)

        record = mock_request.call_args.kwargs["json"]["data"][0]
        assert record == {
            "Mailing_Street": "S 1",
            "Mailing_City": "Berlin",
            "Mailing_Code": "10115",
            "Mailing_Country": "DE",
            "Mailing_State": "BE",
        }

    @pytest.mark.asyncio
    async def test_update_contact_address_failure(self, zoho, mock_request):
        mock_request.return_value = make_response(400, content=b"bad")
        address = MailingAddress(street="S 1", city="Berlin", postal_code="10115", country="DE")

        with pytest.raises(WorkflowError):
            await zoho.update_contact_address("c1", address)
