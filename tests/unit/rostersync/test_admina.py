from unittest.mock import MagicMock
from unittest.mock import patch

import pytest
import requests

from rostersync.destination.admina import AdminaClient
from rostersync.destination.admina import call_admina_api
from rostersync.destination.admina import find_workspace_by_name
from rostersync.exceptions import DestinationLookupError
from rostersync.models import DestinationAccount
from rostersync.models import Workspace
from tests.data.admina.accounts import ACCOUNT_LISTING
from tests.data.admina.accounts import CREATED_WORKSPACE
from tests.data.admina.accounts import EMPTY_SERVICE_LISTING
from tests.data.admina.accounts import SERVICE_LISTING
from tests.data.admina.accounts import SSO_SERVICE

BASE_URL = "https://api.itmc.i.moneyforward.com/api/v1/organizations/org-1"


def _http_error(status_code):
    response = MagicMock(status_code=status_code, text="error")
    return MagicMock(
        status_code=status_code,
        raise_for_status=MagicMock(side_effect=requests.exceptions.HTTPError(response=response)),
    )


class TestCallAdminaApi:
    """Test the destination request helper."""

    @patch("rostersync.destination.admina.requests.request")
    def test_success(self, mock_request):
        mock_request.return_value = MagicMock(status_code=200, content=b"{}", json=lambda: {"items": []})

        assert call_admina_api(f"{BASE_URL}/services", "api-token") == {"items": []}
        headers = mock_request.call_args[1]["headers"]
        assert headers["Authorization"] == "Bearer api-token"

    @patch("rostersync.destination.admina.requests.request")
    def test_no_content(self, mock_request):
        mock_request.return_value = MagicMock(status_code=204)

        assert call_admina_api(f"{BASE_URL}/workspaces/1/accounts/custom", "api-token", method="POST") is None

    @patch("rostersync.destination.admina.requests.request")
    @patch("rostersync.destination.admina.time.sleep", return_value=None)
    def test_reads_are_retried(self, mock_sleep, mock_request):
        mock_request.side_effect = [
            _http_error(500),
            MagicMock(status_code=200, content=b"{}", json=lambda: {"items": []}),
        ]

        assert call_admina_api(f"{BASE_URL}/services", "api-token") == {"items": []}
        assert mock_request.call_count == 2

    @patch("rostersync.destination.admina.requests.request")
    @patch("rostersync.destination.admina.time.sleep", return_value=None)
    def test_writes_are_sent_once(self, mock_sleep, mock_request):
        mock_request.return_value = _http_error(500)

        with pytest.raises(requests.exceptions.HTTPError):
            call_admina_api(f"{BASE_URL}/workspaces/1/accounts/custom", "api-token", method="POST", json_data={})
        assert mock_request.call_count == 1


class TestWorkspaceResolution:
    """Test lookup and creation of the per-application workspace."""

    def test_find_workspace_by_name_is_exact(self):
        assert find_workspace_by_name(SSO_SERVICE, "Sales Tool")["id"] == 101
        assert find_workspace_by_name(SSO_SERVICE, "sales tool") is None
        assert find_workspace_by_name({}, "Sales Tool") is None

    @patch("rostersync.destination.admina.call_admina_api")
    def test_existing_workspace(self, mock_api):
        mock_api.return_value = SERVICE_LISTING
        client = AdminaClient("org-1", "api-token")

        workspace = client.resolve_workspace("Sales Tool")

        assert workspace == Workspace(workspace_id=101, service_id=11, name="Sales Tool")
        mock_api.assert_called_once_with(f"{BASE_URL}/services", "api-token", params={"keyword": "Single Sign-On"})

    @patch("rostersync.destination.admina.call_admina_api")
    def test_missing_workspace_is_created(self, mock_api):
        mock_api.side_effect = [SERVICE_LISTING, CREATED_WORKSPACE]
        client = AdminaClient("org-1", "api-token")

        workspace = client.resolve_workspace("Expense")

        assert workspace == Workspace(workspace_id=201, service_id=11, name="Expense")
        create_call = mock_api.call_args_list[1]
        assert create_call.args[0] == f"{BASE_URL}/workspaces/custom"
        assert create_call.kwargs["method"] == "POST"
        assert create_call.kwargs["json_data"] == {
            "customWorkspaceType": "manual_import",
            "serviceName": "Single Sign-On",
            "workspaceName": "Expense",
        }

    @patch("rostersync.destination.admina.call_admina_api")
    def test_workspace_created_when_no_sso_service_yet(self, mock_api):
        mock_api.side_effect = [EMPTY_SERVICE_LISTING, CREATED_WORKSPACE]
        client = AdminaClient("org-1", "api-token")

        assert client.resolve_workspace("Expense").workspace_id == 201

    @pytest.mark.parametrize(
        "response",
        [
            {"workspace": {"id": 201}, "service": {}},
            {"workspace": {"id": 201}, "service": {"id": 0}},
            {"workspace": {"id": None}, "service": {"id": 11}},
            {},
        ],
    )
    @patch("rostersync.destination.admina.call_admina_api")
    def test_create_without_ids_fails(self, mock_api, response):
        mock_api.side_effect = [EMPTY_SERVICE_LISTING, response]
        client = AdminaClient("org-1", "api-token")

        with pytest.raises(DestinationLookupError):
            client.resolve_workspace("Expense")

    @patch("rostersync.destination.admina.call_admina_api")
    def test_service_listing_failure(self, mock_api):
        mock_api.side_effect = requests.exceptions.ConnectionError("connection refused")
        client = AdminaClient("org-1", "api-token")

        with pytest.raises(DestinationLookupError):
            client.resolve_workspace("Sales Tool")

    @patch("rostersync.destination.admina.call_admina_api")
    def test_create_failure(self, mock_api):
        mock_api.side_effect = [EMPTY_SERVICE_LISTING, requests.exceptions.HTTPError("400 Client Error")]
        client = AdminaClient("org-1", "api-token")

        with pytest.raises(DestinationLookupError):
            client.resolve_workspace("Expense")


class TestAccounts:
    @patch("rostersync.destination.admina.call_admina_api")
    def test_list_accounts(self, mock_api):
        mock_api.return_value = ACCOUNT_LISTING
        client = AdminaClient("org-1", "api-token")

        accounts = client.list_accounts(Workspace(workspace_id=101, service_id=11, name="Sales Tool"))

        assert accounts == [
            DestinationAccount(email="bob@example.com", display_name="Bob"),
            DestinationAccount(email="erin@example.com", display_name="Erin"),
        ]
        mock_api.assert_called_once_with(f"{BASE_URL}/services/11/accounts", "api-token", params={"workspaceId": 101})

    @patch("rostersync.destination.admina.call_admina_api")
    def test_write_accounts(self, mock_api):
        mock_api.return_value = None
        client = AdminaClient("org-1", "api-token")
        payload = {"create": [{"email": "a@example.com", "displayName": "A", "userName": "A"}]}

        client.write_accounts(Workspace(workspace_id=101, service_id=11, name="Sales Tool"), payload)

        mock_api.assert_called_once_with(
            f"{BASE_URL}/workspaces/101/accounts/custom", "api-token", method="POST", json_data=payload,
        )
