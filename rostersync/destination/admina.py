import logging
import time
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

import requests

from rostersync import constants
from rostersync.exceptions import DestinationLookupError
from rostersync.models import DestinationAccount
from rostersync.models import Workspace
from rostersync.util import timeit

logger = logging.getLogger(__name__)
TIMEOUT = (60, constants.API_TIMEOUT_SEC)


def call_admina_api(
    url: str,
    api_token: str,
    method: str = "GET",
    params: Optional[Dict] = None,
    json_data: Optional[Dict] = None,
) -> Optional[Dict[str, Any]]:
    """
    Calls the Admina REST API.

    Rate limiting and server errors are retried for reads only; a write is sent once. The last
    requests exception is re-raised to the caller.
    """
    headers = {
        "Accept": "application/json",
        "Authorization": f"Bearer {api_token}",
        "Content-Type": "application/json",
        "User-Agent": "rostersync/1.0",
    }
    attempts = constants.MAX_RETRIES if method == "GET" else 1

    for attempt in range(attempts):
        try:
            response = requests.request(
                method=method,
                url=url,
                headers=headers,
                params=params,
                json=json_data,
                timeout=TIMEOUT,
            )
            response.raise_for_status()

            if response.status_code == 204 or not response.content:
                return None
            return response.json()

        except requests.exceptions.HTTPError as e:
            status_code = e.response.status_code if e.response is not None else None
            if status_code in constants.RETRYABLE_STATUS_CODES and attempt < attempts - 1:
                logger.warning(
                    f"HTTP {status_code} error, retrying in {constants.RETRY_DELAY} seconds "
                    f"(attempt {attempt + 1}/{attempts})",
                )
                time.sleep(constants.RETRY_DELAY)
                continue
            error_details = {
                "status_code": status_code,
                "url": url,
                "response_text": e.response.text[:500] if e.response is not None else None,
            }
            logger.error(f"HTTP error calling Admina API: {e}. Details: {error_details}")
            raise

        except requests.exceptions.RequestException as e:
            if attempt < attempts - 1:
                logger.warning(
                    f"Request error, retrying in {constants.RETRY_DELAY} seconds "
                    f"(attempt {attempt + 1}/{attempts}): {e}",
                )
                time.sleep(constants.RETRY_DELAY)
                continue
            logger.error(f"Failed to call Admina API at {url} after {attempts} attempts: {e}")
            raise

    return None


def find_workspace_by_name(service: Dict, workspace_name: str) -> Optional[Dict]:
    for workspace in service.get('workspaces') or []:
        if workspace.get('workspaceName') == workspace_name:
            return workspace
    return None


def _positive_id(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        return None
    return value


class AdminaClient:
    def __init__(self, org_id: str, api_token: str, endpoint: str = constants.ADMINA_ENDPOINT) -> None:
        self.org_id = org_id
        self.api_token = api_token
        self.base_url = f"{endpoint}/api/v1/organizations/{org_id}"

    @timeit
    def find_service(self, keyword: str = constants.SSO_SERVICE_NAME) -> Optional[Dict]:
        try:
            response = call_admina_api(f"{self.base_url}/services", self.api_token, params={'keyword': keyword})
        except requests.exceptions.RequestException as e:
            raise DestinationLookupError(f"Failed to list services matching {keyword!r}: {e}") from e

        items = (response or {}).get('items')
        if not isinstance(items, list):
            raise DestinationLookupError(f"Unexpected service listing for {keyword!r}: {response}")
        return items[0] if items else None

    @timeit
    def create_workspace(self, service_name: str, workspace_name: str) -> Workspace:
        payload = {
            'customWorkspaceType': constants.CUSTOM_WORKSPACE_TYPE,
            'serviceName': service_name,
            'workspaceName': workspace_name,
        }
        logger.info(f"Creating workspace: {workspace_name} (customWorkspaceType: {constants.CUSTOM_WORKSPACE_TYPE})")

        try:
            response = call_admina_api(
                f"{self.base_url}/workspaces/custom", self.api_token, method="POST", json_data=payload,
            ) or {}
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to create workspace for {workspace_name}: {e} Payload: {payload}")
            raise DestinationLookupError(f"Failed to create workspace {workspace_name}: {e}") from e

        workspace = response.get('workspace') or {}
        service = response.get('service') or {}
        workspace_id = _positive_id(workspace.get('id'))
        service_id = _positive_id(service.get('id'))
        if workspace_id is None or service_id is None:
            raise DestinationLookupError(
                f"Invalid or missing ids for workspace {workspace_name}: "
                f"workspace={workspace.get('id')}, service={service.get('id')}",
            )

        logger.info(
            f"Workspace created | Service: {service.get('name') or service_name}({service_id}), "
            f"Workspace: {workspace_name}({workspace_id})",
        )
        return Workspace(workspace_id=workspace_id, service_id=service_id, name=workspace_name)

    def resolve_workspace(self, workspace_name: str) -> Workspace:
        """
        Return the workspace with exactly this name under the SSO service, creating it when absent.
        """
        service = self.find_service()
        existing = find_workspace_by_name(service, workspace_name) if service else None

        if existing is None:
            return self.create_workspace(constants.SSO_SERVICE_NAME, workspace_name)

        workspace_id = _positive_id(existing.get('id'))
        service_id = _positive_id(service.get('id'))
        if workspace_id is None or service_id is None:
            raise DestinationLookupError(
                f"Invalid or missing ids for workspace {workspace_name}: "
                f"workspace={existing.get('id')}, service={service.get('id')}",
            )

        logger.info(
            f"Workspace already exists | Service: {service.get('name')}({service_id}), "
            f"Workspace: {workspace_name}({workspace_id})",
        )
        return Workspace(workspace_id=workspace_id, service_id=service_id, name=workspace_name)

    @timeit
    def list_accounts(self, workspace: Workspace) -> List[DestinationAccount]:
        url = f"{self.base_url}/services/{workspace.service_id}/accounts"
        try:
            response = call_admina_api(url, self.api_token, params={'workspaceId': workspace.workspace_id})
        except requests.exceptions.RequestException as e:
            raise DestinationLookupError(f"Failed to list accounts of {workspace.name}: {e}") from e

        items = (response or {}).get('items')
        if not isinstance(items, list):
            raise DestinationLookupError(f"Unexpected account listing for {workspace.name}: {response}")

        accounts: List[DestinationAccount] = []
        for item in items:
            if not item.get('email'):
                logger.warning(f"Ignoring account without email in {workspace.name}: {item.get('id')}")
                continue
            accounts.append(DestinationAccount(email=item['email'], display_name=item.get('displayName') or ''))
        return accounts

    def write_accounts(self, workspace: Workspace, payload: Dict[str, List[Dict[str, str]]]) -> None:
        url = f"{self.base_url}/workspaces/{workspace.workspace_id}/accounts/custom"
        call_admina_api(url, self.api_token, method="POST", json_data=payload)
