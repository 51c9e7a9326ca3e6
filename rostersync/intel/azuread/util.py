import asyncio
import logging
import time
from typing import Any
from typing import AsyncIterator
from typing import Dict
from typing import List
from typing import Optional
from typing import Tuple

import requests

from rostersync import constants
from rostersync.exceptions import DecodeError
from rostersync.exceptions import FetchError
from rostersync.intel.azuread.credentials import CredentialManager

logger = logging.getLogger(__name__)
TIMEOUT = (60, constants.API_TIMEOUT_SEC)


def call_graph_api(
    url: str,
    access_token: str,
    params: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Calls the Microsoft Graph API with a bearer token.

    Rate limiting and server errors are retried; anything else, or running out of attempts,
    raises FetchError carrying the endpoint and the HTTP status when there was one.
    """
    headers = {
        "Accept": "application/json",
        "Authorization": f"Bearer {access_token}",
        "User-Agent": "rostersync/1.0",
    }

    for attempt in range(constants.MAX_RETRIES):
        try:
            response = requests.get(url, headers=headers, params=params, timeout=TIMEOUT)
            response.raise_for_status()

        except requests.exceptions.HTTPError as e:
            status_code = e.response.status_code if e.response is not None else None
            if status_code in constants.RETRYABLE_STATUS_CODES and attempt < constants.MAX_RETRIES - 1:
                retry_after = _retry_after(e.response)
                logger.warning(
                    f"HTTP {status_code} error, retrying in {retry_after} seconds "
                    f"(attempt {attempt + 1}/{constants.MAX_RETRIES})",
                )
                time.sleep(retry_after)
                continue
            raise FetchError(url, e, status_code) from e

        except requests.exceptions.RequestException as e:
            if attempt < constants.MAX_RETRIES - 1:
                logger.warning(
                    f"Request error, retrying in {constants.RETRY_DELAY} seconds "
                    f"(attempt {attempt + 1}/{constants.MAX_RETRIES}): {e}",
                )
                time.sleep(constants.RETRY_DELAY)
                continue
            raise FetchError(url, e) from e

        try:
            data = response.json()
        except ValueError as e:
            raise DecodeError(url, f"invalid JSON: {e}", response.status_code) from e

        if not isinstance(data, dict):
            raise DecodeError(url, f"expected a JSON object, got {type(data).__name__}", response.status_code)
        return data

    raise FetchError(url, f"no response after {constants.MAX_RETRIES} attempts")


def _retry_after(response: requests.Response) -> int:
    try:
        return int(response.headers.get("Retry-After", constants.RETRY_DELAY))
    except ValueError:
        return constants.RETRY_DELAY


async def graph_get(
    credentials: CredentialManager,
    url: str,
    params: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    # the token is looked up for every request; a traversal can outlive it
    access_token = await credentials.get_token()
    return await asyncio.to_thread(call_graph_api, url, access_token, params)


async def fetch_all(
    credentials: CredentialManager,
    url: str,
    params: Optional[Dict[str, Any]] = None,
) -> AsyncIterator[Dict[str, Any]]:
    """
    Yield every item of a paginated Graph listing, following `@odata.nextLink` until it is absent.
    """
    current_url: Optional[str] = url
    current_params: Optional[Dict[str, Any]] = dict(params or {})
    current_params.setdefault('$top', constants.MAX_ITEMS_PER_PAGE)

    while current_url:
        page = await graph_get(credentials, current_url, current_params)

        items = page.get('value')
        if not isinstance(items, list):
            raise DecodeError(current_url, "response has no 'value' list")

        for item in items:
            if not isinstance(item, dict):
                raise DecodeError(current_url, f"expected objects in 'value', got {type(item).__name__}")
            yield item

        # the next link already embeds the query
        current_url = page.get('@odata.nextLink')
        current_params = None


async def fetch_list(
    credentials: CredentialManager,
    url: str,
    params: Optional[Dict[str, Any]] = None,
) -> List[Dict[str, Any]]:
    return [item async for item in fetch_all(credentials, url, params)]


def validate_application_data(data: Dict) -> bool:
    """
    Validates application data from Microsoft Graph.

    Required fields:
    - appId: Application (client) ID
    - displayName: Application name
    """
    required_fields = ["appId", "displayName"]
    return all(field in data and data[field] for field in required_fields)


def validate_service_principal_data(data: Dict) -> bool:
    """
    Validates service principal data from Microsoft Graph.

    Required fields:
    - id: Service principal object ID
    """
    return bool(data.get("id"))


def validate_user_data(data: Dict) -> bool:
    """
    Validates user data from Microsoft Graph.

    Required fields:
    - id: User object ID
    - userPrincipalName: Sign-in name, used as the account email
    """
    required_fields = ["id", "userPrincipalName"]
    return all(field in data and data[field] for field in required_fields)


def split_role_assignments(assignments: List[Dict]) -> Tuple[List[str], List[str]]:
    """
    Split appRoleAssignedTo records into direct user principal ids and group principal ids.
    """
    users: List[str] = []
    groups: List[str] = []
    for assignment in assignments:
        principal_id = assignment.get('principalId')
        if not principal_id:
            continue
        principal_type = assignment.get('principalType')
        if principal_type == 'User':
            users.append(principal_id)
        elif principal_type == 'Group':
            groups.append(principal_id)
        else:
            logger.debug(f"Ignoring role assignment for {principal_type} principal {principal_id}")
    return users, groups


def split_group_members(members: List[Dict]) -> Tuple[List[str], List[str]]:
    """
    Split a group member listing into user ids and nested group ids. Other directory objects are ignored.
    """
    users: List[str] = []
    groups: List[str] = []
    for member in members:
        member_id = member.get('id')
        if not member_id:
            continue
        odata_type = member.get('@odata.type')
        if odata_type == constants.ODATA_USER_TYPE:
            users.append(member_id)
        elif odata_type == constants.ODATA_GROUP_TYPE:
            groups.append(member_id)
    return users, groups
