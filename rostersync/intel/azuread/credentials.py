import asyncio
import logging
import time
from typing import Any
from typing import Callable
from typing import Dict
from typing import Optional

import requests
from azure.core.credentials import AccessToken

from rostersync import constants
from rostersync.exceptions import CredentialError

logger = logging.getLogger(__name__)
TIMEOUT = (60, 60)


def get_access_token(tenant_id: str, client_id: str, client_secret: str) -> Dict[str, Any]:
    """
    Exchanges client credentials for an OAuth 2.0 access token using Microsoft Entra ID.
    """
    token_url = f"{constants.AUTHORITY_HOST_URI}/{tenant_id}/oauth2/v2.0/token"
    data = {
        "client_id": client_id,
        "client_secret": client_secret,
        "grant_type": "client_credentials",
        "scope": constants.MS_GRAPH_SCOPE,
    }

    for attempt in range(constants.MAX_RETRIES):
        try:
            response = requests.post(token_url, data=data, timeout=TIMEOUT)
            response.raise_for_status()

            token_response = response.json()
            if "access_token" not in token_response:
                raise ValueError("Access token not found in response")

            if "expires_in" in token_response:
                logger.debug(f"Access token expires in {token_response['expires_in']} seconds")

            return token_response

        except requests.exceptions.RequestException as e:
            if attempt == constants.MAX_RETRIES - 1:
                logger.error(f"Failed to get access token after {constants.MAX_RETRIES} attempts: {e}")
                raise CredentialError(f"Failed to get access token: {e}") from e
            logger.warning(
                f"Attempt {attempt + 1} failed, retrying in {constants.RETRY_DELAY} seconds: {e}",
            )
            time.sleep(constants.RETRY_DELAY)
        except (KeyError, ValueError) as e:
            if attempt == constants.MAX_RETRIES - 1:
                logger.error(f"Failed to parse token response after {constants.MAX_RETRIES} attempts: {e}")
                raise CredentialError(f"Failed to parse token response: {e}") from e
            logger.warning(f"Attempt {attempt + 1} failed to parse response, retrying: {e}")
            time.sleep(constants.RETRY_DELAY)

    raise CredentialError("Failed to get access token")


class CredentialManager:
    """
    Owns the bearer token for the directory and refreshes it before it gets too close to expiry.

    A token is handed out only while `now < expires_on - buffer_seconds`; anything later triggers a
    blocking client-credentials exchange first. Safe to call before every request of a long run.
    """

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        buffer_seconds: int = constants.TOKEN_REFRESH_BUFFER_SEC,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.buffer_seconds = buffer_seconds
        self.clock = clock
        self.credential: Optional[AccessToken] = None
        self._lock = asyncio.Lock()

    def needs_refresh(self) -> bool:
        if self.credential is None:
            return True
        return self.clock() >= self.credential.expires_on - self.buffer_seconds

    def refresh(self) -> AccessToken:
        logger.info("Getting access token...")
        issued_at = self.clock()
        token_response = get_access_token(self.tenant_id, self.client_id, self.client_secret)

        try:
            expires_in = int(token_response.get("expires_in", 3600))
        except (TypeError, ValueError) as e:
            raise CredentialError(f"Invalid expires_in in token response: {e}") from e

        self.credential = AccessToken(token_response["access_token"], int(issued_at + expires_in))
        return self.credential

    async def get_token(self) -> str:
        if self.needs_refresh():
            async with self._lock:
                # another task may have refreshed while we waited
                if self.needs_refresh():
                    await asyncio.to_thread(self.refresh)

        if self.credential is None:
            raise CredentialError("No access token available after refresh")
        return self.credential.token
