import os
from typing import List
from typing import Mapping
from typing import Optional
from typing import Tuple

from rostersync import constants
from rostersync.exceptions import ConfigError


def _get_input(environ: Mapping[str, str], name: str) -> str:
    # CI actions expose inputs as INPUT_<NAME>
    value = environ.get(name)
    if value is None:
        value = environ.get(f"INPUT_{name.upper()}")
    return (value or '').strip()


def parse_target_services(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [name.strip() for name in raw.split(',') if name.strip()]


def _parse_bool(raw: str, default: bool) -> bool:
    if not raw:
        return default
    return raw.lower() == 'true'


def _parse_int(name: str, raw: str, default: int) -> int:
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"Environment variable {name} must be an integer, got {raw!r}")
    if value < 1:
        raise ConfigError(f"Environment variable {name} must be positive, got {value}")
    return value


class Config:
    """
    Run configuration for a sync.

    :param tenant_id: Directory tenant used for the client-credentials exchange
    :param client_id: Application (client) id
    :param client_secret: Client secret
    :param admina_org_id: Destination organization id
    :param admina_api_token: Destination API key
    :param register_zero_user_app: Keep applications without any assigned user
    :param register_disabled_app: Keep applications tagged as hidden
    :param preload_cache: Warm the user and group cache before building rosters
    :param target_services: Only sync applications with these display names
    :param chunk_size: Maximum accounts per destination write call
    :param concurrent_requests: Concurrency ceiling for directory and destination calls
    :param log_level: Logging level name
    """

    def __init__(
        self,
        tenant_id: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        admina_org_id: Optional[str] = None,
        admina_api_token: Optional[str] = None,
        register_zero_user_app: bool = False,
        register_disabled_app: bool = False,
        preload_cache: bool = True,
        target_services: Optional[List[str]] = None,
        chunk_size: int = constants.CHUNK_SIZE,
        concurrent_requests: int = constants.CONCURRENT_REQUESTS,
        log_level: str = 'INFO',
    ) -> None:
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.admina_org_id = admina_org_id
        self.admina_api_token = admina_api_token
        self.register_zero_user_app = register_zero_user_app
        self.register_disabled_app = register_disabled_app
        self.preload_cache = preload_cache
        self.target_services = target_services or []
        self.chunk_size = chunk_size
        self.concurrent_requests = concurrent_requests
        self.log_level = log_level

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'Config':
        if environ is None:
            environ = os.environ

        return cls(
            tenant_id=_get_input(environ, 'ms_tenant_id') or None,
            client_id=_get_input(environ, 'ms_client_id') or None,
            client_secret=_get_input(environ, 'ms_client_secret') or None,
            admina_org_id=_get_input(environ, 'admina_org_id') or None,
            admina_api_token=_get_input(environ, 'admina_api_token') or None,
            register_zero_user_app=_parse_bool(_get_input(environ, 'register_zero_user_app'), False),
            register_disabled_app=_parse_bool(_get_input(environ, 'register_disabled_app'), False),
            preload_cache=_parse_bool(_get_input(environ, 'preload_cache'), True),
            target_services=parse_target_services(_get_input(environ, 'target_services')),
            chunk_size=_parse_int('chunk_size', _get_input(environ, 'chunk_size'), constants.CHUNK_SIZE),
            concurrent_requests=_parse_int(
                'concurrent_requests', _get_input(environ, 'concurrent_requests'), constants.CONCURRENT_REQUESTS,
            ),
            log_level=(_get_input(environ, 'log_level') or 'INFO').upper(),
        )

    def _require(self, required: List[Tuple[str, Optional[str]]]) -> None:
        for name, value in required:
            if not value:
                raise ConfigError(f"Environment variable {name} is not set")

    def validate_azuread(self) -> None:
        self._require([
            ('ms_client_id', self.client_id),
            ('ms_tenant_id', self.tenant_id),
            ('ms_client_secret', self.client_secret),
        ])

    def validate_admina(self) -> None:
        self._require([
            ('admina_org_id', self.admina_org_id),
            ('admina_api_token', self.admina_api_token),
        ])
