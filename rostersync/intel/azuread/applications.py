import logging
from typing import Dict
from typing import Iterable
from typing import List
from typing import Optional
from typing import Tuple

from rostersync import constants
from rostersync.exceptions import DecodeError
from rostersync.intel.azuread.credentials import CredentialManager
from rostersync.intel.azuread.util import fetch_list
from rostersync.intel.azuread.util import graph_get
from rostersync.intel.azuread.util import validate_application_data
from rostersync.intel.azuread.util import validate_service_principal_data
from rostersync.models import AppResult
from rostersync.models import Application
from rostersync.util import raise_if_fatal
from rostersync.util import run_bounded
from rostersync.util import timeit

logger = logging.getLogger(__name__)

APPLICATION_SELECT = 'id,appId,displayName,signInAudience,identifierUris'
SERVICE_PRINCIPAL_SELECT = 'id,appId,tags,homepage,loginUrl'


def escape_odata(value: str) -> str:
    # OData escapes a single quote by doubling it
    return value.replace("'", "''")


def build_display_name_filter(names: Iterable[str]) -> Optional[str]:
    clauses = [f"(displayName eq '{escape_odata(name)}')" for name in names]
    return ' or '.join(clauses) or None


def is_sso_application(tags: Iterable[str]) -> bool:
    return any(
        tag in constants.SSO_APP_TAGS or tag.startswith(constants.SSO_APP_TAG_PREFIXES)
        for tag in tags
    )


def transform_application(app: Dict, service_principal: Optional[Dict]) -> Application:
    """
    Application properties - https://learn.microsoft.com/en-us/graph/api/resources/application?view=graph-rest-1.0
    The principal id, tags and URL come from the matching service principal.
    """
    service_principal = service_principal or {}
    identifier_uris = tuple(app.get('identifierUris') or ())
    service_url = service_principal.get('homepage') or service_principal.get('loginUrl')
    if not service_url and identifier_uris:
        service_url = identifier_uris[0]

    return Application(
        app_id=app['appId'],
        display_name=app['displayName'],
        principal_id=service_principal.get('id'),
        sign_in_audience=app.get('signInAudience'),
        identifier_uris=identifier_uris,
        tags=tuple(service_principal.get('tags') or ()),
        service_url=service_url,
    )


async def get_service_principal(credentials: CredentialManager, app_id: str) -> Optional[Dict]:
    url = f"{constants.GRAPH_API_ENDPOINT}/servicePrincipals"
    response = await graph_get(
        credentials,
        url,
        {'$filter': f"appId eq '{escape_odata(app_id)}'", '$select': SERVICE_PRINCIPAL_SELECT},
    )
    values = response.get('value')
    if not isinstance(values, list):
        raise DecodeError(url, "response has no 'value' list")

    for value in values:
        if validate_service_principal_data(value):
            return value
    return None


@timeit
async def list_applications(
    credentials: CredentialManager,
    name_filter: Optional[List[str]] = None,
    max_concurrency: int = constants.CONCURRENT_REQUESTS,
) -> Tuple[List[Application], List[AppResult]]:
    """
    List the SSO applications of the tenant, each resolved to its service principal.

    Returns the applications plus a record for every application that had to be dropped: a failed
    service principal lookup is a failure, a missing service principal is only a skip.
    """
    params = {'$select': APPLICATION_SELECT}
    display_name_filter = build_display_name_filter(name_filter or [])
    if display_name_filter:
        params['$filter'] = display_name_filter

    apps = await fetch_list(credentials, f"{constants.GRAPH_API_ENDPOINT}/applications", params)
    valid_apps = [app for app in apps if validate_application_data(app)]
    if len(valid_apps) != len(apps):
        logger.warning(f"Filtered out {len(apps) - len(valid_apps)} applications without appId or displayName")

    async def _resolve(app: Dict) -> Application:
        service_principal = await get_service_principal(credentials, app['appId'])
        return transform_application(app, service_principal)

    outcome = await run_bounded(valid_apps, _resolve, max_concurrency)
    raise_if_fatal(outcome)

    dropped: List[AppResult] = []
    for app, error in outcome.errors:
        logger.warning(f"Failed to look up service principal of {app['displayName']} ({app['appId']}): {error}")
        dropped.append(AppResult(name=app['displayName'], status='failed', reason=f"service principal lookup failed: {error}"))

    applications: List[Application] = []
    for application in outcome.results:
        if not application.principal_id:
            logger.warning(f"No service principal found for {application.display_name} ({application.app_id}), skipping")
            dropped.append(AppResult(name=application.display_name, status='skipped', reason='no service principal'))
            continue
        if not is_sso_application(application.tags):
            logger.debug(f"{application.display_name} is not an SSO application")
            continue
        applications.append(application)

    applications.sort(key=lambda a: a.display_name)
    logger.info(f"Detected {len(applications)} SSO apps")
    return applications, dropped
