import logging
from typing import List
from typing import Optional
from typing import Tuple

from rostersync.config import Config
from rostersync.exceptions import FetchError
from rostersync.intel.azuread.applications import list_applications
from rostersync.intel.azuread.cache import EntityCache
from rostersync.intel.azuread.credentials import CredentialManager
from rostersync.intel.azuread.roster import build_roster
from rostersync.intel.azuread.roster import filter_rosters
from rostersync.models import AppResult
from rostersync.models import Application
from rostersync.models import Roster
from rostersync.util import raise_if_fatal
from rostersync.util import run_bounded
from rostersync.util import timeit

logger = logging.getLogger(__name__)


@timeit
async def fetch_sso_apps(
    config: Config,
    credentials: Optional[CredentialManager] = None,
    cache: Optional[EntityCache] = None,
) -> Tuple[List[Roster], List[AppResult]]:
    """
    Build the roster of every SSO application in the tenant.

    The sync:
    1. Token (a failure here ends the run)
    2. Optional preload of all users and security groups
    3. Application enumeration
    4. Roster per application (concurrently)
    5. Zero-user / hidden application filtering

    Returns the rosters to reconcile plus the applications that were skipped or failed on the way.
    """
    if credentials is None:
        credentials = CredentialManager(config.tenant_id, config.client_id, config.client_secret)
    if cache is None:
        cache = EntityCache(credentials, config.concurrent_requests)

    await credentials.get_token()

    if config.preload_cache:
        try:
            await cache.warm()
        except FetchError as e:
            logger.warning(f"Preloading users and groups failed, falling back to live lookups: {e}")

    applications, dropped = await list_applications(credentials, config.target_services, config.concurrent_requests)

    async def _build(application: Application) -> Roster:
        return await build_roster(credentials, cache, application, config.concurrent_requests)

    outcome = await run_bounded(applications, _build, config.concurrent_requests)
    raise_if_fatal(outcome)
    for application, error in outcome.errors:
        logger.error(f"Failed to get assigned users for app {application.display_name} ({application.app_id}): {error}")
        dropped.append(AppResult(name=application.display_name, status='failed', reason=str(error)))

    rosters, skipped = filter_rosters(
        sorted(outcome.results, key=lambda r: r.name),
        register_zero_user_app=config.register_zero_user_app,
        register_disabled_app=config.register_disabled_app,
    )
    logger.info(f"{len(rosters)} apps ready to register")
    return rosters, dropped + skipped
