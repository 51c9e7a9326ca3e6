import logging
from typing import Dict
from typing import List
from typing import Tuple

from rostersync import constants
from rostersync.exceptions import ResolutionError
from rostersync.intel.azuread.cache import EntityCache
from rostersync.intel.azuread.credentials import CredentialManager
from rostersync.intel.azuread.util import fetch_list
from rostersync.intel.azuread.util import split_role_assignments
from rostersync.models import AppResult
from rostersync.models import Application
from rostersync.models import Roster
from rostersync.models import User
from rostersync.util import raise_if_fatal
from rostersync.util import run_bounded
from rostersync.util import timeit

logger = logging.getLogger(__name__)


@timeit
async def build_roster(
    credentials: CredentialManager,
    cache: EntityCache,
    application: Application,
    max_concurrency: int = constants.CONCURRENT_REQUESTS,
) -> Roster:
    """
    Resolve the users assigned to an application, directly or through (nested) groups.

    Errors propagate: a roster is either complete or not built at all.
    """
    logger.info(f"Start to get {application.display_name}'s users ...")
    url = f"{constants.GRAPH_API_ENDPOINT}/servicePrincipals/{application.principal_id}/appRoleAssignedTo"
    assignments = await fetch_list(credentials, url)
    user_ids, group_ids = split_role_assignments(assignments)

    # a user may be assigned directly and through several groups
    principal_ids: Dict[str, None] = dict.fromkeys(user_ids)

    group_outcome = await run_bounded(list(dict.fromkeys(group_ids)), cache.lookup_group_members, max_concurrency)
    raise_if_fatal(group_outcome)
    if group_outcome.errors:
        group_id, error = group_outcome.errors[0]
        raise ResolutionError(f"Failed to resolve group {group_id} for {application.display_name}: {error}") from error
    for members in group_outcome.results:
        principal_ids.update(dict.fromkeys(members))

    profile_outcome = await run_bounded(list(principal_ids), cache.lookup_user, max_concurrency)
    raise_if_fatal(profile_outcome)
    if profile_outcome.errors:
        principal_id, error = profile_outcome.errors[0]
        raise ResolutionError(f"Failed to resolve user {principal_id} for {application.display_name}: {error}") from error

    users: Dict[str, User] = {}
    for user in profile_outcome.results:
        if user is not None and user.principal_id not in users:
            users[user.principal_id] = user

    roster = Roster(application=application, users=sorted(users.values(), key=lambda u: u.email))
    logger.info(f"Detected {len(roster.users)} users in {application.display_name}")
    return roster


def filter_rosters(
    rosters: List[Roster],
    register_zero_user_app: bool = False,
    register_disabled_app: bool = False,
) -> Tuple[List[Roster], List[AppResult]]:
    kept: List[Roster] = []
    skipped: List[AppResult] = []

    for roster in rosters:
        if not register_zero_user_app and not roster.users:
            skipped.append(AppResult(name=roster.name, status='skipped', reason='no assigned users'))
            continue
        if not register_disabled_app and constants.HIDDEN_APP_TAG in roster.application.tags:
            skipped.append(AppResult(name=roster.name, status='skipped', reason='hidden application'))
            continue
        kept.append(roster)

    if skipped:
        logger.info(f"Filtered out {len(skipped)} apps, {len(kept)} remain")
    return kept, skipped
