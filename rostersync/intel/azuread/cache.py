import logging
from typing import Dict
from typing import FrozenSet
from typing import Iterator
from typing import List
from typing import Optional
from typing import Set
from typing import Tuple

from rostersync import constants
from rostersync.exceptions import FetchError
from rostersync.exceptions import ResolutionError
from rostersync.intel.azuread.credentials import CredentialManager
from rostersync.intel.azuread.util import fetch_list
from rostersync.intel.azuread.util import graph_get
from rostersync.intel.azuread.util import split_group_members
from rostersync.intel.azuread.util import validate_user_data
from rostersync.models import Group
from rostersync.models import User
from rostersync.util import raise_if_fatal
from rostersync.util import run_bounded
from rostersync.util import timeit

logger = logging.getLogger(__name__)

USER_SELECT = 'id,displayName,userPrincipalName'


def transform_user(user: Dict) -> User:
    # User properties - https://learn.microsoft.com/en-us/graph/api/resources/user?view=graph-rest-1.0
    return User(
        email=user['userPrincipalName'],
        display_name=user.get('displayName') or '',
        principal_id=user['id'],
    )


class GroupMembershipResolver:
    """
    Flattens a group into the user ids it contains, expanding nested groups.

    The traversal runs on an explicit stack. Groups that reach each other through a membership
    cycle form one strongly connected component (Tarjan) and all end up with the same member set,
    so a group that contains itself terminates and contributes nothing beyond what is reachable.
    Every flattened set is memoized into `memo` for the rest of the run.
    """

    def __init__(self, credentials: CredentialManager, memo: Dict[str, FrozenSet[str]]) -> None:
        self.credentials = credentials
        self.memo = memo

    async def fetch_direct_members(self, group_id: str) -> Tuple[List[str], List[str]]:
        url = f"{constants.GRAPH_API_ENDPOINT}/groups/{group_id}/members"
        try:
            members = await fetch_list(self.credentials, url)
        except FetchError as e:
            raise ResolutionError(f"Failed to expand group {group_id}: {e}") from e
        return split_group_members(members)

    async def resolve_group(self, group_id: str) -> FrozenSet[str]:
        cached = self.memo.get(group_id)
        if cached is not None:
            return cached

        index: Dict[str, int] = {}
        low: Dict[str, int] = {}
        direct_users: Dict[str, List[str]] = {}
        nested: Dict[str, List[str]] = {}
        component_stack: List[str] = []
        on_stack: Set[str] = set()
        work: List[Tuple[str, Iterator[str]]] = []

        async def open_group(gid: str) -> None:
            index[gid] = low[gid] = len(index)
            component_stack.append(gid)
            on_stack.add(gid)
            direct_users[gid], nested[gid] = await self.fetch_direct_members(gid)
            work.append((gid, iter(nested[gid])))

        await open_group(group_id)

        while work:
            gid, children = work[-1]
            child = next(children, None)

            if child is not None:
                if child in on_stack:
                    logger.warning(f"Group membership cycle detected: {gid} contains {child} which is already being expanded")
                    low[gid] = min(low[gid], index[child])
                elif child not in index and child not in self.memo:
                    await open_group(child)
                continue

            work.pop()
            if work:
                parent = work[-1][0]
                low[parent] = min(low[parent], low[gid])

            if low[gid] != index[gid]:
                continue

            component: List[str] = []
            while True:
                member = component_stack.pop()
                on_stack.discard(member)
                component.append(member)
                if member == gid:
                    break

            members: Set[str] = set()
            for member in component:
                members.update(direct_users[member])
            for member in component:
                for child_id in nested[member]:
                    if child_id not in component:
                        members.update(self.memo[child_id])

            flattened = frozenset(members)
            for member in component:
                self.memo[member] = flattened

        return self.memo[group_id]


class EntityCache:
    """
    Run-scoped lookup tables for users and group memberships.

    `warm()` optionally lists every user and every security group up front so that per-application
    lookups become memory hits. Misses fall back to a live fetch whose result is memoized; a key is
    never fetched twice within the run.
    """

    def __init__(
        self,
        credentials: CredentialManager,
        max_concurrency: int = constants.CONCURRENT_REQUESTS,
    ) -> None:
        self.credentials = credentials
        self.max_concurrency = max_concurrency
        self.users: Dict[str, User] = {}
        self.missing_users: Set[str] = set()
        self.groups: Dict[str, Group] = {}
        self.group_members: Dict[str, FrozenSet[str]] = {}
        self.resolver = GroupMembershipResolver(credentials, self.group_members)
        self.warmed = False

    @timeit
    async def warm(self) -> None:
        logger.info("Preloading users and security groups...")
        users = await fetch_list(
            self.credentials,
            f"{constants.GRAPH_API_ENDPOINT}/users",
            {'$select': USER_SELECT},
        )
        for user in users:
            if validate_user_data(user):
                self.users[user['id']] = transform_user(user)
            else:
                logger.warning(f"Skipping user without id or userPrincipalName: {user.get('id')}")
        logger.info(f"Preloaded {len(self.users)} users")

        groups = await fetch_list(
            self.credentials,
            f"{constants.GRAPH_API_ENDPOINT}/groups",
            {'$filter': 'securityEnabled eq true', '$select': 'id,displayName'},
        )
        outcome = await run_bounded(
            [group for group in groups if group.get('id')],
            self._preload_group,
            self.max_concurrency,
        )
        raise_if_fatal(outcome)
        for group, error in outcome.errors:
            # not fatal: the group is resolved live if an application needs it
            logger.warning(f"Failed to preload members of group {group.get('displayName')} ({group['id']}): {error}")
        logger.info(f"Preloaded {len(outcome.results)} security groups")

        self.warmed = True

    async def _preload_group(self, group: Dict) -> Group:
        members = await self.resolver.resolve_group(group['id'])
        resolved = Group(principal_id=group['id'], display_name=group.get('displayName'), members=members)
        self.groups[group['id']] = resolved
        return resolved

    async def lookup_user(self, principal_id: str) -> Optional[User]:
        cached = self.users.get(principal_id)
        if cached is not None:
            return cached
        if principal_id in self.missing_users:
            return None

        url = f"{constants.GRAPH_API_ENDPOINT}/users/{principal_id}"
        try:
            data = await graph_get(self.credentials, url, {'$select': USER_SELECT})
        except FetchError as e:
            if e.status_code == 404:
                logger.warning(f"User {principal_id} no longer exists in the directory, skipping")
                self.missing_users.add(principal_id)
                return None
            raise ResolutionError(f"Failed to fetch user {principal_id}: {e}") from e

        if not validate_user_data(data):
            logger.warning(f"User {principal_id} has no userPrincipalName, skipping")
            self.missing_users.add(principal_id)
            return None

        user = transform_user(data)
        self.users[principal_id] = user
        return user

    async def lookup_group_members(self, principal_id: str) -> FrozenSet[str]:
        cached = self.group_members.get(principal_id)
        if cached is not None:
            return cached
        return await self.resolver.resolve_group(principal_id)
