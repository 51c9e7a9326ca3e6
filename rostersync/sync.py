import asyncio
import logging
from enum import Enum
from typing import List
from typing import Optional

from rostersync.config import Config
from rostersync.destination.admina import AdminaClient
from rostersync.exceptions import ConfigError
from rostersync.exceptions import DestinationLookupError
from rostersync.exceptions import SyncError
from rostersync.intel.azuread import fetch_sso_apps
from rostersync.models import AppResult
from rostersync.models import Roster
from rostersync.models import RunSummary
from rostersync.reconcile import apply
from rostersync.reconcile import describe
from rostersync.reconcile import plan
from rostersync.util import run_bounded
from rostersync.util import timeit

logger = logging.getLogger(__name__)


class Source(Enum):
    AZUREAD = 'AzureAd'


class Destination(Enum):
    ADMINA = 'Admina'


def resolve_source(name: str) -> Source:
    for source in Source:
        if source.value == name:
            return source
    raise ConfigError(f"Unsupported source: {name}")


def resolve_destination(name: str) -> Destination:
    for destination in Destination:
        if destination.value == name:
            return destination
    raise ConfigError(f"Unsupported destination: {name}")


@timeit
def register_roster(client: AdminaClient, roster: Roster, chunk_size: int) -> AppResult:
    """
    Reconcile one roster into its workspace.

    A workspace that cannot be resolved fails this application only. Chunk write failures are
    reported on the result; chunks written before them stay applied.
    """
    workspace_name = roster.name.strip()
    if not workspace_name:
        logger.error(f"Application {roster.application.app_id} has an empty display name, skipping")
        return AppResult(name=roster.name, status='skipped', reason='empty application name')

    try:
        workspace = client.resolve_workspace(workspace_name)
        accounts = client.list_accounts(workspace)
    except DestinationLookupError as e:
        logger.error(f"Failed to resolve workspace for {workspace_name}: {e}")
        return AppResult(name=workspace_name, status='failed', reason=str(e))

    reconciliation = plan(roster.users, accounts)
    counts = reconciliation.counts()
    logger.info(f"Register data into {workspace_name}: {describe(reconciliation)}")

    errors = apply(reconciliation, client, workspace, chunk_size)
    result = AppResult(
        name=workspace_name,
        status='synced',
        existing=counts['existingUsers'],
        new=counts['newUsers'],
        deleted=counts['deleteAccounts'],
    )
    if errors:
        result.status = 'failed'
        result.reason = '; '.join(str(error) for error in errors)
    return result


async def sync_to_admina(config: Config, rosters: List[Roster], summary: RunSummary) -> None:
    client = AdminaClient(config.admina_org_id, config.admina_api_token)

    async def _register(roster: Roster) -> AppResult:
        return await asyncio.to_thread(register_roster, client, roster, config.chunk_size)

    outcome = await run_bounded(rosters, _register, config.concurrent_requests)
    for result in outcome.results:
        summary.add(result)
    for roster, error in outcome.errors:
        logger.error(f"Unexpected error while registering {roster.name}: {error}", exc_info=error)
        summary.add(AppResult(name=roster.name, status='failed', reason=str(error)))


@timeit
async def async_sync(
    config: Config,
    source: Source = Source.AZUREAD,
    destination: Destination = Destination.ADMINA,
) -> RunSummary:
    """
    Run one sync end to end.

    The sync of:
    1. Rosters of every SSO application from the source
    2. Reconciliation of each roster into the destination (concurrently)

    Applications that failed or were skipped on the source side are carried into the summary.
    A credential failure aborts the run.
    """
    summary = RunSummary()

    if source == Source.AZUREAD:
        rosters, dropped = await fetch_sso_apps(config)
    else:
        raise ConfigError(f"Unsupported source: {source.value}")

    for result in dropped:
        summary.add(result)

    if destination == Destination.ADMINA:
        await sync_to_admina(config, rosters, summary)
    else:
        raise ConfigError(f"Unsupported destination: {destination.value}")

    summary.results.sort(key=lambda r: r.name)
    return summary


def run_sync(source: str, destination: str, config: Optional[Config] = None) -> RunSummary:
    """
    Validate the inputs for the requested source and destination, then run the sync.
    Configuration problems are raised before any network call is made.
    """
    resolved_source = resolve_source(source)
    resolved_destination = resolve_destination(destination)

    if config is None:
        config = Config.from_env()
    if resolved_source == Source.AZUREAD:
        config.validate_azuread()
    if resolved_destination == Destination.ADMINA:
        config.validate_admina()

    logger.info(f"Start syncing from {resolved_source.value} to {resolved_destination.value}")
    return asyncio.run(async_sync(config, resolved_source, resolved_destination))


def log_summary(summary: RunSummary) -> None:
    for result in summary.results:
        line = (
            f"{result.name}: {result.status} "
            f"(existing {result.existing}, new {result.new}, deleted {result.deleted})"
        )
        if result.reason:
            line = f"{line} - {result.reason}"
        if result.status == 'failed':
            logger.error(line)
        else:
            logger.info(line)

    synced = sum(1 for result in summary.results if result.status == 'synced')
    skipped = sum(1 for result in summary.results if result.status == 'skipped')
    logger.info(f"Sync summary: {synced} synced, {skipped} skipped, {len(summary.failures)} failed")


def sync(source: str, destination: str, config: Optional[Config] = None) -> RunSummary:
    """
    Run the sync and fail loudly at the end if any application failed.
    """
    summary = run_sync(source, destination, config)
    log_summary(summary)
    if not summary.ok:
        names = ', '.join(result.name for result in summary.failures)
        raise SyncError(f"{len(summary.failures)} application(s) failed to sync: {names}")
    return summary
