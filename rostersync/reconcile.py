import logging
from typing import Dict
from typing import Iterable
from typing import List

import requests

from rostersync.destination.admina import AdminaClient
from rostersync.exceptions import WriteChunkError
from rostersync.models import DestinationAccount
from rostersync.models import ReconciliationPlan
from rostersync.models import User
from rostersync.models import Workspace
from rostersync.util import chunked

logger = logging.getLogger(__name__)


def plan(desired: Iterable[User], current: Iterable[DestinationAccount]) -> ReconciliationPlan:
    """
    Partition by email: in both is an update, only desired is a create, only current is a delete.

    Duplicate emails on either side collapse to their first occurrence so that every email lands in
    exactly one of the three sets.
    """
    desired_by_email: Dict[str, User] = {}
    for user in desired:
        desired_by_email.setdefault(user.email, user)

    current_by_email: Dict[str, DestinationAccount] = {}
    for account in current:
        current_by_email.setdefault(account.email, account)

    result = ReconciliationPlan()
    for email, user in desired_by_email.items():
        if email in current_by_email:
            result.update.append(user)
        else:
            result.create.append(user)

    result.delete = [account for email, account in current_by_email.items() if email not in desired_by_email]
    return result


def _user_row(user: User) -> Dict[str, str]:
    return {
        'email': user.email,
        'displayName': user.display_name,
        'userName': user.display_name,
    }


def _account_row(account: DestinationAccount) -> Dict[str, str]:
    return {
        'email': account.email,
        'displayName': account.display_name,
    }


def build_payloads(reconciliation: ReconciliationPlan, chunk_size: int) -> List[Dict[str, List[Dict[str, str]]]]:
    """
    One write payload per chunk, creates first, then updates, then deletes.
    """
    payloads: List[Dict[str, List[Dict[str, str]]]] = []
    classifications = (
        ('create', reconciliation.create, _user_row),
        ('update', reconciliation.update, _user_row),
        ('delete', reconciliation.delete, _account_row),
    )
    for classification, rows, to_row in classifications:
        for chunk in chunked(rows, chunk_size):
            payloads.append({classification: [to_row(row) for row in chunk]})
    return payloads


def apply(
    reconciliation: ReconciliationPlan,
    client: AdminaClient,
    workspace: Workspace,
    chunk_size: int,
) -> List[WriteChunkError]:
    """
    Write the plan in chunks. A failed chunk is logged and returned, never retried, and does not undo
    or stop the other chunks.
    """
    errors: List[WriteChunkError] = []
    chunk_counters: Dict[str, int] = {}

    for payload in build_payloads(reconciliation, chunk_size):
        classification, rows = next(iter(payload.items()))
        chunk_index = chunk_counters.get(classification, 0)
        chunk_counters[classification] = chunk_index + 1

        try:
            client.write_accounts(workspace, payload)
        except requests.exceptions.RequestException as e:
            error = WriteChunkError(workspace.name, classification, chunk_index, len(rows), e)
            logger.error(
                f"Error occurred while registering user account into [{workspace.name}]: {error}",
                extra={
                    'context': {
                        'workspace_id': workspace.workspace_id,
                        'classification': classification,
                        'chunk_index': chunk_index,
                        'first_email': rows[0]['email'] if rows else None,
                        'last_email': rows[-1]['email'] if rows else None,
                    },
                },
            )
            errors.append(error)

    return errors


def describe(reconciliation: ReconciliationPlan) -> str:
    counts = reconciliation.counts()
    return ', '.join(f"{key} {value}" for key, value in counts.items())
