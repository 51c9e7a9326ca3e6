from unittest.mock import MagicMock

import pytest
import requests

from rostersync.models import DestinationAccount
from rostersync.models import User
from rostersync.models import Workspace
from rostersync.reconcile import apply
from rostersync.reconcile import build_payloads
from rostersync.reconcile import describe
from rostersync.reconcile import plan

WORKSPACE = Workspace(workspace_id=101, service_id=11, name='Sales Tool')


def _users(*emails):
    return [User(email=email, display_name=email.split('@')[0].title()) for email in emails]


def _accounts(*emails):
    return [DestinationAccount(email=email, display_name=email.split('@')[0].title()) for email in emails]


class FakeDestination:
    """Applies write payloads to an in-memory account set."""

    def __init__(self, accounts):
        self.accounts = {account.email: account for account in accounts}
        self.payloads = []

    def write_accounts(self, workspace, payload):
        self.payloads.append(payload)
        for classification, rows in payload.items():
            for row in rows:
                if classification == 'delete':
                    self.accounts.pop(row['email'], None)
                else:
                    self.accounts[row['email']] = DestinationAccount(email=row['email'], display_name=row['displayName'])


class TestPlan:
    """Test the three-way partition by email."""

    def test_sales_tool_scenario(self):
        desired = _users('a@example.com', 'b@example.com', 'c@example.com', 'd@example.com')
        current = _accounts('b@example.com', 'e@example.com')

        result = plan(desired, current)

        assert [u.email for u in result.create] == ['a@example.com', 'c@example.com', 'd@example.com']
        assert [u.email for u in result.update] == ['b@example.com']
        assert [a.email for a in result.delete] == ['e@example.com']
        assert describe(result) == "existingUsers 1, newUsers 3, deleteAccounts 1"

    @pytest.mark.parametrize(
        "desired, current",
        [
            ([], []),
            (['a@example.com'], []),
            ([], ['a@example.com']),
            (['a@example.com', 'b@example.com'], ['b@example.com', 'c@example.com']),
            (['a@example.com', 'a@example.com'], ['a@example.com', 'a@example.com']),
        ],
    )
    def test_partition_is_complete_and_disjoint(self, desired, current):
        result = plan(_users(*desired), _accounts(*current))

        create = {u.email for u in result.create}
        update = {u.email for u in result.update}
        delete = {a.email for a in result.delete}

        assert create | update | delete == set(desired) | set(current)
        assert not create & update
        assert not create & delete
        assert not update & delete
        assert len(result.create) + len(result.update) + len(result.delete) == len(set(desired) | set(current))

    def test_duplicate_email_keeps_first_occurrence(self):
        desired = [User(email='a@example.com', display_name='First'), User(email='a@example.com', display_name='Second')]

        result = plan(desired, [])

        assert [u.display_name for u in result.create] == ['First']

    def test_second_run_is_all_updates(self):
        desired = _users('a@example.com', 'b@example.com', 'c@example.com')
        destination = FakeDestination(_accounts('b@example.com', 'e@example.com'))

        apply(plan(desired, destination.accounts.values()), destination, WORKSPACE, chunk_size=2)
        second = plan(desired, destination.accounts.values())

        assert second.create == []
        assert second.delete == []
        assert {u.email for u in second.update} == {'a@example.com', 'b@example.com', 'c@example.com'}


class TestPayloads:
    def test_row_shapes(self):
        result = plan(_users('a@example.com'), _accounts('e@example.com'))

        payloads = build_payloads(result, chunk_size=10)

        assert payloads == [
            {'create': [{'email': 'a@example.com', 'displayName': 'A', 'userName': 'A'}]},
            {'delete': [{'email': 'e@example.com', 'displayName': 'E'}]},
        ]

    def test_chunking_order(self):
        result = plan(
            _users('1@x.com', '2@x.com', '3@x.com', '4@x.com', '5@x.com', 'u@x.com'),
            _accounts('u@x.com', 'd@x.com'),
        )

        payloads = build_payloads(result, chunk_size=2)

        assert [(next(iter(p)), len(next(iter(p.values())))) for p in payloads] == [
            ('create', 2),
            ('create', 2),
            ('create', 1),
            ('update', 1),
            ('delete', 1),
        ]


class TestApply:
    """Test chunked writes against the destination client."""

    def test_five_creates_with_chunk_size_two(self):
        client = MagicMock()
        result = plan(_users('1@x.com', '2@x.com', '3@x.com', '4@x.com', '5@x.com'), [])

        errors = apply(result, client, WORKSPACE, chunk_size=2)

        assert errors == []
        sizes = [len(call.args[1]['create']) for call in client.write_accounts.call_args_list]
        assert sizes == [2, 2, 1]
        emails = [row['email'] for call in client.write_accounts.call_args_list for row in call.args[1]['create']]
        assert emails == ['1@x.com', '2@x.com', '3@x.com', '4@x.com', '5@x.com']
        assert all(call.args[0] == WORKSPACE for call in client.write_accounts.call_args_list)

    def test_failed_chunk_does_not_stop_the_rest(self, caplog):
        client = MagicMock()
        client.write_accounts.side_effect = [
            None,
            requests.exceptions.HTTPError("500 Server Error"),
            None,
            None,
        ]
        result = plan(_users('1@x.com', '2@x.com', '3@x.com', '4@x.com', '5@x.com'), _accounts('d@x.com'))

        errors = apply(result, client, WORKSPACE, chunk_size=2)

        assert client.write_accounts.call_count == 4
        assert len(errors) == 1
        assert errors[0].classification == 'create'
        assert errors[0].chunk_index == 1
        assert errors[0].size == 2
        assert errors[0].workspace == 'Sales Tool'
        assert "Sales Tool" in caplog.text

    def test_empty_plan_writes_nothing(self):
        client = MagicMock()

        assert apply(plan([], []), client, WORKSPACE, chunk_size=2) == []
        client.write_accounts.assert_not_called()
