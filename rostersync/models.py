from dataclasses import dataclass
from dataclasses import field
from typing import Dict
from typing import FrozenSet
from typing import List
from typing import Optional
from typing import Tuple


@dataclass(frozen=True)
class User:
    email: str
    display_name: str
    principal_id: Optional[str] = None


@dataclass(frozen=True)
class Group:
    principal_id: str
    display_name: Optional[str] = None
    members: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class Application:
    app_id: str
    display_name: str
    principal_id: Optional[str] = None
    sign_in_audience: Optional[str] = None
    identifier_uris: Tuple[str, ...] = ()
    tags: Tuple[str, ...] = ()
    service_url: Optional[str] = None


@dataclass
class Roster:
    """
    The users assigned to one application, unique by principal id.
    """
    application: Application
    users: List[User] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.application.display_name


@dataclass(frozen=True)
class DestinationAccount:
    email: str
    display_name: str


@dataclass(frozen=True)
class Workspace:
    workspace_id: int
    service_id: int
    name: str


@dataclass
class ReconciliationPlan:
    create: List[User] = field(default_factory=list)
    update: List[User] = field(default_factory=list)
    delete: List[DestinationAccount] = field(default_factory=list)

    def counts(self) -> Dict[str, int]:
        return {
            'existingUsers': len(self.update),
            'newUsers': len(self.create),
            'deleteAccounts': len(self.delete),
        }


@dataclass
class AppResult:
    name: str
    status: str
    existing: int = 0
    new: int = 0
    deleted: int = 0
    reason: Optional[str] = None


@dataclass
class RunSummary:
    results: List[AppResult] = field(default_factory=list)

    @property
    def failures(self) -> List[AppResult]:
        return [r for r in self.results if r.status == 'failed']

    @property
    def ok(self) -> bool:
        return not self.failures

    def add(self, result: AppResult) -> None:
        self.results.append(result)
