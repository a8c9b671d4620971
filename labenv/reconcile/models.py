"""Data models for reconciliation results."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from ..errors import LabEnvError


@dataclass
class DeploymentOutput:
    """Realized state of one resource, consumed by dependents."""
    id: str
    name: str
    endpoint: str = ""
    principal_id: str = ""
    raw: Dict = field(default_factory=dict)

    def get(self, output: str) -> str:
        """Value of a named output ("id", "name", "endpoint", "principalId")."""
        values = {
            "id": self.id,
            "name": self.name,
            "endpoint": self.endpoint,
            "principalId": self.principal_id,
        }
        return values.get(output, "")


class ReconcileStatus(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class ReconcileOutcome:
    """What happened to one spec."""
    logical_name: str
    status: ReconcileStatus
    resource_id: str = ""
    output: Optional[DeploymentOutput] = None
    error: Optional[LabEnvError] = None


@dataclass
class ReconcileReport:
    """Outcomes of a reconcile pass, in the order specs were settled."""
    order: List[str]
    outcomes: Dict[str, ReconcileOutcome] = field(default_factory=dict)
    errors: List[LabEnvError] = field(default_factory=list)

    def count(self, status: ReconcileStatus) -> int:
        return sum(1 for o in self.outcomes.values() if o.status is status)

    @property
    def created(self) -> int:
        return self.count(ReconcileStatus.CREATED)

    @property
    def unchanged(self) -> int:
        return self.count(ReconcileStatus.UNCHANGED)

    @property
    def success(self) -> bool:
        """True if nothing failed or was skipped."""
        return not self.errors and all(
            o.status not in (ReconcileStatus.FAILED, ReconcileStatus.SKIPPED)
            for o in self.outcomes.values()
        )

    def failures(self) -> List[ReconcileOutcome]:
        return [o for o in self.outcomes.values() if o.status is ReconcileStatus.FAILED]

    def summary(self) -> str:
        """One-line summary, e.g. "0 created, 0 updated, 3 unchanged, 0 failed, 0 skipped"."""
        return ", ".join(
            f"{self.count(status)} {status.value}"
            for status in ReconcileStatus
        )
