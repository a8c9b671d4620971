"""Run report for the setup procedure."""
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from ..errors import LabEnvError


class StepStatus(str, Enum):
    OK = "ok"
    WARNING = "warning"
    FAILED = "failed"


@dataclass
class StepOutcome:
    """Result of one setup sub-step."""
    step: str
    status: StepStatus
    detail: str = ""
    hint: Optional[str] = None

    @classmethod
    def from_error(cls, step: str, error: LabEnvError) -> "StepOutcome":
        status = StepStatus.FAILED if error.fatal else StepStatus.WARNING
        return cls(step, status, str(error), error.hint)


@dataclass
class DiscoveredResource:
    """A resource found in the target resource group."""
    kind: str
    id: str
    name: str
    endpoint: str = ""


@dataclass
class RunReport:
    """Everything the setup procedure did, in order."""
    resource_group: str
    keyless: bool
    steps: List[StepOutcome] = field(default_factory=list)
    resources: Dict[str, DiscoveredResource] = field(default_factory=dict)
    artifact_path: Optional[Path] = None

    def add(self, outcome: StepOutcome) -> StepOutcome:
        self.steps.append(outcome)
        return outcome

    @property
    def warnings(self) -> List[StepOutcome]:
        return [s for s in self.steps if s.status is StepStatus.WARNING]

    @property
    def success(self) -> bool:
        """True unless a fatal step failed."""
        return all(s.status is not StepStatus.FAILED for s in self.steps)
