"""Pydantic models for the lab declaration."""
from enum import Enum
from typing import Any, Dict, Iterator, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ResourceKind(str, Enum):
    """Kinds of resources the declaration can contain."""
    STORAGE_ACCOUNT = "StorageAccount"
    BLOB_CONTAINER = "BlobContainer"
    SEARCH_SERVICE = "SearchService"
    COGNITIVE_ACCOUNT = "CognitiveAccount"
    MODEL_DEPLOYMENT = "ModelDeployment"
    ROLE_ASSIGNMENT = "RoleAssignment"


class CognitiveVariant(str, Enum):
    """Cognitive account flavours."""
    OPENAI = "OpenAI"
    AI_SERVICES = "AIServices"
    MULTI = "Multi"

    @property
    def arm_kind(self) -> str:
        """ARM `kind` value for this variant."""
        return "CognitiveServices" if self is CognitiveVariant.MULTI else self.value


class OutputRef(BaseModel):
    """Reference to an output of another resource, resolved before submission."""
    model_config = ConfigDict(frozen=True)

    ref: str
    output: str

    def __str__(self) -> str:
        return f"{self.ref}.{self.output}"


def _parse_refs(value: Any) -> Any:
    """Turn `{ref: x, output: y}` mappings into OutputRef values, recursively."""
    if isinstance(value, OutputRef):
        return value
    if isinstance(value, dict):
        if set(value.keys()) == {"ref", "output"}:
            return OutputRef(ref=value["ref"], output=value["output"])
        return {k: _parse_refs(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_parse_refs(v) for v in value]
    return value


def iter_refs(value: Any) -> Iterator[OutputRef]:
    """Yield every OutputRef inside a property value, in document order."""
    if isinstance(value, OutputRef):
        yield value
    elif isinstance(value, dict):
        for v in value.values():
            yield from iter_refs(v)
    elif isinstance(value, list):
        for v in value:
            yield from iter_refs(v)


class Sku(BaseModel):
    """Resource SKU."""
    name: str
    capacity: Optional[int] = None


class ResourceSpec(BaseModel):
    """A declared unit of desired state."""
    model_config = ConfigDict(populate_by_name=True)

    logical_name: str = Field(alias="logicalName")
    kind: ResourceKind
    variant: Optional[CognitiveVariant] = None
    name: Optional[str] = None
    location: Optional[str] = None
    sku: Optional[Sku] = None
    identity: Optional[Literal["SystemAssigned"]] = None
    parent: Optional[str] = None
    properties: Dict[str, Any] = Field(default_factory=dict)
    depends_on: List[str] = Field(default_factory=list, alias="dependsOn")
    tags: Dict[str, str] = Field(default_factory=dict)

    @field_validator("properties", mode="before")
    @classmethod
    def _typed_references(cls, value: Any) -> Any:
        if value is None:
            return {}
        return _parse_refs(value)

    def references(self) -> List[OutputRef]:
        """Output references embedded in the property bag."""
        return list(iter_refs(self.properties))

    def dependency_names(self) -> List[str]:
        """Explicit and implied dependencies, deduplicated in declaration order."""
        names: List[str] = []
        candidates = list(self.depends_on)
        if self.parent:
            candidates.append(self.parent)
        candidates.extend(ref.ref for ref in self.references())
        for name in candidates:
            if name not in names:
                names.append(name)
        return names


class Metadata(BaseModel):
    """Declaration metadata."""
    name: str
    description: Optional[str] = None
    version: str = "1.0"


class ResourceGroup(BaseModel):
    """Target resource group."""
    name: str


class ModelSettings(BaseModel):
    """Deployment and model name pair written to the artifact."""
    deployment: str
    model: str


class DataLoadSettings(BaseModel):
    """External data-loading step run after the artifact is written."""
    model_config = ConfigDict(populate_by_name=True)

    command: Optional[List[str]] = None
    log_file: str = Field(default="infra/index-creation.log", alias="logFile")
    timeout: float = 900


class SetupSettings(BaseModel):
    """Settings for the post-provision setup procedure."""
    model_config = ConfigDict(populate_by_name=True)

    env_file: str = Field(default=".env", alias="envFile")
    container_name: str = Field(default="documents", alias="containerName")
    embedding: ModelSettings = Field(
        default_factory=lambda: ModelSettings(deployment="text-embedding-3-large", model="text-embedding-3-large")
    )
    chat: ModelSettings = Field(default_factory=lambda: ModelSettings(deployment="gpt-4.1", model="gpt-4.1"))
    knowledge_agent: str = Field(default="knowledge-base", alias="knowledgeAgent")
    use_verbalization: bool = Field(default=False, alias="useVerbalization")
    pins: Dict[str, str] = Field(default_factory=dict)
    data_load: DataLoadSettings = Field(default_factory=DataLoadSettings, alias="dataLoad")


class Timeouts(BaseModel):
    """Deadlines, in seconds."""
    model_config = ConfigDict(populate_by_name=True)

    call: float = 60
    overall: float = 1800
    poll_interval: float = Field(default=5, alias="pollInterval")


class LabSettings(BaseModel):
    """The parts of the config file the setup procedure needs."""
    model_config = ConfigDict(populate_by_name=True)

    subscription: Optional[str] = None
    setup: SetupSettings = Field(default_factory=SetupSettings)
    timeouts: Timeouts = Field(default_factory=Timeouts)


class Manifest(LabSettings):
    """Root declaration schema."""
    metadata: Metadata
    resource_group: ResourceGroup = Field(alias="resourceGroup")
    location: str = ""
    tags: Dict[str, str] = Field(default_factory=dict)
    resources: List[ResourceSpec] = Field(default_factory=list)

    def get(self, logical_name: str) -> ResourceSpec:
        """Look up a spec by logical name."""
        for spec in self.resources:
            if spec.logical_name == logical_name:
                return spec
        raise KeyError(logical_name)
