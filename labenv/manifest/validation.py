"""Static validation of a declaration, run before any platform call."""
from typing import Dict, List, Set

from ..errors import InvalidConfiguration
from ..roles import is_known_role
from .naming import normalize_name
from .schema import Manifest, OutputRef, ResourceKind, ResourceSpec

SKUS: Dict[ResourceKind, Set[str]] = {
    ResourceKind.STORAGE_ACCOUNT: {
        "Standard_LRS", "Standard_GRS", "Standard_RAGRS", "Standard_ZRS",
        "Premium_LRS", "Premium_ZRS", "Standard_GZRS", "Standard_RAGZRS",
    },
    ResourceKind.SEARCH_SERVICE: {
        "free", "basic", "standard", "standard2", "standard3",
        "storage_optimized_l1", "storage_optimized_l2",
    },
    ResourceKind.COGNITIVE_ACCOUNT: {"F0", "S0"},
    ResourceKind.MODEL_DEPLOYMENT: {
        "Standard", "GlobalStandard", "DataZoneStandard",
        "ProvisionedManaged", "GlobalProvisionedManaged",
    },
}

PARENT_KINDS = {
    ResourceKind.BLOB_CONTAINER: ResourceKind.STORAGE_ACCOUNT,
    ResourceKind.MODEL_DEPLOYMENT: ResourceKind.COGNITIVE_ACCOUNT,
}

NETWORK_FACING = {
    ResourceKind.STORAGE_ACCOUNT,
    ResourceKind.SEARCH_SERVICE,
    ResourceKind.COGNITIVE_ACCOUNT,
}

IDENTITY_BEARING = {ResourceKind.SEARCH_SERVICE, ResourceKind.COGNITIVE_ACCOUNT}

PRINCIPAL_TYPES = {"User", "ServicePrincipal"}


def validate_sku(spec: ResourceSpec) -> None:
    """Reject missing or unknown SKUs locally.

    Raises:
        InvalidConfiguration: If the SKU is missing, unknown, or not expected.
    """
    allowed = SKUS.get(spec.kind)
    if allowed is None:
        if spec.sku is not None:
            raise InvalidConfiguration(f"{spec.logical_name}: {spec.kind.value} does not take a sku")
        return
    if spec.sku is None:
        raise InvalidConfiguration(f"{spec.logical_name}: sku.name is required for {spec.kind.value}")
    if spec.sku.name not in allowed:
        raise InvalidConfiguration(
            f"{spec.logical_name}: unknown sku '{spec.sku.name}' for {spec.kind.value}; "
            f"expected one of {', '.join(sorted(allowed))}"
        )


def available_outputs(spec: ResourceSpec) -> Set[str]:
    """Output names other specs may reference on `spec`."""
    outputs = {"id", "name"}
    if spec.kind in NETWORK_FACING:
        outputs.add("endpoint")
    if spec.identity == "SystemAssigned":
        outputs.add("principalId")
    return outputs


def _validate_role_assignment(spec: ResourceSpec) -> None:
    props = spec.properties
    for field in ("principalId", "role", "scope"):
        if field not in props:
            raise InvalidConfiguration(f"{spec.logical_name}: role assignment requires properties.{field}")
    principal_type = props.get("principalType", "ServicePrincipal")
    if principal_type not in PRINCIPAL_TYPES:
        raise InvalidConfiguration(
            f"{spec.logical_name}: principalType must be one of {', '.join(sorted(PRINCIPAL_TYPES))}"
        )
    if not isinstance(props["role"], str) or not is_known_role(props["role"]):
        raise InvalidConfiguration(f"{spec.logical_name}: unknown role '{props['role']}'")
    scope = props["scope"]
    if not (isinstance(scope, OutputRef) and scope.output == "id") and scope != "resourceGroup":
        raise InvalidConfiguration(
            f"{spec.logical_name}: scope must be 'resourceGroup' or a reference to another resource's id"
        )


def validate_spec(spec: ResourceSpec, manifest: Manifest, by_name: Dict[str, ResourceSpec]) -> None:
    """Validate one spec against the rest of the declaration."""
    label = spec.logical_name

    if spec.kind is ResourceKind.ROLE_ASSIGNMENT:
        _validate_role_assignment(spec)
    else:
        if not spec.name:
            raise InvalidConfiguration(f"{label}: name is required for {spec.kind.value}")
        normalize_name(spec.kind, spec.name)

    if spec.kind not in PARENT_KINDS and spec.kind is not ResourceKind.ROLE_ASSIGNMENT:
        if not (spec.location or manifest.location):
            raise InvalidConfiguration(f"{label}: location is required")

    if spec.kind is ResourceKind.COGNITIVE_ACCOUNT and spec.variant is None:
        raise InvalidConfiguration(f"{label}: variant is required for CognitiveAccount")
    if spec.kind is not ResourceKind.COGNITIVE_ACCOUNT and spec.variant is not None:
        raise InvalidConfiguration(f"{label}: variant only applies to CognitiveAccount")

    if spec.identity and spec.kind not in IDENTITY_BEARING:
        raise InvalidConfiguration(f"{label}: {spec.kind.value} cannot carry a managed identity")

    validate_sku(spec)

    parent_kind = PARENT_KINDS.get(spec.kind)
    if parent_kind is not None:
        if not spec.parent:
            raise InvalidConfiguration(f"{label}: parent is required for {spec.kind.value}")
        parent = by_name.get(spec.parent)
        if parent is None or parent.kind is not parent_kind:
            raise InvalidConfiguration(f"{label}: parent '{spec.parent}' must be a {parent_kind.value}")
    elif spec.parent:
        raise InvalidConfiguration(f"{label}: {spec.kind.value} does not take a parent")

    for dep in spec.depends_on:
        if dep not in by_name:
            raise InvalidConfiguration(f"{label}: depends on unknown resource '{dep}'")

    for ref in spec.references():
        target = by_name.get(ref.ref)
        if target is None:
            raise InvalidConfiguration(f"{label}: references unknown resource '{ref.ref}'")
        if ref.output not in available_outputs(target):
            raise InvalidConfiguration(
                f"{label}: '{ref.ref}' has no output '{ref.output}' "
                f"(available: {', '.join(sorted(available_outputs(target)))})"
            )


def validate_manifest(manifest: Manifest) -> None:
    """Validate the whole declaration.

    Raises:
        InvalidConfiguration: On the first problem found.
    """
    by_name: Dict[str, ResourceSpec] = {}
    duplicates: List[str] = []
    for spec in manifest.resources:
        if spec.logical_name in by_name:
            duplicates.append(spec.logical_name)
        by_name[spec.logical_name] = spec
    if duplicates:
        raise InvalidConfiguration(f"Duplicate logical names: {', '.join(duplicates)}")

    for spec in manifest.resources:
        validate_spec(spec, manifest, by_name)
