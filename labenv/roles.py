"""Built-in role definitions and deterministic role assignment names."""
import re
import uuid
from enum import Enum

ROLE_ASSIGNMENT_TYPE = "Microsoft.Authorization/roleAssignments"
ROLE_ASSIGNMENT_API_VERSION = "2022-04-01"

# Namespace for role assignment names; any fixed UUID keeps names stable across runs.
ROLE_ASSIGNMENT_NAMESPACE = uuid.UUID("8f0e0f5c-5b7a-4d1e-9a53-2c6f4b1d7a10")

_GUID_RE = re.compile(r"^[0-9a-fA-F]{8}-([0-9a-fA-F]{4}-){3}[0-9a-fA-F]{12}$")


class BuiltInRole(str, Enum):
    """Built-in Azure roles used by the lab, keyed by display name."""
    CONTRIBUTOR = "b24988ac-6180-42a0-ab88-20f7382dd24c"
    COGNITIVE_SERVICES_USER = "a97b65f3-24c7-4388-baec-2e87135dc908"
    COGNITIVE_SERVICES_OPENAI_USER = "5e0bd9bd-7b93-4f28-af87-19fc36ad61bd"
    STORAGE_BLOB_DATA_CONTRIBUTOR = "ba92f5b4-2d11-453d-a403-e96b0029c9fe"
    STORAGE_BLOB_DATA_READER = "2a2b9908-6ea1-4ae2-8e65-a410df84e7d1"
    SEARCH_INDEX_DATA_CONTRIBUTOR = "8ebe5a00-799e-43f5-93ac-243d3dce84a7"
    SEARCH_INDEX_DATA_READER = "1407120a-92aa-4202-b7e9-c0e197c71c8f"
    SEARCH_SERVICE_CONTRIBUTOR = "7ca78c08-252a-4471-8644-bb5ff32d4ba0"


ROLE_NAMES = {
    "Contributor": BuiltInRole.CONTRIBUTOR,
    "Cognitive Services User": BuiltInRole.COGNITIVE_SERVICES_USER,
    "Cognitive Services OpenAI User": BuiltInRole.COGNITIVE_SERVICES_OPENAI_USER,
    "Storage Blob Data Contributor": BuiltInRole.STORAGE_BLOB_DATA_CONTRIBUTOR,
    "Storage Blob Data Reader": BuiltInRole.STORAGE_BLOB_DATA_READER,
    "Search Index Data Contributor": BuiltInRole.SEARCH_INDEX_DATA_CONTRIBUTOR,
    "Search Index Data Reader": BuiltInRole.SEARCH_INDEX_DATA_READER,
    "Search Service Contributor": BuiltInRole.SEARCH_SERVICE_CONTRIBUTOR,
}


def is_known_role(role: str) -> bool:
    """True if `role` is a built-in role name or a role definition GUID."""
    return role in ROLE_NAMES or bool(_GUID_RE.match(role))


def role_guid(role: str) -> str:
    """Resolve a role display name or GUID to the role definition GUID."""
    if role in ROLE_NAMES:
        return ROLE_NAMES[role].value
    if _GUID_RE.match(role):
        return role.lower()
    raise ValueError(f"Unknown role: {role}")


def make_role_definition_id(subscription_id: str, role: str) -> str:
    """Full role definition resource id for a role within a subscription."""
    return "/".join(
        [
            "",
            "subscriptions",
            subscription_id,
            "providers",
            "Microsoft.Authorization",
            "roleDefinitions",
            role_guid(role),
        ]
    )


def role_assignment_name(scope: str, principal_id: str, role_definition_id: str) -> str:
    """Deterministic role assignment name for a (scope, principal, role) grant.

    Resubmitting the same grant always targets the same assignment, so the
    platform treats it as an update instead of a duplicate.
    """
    key = "|".join([scope.lower(), principal_id.lower(), role_definition_id.lower()])
    return str(uuid.uuid5(ROLE_ASSIGNMENT_NAMESPACE, key))


def role_assignment_id(scope: str, name: str) -> str:
    """Resource id of a role assignment under a scope."""
    return f"{scope.rstrip('/')}/providers/{ROLE_ASSIGNMENT_TYPE}/{name}"
