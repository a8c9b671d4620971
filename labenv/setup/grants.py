"""Best-effort role grants for the signed-in user in keyless mode."""
from typing import Dict, List, Optional, Tuple

from ..errors import GrantFailed, PlatformCallFailed
from ..platform.base import Platform
from ..platform.context import AzureContext
from ..roles import (ROLE_ASSIGNMENT_API_VERSION, make_role_definition_id, role_assignment_id,
                     role_assignment_name)
from .models import DiscoveredResource, StepOutcome, StepStatus

# (discovered kind, role) pairs granted to the signed-in user
KEYLESS_GRANTS: List[Tuple[str, str]] = [
    ("search", "Search Index Data Contributor"),
    ("search", "Search Service Contributor"),
    ("openai", "Cognitive Services User"),
    ("aiservices", "Cognitive Services User"),
    ("storage", "Storage Blob Data Contributor"),
]


def grant_scope(context: AzureContext, resource: Optional[DiscoveredResource]) -> str:
    """Narrowest scope available: the resource, else its resource group."""
    if resource is not None and resource.id:
        return resource.id
    return context.scope


def grant_role(platform: Platform, context: AzureContext, scope: str, role: str) -> StepOutcome:
    """Grant `role` on `scope` to the signed-in user.

    Never raises for platform errors: a failed grant becomes a warning with a
    manual remediation hint, since role propagation is eventually consistent
    and the rest of the setup is still useful.
    """
    step = f"grant {role}"
    principal = context.principal
    if principal is None:
        error = GrantFailed("", scope, role, "could not determine current user identity")
        return StepOutcome.from_error(step, error)

    role_definition_id = make_role_definition_id(context.subscription_id, role)
    name = role_assignment_name(scope, principal.object_id, role_definition_id)
    assignment_id = role_assignment_id(scope, name)
    body = {
        "properties": {
            "roleDefinitionId": role_definition_id,
            "principalId": principal.object_id,
            "principalType": "User"
        }
    }

    try:
        if platform.get_resource(assignment_id, ROLE_ASSIGNMENT_API_VERSION) is not None:
            return StepOutcome(step, StepStatus.OK, f"{principal.display} already has {role} on {scope}")
        platform.put_resource(assignment_id, ROLE_ASSIGNMENT_API_VERSION, body)
    except PlatformCallFailed as e:
        # Same grant created earlier under another name
        if "RoleAssignmentExists" in e.cause:
            return StepOutcome(step, StepStatus.OK, f"{principal.display} already has {role} on {scope}")
        return StepOutcome.from_error(step, GrantFailed(principal.display, scope, role, e.cause))

    return StepOutcome(step, StepStatus.OK, f"Added {principal.display} to {role} on {scope}")


def grant_keyless_access(platform: Platform, context: AzureContext,
                         resources: Dict[str, DiscoveredResource]) -> List[StepOutcome]:
    """Issue every keyless grant independently; failures don't stop the rest."""
    return [
        grant_role(platform, context, grant_scope(context, resources.get(kind)), role)
        for kind, role in KEYLESS_GRANTS
    ]
