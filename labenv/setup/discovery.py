"""Discovery of the lab's resources inside a resource group."""
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..errors import AmbiguousResource, MissingResource
from ..platform.base import Platform
from ..reconcile.builders import search_endpoint
from .models import DiscoveredResource


@dataclass(frozen=True)
class ResourceQuery:
    """How to find one required kind of resource."""
    kind: str
    resource_type: str
    api_version: str
    description: str
    arm_kind: Optional[str] = None


SEARCH = ResourceQuery("search", "Microsoft.Search/searchServices", "2023-11-01", "Azure AI Search service")
OPENAI = ResourceQuery("openai", "Microsoft.CognitiveServices/accounts", "2023-05-01", "Azure OpenAI service",
                       arm_kind="OpenAI")
AI_SERVICES = ResourceQuery("aiservices", "Microsoft.CognitiveServices/accounts", "2023-05-01", "AI Services account",
                            arm_kind="AIServices")
STORAGE = ResourceQuery("storage", "Microsoft.Storage/storageAccounts", "2023-01-01", "Storage Account")

# Discovery order of the setup procedure
QUERIES: List[ResourceQuery] = [SEARCH, OPENAI, AI_SERVICES, STORAGE]


def discover(platform: Platform, resource_group: str, query: ResourceQuery,
             pins: Optional[Dict[str, str]] = None) -> DiscoveredResource:
    """Find the single resource of a kind in a resource group.

    Args:
        platform: Platform to query.
        resource_group: Resource group to search.
        query: Which kind to look for.
        pins: Optional kind -> name choices for resource groups holding
            several resources of a kind.

    Returns:
        DiscoveredResource: The resource, with its endpoint.

    Raises:
        MissingResource: If no resource (or no pinned resource) matches.
        AmbiguousResource: If several match and none is pinned.
    """
    candidates = [
        r for r in platform.list_resources(resource_group, query.resource_type)
        if query.arm_kind is None or (r.get("kind") or "").lower() == query.arm_kind.lower()
    ]
    if not candidates:
        raise MissingResource(query.kind, resource_group, query.description)

    pin = (pins or {}).get(query.kind)
    if pin:
        candidates = [r for r in candidates if r.get("name", "").lower() == pin.lower()]
        if not candidates:
            raise MissingResource(query.kind, resource_group, f"{query.description} named '{pin}'")

    if len(candidates) > 1:
        raise AmbiguousResource(query.kind, sorted(r.get("name", "") for r in candidates))

    found = candidates[0]
    resource = DiscoveredResource(kind=query.kind, id=found["id"], name=found["name"])

    if query is SEARCH:
        resource.endpoint = search_endpoint(resource.name)
    elif query.arm_kind is not None:
        details = platform.get_resource(resource.id, query.api_version) or {}
        resource.endpoint = (details.get("properties") or {}).get("endpoint", "")
    return resource
