"""Static key retrieval for keyed mode."""
from ..errors import PlatformCallFailed
from ..platform.base import Platform
from .discovery import AI_SERVICES, OPENAI, SEARCH, STORAGE
from .models import DiscoveredResource


def _require(value: str, operation: str) -> str:
    if not value:
        raise PlatformCallFailed(operation, "no key returned")
    return value


def search_admin_key(platform: Platform, resource: DiscoveredResource) -> str:
    """Primary admin key of a search service."""
    keys = platform.invoke_action(resource.id, "listAdminKeys", SEARCH.api_version)
    return _require(keys.get("primaryKey", ""), f"listAdminKeys on {resource.name}")


def cognitive_key(platform: Platform, resource: DiscoveredResource) -> str:
    """First key of a cognitive services account."""
    api_version = OPENAI.api_version if resource.kind == OPENAI.kind else AI_SERVICES.api_version
    keys = platform.invoke_action(resource.id, "listKeys", api_version)
    return _require(keys.get("key1", ""), f"listKeys on {resource.name}")


def storage_connection_string(platform: Platform, resource: DiscoveredResource) -> str:
    """Key-based connection string of a storage account."""
    keys = platform.invoke_action(resource.id, "listKeys", STORAGE.api_version).get("keys") or []
    key = _require(keys[0].get("value", "") if keys else "", f"listKeys on {resource.name}")
    return (
        "DefaultEndpointsProtocol=https;"
        f"AccountName={resource.name};"
        f"AccountKey={key};"
        "EndpointSuffix=core.windows.net"
    )
