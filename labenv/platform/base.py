"""Platform abstraction over Azure Resource Manager."""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional

TERMINAL_STATES = {"succeeded", "failed", "canceled"}
RESOURCES_API_VERSION = "2021-04-01"


@dataclass
class Principal:
    """An identity that can be granted roles."""
    object_id: str
    user_principal_name: str = ""

    @property
    def display(self) -> str:
        return self.user_principal_name or self.object_id


def resource_group_id(subscription_id: str, resource_group: str) -> str:
    """Resource id of a resource group."""
    return f"/subscriptions/{subscription_id}/resourceGroups/{resource_group}"


def provisioning_state(payload: Dict) -> str:
    """Provisioning state of an ARM payload; resources without one count as succeeded."""
    return (payload.get("properties") or {}).get("provisioningState") or "Succeeded"


class Platform(ABC):
    """Operations the reconcilers need from the cloud platform.

    Every call blocks until the platform answers or the call's deadline
    passes. Failures raise PlatformCallFailed.
    """

    def __init__(self, subscription_id: str):
        """Initialize the platform.

        Args:
            subscription_id: Azure subscription ID all calls are scoped to.
        """
        self.subscription_id = subscription_id

    @abstractmethod
    def resource_group_exists(self, resource_group: str) -> bool:
        """Check whether a resource group exists."""

    @abstractmethod
    def get_resource(self, resource_id: str, api_version: str) -> Optional[Dict]:
        """Fetch a resource, or None if it doesn't exist."""

    @abstractmethod
    def put_resource(self, resource_id: str, api_version: str, body: Dict,
                     deadline: Optional[float] = None) -> Dict:
        """Create or update a resource and wait for a terminal provisioning state.

        Args:
            resource_id: Full ARM resource id.
            api_version: API version for the resource type.
            body: Desired resource payload.
            deadline: time.monotonic() value after which waiting stops.

        Returns:
            Dict: The realized resource payload.
        """

    @abstractmethod
    def list_resources(self, resource_group: str, resource_type: str) -> List[Dict]:
        """List resources of one type in a resource group, in platform order."""

    @abstractmethod
    def invoke_action(self, resource_id: str, action: str, api_version: str) -> Dict:
        """POST a resource action such as listKeys."""

    @abstractmethod
    def signed_in_principal(self) -> Optional[Principal]:
        """The identity running the tool, or None if it can't be determined."""
