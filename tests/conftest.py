"""Shared fixtures: an in-memory stand-in for Azure Resource Manager."""
import copy
import threading
from typing import Dict, List, Optional, Tuple

import pytest

from labenv.errors import PlatformCallFailed
from labenv.platform.base import Platform, Principal, resource_group_id
from labenv.platform.context import AzureContext

SUBSCRIPTION_ID = "sub-123"


def resource_type_of(resource_id: str) -> str:
    """ARM type of a resource id, e.g. Microsoft.Storage/storageAccounts/blobServices/containers."""
    if "/providers/" not in resource_id:
        return "Microsoft.Resources/resourceGroups"
    segments = resource_id.rsplit("/providers/", 1)[1].split("/")
    return "/".join([segments[0]] + segments[1::2])


class FakePlatform(Platform):
    """Keeps resources in a dict and records every call.

    `fail_on` maps (method, id fragment) to the cause a matching call fails with.
    """

    def __init__(self, subscription_id: str = SUBSCRIPTION_ID, resource_groups=("rg-test",),
                 principal: Optional[Principal] = None):
        super().__init__(subscription_id)
        self.resource_groups = set(resource_groups)
        self.resources: Dict[str, Dict] = {}
        self.calls: List[Tuple[str, str]] = []
        self.fail_on: Dict[Tuple[str, str], str] = {}
        self.principal = principal
        self._lock = threading.Lock()

    def _call(self, method: str, target: str) -> None:
        with self._lock:
            self.calls.append((method, target))
        for (fail_method, fragment), cause in self.fail_on.items():
            if fail_method == method and fragment.lower() in target.lower():
                raise PlatformCallFailed(f"{method} {target}", cause)

    def calls_of(self, method: str) -> List[str]:
        return [target for m, target in self.calls if m == method]

    def find(self, resource_id: str) -> Optional[Dict]:
        return self.resources.get(resource_id.lower())

    def add(self, resource_group: str, resource_type: str, name: str, kind: Optional[str] = None,
            endpoint: Optional[str] = None) -> Dict:
        """Seed an existing resource."""
        resource_id = f"{resource_group_id(self.subscription_id, resource_group)}/providers/{resource_type}/{name}"
        payload = {
            "id": resource_id,
            "name": name,
            "type": resource_type,
            "properties": {"provisioningState": "Succeeded"}
        }
        if kind:
            payload["kind"] = kind
        if endpoint:
            payload["properties"]["endpoint"] = endpoint
        self.resources[resource_id.lower()] = payload
        return payload

    def resource_group_exists(self, resource_group: str) -> bool:
        self._call("HEAD", resource_group)
        return resource_group in self.resource_groups

    def get_resource(self, resource_id: str, api_version: str) -> Optional[Dict]:
        self._call("GET", resource_id)
        payload = self.find(resource_id)
        return copy.deepcopy(payload) if payload is not None else None

    def put_resource(self, resource_id: str, api_version: str, body: Dict,
                     deadline: Optional[float] = None) -> Dict:
        self._call("PUT", resource_id)
        resource_type = resource_type_of(resource_id)
        if resource_type == "Microsoft.Resources/resourceGroups":
            self.resource_groups.add(resource_id.rsplit("/", 1)[-1])

        name = resource_id.rsplit("/", 1)[-1]
        previous = self.find(resource_id) or {}
        payload = copy.deepcopy(body)
        payload.update({"id": resource_id, "name": name, "type": resource_type})
        payload.setdefault("properties", {})["provisioningState"] = "Succeeded"

        if (payload.get("identity") or {}).get("type") == "SystemAssigned":
            principal_id = (previous.get("identity") or {}).get("principalId") or f"pid-{name}"
            payload["identity"]["principalId"] = principal_id
        if resource_type == "Microsoft.CognitiveServices/accounts":
            payload["properties"]["endpoint"] = f"https://{name}.openai.azure.com/"

        with self._lock:
            self.resources[resource_id.lower()] = payload
        return copy.deepcopy(payload)

    def list_resources(self, resource_group: str, resource_type: str) -> List[Dict]:
        self._call("LIST", f"{resource_group}/{resource_type}")
        prefix = resource_group_id(self.subscription_id, resource_group).lower() + "/"
        return [
            copy.deepcopy(payload) for key, payload in self.resources.items()
            if key.startswith(prefix) and payload["type"].lower() == resource_type.lower()
        ]

    def invoke_action(self, resource_id: str, action: str, api_version: str) -> Dict:
        self._call("POST", f"{resource_id}/{action}")
        payload = self.find(resource_id)
        if payload is None:
            raise PlatformCallFailed(f"{action} on {resource_id}", "ResourceNotFound")
        name = payload["name"]
        if action == "listAdminKeys":
            return {"primaryKey": f"search-key-{name}", "secondaryKey": "unused"}
        if payload["type"] == "Microsoft.Storage/storageAccounts":
            return {"keys": [{"keyName": "key1", "value": f"storage-key-{name}"}]}
        return {"key1": f"key-{name}", "key2": "unused"}

    def signed_in_principal(self) -> Optional[Principal]:
        return self.principal


@pytest.fixture
def platform():
    """Empty platform with the resource group rg-test."""
    return FakePlatform()


@pytest.fixture
def context():
    return AzureContext(subscription_id=SUBSCRIPTION_ID, resource_group="rg-test")


@pytest.fixture
def lab_platform():
    """Platform holding one deployed lab in rg-lab511."""
    fake = FakePlatform(resource_groups=("rg-lab511",),
                        principal=Principal(object_id="user-oid", user_principal_name="user@example.com"))
    fake.add("rg-lab511", "Microsoft.Search/searchServices", "s1")
    fake.add("rg-lab511", "Microsoft.CognitiveServices/accounts", "o1", kind="OpenAI", endpoint="https://o1.example")
    fake.add("rg-lab511", "Microsoft.CognitiveServices/accounts", "a1", kind="AIServices",
             endpoint="https://a1.example")
    fake.add("rg-lab511", "Microsoft.Storage/storageAccounts", "st1", kind="StorageV2")
    return fake
