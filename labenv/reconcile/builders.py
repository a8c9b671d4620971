"""Per-kind builders turning a ResourceSpec into an ARM request."""
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..manifest.naming import normalize_name
from ..manifest.schema import Manifest, ResourceKind, ResourceSpec
from ..platform.context import AzureContext
from ..roles import (ROLE_ASSIGNMENT_API_VERSION, make_role_definition_id, role_assignment_id,
                     role_assignment_name)
from .models import DeploymentOutput


@dataclass
class ArmRequest:
    """A resolved PUT against ARM."""
    resource_id: str
    api_version: str
    body: Dict


class ResourceBuilder:
    """Base builder for top-level resources in the target resource group."""

    resource_type = ""
    api_version = ""

    def resource_id(self, spec: ResourceSpec, context: AzureContext, outputs: Dict[str, DeploymentOutput]) -> str:
        return f"{context.scope}/providers/{self.resource_type}/{normalize_name(spec.kind, spec.name)}"

    def body(self, spec: ResourceSpec, properties: Dict[str, Any], manifest: Manifest) -> Dict:
        body: Dict[str, Any] = {"location": spec.location or manifest.location}
        if spec.sku:
            body["sku"] = {"name": spec.sku.name}
        if spec.identity:
            body["identity"] = {"type": spec.identity}
        tags = {**manifest.tags, **spec.tags}
        if tags:
            body["tags"] = tags
        body["properties"] = {**self.default_properties(spec), **properties}
        return body

    def default_properties(self, spec: ResourceSpec) -> Dict[str, Any]:
        return {}

    def endpoint(self, name: str, payload: Dict) -> str:
        return ""

    def build(self, spec: ResourceSpec, properties: Dict[str, Any], manifest: Manifest,
              context: AzureContext, outputs: Dict[str, DeploymentOutput]) -> ArmRequest:
        """Build the PUT for a spec whose references are already resolved.

        Args:
            spec: The spec being reconciled.
            properties: Its property bag with output references substituted.
            manifest: Full declaration (default location, tags).
            context: Subscription and resource group.
            outputs: Outputs of already-reconciled specs.

        Returns:
            ArmRequest: Resource id, API version and desired body.
        """
        return ArmRequest(
            resource_id=self.resource_id(spec, context, outputs),
            api_version=self.api_version,
            body=self.body(spec, properties, manifest)
        )

    def output(self, request: ArmRequest, payload: Dict) -> DeploymentOutput:
        """Extract the outputs dependents may reference."""
        name = payload.get("name") or request.resource_id.rsplit("/", 1)[-1]
        return DeploymentOutput(
            id=payload.get("id") or request.resource_id,
            name=name,
            endpoint=self.endpoint(name, payload),
            principal_id=(payload.get("identity") or {}).get("principalId", ""),
            raw=payload
        )


class StorageAccountBuilder(ResourceBuilder):
    resource_type = "Microsoft.Storage/storageAccounts"
    api_version = "2023-01-01"

    def body(self, spec, properties, manifest):
        properties = dict(properties)
        account_kind = properties.pop("accountKind", "StorageV2")
        body = super().body(spec, properties, manifest)
        body["kind"] = account_kind
        return body

    def default_properties(self, spec):
        return {
            "minimumTlsVersion": "TLS1_2",
            "allowBlobPublicAccess": False,
            "supportsHttpsTrafficOnly": True
        }

    def endpoint(self, name, payload):
        endpoints = (payload.get("properties") or {}).get("primaryEndpoints") or {}
        return endpoints.get("blob") or f"https://{name}.blob.core.windows.net/"


class BlobContainerBuilder(ResourceBuilder):
    resource_type = "Microsoft.Storage/storageAccounts/blobServices/containers"
    api_version = "2023-01-01"

    def resource_id(self, spec, context, outputs):
        account_id = outputs[spec.parent].id
        return f"{account_id}/blobServices/default/containers/{normalize_name(spec.kind, spec.name)}"

    def body(self, spec, properties, manifest):
        return {"properties": {"publicAccess": "None", **properties}}


class SearchServiceBuilder(ResourceBuilder):
    resource_type = "Microsoft.Search/searchServices"
    api_version = "2023-11-01"

    def default_properties(self, spec):
        return {"replicaCount": 1, "partitionCount": 1, "hostingMode": "default"}

    def endpoint(self, name, payload):
        return search_endpoint(name)


class CognitiveAccountBuilder(ResourceBuilder):
    resource_type = "Microsoft.CognitiveServices/accounts"
    api_version = "2023-05-01"

    def body(self, spec, properties, manifest):
        body = super().body(spec, properties, manifest)
        body["kind"] = spec.variant.arm_kind
        return body

    def default_properties(self, spec):
        return {
            "customSubDomainName": normalize_name(spec.kind, spec.name),
            "publicNetworkAccess": "Enabled"
        }

    def endpoint(self, name, payload):
        return (payload.get("properties") or {}).get("endpoint", "")


class ModelDeploymentBuilder(ResourceBuilder):
    resource_type = "Microsoft.CognitiveServices/accounts/deployments"
    api_version = "2023-05-01"

    def resource_id(self, spec, context, outputs):
        account_id = outputs[spec.parent].id
        return f"{account_id}/deployments/{normalize_name(spec.kind, spec.name)}"

    def body(self, spec, properties, manifest):
        sku = {"name": spec.sku.name}
        if spec.sku.capacity is not None:
            sku["capacity"] = spec.sku.capacity
        return {"sku": sku, "properties": dict(properties)}


class RoleAssignmentBuilder(ResourceBuilder):
    """Role assignments get a deterministic name so reruns converge."""

    api_version = ROLE_ASSIGNMENT_API_VERSION

    def build(self, spec, properties, manifest, context, outputs):
        scope = properties["scope"]
        if scope == "resourceGroup":
            scope = context.scope
        role_definition_id = make_role_definition_id(context.subscription_id, properties["role"])
        principal_id = properties["principalId"]
        name = role_assignment_name(scope, principal_id, role_definition_id)
        return ArmRequest(
            resource_id=role_assignment_id(scope, name),
            api_version=self.api_version,
            body={
                "properties": {
                    "roleDefinitionId": role_definition_id,
                    "principalId": principal_id,
                    "principalType": properties.get("principalType", "ServicePrincipal")
                }
            }
        )


def search_endpoint(name: str) -> str:
    """Public endpoint of a search service."""
    return f"https://{name}.search.windows.net"


BUILDERS: Dict[ResourceKind, ResourceBuilder] = {
    ResourceKind.STORAGE_ACCOUNT: StorageAccountBuilder(),
    ResourceKind.BLOB_CONTAINER: BlobContainerBuilder(),
    ResourceKind.SEARCH_SERVICE: SearchServiceBuilder(),
    ResourceKind.COGNITIVE_ACCOUNT: CognitiveAccountBuilder(),
    ResourceKind.MODEL_DEPLOYMENT: ModelDeploymentBuilder(),
    ResourceKind.ROLE_ASSIGNMENT: RoleAssignmentBuilder(),
}


def get_builder(kind: ResourceKind) -> Optional[ResourceBuilder]:
    """Builder for a resource kind."""
    return BUILDERS.get(kind)
