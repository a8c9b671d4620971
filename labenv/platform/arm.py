"""Azure Resource Manager REST implementation of the platform."""
import json
import time
from typing import Dict, List, Optional

import requests
from azure.core.exceptions import ClientAuthenticationError
from azure.identity import DefaultAzureCredential
from rich.console import Console
from rich.markup import escape

from ..errors import PlatformCallFailed
from ..manifest.schema import Timeouts
from .base import (RESOURCES_API_VERSION, TERMINAL_STATES, Platform, Principal, provisioning_state,
                   resource_group_id)

ARM_ENDPOINT = "https://management.azure.com"
GRAPH_ENDPOINT = "https://graph.microsoft.com/v1.0"
MANAGEMENT_SCOPE = "https://management.azure.com/.default"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"

console = Console()


def _json(response: requests.Response, operation: str) -> Dict:
    """Decode a response body; an empty body is an empty payload."""
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError:
        raise PlatformCallFailed(operation, f"unreadable response body: {response.text[:200]}")


class ArmPlatform(Platform):
    """Talks to ARM over REST with tokens from DefaultAzureCredential."""

    def __init__(self, subscription_id: str, credential=None, timeouts: Optional[Timeouts] = None,
                 debug: bool = False):
        """Initialize the platform.

        Args:
            subscription_id: Azure subscription ID.
            credential: Token credential; DefaultAzureCredential when omitted.
            timeouts: Per-call timeout and provisioning poll interval.
            debug: If True, print every request.
        """
        super().__init__(subscription_id)
        self.credential = credential or DefaultAzureCredential()
        self.timeouts = timeouts or Timeouts()
        self.debug = debug

    def _token(self, scope: str = MANAGEMENT_SCOPE) -> str:
        try:
            return self.credential.get_token(scope).token
        except ClientAuthenticationError as e:
            raise PlatformCallFailed("acquire token", e.message, hint="Sign in with 'az login'")

    def _request(self, method: str, url: str, operation: str, api_version: Optional[str] = None,
                 body: Optional[Dict] = None, params: Optional[Dict] = None,
                 scope: str = MANAGEMENT_SCOPE, allow_missing: bool = False) -> requests.Response:
        """Send one request with the per-call timeout.

        Raises:
            PlatformCallFailed: On transport errors, timeouts and non-2xx answers
                (404 is returned as-is when allow_missing is set).
        """
        query = dict(params or {})
        if api_version:
            query["api-version"] = api_version
        headers = {
            "Authorization": f"Bearer {self._token(scope)}",
            "Content-Type": "application/json"
        }

        if self.debug:
            console.print(f"[dim]Debug: {method} {url}[/]")

        try:
            response = requests.request(
                method,
                url,
                headers=headers,
                params=query or None,
                json=body,
                timeout=self.timeouts.call
            )
        except requests.exceptions.Timeout:
            raise PlatformCallFailed(operation, f"no response within {self.timeouts.call}s")
        except requests.exceptions.RequestException as e:
            raise PlatformCallFailed(operation, str(e))

        if allow_missing and response.status_code == 404:
            return response
        if response.status_code >= 400:
            raise PlatformCallFailed(operation, response.text or f"HTTP {response.status_code}")
        return response

    def resource_group_exists(self, resource_group: str) -> bool:
        url = ARM_ENDPOINT + resource_group_id(self.subscription_id, resource_group)
        response = self._request(
            "HEAD", url, f"check resource group {resource_group}",
            api_version=RESOURCES_API_VERSION, allow_missing=True
        )
        return response.status_code != 404

    def get_resource(self, resource_id: str, api_version: str) -> Optional[Dict]:
        response = self._request("GET", ARM_ENDPOINT + resource_id, f"GET {resource_id}",
                                 api_version=api_version, allow_missing=True)
        if response.status_code == 404:
            return None
        return _json(response, f"GET {resource_id}")

    def put_resource(self, resource_id: str, api_version: str, body: Dict,
                     deadline: Optional[float] = None) -> Dict:
        operation = f"PUT {resource_id}"
        response = self._request("PUT", ARM_ENDPOINT + resource_id, operation,
                                 api_version=api_version, body=body)
        payload = _json(response, operation)
        if deadline is None:
            deadline = time.monotonic() + self.timeouts.overall

        # Long-running creates answer 201/202 and finish in the background
        while provisioning_state(payload).lower() not in TERMINAL_STATES or response.status_code == 202:
            if time.monotonic() >= deadline:
                raise PlatformCallFailed(
                    operation,
                    f"still {provisioning_state(payload)} when the deadline passed"
                )
            time.sleep(self.timeouts.poll_interval)
            response = self._request("GET", ARM_ENDPOINT + resource_id, f"GET {resource_id}",
                                     api_version=api_version, allow_missing=True)
            payload = _json(response, operation) if response.status_code != 404 else {
                "properties": {"provisioningState": "Accepted"}
            }

        state = provisioning_state(payload)
        if state.lower() != "succeeded":
            error = payload.get("error") or (payload.get("properties") or {}).get("error") or payload
            raise PlatformCallFailed(operation, f"provisioningState={state}: {json.dumps(error)}")
        return payload

    def list_resources(self, resource_group: str, resource_type: str) -> List[Dict]:
        url = ARM_ENDPOINT + resource_group_id(self.subscription_id, resource_group) + "/resources"
        operation = f"list {resource_type} in {resource_group}"
        response = self._request("GET", url, operation, api_version=RESOURCES_API_VERSION,
                                 params={"$filter": f"resourceType eq '{resource_type}'"})
        data = _json(response, operation)
        resources = list(data.get("value", []))

        # nextLink already carries the query string
        while data.get("nextLink"):
            data = _json(self._request("GET", data["nextLink"], operation), operation)
            resources.extend(data.get("value", []))
        return resources

    def invoke_action(self, resource_id: str, action: str, api_version: str) -> Dict:
        response = self._request("POST", f"{ARM_ENDPOINT}{resource_id}/{action}",
                                 f"{action} on {resource_id}", api_version=api_version)
        return _json(response, f"{action} on {resource_id}")

    def signed_in_principal(self) -> Optional[Principal]:
        try:
            response = self._request(
                "GET", f"{GRAPH_ENDPOINT}/me", "look up signed-in user",
                params={"$select": "id,userPrincipalName"}, scope=GRAPH_SCOPE
            )
            data = _json(response, "look up signed-in user")
        except PlatformCallFailed as e:
            # Service principals and managed identities have no /me
            if self.debug:
                console.print(f"[dim]Debug: {escape(str(e))}[/]")
            return None
        if not data.get("id"):
            return None
        return Principal(object_id=data["id"], user_principal_name=data.get("userPrincipalName", ""))
