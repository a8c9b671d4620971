"""Explicit ambient context: subscription, resource group and signed-in identity."""
import subprocess
from dataclasses import dataclass
from typing import Optional

from rich.console import Console

from ..errors import PlatformCallFailed
from .base import Platform, Principal, resource_group_id

console = Console()


@dataclass
class AzureContext:
    """Everything the reconcilers would otherwise read from global CLI state."""
    subscription_id: str
    resource_group: str
    principal: Optional[Principal] = None

    @property
    def scope(self) -> str:
        """Resource id of the target resource group."""
        return resource_group_id(self.subscription_id, self.resource_group)


def default_subscription(timeout: float = 60, debug: bool = False) -> str:
    """Get the default subscription ID from Azure CLI.

    Returns:
        str: Azure subscription ID.

    Raises:
        PlatformCallFailed: If the Azure CLI is missing, fails or times out.
    """
    cmd = ["az", "account", "show", "--query", "id", "-o", "tsv"]

    if debug:
        console.print(f"[dim]Debug: Running command: {' '.join(cmd)}[/]")

    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            check=True,
            timeout=timeout
        )
    except FileNotFoundError:
        raise PlatformCallFailed("az account show", "Azure CLI not found",
                                 hint="Install the Azure CLI or set 'subscription' in the config file")
    except subprocess.TimeoutExpired:
        raise PlatformCallFailed("az account show", f"no response within {timeout}s")
    except subprocess.CalledProcessError as e:
        raise PlatformCallFailed("az account show", e.stderr.strip(), hint="Sign in with 'az login'")

    subscription_id = result.stdout.strip()

    if debug:
        console.print(f"[dim]Debug: Using subscription ID: {subscription_id}[/]")

    return subscription_id


def resolve_context(platform: Platform, resource_group: str, with_principal: bool = True) -> AzureContext:
    """Build the context for a run against `resource_group`."""
    principal = platform.signed_in_principal() if with_principal else None
    return AzureContext(
        subscription_id=platform.subscription_id,
        resource_group=resource_group,
        principal=principal
    )
