"""Error taxonomy for declaration, reconciliation and setup failures."""
import re
from typing import List, Optional, Sequence

# Patterns for values that must never be echoed back to the operator.
_SECRET_PATTERNS = [
    re.compile(r"(AccountKey=)[^;\s\"']+", re.IGNORECASE),
    re.compile(r"(SharedAccessSignature=)[^;\s\"']+", re.IGNORECASE),
    re.compile(r"(\"(?:key1|key2|primaryKey|secondaryKey|value)\"\s*:\s*\")[^\"]+", re.IGNORECASE),
]


def scrub_secrets(text: str) -> str:
    """Mask keys and connection-string secrets inside a message."""
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(r"\1***", text)
    return text


class LabEnvError(Exception):
    """Base class for all labenv errors.

    Args:
        message: Human readable description.
        hint: Optional remediation hint (exact CLI or portal action).
    """

    exit_code = 1
    fatal = True

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(scrub_secrets(message))
        self.hint = hint


class InvalidConfiguration(LabEnvError):
    """Raised when the declaration is invalid (bad SKU, name, reference)."""


class CyclicDependency(LabEnvError):
    """Raised when the declared resources form a dependency cycle."""

    def __init__(self, members: Sequence[str]):
        self.members = list(members)
        super().__init__(
            f"Cyclic dependency between resources: {' -> '.join(self.members)}",
            hint="Remove one of the dependsOn entries or output references in the cycle",
        )


class ScopeNotFound(LabEnvError):
    """Raised when the target resource group does not exist."""

    def __init__(self, resource_group: str):
        self.resource_group = resource_group
        super().__init__(
            f"Resource group '{resource_group}' does not exist",
            hint=f"Run the deploy step first: labenv apply -g '{resource_group}'",
        )


class MissingResource(LabEnvError):
    """Raised when discovery finds no resource of a required kind."""

    def __init__(self, kind: str, resource_group: str = "", description: Optional[str] = None):
        self.kind = kind
        where = f" in resource group '{resource_group}'" if resource_group else ""
        super().__init__(
            f"No {description or kind} found{where}",
            hint=f"Deploy the lab resources first: labenv apply -g '{resource_group}'",
        )


class AmbiguousResource(LabEnvError):
    """Raised when discovery finds several resources of a kind and none is pinned."""

    def __init__(self, kind: str, candidates: List[str]):
        self.kind = kind
        self.candidates = list(candidates)
        super().__init__(
            f"Found {len(self.candidates)} resources of kind {kind}: {', '.join(self.candidates)}",
            hint=f"Choose one with --pin {kind}=<name> or setup.pins in the config file",
        )


class PlatformCallFailed(LabEnvError):
    """Raised when a call against the cloud platform fails.

    Args:
        operation: What was being attempted (e.g. "PUT <resource id>").
        cause: The platform's error payload, reported verbatim.
    """

    def __init__(self, operation: str, cause: str, hint: Optional[str] = None):
        self.operation = operation
        self.cause = scrub_secrets(str(cause))
        super().__init__(f"{operation} failed: {self.cause}", hint=hint)


class ArtifactWriteFailed(LabEnvError):
    """Raised when the environment artifact cannot be written."""


class GrantFailed(LabEnvError):
    """Non-fatal: a role grant for an identity could not be created."""

    fatal = False

    def __init__(self, identity: str, scope: str, role: str, cause: str = ""):
        self.identity = identity
        self.scope = scope
        self.role = role
        detail = f": {cause}" if cause else ""
        super().__init__(
            f"Failed to grant '{role}' to {identity or 'the current user'} on {scope}{detail}",
            hint=(
                f"az role assignment create --assignee \"{identity or '<your-upn>'}\" "
                f"--role \"{role}\" --scope \"{scope}\" (or add it in the Azure Portal)"
            ),
        )


class DownstreamStepFailed(LabEnvError):
    """Non-fatal: the external data-loading step did not succeed."""

    fatal = False
