"""Per-kind resource name normalization."""
import re
from dataclasses import dataclass

from ..errors import InvalidConfiguration
from .schema import ResourceKind


@dataclass(frozen=True)
class NameRule:
    """Length and charset constraints for one resource kind."""
    min_length: int
    max_length: int
    disallowed: str
    lowercase: bool = True
    trim: str = "-"


NAME_RULES = {
    ResourceKind.STORAGE_ACCOUNT: NameRule(3, 24, r"[^a-z0-9]"),
    ResourceKind.BLOB_CONTAINER: NameRule(3, 63, r"[^a-z0-9-]"),
    ResourceKind.SEARCH_SERVICE: NameRule(2, 60, r"[^a-z0-9-]"),
    ResourceKind.COGNITIVE_ACCOUNT: NameRule(2, 64, r"[^a-z0-9-]"),
    ResourceKind.MODEL_DEPLOYMENT: NameRule(2, 64, r"[^A-Za-z0-9._-]", lowercase=False, trim="-."),
}


def normalize_name(kind: ResourceKind, name: str) -> str:
    """Normalize a resource name for a kind before it is submitted.

    Characters outside the kind's charset are dropped, runs of hyphens are
    collapsed, and the result is truncated to the kind's maximum length, so
    the same input always yields the same name.

    Args:
        kind: Resource kind whose rule applies.
        name: Requested name.

    Returns:
        str: The normalized name.

    Raises:
        InvalidConfiguration: If nothing usable is left of the name.
    """
    rule = NAME_RULES.get(kind)
    if rule is None:
        return name

    value = name.lower() if rule.lowercase else name
    value = re.sub(rule.disallowed, "", value)
    value = re.sub(r"-{2,}", "-", value)
    value = value[:rule.max_length].strip(rule.trim)

    if len(value) < rule.min_length:
        raise InvalidConfiguration(
            f"Name '{name}' for {kind.value} normalizes to '{value}', "
            f"which is shorter than {rule.min_length} characters"
        )
    return value
