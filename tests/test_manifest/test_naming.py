"""Tests for resource name normalization."""
import pytest

from labenv.errors import InvalidConfiguration
from labenv.manifest.naming import normalize_name
from labenv.manifest.schema import ResourceKind


def test_storage_name_is_truncated_to_24_characters():
    name = "abcdefghijklmnopqrstuvwxyz0123"

    assert normalize_name(ResourceKind.STORAGE_ACCOUNT, name) == "abcdefghijklmnopqrstuvwx"


def test_storage_name_drops_disallowed_characters():
    assert normalize_name(ResourceKind.STORAGE_ACCOUNT, "St-Lab_511!") == "stlab511"


def test_hyphens_are_collapsed_and_trimmed():
    assert normalize_name(ResourceKind.SEARCH_SERVICE, "My--Search__Svc-") == "my-searchsvc"


def test_deployment_names_keep_case_and_dots():
    assert normalize_name(ResourceKind.MODEL_DEPLOYMENT, "GPT-4.1") == "GPT-4.1"


def test_normalization_is_deterministic():
    first = normalize_name(ResourceKind.COGNITIVE_ACCOUNT, "AOAI Lab 511")
    second = normalize_name(ResourceKind.COGNITIVE_ACCOUNT, "AOAI Lab 511")

    assert first == second == "aoailab511"


def test_too_short_after_normalization():
    with pytest.raises(InvalidConfiguration, match="shorter than 3"):
        normalize_name(ResourceKind.STORAGE_ACCOUNT, "a!")


def test_kinds_without_rule_are_unchanged():
    assert normalize_name(ResourceKind.ROLE_ASSIGNMENT, "Anything_Goes") == "Anything_Goes"
