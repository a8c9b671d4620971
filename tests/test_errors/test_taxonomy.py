"""Tests for the error taxonomy."""
from labenv.errors import (DownstreamStepFailed, GrantFailed, LabEnvError, MissingResource, PlatformCallFailed,
                           scrub_secrets)
from labenv.setup.models import StepOutcome, StepStatus


def test_secrets_are_masked():
    text = 'DefaultEndpointsProtocol=https;AccountName=st1;AccountKey=abc123==;EndpointSuffix=core.windows.net'

    assert scrub_secrets(text) == (
        "DefaultEndpointsProtocol=https;AccountName=st1;AccountKey=***;EndpointSuffix=core.windows.net"
    )
    assert scrub_secrets('{"key1": "secret", "key2": "other"}') == '{"key1": "***", "key2": "***"}'


def test_platform_errors_never_echo_keys():
    error = PlatformCallFailed("listKeys on st1", '{"keys": [{"value": "topsecret"}]}')

    assert "topsecret" not in str(error)
    assert "topsecret" not in error.cause
    assert "listKeys on st1 failed" in str(error)


def test_every_error_exits_with_one():
    errors = [
        MissingResource("search", "rg"),
        PlatformCallFailed("PUT x", "boom"),
        GrantFailed("user@example.com", "/scope", "Contributor"),
    ]

    assert all(isinstance(e, LabEnvError) and e.exit_code == 1 for e in errors)


def test_non_fatal_errors_become_warnings():
    grant = StepOutcome.from_error("grant", GrantFailed("", "/scope", "Contributor", "denied"))
    load = StepOutcome.from_error("load", DownstreamStepFailed("exit code 1", hint="see log"))
    missing = StepOutcome.from_error("discover", MissingResource("search", "rg"))

    assert grant.status is StepStatus.WARNING
    assert "the current user" in grant.detail
    assert load.status is StepStatus.WARNING
    assert load.hint == "see log"
    assert missing.status is StepStatus.FAILED
