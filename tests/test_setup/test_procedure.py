"""Tests for the post-provision setup procedure."""
import stat
from unittest.mock import MagicMock, patch

import pytest
from dotenv import dotenv_values

from labenv.errors import AmbiguousResource, MissingResource, PlatformCallFailed, ScopeNotFound
from labenv.manifest.schema import LabSettings
from labenv.platform.base import Principal
from labenv.platform.context import AzureContext
from labenv.setup.artifact import ARTIFACT_KEYS
from labenv.setup.models import StepStatus
from labenv.setup.procedure import SetupProcedure

RG_ID = "/subscriptions/sub-123/resourceGroups/rg-lab511"
STORAGE_ID = f"{RG_ID}/providers/Microsoft.Storage/storageAccounts/st1"
USER = Principal(object_id="user-oid", user_principal_name="user@example.com")


def run_setup(platform, tmp_path, keyless=False, principal=USER, settings=None, **kwargs):
    kwargs.setdefault("skip_data_load", True)
    context = AzureContext("sub-123", "rg-lab511", principal=principal if keyless else None)
    procedure = SetupProcedure(platform, context, settings or LabSettings(), keyless=keyless,
                               workdir=tmp_path, **kwargs)
    return procedure.run()


def read_env(tmp_path, name=".env"):
    return dotenv_values(tmp_path / name)


def test_keyed_setup(lab_platform, tmp_path):
    report = run_setup(lab_platform, tmp_path)

    values = read_env(tmp_path)
    assert list(values) == ARTIFACT_KEYS
    assert values["AZURE_SEARCH_SERVICE_ENDPOINT"] == "https://s1.search.windows.net"
    assert values["AZURE_SEARCH_ADMIN_KEY"] == "search-key-s1"
    assert values["AZURE_OPENAI_ENDPOINT"] == "https://o1.example"
    assert values["AZURE_OPENAI_KEY"] == "key-o1"
    assert values["AI_SERVICES_ENDPOINT"] == "https://a1.example"
    assert values["AI_SERVICES_KEY"] == "key-a1"
    assert values["BLOB_CONNECTION_STRING"] == (
        "DefaultEndpointsProtocol=https;AccountName=st1;AccountKey=storage-key-st1;"
        "EndpointSuffix=core.windows.net"
    )
    assert values["SEARCH_BLOB_DATASOURCE_CONNECTION_STRING"] == values["BLOB_CONNECTION_STRING"]
    assert values["BLOB_RESOURCE_ID"] == ""
    assert values["BLOB_CONTAINER_NAME"] == "documents"
    assert values["AZURE_OPENAI_EMBEDDING_DEPLOYMENT"] == "text-embedding-3-large"
    assert values["AZURE_OPENAI_CHATGPT_MODEL_NAME"] == "gpt-4.1"
    assert values["AZURE_SEARCH_KNOWLEDGE_AGENT"] == "knowledge-base"
    assert values["USE_VERBALIZATION"] == "false"
    assert values["KEYLESS"] == ""

    assert report.success
    assert report.warnings == []
    assert report.artifact_path == tmp_path / ".env"
    assert lab_platform.calls_of("PUT") == []
    assert stat.S_IMODE((tmp_path / ".env").stat().st_mode) == 0o600


def test_keyless_setup(lab_platform, tmp_path):
    report = run_setup(lab_platform, tmp_path, keyless=True)

    values = read_env(tmp_path)
    for key in ("AZURE_SEARCH_ADMIN_KEY", "AZURE_OPENAI_KEY", "AI_SERVICES_KEY",
                "BLOB_CONNECTION_STRING", "SEARCH_BLOB_DATASOURCE_CONNECTION_STRING"):
        assert values[key] == ""
    assert values["BLOB_RESOURCE_ID"] == STORAGE_ID
    assert values["SEARCH_BLOB_DATASOURCE_RESOURCE_ID"] == STORAGE_ID
    assert values["KEYLESS"] == "True"

    # No keys are read in keyless mode
    assert lab_platform.calls_of("POST") == []
    assert len(lab_platform.calls_of("PUT")) == 5
    assert report.warnings == []


def test_keyless_grants_are_idempotent(lab_platform, tmp_path):
    run_setup(lab_platform, tmp_path, keyless=True)
    report = run_setup(lab_platform, tmp_path, keyless=True)

    assert len(lab_platform.calls_of("PUT")) == 5
    grants = [s for s in report.steps if s.step.startswith("grant ")]
    assert len(grants) == 5
    assert all("already has" in s.detail for s in grants)


def test_missing_resource_group(lab_platform, tmp_path):
    lab_platform.resource_groups.clear()

    with pytest.raises(ScopeNotFound) as exc_info:
        run_setup(lab_platform, tmp_path)
    assert "labenv apply -g 'rg-lab511'" in exc_info.value.hint
    assert lab_platform.calls_of("LIST") == []
    assert not (tmp_path / ".env").exists()


def test_missing_resource(lab_platform, tmp_path):
    del lab_platform.resources[f"{RG_ID}/providers/Microsoft.CognitiveServices/accounts/a1".lower()]

    with pytest.raises(MissingResource, match="No AI Services account found"):
        run_setup(lab_platform, tmp_path)
    assert not (tmp_path / ".env").exists()


def test_openai_is_not_mistaken_for_ai_services(lab_platform, tmp_path):
    del lab_platform.resources[f"{RG_ID}/providers/Microsoft.CognitiveServices/accounts/o1".lower()]

    with pytest.raises(MissingResource) as exc_info:
        run_setup(lab_platform, tmp_path)
    assert exc_info.value.kind == "openai"


def test_ambiguous_resource(lab_platform, tmp_path):
    lab_platform.add("rg-lab511", "Microsoft.Search/searchServices", "s2")

    with pytest.raises(AmbiguousResource) as exc_info:
        run_setup(lab_platform, tmp_path)
    assert exc_info.value.candidates == ["s1", "s2"]
    assert "--pin search=<name>" in exc_info.value.hint


def test_pinned_resource(lab_platform, tmp_path):
    lab_platform.add("rg-lab511", "Microsoft.Search/searchServices", "s2")

    run_setup(lab_platform, tmp_path, pins={"search": "s2"})

    assert read_env(tmp_path)["AZURE_SEARCH_SERVICE_ENDPOINT"] == "https://s2.search.windows.net"


def test_pins_from_settings(lab_platform, tmp_path):
    lab_platform.add("rg-lab511", "Microsoft.Storage/storageAccounts", "st2")
    settings = LabSettings.model_validate({"setup": {"pins": {"storage": "st2"}, "envFile": "lab.env"}})

    report = run_setup(lab_platform, tmp_path, settings=settings)

    assert report.resources["storage"].name == "st2"
    assert "AccountName=st2" in read_env(tmp_path, "lab.env")["BLOB_CONNECTION_STRING"]


def test_grant_failure_is_not_fatal(lab_platform, tmp_path):
    lab_platform.fail_on[("PUT", f"{STORAGE_ID}/providers/Microsoft.Authorization")] = "AuthorizationFailed"

    report = run_setup(lab_platform, tmp_path, keyless=True)

    assert report.success
    assert len(report.warnings) == 1
    warning = report.warnings[0]
    assert warning.step == "grant Storage Blob Data Contributor"
    assert "AuthorizationFailed" in warning.detail
    assert 'az role assignment create --assignee "user@example.com"' in warning.hint
    assert (tmp_path / ".env").exists()


def test_existing_assignment_under_other_name(lab_platform, tmp_path):
    lab_platform.fail_on[("PUT", "roleAssignments")] = '{"error": {"code": "RoleAssignmentExists"}}'

    report = run_setup(lab_platform, tmp_path, keyless=True)

    assert report.warnings == []


def test_warning_text_with_brackets_is_printed_verbatim(lab_platform, tmp_path, capsys):
    lab_platform.fail_on[("PUT", f"{STORAGE_ID}/providers/Microsoft.Authorization")] = "Denied[/]:[bold]scope"

    report = run_setup(lab_platform, tmp_path, keyless=True)

    assert len(report.warnings) == 1
    assert "Denied[/]:[bold]scope" in capsys.readouterr().out


def test_unknown_user_skips_grants(lab_platform, tmp_path):
    report = run_setup(lab_platform, tmp_path, keyless=True, principal=None)

    assert len(report.warnings) == 5
    assert lab_platform.calls_of("PUT") == []
    assert read_env(tmp_path)["KEYLESS"] == "True"


def test_key_retrieval_failure_is_fatal(lab_platform, tmp_path):
    lab_platform.fail_on[("POST", "accounts/o1/listKeys")] = "AuthorizationFailed"

    with pytest.raises(PlatformCallFailed, match="AuthorizationFailed"):
        run_setup(lab_platform, tmp_path)
    assert not (tmp_path / ".env").exists()


def test_rerun_replaces_artifact(lab_platform, tmp_path):
    (tmp_path / ".env").write_text("STALE=1\n")

    run_setup(lab_platform, tmp_path)

    assert "STALE" not in read_env(tmp_path)
    assert [p.name for p in tmp_path.iterdir()] == [".env"]


@patch("labenv.setup.loader.subprocess.run")
def test_data_load_failure_is_not_fatal(mock_run, lab_platform, tmp_path):
    mock_run.return_value = MagicMock(returncode=3)
    settings = LabSettings.model_validate({"setup": {"dataLoad": {"command": ["load-data", "--all"]}}})

    report = run_setup(lab_platform, tmp_path, settings=settings, skip_data_load=False)

    assert report.success
    assert len(report.warnings) == 1
    assert "exit code 3" in report.warnings[0].detail
    assert "index-creation.log" in report.warnings[0].hint
    assert (tmp_path / ".env").exists()

    args, kwargs = mock_run.call_args
    assert args[0] == ["load-data", "--all"]
    assert kwargs["env"]["AZURE_SEARCH_ADMIN_KEY"] == "search-key-s1"
    assert kwargs["cwd"] == tmp_path


@patch("labenv.setup.loader.subprocess.run")
def test_data_load_success(mock_run, lab_platform, tmp_path):
    mock_run.return_value = MagicMock(returncode=0)
    settings = LabSettings.model_validate({"setup": {"dataLoad": {"command": ["load-data"]}}})

    report = run_setup(lab_platform, tmp_path, settings=settings, skip_data_load=False)

    assert report.steps[-1].status is StepStatus.OK
    assert (tmp_path / "infra" / "index-creation.log").exists()


def test_missing_data_load_script(lab_platform, tmp_path):
    report = run_setup(lab_platform, tmp_path, skip_data_load=False)

    assert len(report.warnings) == 1
    assert "create-indexes.py not found" in report.warnings[0].detail
