"""Post-provision setup: discover resources, grant access, write the artifact."""
from pathlib import Path
from typing import Dict, Optional

from rich.console import Console
from rich.markup import escape

from ..errors import ScopeNotFound
from ..manifest.schema import LabSettings
from ..platform.base import Platform
from ..platform.context import AzureContext
from .artifact import EnvironmentArtifact
from .discovery import QUERIES, discover
from .grants import grant_keyless_access
from .keys import cognitive_key, search_admin_key, storage_connection_string
from .loader import run_data_load
from .models import DiscoveredResource, RunReport, StepOutcome, StepStatus

console = Console()


class SetupProcedure:
    """Reconciles access to an already-deployed lab and writes its `.env` file."""

    def __init__(self, platform: Platform, context: AzureContext, settings: LabSettings,
                 keyless: bool = False, env_file: Optional[str] = None, workdir: Optional[Path] = None,
                 skip_data_load: bool = False, pins: Optional[Dict[str, str]] = None, debug: bool = False):
        """Initialize the procedure.

        Args:
            platform: Platform to query and mutate.
            context: Subscription, resource group and signed-in user.
            settings: Setup and timeout settings.
            keyless: Grant roles instead of fetching keys.
            env_file: Artifact path; defaults to settings.setup.env_file.
            workdir: Directory relative paths resolve against.
            skip_data_load: Don't run the data-loading step.
            pins: kind -> name choices, merged over settings.setup.pins.
            debug: If True, print verbose information.
        """
        self.platform = platform
        self.context = context
        self.settings = settings
        self.keyless = keyless
        self.workdir = Path(workdir) if workdir else Path.cwd()
        self.env_file = self.workdir / (env_file or settings.setup.env_file)
        self.skip_data_load = skip_data_load
        self.pins = {**settings.setup.pins, **(pins or {})}
        self.debug = debug

    def _record(self, report: RunReport, outcome: StepOutcome) -> None:
        report.add(outcome)
        if outcome.status is StepStatus.OK:
            console.print(f"[green]✓[/] {escape(outcome.detail)}")
        else:
            console.print(f"[yellow]✗ {escape(outcome.detail)}[/]")
            if outcome.hint:
                console.print(f"  [yellow]{escape(outcome.hint)}[/]")

    def _fetch_keys(self, resource: DiscoveredResource) -> Dict[str, str]:
        if resource.kind == "search":
            return {"AZURE_SEARCH_ADMIN_KEY": search_admin_key(self.platform, resource)}
        if resource.kind == "openai":
            return {"AZURE_OPENAI_KEY": cognitive_key(self.platform, resource)}
        if resource.kind == "aiservices":
            return {"AI_SERVICES_KEY": cognitive_key(self.platform, resource)}
        if resource.kind == "storage":
            return {"BLOB_CONNECTION_STRING": storage_connection_string(self.platform, resource)}
        return {}

    def run(self) -> RunReport:
        """Run the procedure.

        Returns:
            RunReport: Every step's outcome; warnings included.

        Raises:
            ScopeNotFound: If the resource group doesn't exist.
            MissingResource: If a required resource isn't deployed.
            AmbiguousResource: If a kind has several unpinned matches.
            PlatformCallFailed: If key retrieval fails in keyed mode.
            ArtifactWriteFailed: If the artifact can't be written.
        """
        rg = self.context.resource_group
        report = RunReport(resource_group=rg, keyless=self.keyless)

        console.print(f"Checking resource group: {rg}")
        if not self.platform.resource_group_exists(rg):
            raise ScopeNotFound(rg)
        self._record(report, StepOutcome("check resource group", StepStatus.OK, "Resource group found"))

        console.print("\nRetrieving Azure resources...")
        secrets: Dict[str, str] = {}
        for query in QUERIES:
            resource = discover(self.platform, rg, query, self.pins)
            report.resources[query.kind] = resource
            if not self.keyless:
                secrets.update(self._fetch_keys(resource))
            self._record(report, StepOutcome(f"discover {query.kind}", StepStatus.OK,
                                             f"{query.description}: {resource.name}"))

        if self.keyless:
            principal = self.context.principal
            console.print(f"\nGranting {principal.display if principal else 'current user'} keyless access...")
            for outcome in grant_keyless_access(self.platform, self.context, report.resources):
                self._record(report, outcome)

        console.print("\nCreating .env file...")
        artifact = EnvironmentArtifact.build(report.resources, self.settings.setup, self.keyless, secrets)
        artifact.validate(self.keyless)
        report.artifact_path = artifact.write(self.env_file)
        self._record(report, StepOutcome("write artifact", StepStatus.OK,
                                         f"Created .env file at: {report.artifact_path}"))
        console.print("  [yellow]⚠️  SECURITY: Never commit this file to source control![/]")

        if not self.skip_data_load:
            console.print("\nCreating search indexes and uploading data...")
            console.print("  This may take 2-3 minutes...")
            self._record(report, run_data_load(artifact, self.settings.setup.data_load, self.workdir,
                                               debug=self.debug))
        return report
