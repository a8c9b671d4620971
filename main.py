"""labenv CLI entrypoint."""
from pathlib import Path
from typing import Dict, List, NoReturn, Optional

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from labenv.bicep.generator import BicepGenerator
from labenv.errors import LabEnvError, ScopeNotFound
from labenv.graph.resolver import DependencyGraph
from labenv.manifest.naming import normalize_name
from labenv.manifest.parser import ManifestParser
from labenv.manifest.schema import ResourceKind, Timeouts
from labenv.platform.arm import ArmPlatform
from labenv.platform.base import RESOURCES_API_VERSION, Platform
from labenv.platform.context import default_subscription, resolve_context
from labenv.reconcile.models import ReconcileReport, ReconcileStatus
from labenv.reconcile.reconciler import ResourceReconciler
from labenv.setup.models import RunReport, StepStatus
from labenv.setup.procedure import SetupProcedure

app = typer.Typer(help="labenv - provision the knowledge-base lab and write its .env file")
console = Console()


def build_platform(subscription: Optional[str], timeouts: Timeouts, debug: bool = False) -> Platform:
    """Create the platform for a subscription (the CLI default when not configured)."""
    subscription_id = subscription or default_subscription(timeout=timeouts.call, debug=debug)
    return ArmPlatform(subscription_id, timeouts=timeouts, debug=debug)


def _fail(error: LabEnvError) -> NoReturn:
    console.print(f"[bold red]✗ {escape(str(error))}[/]")
    if error.hint:
        console.print(f"  [yellow]{escape(error.hint)}[/]")
    raise typer.Exit(code=error.exit_code)


def _fail_config(error: Exception) -> NoReturn:
    console.print(f"[bold red]Error: invalid configuration: {escape(str(error))}[/]")
    raise typer.Exit(code=1)


def _parse_pins(pins: Optional[List[str]]) -> Dict[str, str]:
    parsed = {}
    for pin in pins or []:
        kind, sep, name = pin.partition("=")
        if not sep or not kind or not name:
            raise typer.BadParameter(f"expected kind=name, got '{pin}'", param_hint="--pin")
        parsed[kind.strip()] = name.strip()
    return parsed


def _print_setup_summary(report: RunReport) -> None:
    table = Table(title="Setup Summary")
    table.add_column("Step", style="cyan")
    table.add_column("Status")
    table.add_column("Detail")

    for step in report.steps:
        status = {
            StepStatus.OK: "[green]✓ OK[/]",
            StepStatus.WARNING: "[yellow]⚠ WARNING[/]",
            StepStatus.FAILED: "[red]✗ FAILED[/]",
        }[step.status]
        table.add_row(escape(step.step), status, escape(step.detail))
    console.print(table)

    console.print("")
    console.print("========================================")
    console.print("Setup Complete!")
    console.print("========================================")
    if report.warnings:
        console.print(f"[yellow]{len(report.warnings)} step(s) need attention; see the hints above.[/]")
    console.print("")
    console.print("Your environment is ready! Next steps:")
    console.print("  1. Navigate to the notebooks folder and open it in VS Code")
    console.print("  2. Select the Python interpreter of your virtual environment")
    console.print("  3. Open and run the notebooks in order")
    console.print("")
    console.print(f"Environment file: {report.artifact_path}")


def _print_reconcile_report(report: ReconcileReport) -> None:
    table = Table(title="Reconcile Results")
    table.add_column("Resource", style="cyan")
    table.add_column("Status")
    table.add_column("Resource ID / Error")

    for name in report.order:
        outcome = report.outcomes.get(name)
        if outcome is None:
            continue
        style = {
            ReconcileStatus.CREATED: "green",
            ReconcileStatus.UPDATED: "green",
            ReconcileStatus.UNCHANGED: "cyan",
            ReconcileStatus.FAILED: "red",
            ReconcileStatus.SKIPPED: "yellow",
        }[outcome.status]
        detail = escape(str(outcome.error)) if outcome.error else outcome.resource_id
        table.add_row(name, f"[{style}]{outcome.status.value}[/]", detail)
    console.print(table)
    console.print(report.summary())


@app.command("setup")
def setup(
    resource_group: str = typer.Option(..., "--resource-group", "-g", help="Resource group name"),
    keyless: bool = typer.Option(False, "--keyless", "-k",
                                 help="Use role-based access control for the current user instead of keys"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to the lab YAML file (optional)"),
    env_file: Optional[str] = typer.Option(None, "--env-file", "-e", help="Where to write the .env file"),
    pin: Optional[List[str]] = typer.Option(None, "--pin",
                                            help="Choose a resource when several match, e.g. search=my-search"),
    skip_data_load: bool = typer.Option(False, "--skip-data-load", help="Don't create indexes or upload data"),
    debug: bool = typer.Option(False, "--debug", help="Print verbose debug information including all requests")
):
    """Discover the deployed lab resources and write the .env file."""
    console.print("========================================")
    console.print("Lab Environment Setup")
    console.print("========================================")
    if keyless:
        console.print("Using keyless authentication, using Managed Identities and role-based access control instead of keys.")

    pins = _parse_pins(pin)
    try:
        settings = ManifestParser.load_settings(config)
    except (FileNotFoundError, yaml.YAMLError, ValidationError) as e:
        _fail_config(e)

    try:
        platform = build_platform(settings.subscription, settings.timeouts, debug)
        context = resolve_context(platform, resource_group, with_principal=keyless)
        procedure = SetupProcedure(
            platform,
            context,
            settings,
            keyless=keyless,
            env_file=env_file,
            skip_data_load=skip_data_load,
            pins=pins,
            debug=debug
        )
        report = procedure.run()
    except LabEnvError as e:
        _fail(e)

    _print_setup_summary(report)


@app.command("plan")
def plan(
    config: str = typer.Option("lab.yaml", "--config", "-c", help="Path to the lab YAML file")
):
    """Show the order resources will be reconciled in, without calling Azure."""
    try:
        manifest = ManifestParser.load(config)
        ordered = DependencyGraph(manifest.resources).order()
    except LabEnvError as e:
        _fail(e)
    except (FileNotFoundError, yaml.YAMLError, ValidationError) as e:
        _fail_config(e)

    graph = DependencyGraph(manifest.resources)
    table = Table(title=f"Reconcile Plan: {manifest.metadata.name}")
    table.add_column("#", justify="right")
    table.add_column("Resource", style="cyan")
    table.add_column("Kind")
    table.add_column("Name")
    table.add_column("Depends On")

    for index, spec in enumerate(ordered, 1):
        kind = spec.kind.value + (f" ({spec.variant.value})" if spec.variant else "")
        name = "(derived)" if spec.kind is ResourceKind.ROLE_ASSIGNMENT else normalize_name(spec.kind, spec.name)
        table.add_row(str(index), spec.logical_name, kind, name, ", ".join(graph.dependencies(spec.logical_name)))
    console.print(table)


@app.command("apply")
def apply(
    config: str = typer.Option("lab.yaml", "--config", "-c", help="Path to the lab YAML file"),
    resource_group: Optional[str] = typer.Option(None, "--resource-group", "-g",
                                                 help="Override the resource group from the config"),
    workers: int = typer.Option(1, "--workers", "-w", min=1,
                                help="Reconcile independent resources concurrently"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Overall timeout in seconds"),
    debug: bool = typer.Option(False, "--debug", help="Print verbose debug information including all requests")
):
    """Create or update every declared resource, dependencies first."""
    console.print("[bold blue]Reconciling resources...[/]")

    try:
        manifest = ManifestParser.load(config)
    except LabEnvError as e:
        _fail(e)
    except (FileNotFoundError, yaml.YAMLError, ValidationError) as e:
        _fail_config(e)

    rg = resource_group or manifest.resource_group.name
    try:
        platform = build_platform(manifest.subscription, manifest.timeouts, debug)
        context = resolve_context(platform, rg, with_principal=False)
        reconciler = ResourceReconciler(platform, context, manifest, workers=workers, timeout=timeout, debug=debug)

        # Structural errors surface here, before anything is created
        reconciler.plan()

        if not platform.resource_group_exists(rg):
            if not manifest.location:
                raise ScopeNotFound(rg)
            console.print(f"[yellow]Creating resource group {rg} in {manifest.location}...[/]")
            platform.put_resource(context.scope, RESOURCES_API_VERSION,
                                  {"location": manifest.location, "tags": manifest.tags})

        report = reconciler.reconcile_all()
    except LabEnvError as e:
        _fail(e)

    _print_reconcile_report(report)
    if not report.success:
        for error in report.errors:
            console.print(f"[bold red]✗ {escape(str(error))}[/]")
        raise typer.Exit(code=1)
    console.print("\n[green]All resources reconciled.[/]")


@app.command("generate")
def generate(
    config: str = typer.Option("lab.yaml", "--config", "-c", help="Path to the lab YAML file"),
    output_dir: Optional[str] = typer.Option(None, "--output-dir", "-o", help="Directory for the generated Bicep file"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing main.bicep"),
    debug: bool = typer.Option(False, "--debug", help="Print the generated Bicep")
):
    """Generate a Bicep template from the lab YAML file."""
    console.print("[bold blue]Generating Bicep file...[/]")

    output_path = Path(output_dir) if output_dir else Path(config).parent
    main_bicep_path = output_path / "main.bicep"
    if main_bicep_path.exists() and not force:
        console.print(f"[bold yellow]WARNING: Bicep file already exists: {main_bicep_path}[/]")
        console.print("[yellow]Use --force to overwrite existing files.[/]")
        raise typer.Exit(code=1)

    try:
        generator = BicepGenerator(config, output_dir, debug=debug)
        bicep_path = generator.generate()
    except LabEnvError as e:
        _fail(e)
    except (FileNotFoundError, yaml.YAMLError, ValidationError) as e:
        _fail_config(e)

    console.print(f"[green]Bicep template generated at {bicep_path}[/]")

    if debug:
        console.print("\n[bold blue]Generated Bicep Template:[/]")
        console.print(Path(bicep_path).read_text(), markup=False)


if __name__ == "__main__":
    app()
