"""Realizes a declaration against the platform in dependency order."""
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from typing import Any, Dict, List, Optional, Set

from rich.console import Console
from rich.markup import escape

from ..errors import InvalidConfiguration, LabEnvError, PlatformCallFailed
from ..graph.resolver import DependencyGraph
from ..manifest.schema import Manifest, OutputRef, ResourceKind, ResourceSpec
from ..manifest.validation import validate_manifest
from ..platform.base import Platform, provisioning_state
from ..platform.context import AzureContext
from .builders import get_builder
from .models import DeploymentOutput, ReconcileOutcome, ReconcileReport, ReconcileStatus

console = Console()

STATUS_STYLES = {
    ReconcileStatus.CREATED: "[green]✓[/]",
    ReconcileStatus.UPDATED: "[green]✓[/]",
    ReconcileStatus.UNCHANGED: "[cyan]=[/]",
    ReconcileStatus.FAILED: "[red]✗[/]",
    ReconcileStatus.SKIPPED: "[yellow]-[/]",
}


def resolve_refs(value: Any, outputs: Dict[str, DeploymentOutput]) -> Any:
    """Substitute OutputRef values with the referenced outputs.

    Raises:
        InvalidConfiguration: If a referenced output is empty after realization.
    """
    if isinstance(value, OutputRef):
        resolved = outputs[value.ref].get(value.output)
        if not resolved:
            raise InvalidConfiguration(f"Output {value} is empty after '{value.ref}' was realized")
        return resolved
    if isinstance(value, dict):
        return {k: resolve_refs(v, outputs) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_refs(v, outputs) for v in value]
    return value


def _same(desired: Any, actual: Any, key: str = "") -> bool:
    if isinstance(desired, str) and isinstance(actual, str):
        if key == "location":
            return desired.replace(" ", "").lower() == actual.replace(" ", "").lower()
        return desired.lower() == actual.lower()
    return desired == actual


def matches(desired: Any, actual: Any, key: str = "") -> bool:
    """True if every field of `desired` is present in `actual` with the same value.

    Fields only the platform sets (ids, timestamps, identities' principal ids)
    are ignored.
    """
    if isinstance(desired, dict):
        if not isinstance(actual, dict):
            return False
        return all(k in actual and matches(v, actual[k], k) for k, v in desired.items())
    if isinstance(desired, list):
        if not isinstance(actual, list) or len(desired) != len(actual):
            return False
        return all(matches(d, a, key) for d, a in zip(desired, actual))
    return _same(desired, actual, key)


class ResourceReconciler:
    """Creates or updates every declared resource, dependencies first."""

    def __init__(self, platform: Platform, context: AzureContext, manifest: Manifest,
                 workers: int = 1, timeout: Optional[float] = None, debug: bool = False):
        """Initialize the reconciler.

        Args:
            platform: Platform to realize resources against.
            context: Subscription and resource group.
            manifest: The declaration.
            workers: Specs reconciled at once. 1 runs strictly in order and
                stops at the first failure; more reconciles independent
                branches concurrently and collects every failure.
            timeout: Overall deadline in seconds for the pass.
            debug: If True, print verbose progress.
        """
        self.platform = platform
        self.context = context
        self.manifest = manifest
        self.workers = max(1, workers)
        self.timeout = timeout if timeout is not None else manifest.timeouts.overall
        self.debug = debug

    def plan(self) -> List[ResourceSpec]:
        """Validate the declaration and compute the creation order.

        No platform call is made.

        Raises:
            InvalidConfiguration: If the declaration is invalid.
            CyclicDependency: If the dependency graph has a cycle.
        """
        validate_manifest(self.manifest)
        return DependencyGraph(self.manifest.resources).order()

    def reconcile(self, spec: ResourceSpec, outputs: Dict[str, DeploymentOutput],
                  deadline: Optional[float] = None) -> ReconcileOutcome:
        """Realize one spec.

        Args:
            spec: Spec to realize.
            outputs: Outputs of all its dependencies.
            deadline: time.monotonic() value bounding provisioning waits.

        Returns:
            ReconcileOutcome: Created, updated or unchanged, with the output.

        Raises:
            LabEnvError: If resolution or a platform call fails.
        """
        builder = get_builder(spec.kind)
        properties = resolve_refs(spec.properties, outputs)
        request = builder.build(spec, properties, self.manifest, self.context, outputs)

        existing = self.platform.get_resource(request.resource_id, request.api_version)
        if (existing is not None
                and provisioning_state(existing).lower() == "succeeded"
                and matches(request.body, existing)):
            return ReconcileOutcome(
                logical_name=spec.logical_name,
                status=ReconcileStatus.UNCHANGED,
                resource_id=request.resource_id,
                output=builder.output(request, existing)
            )

        if self.debug:
            console.print(f"[dim]Debug: PUT {request.resource_id}[/]")
        try:
            payload = self.platform.put_resource(request.resource_id, request.api_version, request.body, deadline)
        except PlatformCallFailed as e:
            # Same grant created under another name, e.g. by a Bicep guid()
            if spec.kind is ResourceKind.ROLE_ASSIGNMENT and "RoleAssignmentExists" in e.cause:
                return ReconcileOutcome(
                    logical_name=spec.logical_name,
                    status=ReconcileStatus.UNCHANGED,
                    resource_id=request.resource_id,
                    output=builder.output(request, {})
                )
            raise
        return ReconcileOutcome(
            logical_name=spec.logical_name,
            status=ReconcileStatus.CREATED if existing is None else ReconcileStatus.UPDATED,
            resource_id=request.resource_id,
            output=builder.output(request, payload)
        )

    def reconcile_all(self) -> ReconcileReport:
        """Reconcile the whole declaration.

        Structural errors are raised before any call. Platform failures are
        recorded in the report; nothing already created is rolled back.

        Returns:
            ReconcileReport: Outcome per spec.
        """
        order = self.plan()
        graph = DependencyGraph(self.manifest.resources)
        report = ReconcileReport(order=[spec.logical_name for spec in order])
        deadline = time.monotonic() + self.timeout

        if self.workers == 1:
            self._run_sequential(order, report, deadline)
        else:
            self._run_pool(order, graph, report, deadline)
        return report

    def _attempt(self, spec: ResourceSpec, outputs: Dict[str, DeploymentOutput],
                 deadline: float) -> ReconcileOutcome:
        try:
            outcome = self.reconcile(spec, outputs, deadline)
        except LabEnvError as e:
            outcome = ReconcileOutcome(spec.logical_name, ReconcileStatus.FAILED, error=e)
        self._print(outcome)
        return outcome

    def _print(self, outcome: ReconcileOutcome) -> None:
        line = f"{STATUS_STYLES[outcome.status]} {outcome.logical_name}: {outcome.status.value}"
        if outcome.error is not None:
            line += f" [red]({escape(str(outcome.error))})[/]"
        console.print(line)

    def _skip(self, names: List[str], report: ReconcileReport) -> None:
        for name in names:
            if name not in report.outcomes:
                report.outcomes[name] = ReconcileOutcome(name, ReconcileStatus.SKIPPED)

    def _deadline_error(self) -> PlatformCallFailed:
        return PlatformCallFailed("reconcile", f"overall timeout of {self.timeout}s exceeded")

    def _run_sequential(self, order: List[ResourceSpec], report: ReconcileReport, deadline: float) -> None:
        outputs: Dict[str, DeploymentOutput] = {}
        names = [spec.logical_name for spec in order]

        for index, spec in enumerate(order):
            if time.monotonic() >= deadline:
                report.errors.append(self._deadline_error())
                self._skip(names[index:], report)
                return

            outcome = self._attempt(spec, outputs, deadline)
            report.outcomes[spec.logical_name] = outcome
            if outcome.status is ReconcileStatus.FAILED:
                report.errors.append(outcome.error)
                self._skip(names[index + 1:], report)
                return
            outputs[spec.logical_name] = outcome.output

    def _run_pool(self, order: List[ResourceSpec], graph: DependencyGraph,
                  report: ReconcileReport, deadline: float) -> None:
        outputs: Dict[str, DeploymentOutput] = {}
        waiting_on: Dict[str, Set[str]] = {spec.logical_name: set(graph.dependencies(spec.logical_name))
                                           for spec in order}
        pending = list(order)
        running = {}
        expired = False

        def launch_ready(pool: ThreadPoolExecutor) -> None:
            nonlocal expired
            if expired:
                return
            if time.monotonic() >= deadline:
                expired = True
                report.errors.append(self._deadline_error())
                return
            for spec in list(pending):
                if not waiting_on[spec.logical_name]:
                    pending.remove(spec)
                    future = pool.submit(self._attempt, spec, dict(outputs), deadline)
                    running[future] = spec.logical_name

        def skip_dependents(name: str) -> None:
            queue = graph.dependents(name)
            while queue:
                dependent = queue.pop(0)
                if dependent in report.outcomes:
                    continue
                report.outcomes[dependent] = ReconcileOutcome(dependent, ReconcileStatus.SKIPPED)
                pending[:] = [s for s in pending if s.logical_name != dependent]
                queue.extend(graph.dependents(dependent))

        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            launch_ready(pool)
            while running:
                remaining = None if expired else max(0.0, deadline - time.monotonic())
                done, _ = wait(list(running), timeout=remaining, return_when=FIRST_COMPLETED)
                if not done:
                    # Let in-flight calls finish; start nothing new
                    expired = True
                    report.errors.append(self._deadline_error())
                    continue

                for future in done:
                    name = running.pop(future)
                    outcome = future.result()
                    report.outcomes[name] = outcome
                    if outcome.status is ReconcileStatus.FAILED:
                        report.errors.append(outcome.error)
                        skip_dependents(name)
                        continue
                    outputs[name] = outcome.output
                    for dependent in graph.dependents(name):
                        waiting_on[dependent].discard(name)

                launch_ready(pool)

        self._skip([spec.logical_name for spec in pending], report)
