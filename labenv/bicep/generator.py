"""Bicep template generator."""
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from jinja2 import Environment, FileSystemLoader

from ..graph.resolver import DependencyGraph
from ..manifest.naming import normalize_name
from ..manifest.parser import ManifestParser
from ..manifest.schema import Manifest, OutputRef, ResourceKind, ResourceSpec
from ..manifest.validation import NETWORK_FACING
from ..reconcile.builders import get_builder
from ..roles import ROLE_ASSIGNMENT_TYPE, role_guid

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def symbol(logical_name: str) -> str:
    """Bicep symbolic name for a logical name."""
    value = re.sub(r"[^A-Za-z0-9_]", "_", logical_name)
    return value if _IDENTIFIER.match(value) else f"r_{value}"


def bicep_string(value: str) -> str:
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


class BicepGenerator:
    """Generates a resource-group scoped Bicep template from a declaration."""

    def __init__(self, manifest_path: str, output_dir: Optional[str] = None, debug: bool = False):
        """Initialize the generator.

        Args:
            manifest_path: Path to the YAML declaration.
            output_dir: Directory for main.bicep; defaults to the declaration's directory.
            debug: If True, print verbose debug information.
        """
        self.manifest_path = manifest_path
        self.manifest: Manifest = ManifestParser.load(manifest_path)
        self.output_dir = Path(output_dir) if output_dir else Path(manifest_path).parent
        self.debug = debug
        self.specs: Dict[str, ResourceSpec] = {s.logical_name: s for s in self.manifest.resources}

        template_dir = Path(__file__).parent / "templates"
        self.jinja_env = Environment(
            loader=FileSystemLoader(template_dir),
            trim_blocks=True,
            lstrip_blocks=True
        )

    def generate(self) -> str:
        """Write main.bicep.

        Returns:
            str: Path of the generated file.

        Raises:
            CyclicDependency: If the declaration has a cycle.
        """
        self.output_dir.mkdir(parents=True, exist_ok=True)
        bicep_path = self.output_dir / "main.bicep"
        bicep_path.write_text(self.render())

        if self.debug:
            print(f"Debug: Bicep file written to {bicep_path}")

        return str(bicep_path)

    def render(self) -> str:
        """Render the template content."""
        ordered = DependencyGraph(self.manifest.resources).order()
        template = self.jinja_env.get_template("main.bicep.j2")
        return template.render(
            source=Path(self.manifest_path).name,
            metadata=self.manifest.metadata,
            location=self.manifest.location,
            tags=self.value(self.manifest.tags, 0),
            resources=[self._resource(spec) for spec in ordered],
            outputs=self._outputs(ordered)
        )

    def reference(self, ref: OutputRef) -> str:
        """Bicep expression for an output reference."""
        target = self.specs[ref.ref]
        sym = symbol(ref.ref)
        if ref.output == "principalId":
            return f"{sym}.identity.principalId"
        if ref.output == "endpoint":
            return self._endpoint(target)
        return f"{sym}.{ref.output}"

    def value(self, value: Any, indent: int) -> str:
        """Render a property value as a Bicep literal or expression."""
        pad = "  " * indent
        if isinstance(value, OutputRef):
            return self.reference(value)
        if isinstance(value, bool):
            return str(value).lower()
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, str):
            return bicep_string(value)
        if isinstance(value, dict):
            if not value:
                return "{}"
            lines = ["{"]
            for k, v in value.items():
                key = k if _IDENTIFIER.match(k) else bicep_string(k)
                lines.append(f"{pad}  {key}: {self.value(v, indent + 1)}")
            lines.append(f"{pad}}}")
            return "\n".join(lines)
        if isinstance(value, list):
            if not value:
                return "[]"
            lines = ["["]
            lines.extend(f"{pad}  {self.value(v, indent + 1)}" for v in value)
            lines.append(f"{pad}]")
            return "\n".join(lines)
        if value is None:
            return "null"
        return bicep_string(str(value))

    def _endpoint(self, spec: ResourceSpec) -> str:
        sym = symbol(spec.logical_name)
        if spec.kind is ResourceKind.SEARCH_SERVICE:
            return f"'https://${{{sym}.name}}.search.windows.net'"
        if spec.kind is ResourceKind.STORAGE_ACCOUNT:
            return f"{sym}.properties.primaryEndpoints.blob"
        return f"{sym}.properties.endpoint"

    def _body(self, entries: Dict[str, Any]) -> str:
        return "\n".join(
            f"  {key}: {value if isinstance(value, _Raw) else self.value(value, 1)}"
            for key, value in entries.items()
        )

    def _resource(self, spec: ResourceSpec) -> Dict[str, str]:
        if spec.kind is ResourceKind.ROLE_ASSIGNMENT:
            return self._role_assignment(spec)

        builder = get_builder(spec.kind)
        name = normalize_name(spec.kind, spec.name)
        entries: Dict[str, Any] = {}

        if spec.kind is ResourceKind.BLOB_CONTAINER:
            entries["name"] = _Raw(f"'${{{symbol(spec.parent)}.name}}/default/{name}'")
        else:
            entries["name"] = name
        if spec.kind is ResourceKind.MODEL_DEPLOYMENT:
            entries["parent"] = _Raw(symbol(spec.parent))

        if spec.kind not in (ResourceKind.BLOB_CONTAINER, ResourceKind.MODEL_DEPLOYMENT):
            location = spec.location or self.manifest.location
            entries["location"] = _Raw("location") if location == self.manifest.location else location
            entries["tags"] = _Raw("tags") if not spec.tags else _Raw(
                f"union(tags, {self.value(spec.tags, 1)})"
            )

        # Reuse the ARM body so the template and the reconciler agree
        body = builder.body(spec, spec.properties, self.manifest)
        for key in ("sku", "kind", "identity", "properties"):
            if key in body:
                entries[key] = body[key]

        depends_on = [symbol(d) for d in spec.depends_on]
        if depends_on:
            entries["dependsOn"] = _Raw("[\n" + "\n".join(f"    {d}" for d in depends_on) + "\n  ]")

        return {
            "symbol": symbol(spec.logical_name),
            "type": builder.resource_type,
            "api_version": builder.api_version,
            "body": self._body(entries)
        }

    def _role_assignment(self, spec: ResourceSpec) -> Dict[str, str]:
        props = spec.properties
        scope = props["scope"]
        principal = self.value(props["principalId"], 1)
        role_definition = (
            f"subscriptionResourceId('Microsoft.Authorization/roleDefinitions', '{role_guid(props['role'])}')"
        )
        scope_id = self.reference(scope) if isinstance(scope, OutputRef) else "resourceGroup().id"

        entries: Dict[str, Any] = {
            "name": _Raw(f"guid({scope_id}, {principal}, {role_definition})")
        }
        if isinstance(scope, OutputRef):
            entries["scope"] = _Raw(symbol(scope.ref))
        entries["properties"] = _Raw(
            "{\n"
            f"    roleDefinitionId: {role_definition}\n"
            f"    principalId: {principal}\n"
            f"    principalType: '{props.get('principalType', 'ServicePrincipal')}'\n"
            "  }"
        )
        depends_on = [symbol(d) for d in spec.depends_on]
        if depends_on:
            entries["dependsOn"] = _Raw("[\n" + "\n".join(f"    {d}" for d in depends_on) + "\n  ]")

        return {
            "symbol": symbol(spec.logical_name),
            "type": ROLE_ASSIGNMENT_TYPE,
            "api_version": get_builder(spec.kind).api_version,
            "body": self._body(entries)
        }

    def _outputs(self, ordered: List[ResourceSpec]) -> List[Dict[str, str]]:
        return [
            {"name": f"{symbol(spec.logical_name)}Endpoint", "expr": self._endpoint(spec)}
            for spec in ordered
            if spec.kind in NETWORK_FACING
        ]


class _Raw(str):
    """A pre-rendered Bicep expression, emitted as-is."""
