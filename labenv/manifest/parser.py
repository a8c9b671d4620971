"""YAML declaration parser."""
from pathlib import Path
from typing import Optional

import yaml

from .schema import LabSettings, Manifest
from .validation import validate_manifest


class ManifestParser:
    """Parser for YAML lab declarations."""

    @staticmethod
    def load(file_path: str) -> Manifest:
        """Load and validate a YAML declaration file.

        Args:
            file_path: Path to the YAML declaration.

        Returns:
            Manifest: Validated declaration.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            ValidationError: If the document doesn't match the schema.
            InvalidConfiguration: If the declaration is inconsistent.
            yaml.YAMLError: If the YAML is malformed.
        """
        with open(file_path, 'r') as f:
            data = yaml.safe_load(f)
        manifest = Manifest.model_validate(data)
        validate_manifest(manifest)
        return manifest

    @staticmethod
    def load_settings(file_path: Optional[str] = None) -> LabSettings:
        """Load only the setup and timeout settings.

        The resource list is ignored, so a settings-only file is valid. With
        no path, the defaults are returned.
        """
        if not file_path:
            return LabSettings()
        data = yaml.safe_load(Path(file_path).read_text()) or {}
        return LabSettings.model_validate(
            {k: v for k, v in data.items() if k in ("subscription", "setup", "timeouts")}
        )
