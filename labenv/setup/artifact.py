"""The `.env` environment artifact consumed by the notebooks."""
import os
import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from jinja2 import Environment, FileSystemLoader

from ..errors import ArtifactWriteFailed, InvalidConfiguration, PlatformCallFailed
from ..manifest.schema import SetupSettings
from .models import DiscoveredResource

# Sections and keys, in file order. The key names are an external contract.
SECTIONS: List[Tuple[Optional[str], List[str]]] = [
    ("Azure AI Search Configuration", [
        "AZURE_SEARCH_SERVICE_ENDPOINT",
        "AZURE_SEARCH_ADMIN_KEY",
    ]),
    ("Azure Blob Storage Configuration", [
        "BLOB_CONNECTION_STRING",
        "BLOB_CONTAINER_NAME",
        "SEARCH_BLOB_DATASOURCE_CONNECTION_STRING",
        "BLOB_RESOURCE_ID",
        "SEARCH_BLOB_DATASOURCE_RESOURCE_ID",
    ]),
    ("Azure OpenAI Configuration", [
        "AZURE_OPENAI_ENDPOINT",
        "AZURE_OPENAI_KEY",
        "AZURE_OPENAI_EMBEDDING_DEPLOYMENT",
        "AZURE_OPENAI_EMBEDDING_MODEL_NAME",
        "AZURE_OPENAI_CHATGPT_DEPLOYMENT",
        "AZURE_OPENAI_CHATGPT_MODEL_NAME",
    ]),
    ("Azure AI Services Configuration", [
        "AI_SERVICES_ENDPOINT",
        "AI_SERVICES_KEY",
    ]),
    ("Knowledge Base Configuration", [
        "AZURE_SEARCH_KNOWLEDGE_AGENT",
        "USE_VERBALIZATION",
    ]),
    (None, [
        "KEYLESS",
    ]),
]

ARTIFACT_KEYS: List[str] = [key for _, keys in SECTIONS for key in keys]
SECRET_KEYS: List[str] = [key for key in ARTIFACT_KEYS if key.endswith("_KEY")]


class EnvironmentArtifact:
    """Flat KEY=value mapping written once at the end of setup."""

    def __init__(self, values: Dict[str, str]):
        unknown = set(values) - set(ARTIFACT_KEYS)
        if unknown:
            raise InvalidConfiguration(f"Unknown artifact keys: {', '.join(sorted(unknown))}")
        for key, value in values.items():
            if "\n" in value or "\r" in value:
                raise InvalidConfiguration(f"Value for {key} spans several lines")
        self.values = {key: values.get(key, "") for key in ARTIFACT_KEYS}

    @classmethod
    def build(cls, resources: Dict[str, DiscoveredResource], settings: SetupSettings, keyless: bool,
              secrets: Optional[Dict[str, str]] = None) -> "EnvironmentArtifact":
        """Assemble the artifact from discovered resources.

        Args:
            resources: Discovered resources keyed by kind.
            settings: Static values (container, deployments, flags).
            keyless: Keyless mode; storage is referenced by resource id
                instead of connection string.
            secrets: Keys and connection strings fetched in keyed mode.
        """
        secrets = secrets or {}
        storage = resources["storage"]
        connection_string = "" if keyless else secrets.get("BLOB_CONNECTION_STRING", "")
        storage_id = storage.id if keyless else ""

        return cls({
            "AZURE_SEARCH_SERVICE_ENDPOINT": resources["search"].endpoint,
            "AZURE_SEARCH_ADMIN_KEY": "" if keyless else secrets.get("AZURE_SEARCH_ADMIN_KEY", ""),
            "BLOB_CONNECTION_STRING": connection_string,
            "BLOB_CONTAINER_NAME": settings.container_name,
            "SEARCH_BLOB_DATASOURCE_CONNECTION_STRING": connection_string,
            "BLOB_RESOURCE_ID": storage_id,
            "SEARCH_BLOB_DATASOURCE_RESOURCE_ID": storage_id,
            "AZURE_OPENAI_ENDPOINT": resources["openai"].endpoint,
            "AZURE_OPENAI_KEY": "" if keyless else secrets.get("AZURE_OPENAI_KEY", ""),
            "AZURE_OPENAI_EMBEDDING_DEPLOYMENT": settings.embedding.deployment,
            "AZURE_OPENAI_EMBEDDING_MODEL_NAME": settings.embedding.model,
            "AZURE_OPENAI_CHATGPT_DEPLOYMENT": settings.chat.deployment,
            "AZURE_OPENAI_CHATGPT_MODEL_NAME": settings.chat.model,
            "AI_SERVICES_ENDPOINT": resources["aiservices"].endpoint,
            "AI_SERVICES_KEY": "" if keyless else secrets.get("AI_SERVICES_KEY", ""),
            "AZURE_SEARCH_KNOWLEDGE_AGENT": settings.knowledge_agent,
            "USE_VERBALIZATION": str(settings.use_verbalization).lower(),
            "KEYLESS": "True" if keyless else "",
        })

    def validate(self, keyless: bool) -> None:
        """Check the secret keys agree with the mode.

        Raises:
            InvalidConfiguration: If a keyless artifact carries a key.
            PlatformCallFailed: If a keyed artifact is missing one.
        """
        for key in SECRET_KEYS:
            if keyless and self.values[key]:
                raise InvalidConfiguration(f"{key} must be empty in keyless mode")
            if not keyless and not self.values[key]:
                raise PlatformCallFailed("retrieve keys", f"{key} is empty")

    def render(self) -> str:
        """Render the file content."""
        env = Environment(
            loader=FileSystemLoader(Path(__file__).parent / "templates"),
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True
        )
        template = env.get_template("env.j2")
        return template.render(sections=SECTIONS, values=self.values)

    def write(self, path) -> Path:
        """Write the artifact atomically, replacing any previous file.

        Raises:
            ArtifactWriteFailed: If the file can't be written.
        """
        path = Path(path)
        tmp_path = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
            with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
                f.write(self.render())
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, path)
        except OSError as e:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise ArtifactWriteFailed(f"Could not write environment file {path}: {e.strerror or e}")
        return path
