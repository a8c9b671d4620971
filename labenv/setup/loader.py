"""Runs the external data-loading step after the artifact is written."""
import os
import subprocess
import sys
from pathlib import Path

from rich.console import Console

from ..errors import DownstreamStepFailed
from ..manifest.schema import DataLoadSettings
from .artifact import EnvironmentArtifact
from .models import StepOutcome, StepStatus

DEFAULT_SCRIPT = "infra/deploy-yourself/create-indexes.py"
STEP = "create search indexes and upload data"

console = Console()


def run_data_load(artifact: EnvironmentArtifact, settings: DataLoadSettings, workdir: Path,
                  debug: bool = False) -> StepOutcome:
    """Run the data-loading collaborator with the artifact in its environment.

    Output goes to the configured log file. Every failure is reported as a
    warning; the artifact is already usable without indexes.

    Args:
        artifact: The written environment artifact.
        settings: Command, log file and timeout.
        workdir: Working directory; relative paths resolve against it.
        debug: If True, print the command.

    Returns:
        StepOutcome: OK, or a warning pointing at the log file.
    """
    log_path = workdir / settings.log_file
    hint = f"Check the log file for details: {log_path}"

    if settings.command:
        cmd = list(settings.command)
    else:
        script = workdir / DEFAULT_SCRIPT
        if not script.exists():
            error = DownstreamStepFailed(
                f"create-indexes.py not found at: {script}",
                hint="Set setup.dataLoad.command in the config file or create the indexes manually"
            )
            return StepOutcome.from_error(STEP, error)
        cmd = [sys.executable, str(script)]

    if debug:
        console.print(f"[dim]Debug: Running command: {' '.join(cmd)}[/]")

    env = {**os.environ, **artifact.values}
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(log_path, "a", encoding="utf-8") as log:
            result = subprocess.run(
                cmd,
                cwd=workdir,
                env=env,
                stdout=log,
                stderr=subprocess.STDOUT,
                timeout=settings.timeout
            )
    except subprocess.TimeoutExpired:
        error = DownstreamStepFailed(f"Data load did not finish within {settings.timeout}s", hint=hint)
        return StepOutcome.from_error(STEP, error)
    except OSError as e:
        error = DownstreamStepFailed(f"Could not run data load: {e.strerror or e}", hint=hint)
        return StepOutcome.from_error(STEP, error)

    if result.returncode != 0:
        error = DownstreamStepFailed(
            f"Failed to create indexes or upload data (exit code {result.returncode})", hint=hint
        )
        return StepOutcome.from_error(STEP, error)
    return StepOutcome(STEP, StepStatus.OK, "Indexes created and data uploaded")
