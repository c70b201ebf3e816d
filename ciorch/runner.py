"""
Step runner for ciorch.

Maps a step to its recipe, runs it under the process supervisor and
wraps the verdict with timing and log-path metadata. Every call returns
a StepResult; failures to open logs or start programs become ERROR
results instead of exceptions.
"""

import dataclasses
import logging
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO, List, Optional, Tuple, Union

from ciorch.arbiter import arbitrate
from ciorch.config import OrchestratorConfig
from ciorch.errors import LogOpenError, SpawnError
from ciorch.steps import RecipeKind, Status, Step, StepRecipe, parse_step
from ciorch.supervisor import ProcessSupervisor
from ciorch.utils import elapsed_ms

logger = logging.getLogger(__name__)

PREFLIGHT_COMMAND_TIMEOUT = 60


@dataclass(frozen=True)
class StepResult:
    """Outcome of one step invocation."""

    step: str
    status: Status
    reason: str
    duration_ms: int = 0
    log_path: str = ""
    command: str = ""

    def summary_line(self) -> str:
        """Line printed to stdout for this step."""
        return (
            f"{self.status.value}: {self.step} {self.reason} "
            f"duration_ms={self.duration_ms} log={self.log_path}"
        )


def open_step_log(path: Path, fallback_path: Path) -> Tuple[IO[str], Path]:
    """
    Open a step log for writing, falling back to a shared log.

    Args:
        path: Primary log path; parent directories are created
        fallback_path: Used when the primary cannot be opened

    Returns:
        (open file, effective path)

    Raises:
        LogOpenError: If neither location can be opened
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        return open(path, "w"), path
    except OSError as primary_error:
        logger.warning(
            f"Could not open step log {path}: {primary_error}; using {fallback_path}",
            extra={"event": "log_fallback", "metadata": {"path": str(path)}},
        )
        try:
            fallback_path.parent.mkdir(parents=True, exist_ok=True)
            return open(fallback_path, "w"), fallback_path
        except OSError as fallback_error:
            raise LogOpenError(fallback_path, primary_error, fallback_error) from fallback_error


def command_available(cmd: List[str], cwd: Optional[Path] = None) -> bool:
    """Check that a probe command runs and exits 0."""
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=PREFLIGHT_COMMAND_TIMEOUT,
        )
    except (OSError, subprocess.TimeoutExpired):
        return False
    return result.returncode == 0


class StepRunner:
    """Runs individual steps."""

    def __init__(self, config: OrchestratorConfig, supervisor: Optional[ProcessSupervisor] = None):
        self.config = config
        self.supervisor = supervisor or ProcessSupervisor(grace_seconds=config.grace_seconds)

    def run(self, step: Union[Step, str], timebox_seconds: float, run_root: Path) -> StepResult:
        """
        Run one step.

        Args:
            step: Step, or a step name (unknown names yield ERROR)
            timebox_seconds: Time allowed for the step's process
            run_root: Directory receiving this run's step logs

        Returns:
            StepResult stamped with duration and effective log path
        """
        started = time.monotonic()
        name = step.value if isinstance(step, Step) else str(step)

        try:
            log_file, log_path = open_step_log(run_root / f"{name}.log", self.config.fallback_log_path)
        except LogOpenError as e:
            return StepResult(
                step=name,
                status=Status.ERROR,
                reason=f"reason=log_open_failed({e})",
                duration_ms=elapsed_ms(started),
                log_path=str(e.fallback_path),
            )

        logger.info(
            f"Starting step: {name}",
            extra={"step": name, "event": "step_started", "metadata": {"log_path": str(log_path)}},
        )

        with log_file:
            result = self._dispatch(name, log_file, timebox_seconds)

        return dataclasses.replace(
            result,
            duration_ms=elapsed_ms(started),
            log_path=str(log_path),
        )

    def _dispatch(self, name: str, log_file: IO[str], timebox_seconds: float) -> StepResult:
        step = parse_step(name)
        recipe = self.config.recipe_for(step) if step else None

        if recipe is None:
            return StepResult(step=name, status=Status.ERROR, reason="reason=unknown_step", command="internal")

        if recipe.kind == RecipeKind.MANUAL:
            log_file.write(f"{name}: manual step, nothing to run\n")
            return StepResult(step=name, status=Status.SKIP, reason="reason=manual_step", command="manual")

        if recipe.kind == RecipeKind.INTERNAL:
            return self._run_preflight(name, recipe, log_file)

        return self._run_external(name, recipe, log_file, timebox_seconds)

    def _run_external(self, name: str, recipe: StepRecipe, log_file: IO[str], timebox_seconds: float) -> StepResult:
        command = recipe.command_text
        status_path = self.config.status_path_for(recipe)

        log_file.write(f"command={recipe.program} args={' '.join(recipe.args)}\n")
        if recipe.kind == RecipeKind.STATUS_FILE:
            log_file.write(f"status_first=true status_path={status_path}\n")

        try:
            supervised = self.supervisor.supervise(
                recipe.program,
                recipe.args,
                log_file,
                timebox_seconds,
                cwd=self.config.repo_root,
            )
        except SpawnError as e:
            log_file.write(f"spawn_failed: {e}\n")
            return StepResult(
                step=name,
                status=Status.ERROR,
                reason=f"reason=spawn_failed({e})",
                command=command,
            )

        status, reason = arbitrate(recipe.kind, supervised, status_path)
        return StepResult(step=name, status=status, reason=reason, command=command)

    def _run_preflight(self, name: str, recipe: StepRecipe, log_file: IO[str]) -> StepResult:
        """Check required paths and commands in-process."""
        root = self.config.repo_root
        missing_paths = [p for p in self.config.required_paths if not (root / p).exists()]
        missing_commands = [
            cmd[0] for cmd in self.config.required_commands
            if cmd and not command_available(cmd, cwd=root)
        ]

        if not missing_paths and not missing_commands:
            log_file.write(f"{name}: required paths and commands found\n")
            return StepResult(step=name, status=Status.OK, reason="reason=ready", command=recipe.command_text)

        reasons = []
        if missing_paths:
            reasons.append(f"missing_paths({','.join(missing_paths)})")
        if missing_commands:
            reasons.append(f"missing_commands({','.join(missing_commands)})")
        reason = "reason=" + ";".join(reasons)

        log_file.write(f"{name}: {reason}\n")
        return StepResult(step=name, status=Status.ERROR, reason=reason, command=recipe.command_text)
