"""
Process-level orchestration for ciorch.

One Orchestrator per invocation: it allocates the run id and run
directory, loads state, hands a resolved command to the plan driver and
saves state at the end, whatever happened in between.
"""

import logging
from pathlib import Path
from typing import Optional

import click

from ciorch.command import Command, CommandKind
from ciorch.config import OrchestratorConfig
from ciorch.plan import PlanDriver
from ciorch.runner import StepRunner
from ciorch.state import RunState, StateStore
from ciorch.steps import Status
from ciorch.supervisor import ProcessSupervisor
from ciorch.utils import generate_run_id, setup_logging

logger = logging.getLogger(__name__)


class Orchestrator:
    """Owns the run state of a single invocation."""

    def __init__(
        self,
        config: OrchestratorConfig,
        verbose: bool = False,
        run_id: Optional[str] = None,
        supervisor: Optional[ProcessSupervisor] = None,
    ):
        self.config = config
        self.verbose = verbose
        self.run_id = run_id or generate_run_id()
        self.run_root: Path = config.run_base / self.run_id
        self.store = StateStore(config.state_path)
        self.runner = StepRunner(config, supervisor)
        self.state: Optional[RunState] = None

    def start(self) -> RunState:
        """Prepare the run directory and logging, then load and reset state."""
        try:
            self.run_root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            click.echo(f"WARNING: run directory unavailable: {self.run_root} ({e})", err=True)

        level = "DEBUG" if self.verbose else self.config.get_log_level()
        setup_logging(
            self.run_root / "orchestrator.log",
            level,
            self.config.get_log_format(),
            self.verbose or self.config.should_log_to_console(),
        )

        self.state = self.store.load()
        self.state.start_run(self.run_id)
        logger.info(
            f"Starting run {self.run_id}",
            extra={
                "event": "run_started",
                "metadata": {"run_root": str(self.run_root), "state_path": str(self.store.path)},
            },
        )
        return self.state

    def fail_cli(self, message: str) -> None:
        """Record invalid command-line input as an ERROR outcome of the "cli" step."""
        reason = f"reason={message}"
        click.echo(f"{Status.ERROR.value}: cli {reason}")
        self.state.record("cli", Status.ERROR, reason, command="cli")
        logger.error(f"Command line rejected: {message}", extra={"step": "cli", "event": "cli_error"})

    def execute(self, command: Command, help_text: str = "") -> None:
        """Execute a resolved command against the loaded state."""
        if command.kind == CommandKind.HELP:
            click.echo(help_text)
            click.echo(f"{Status.OK.value}: help usage_shown=true")
            return

        driver = PlanDriver(
            self.runner,
            self.state,
            self.run_root,
            timebox_minutes=command.timebox_minutes or self.config.timebox_minutes,
        )
        driver.execute(command)

    def record_panic(self, error: BaseException) -> None:
        """Best-effort record of an unexpected fault."""
        click.echo(f"{Status.ERROR.value}: ciorch panic={error}")
        logger.critical(f"Unexpected fault: {error}", extra={"event": "panic"}, exc_info=error)
        if self.state is not None:
            self.state.record("panic", Status.ERROR, f"reason=panic({error})", command="internal")

    def finish(self) -> int:
        """
        Save state and print the plan-level line.

        Returns:
            Process exit code: 0 if the run completed, 1 if it stopped
        """
        if self.state is None:
            return 1

        self.store.save(self.state)
        entries = self.state.run_entries()
        metadata = {
            "entries": len(entries),
            "statuses": [f"{entry.step}={entry.status}" for entry in entries],
        }
        if self.state.stop:
            click.echo(f"{Status.ERROR.value}: plan stopped=true")
            logger.info(
                f"Run {self.run_id} stopped: {self.state.reason}",
                extra={"event": "run_stopped", "metadata": metadata},
            )
            return 1

        click.echo(f"{Status.OK.value}: plan completed=true")
        logger.info(f"Run {self.run_id} completed", extra={"event": "run_completed", "metadata": metadata})
        return 0
