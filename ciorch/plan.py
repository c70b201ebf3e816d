"""
Plan driver for ciorch.

Runs a single step or the full plan against one RunState. Steps run
strictly in order; a step starts only after the previous result has been
recorded. After the first ERROR the remaining planned steps are recorded
as SKIP without running, so a full plan always yields one entry per step.
"""

import logging
from pathlib import Path
from typing import List, Sequence, Union

import click

from ciorch.command import Command, CommandKind
from ciorch.runner import StepResult, StepRunner
from ciorch.state import RunState
from ciorch.steps import PLAN, Status, Step
from ciorch.utils import format_duration

logger = logging.getLogger(__name__)

ALREADY_STOPPED_REASON = "reason=already_stopped"


class PlanDriver:
    """Drives steps through the runner and records them in run state."""

    def __init__(
        self,
        runner: StepRunner,
        state: RunState,
        run_root: Path,
        timebox_minutes: int = 20,
        plan: Sequence[Step] = PLAN,
    ):
        self.runner = runner
        self.state = state
        self.run_root = run_root
        self.timebox_minutes = timebox_minutes
        self.plan = tuple(plan)

    @property
    def timebox_seconds(self) -> float:
        return float(self.timebox_minutes) * 60

    def execute(self, command: Command) -> List[StepResult]:
        """
        Run a resolved single-step or run-plan command.

        The timebox is fixed at construction; the caller resolves the
        command-line override against the configured default.
        """
        if command.kind == CommandKind.SINGLE_STEP:
            return [self.run_step(command.step)]
        if command.kind == CommandKind.RUN_PLAN:
            return self.run_plan()
        raise ValueError(f"PlanDriver cannot execute command kind: {command.kind}")

    def run_step(self, step: Union[Step, str]) -> StepResult:
        """
        Run one step and record its result.

        An ERROR result sets the stop flag with reason
        "step=<name> <reason>".
        """
        result = self.runner.run(step, self.timebox_seconds, self.run_root)
        self._record(result)

        extra = {
            "step": result.step,
            "event": "step_completed",
            "metadata": {
                "status": result.status.value,
                "reason": result.reason,
                "duration_ms": result.duration_ms,
                "log_path": result.log_path,
            },
        }
        message = f"Step {result.step} {result.status.value} in {format_duration(result.duration_ms / 1000)}: {result.reason}"
        if result.status == Status.ERROR:
            logger.error(message, extra=extra)
        else:
            logger.info(message, extra=extra)

        return result

    def run_plan(self) -> List[StepResult]:
        """Walk the whole plan, skipping every step after the first ERROR."""
        results = []
        for step in self.plan:
            if self.state.stop:
                result = StepResult(step=step.value, status=Status.SKIP, reason=ALREADY_STOPPED_REASON)
                self._record(result)
                logger.info(
                    f"Skipping {step.value}: {self.state.reason}",
                    extra={"step": step.value, "event": "step_skipped_stopped"},
                )
                results.append(result)
                continue
            results.append(self.run_step(step))
        return results

    def _record(self, result: StepResult) -> None:
        click.echo(result.summary_line())
        self.state.record(
            result.step,
            result.status,
            result.reason,
            duration_ms=result.duration_ms,
            log_path=result.log_path,
            command=result.command,
        )
