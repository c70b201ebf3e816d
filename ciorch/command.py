"""Resolved command line for ciorch."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ciorch.errors import CommandError
from ciorch.steps import Step, parse_step


class CommandKind(str, Enum):
    SINGLE_STEP = "single-step"
    RUN_PLAN = "run-plan"
    HELP = "help"


@dataclass(frozen=True)
class Command:
    kind: CommandKind
    step: Optional[Step] = None
    timebox_minutes: Optional[int] = None


def parse_timebox(raw) -> int:
    """Parse a --timebox-min value; it must be a positive integer."""
    try:
        value = int(str(raw).strip())
    except ValueError:
        raise CommandError(f"invalid --timebox-min value: {raw}")
    if value <= 0:
        raise CommandError(f"invalid --timebox-min value: {raw}")
    return value


def resolve_command(name: Optional[str], timebox_min=None, show_help: bool = False) -> Command:
    """
    Resolve command-line input into a Command.

    Args:
        name: Step name, "run-plan", "help", or None for run-plan
        timebox_min: Raw --timebox-min value, or None for the configured default
        show_help: -h/--help was passed

    Raises:
        CommandError: On an unknown command or invalid timebox
    """
    if show_help or name == "help":
        return Command(kind=CommandKind.HELP)

    timebox = None if timebox_min is None else parse_timebox(timebox_min)

    if name is None or name == "run-plan":
        return Command(kind=CommandKind.RUN_PLAN, timebox_minutes=timebox)

    step = parse_step(name)
    if step is None:
        raise CommandError(f"unknown command: {name}")
    return Command(kind=CommandKind.SINGLE_STEP, step=step, timebox_minutes=timebox)
