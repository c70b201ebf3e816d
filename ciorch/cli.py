"""
CLI interface for ciorch.

Usage:

    ciorch                      run the full plan
    ciorch run-plan             run the full plan
    ciorch verify-lite          run a single step
    ciorch full-test --timebox-min 45

Every step prints one "<STATUS>: <step> <reason> duration_ms=<N> log=<path>"
line and every invocation ends with "OK: plan completed=true" or
"ERROR: plan stopped=true".
"""

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import click

from ciorch import __version__
from ciorch.command import Command, resolve_command
from ciorch.config import OrchestratorConfig, load_config
from ciorch.errors import CommandError, ConfigError
from ciorch.orchestrator import Orchestrator
from ciorch.steps import PLAN


@dataclass
class Invocation:
    """Parsed command line, before any state is touched."""

    command: Optional[Command] = None
    error: Optional[str] = None
    config_path: Optional[Path] = None
    verbose: bool = False
    help_text: str = ""


def _help_text(ctx: click.Context) -> str:
    lines = [ctx.get_help(), "", "Commands:"]
    lines.extend(f"  {step.value}" for step in PLAN)
    lines.append("  run-plan")
    lines.append("  help")
    return "\n".join(lines)


@click.command(add_help_option=False)
@click.argument("command_name", metavar="[COMMAND]", required=False)
@click.option("--timebox-min", "timebox_min", metavar="N", default=None,
              help="Minutes each step may run before it is interrupted")
@click.option("--config", "config_path", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Configuration file (default: $CIORCH_CONFIG or .ciorch.yaml)")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging on the console")
@click.option("-h", "--help", "show_help", is_flag=True, help="Show this message and record it")
@click.version_option(version=__version__, prog_name="ciorch")
@click.pass_context
def cli(ctx, command_name, timebox_min, config_path, verbose, show_help):
    """
    ciorch - self-hosted CI step orchestrator.

    COMMAND is a step name, run-plan (the default) or help.
    """
    invocation = Invocation(config_path=config_path, verbose=verbose, help_text=_help_text(ctx))
    try:
        invocation.command = resolve_command(command_name, timebox_min, show_help=show_help)
    except CommandError as e:
        invocation.error = str(e)
    return invocation


def _parse(argv) -> Invocation:
    try:
        result = cli.main(args=argv, prog_name="ciorch", standalone_mode=False)
    except click.ClickException as e:
        return Invocation(error=e.format_message())

    if isinstance(result, Invocation):
        return result
    # --version: click has already printed and hands back an exit code
    sys.exit(result or 0)


def _load(invocation: Invocation) -> OrchestratorConfig:
    try:
        return load_config(invocation.config_path)
    except ConfigError as e:
        if not invocation.error:
            invocation.error = f"config: {e}"
        return OrchestratorConfig()


def main(argv=None) -> None:
    """Console entry point; never lets an exception escape."""
    orchestrator = None

    try:
        invocation = _parse(argv)
        config = _load(invocation)
        orchestrator = Orchestrator(config, verbose=invocation.verbose)
        orchestrator.start()

        if invocation.error:
            orchestrator.fail_cli(invocation.error)
        else:
            orchestrator.execute(invocation.command, invocation.help_text)
    except Exception as e:
        if orchestrator is None:
            click.echo(f"ERROR: ciorch panic={e}")
            sys.exit(1)
        orchestrator.record_panic(e)

    sys.exit(orchestrator.finish())


if __name__ == "__main__":
    main()
