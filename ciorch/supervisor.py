"""
Process supervision for ciorch steps.

A step's program is spawned with stdout and stderr both written to the
step log. A daemon waiter thread blocks on the child's exit while the
calling thread waits on the waiter's event with the timebox as timeout.

On timeout the child is sent SIGINT and given a short grace period. A
child that ignores the interrupt is left running: it is never killed, so
artifacts it may be writing are not truncated mid-write.
"""

import logging
import signal
import subprocess
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import IO, Optional, Sequence

from ciorch.errors import SpawnError

logger = logging.getLogger(__name__)

UNRESPONSIVE_MARKER = "ERROR: timebox_exceeded process_did_not_exit_after_sigint"


class Outcome(str, Enum):
    """How supervision of a child process ended."""

    COMPLETED = "completed"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class SupervisedProcess:
    """Result of supervising one child process."""

    outcome: Outcome
    pid: int
    returncode: Optional[int] = None
    exited: bool = True

    @property
    def timed_out(self) -> bool:
        return self.outcome == Outcome.TIMED_OUT


class _Waiter(threading.Thread):
    """Blocks on a child's exit and signals completion through an Event."""

    def __init__(self, proc: subprocess.Popen):
        super().__init__(name=f"ciorch-wait-{proc.pid}", daemon=True)
        self._proc = proc
        self.done = threading.Event()
        self.returncode: Optional[int] = None

    def run(self) -> None:
        try:
            self.returncode = self._proc.wait()
        finally:
            self.done.set()


class ProcessSupervisor:
    """Spawns one command at a time and enforces its timebox."""

    def __init__(self, grace_seconds: float = 10.0, interrupt_signal: int = signal.SIGINT):
        self.grace_seconds = grace_seconds
        self.interrupt_signal = interrupt_signal

    def supervise(
        self,
        program: str,
        args: Sequence[str],
        log_file: IO[str],
        timebox_seconds: float,
        cwd: Optional[Path] = None,
    ) -> SupervisedProcess:
        """
        Run a command under a timebox.

        Args:
            program: Executable name or path
            args: Command arguments
            log_file: Open log file receiving stdout and stderr
            timebox_seconds: Time allowed before the interrupt is sent
            cwd: Working directory for the child

        Returns:
            SupervisedProcess describing how supervision ended

        Raises:
            SpawnError: If the program could not be started
        """
        cmd = [program, *args]
        log_file.flush()

        try:
            proc = subprocess.Popen(
                cmd,
                cwd=cwd,
                stdin=subprocess.DEVNULL,
                stdout=log_file,
                stderr=subprocess.STDOUT,
            )
        except OSError as e:
            raise SpawnError(str(e)) from e

        waiter = _Waiter(proc)
        waiter.start()

        logger.debug(
            f"Spawned {program} pid={proc.pid}",
            extra={"event": "process_spawned", "metadata": {"pid": proc.pid, "command": cmd}},
        )

        if waiter.done.wait(timeout=timebox_seconds):
            return SupervisedProcess(
                outcome=Outcome.COMPLETED,
                pid=proc.pid,
                returncode=waiter.returncode,
            )

        return self._interrupt(proc, waiter, log_file, timebox_seconds)

    def _interrupt(
        self,
        proc: subprocess.Popen,
        waiter: _Waiter,
        log_file: IO[str],
        timebox_seconds: float,
    ) -> SupervisedProcess:
        """Send the interrupt and wait out the grace period without killing."""
        logger.warning(
            f"Timebox of {timebox_seconds:g}s exceeded for pid={proc.pid}, sending interrupt",
            extra={"event": "process_timeout", "metadata": {"pid": proc.pid}},
        )
        proc.send_signal(self.interrupt_signal)

        if waiter.done.wait(timeout=self.grace_seconds):
            return SupervisedProcess(
                outcome=Outcome.TIMED_OUT,
                pid=proc.pid,
                returncode=waiter.returncode,
            )

        log_file.write(UNRESPONSIVE_MARKER + "\n")
        log_file.flush()
        logger.warning(
            f"pid={proc.pid} did not exit {self.grace_seconds:g}s after interrupt; leaving it running",
            extra={"event": "process_unresponsive", "metadata": {"pid": proc.pid}},
        )
        return SupervisedProcess(
            outcome=Outcome.TIMED_OUT,
            pid=proc.pid,
            exited=False,
        )
