"""
Run state persistence for ciorch.

RunState is the single-owner record of an orchestrator invocation:
- an append-only history of step entries (entries from earlier
  invocations are kept, each carrying its own run id)
- a stop flag that ERROR sets and nothing within the run clears
- pointers to the last recorded step and status

StateStore reads the state file once at start and writes it once at the
end. A missing or corrupt state file loads as empty state.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ciorch.steps import Status
from ciorch.utils import now_epoch_string

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepEntry:
    """One recorded step outcome."""

    run_id: str
    step: str
    status: str
    reason: str
    timestamp: str
    duration_ms: int = 0
    log_path: str = ""
    command: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StepEntry":
        if not isinstance(data, dict):
            raise ValueError(f"step entry must be an object, got {type(data).__name__}")
        return cls(
            run_id=str(data.get("run_id", "")),
            step=str(data.get("step", "")),
            status=str(data.get("status", "")),
            reason=str(data.get("reason", "")),
            timestamp=str(data.get("timestamp", "")),
            duration_ms=int(data.get("duration_ms", 0)),
            log_path=str(data.get("log_path", "")),
            command=str(data.get("command", "")),
        )


class RunState:
    """Durable state of the orchestrator."""

    def __init__(
        self,
        run_id: str = "",
        stop: bool = False,
        reason: str = "",
        updated_at: str = "",
        last_step: str = "",
        last_status: str = "",
        steps: Optional[List[StepEntry]] = None,
    ):
        self.run_id = run_id
        self.stop = stop
        self.reason = reason
        self.updated_at = updated_at
        self.last_step = last_step
        self.last_status = last_status
        self._steps: List[StepEntry] = list(steps or [])

    @property
    def steps(self) -> Tuple[StepEntry, ...]:
        """Recorded history, oldest first."""
        return tuple(self._steps)

    def run_entries(self, run_id: Optional[str] = None) -> List[StepEntry]:
        """Entries recorded by one run (default: the current run)."""
        wanted = run_id or self.run_id
        return [entry for entry in self._steps if entry.run_id == wanted]

    def start_run(self, run_id: str) -> None:
        """Reset the stop flag and adopt a fresh run id."""
        self.run_id = run_id
        self.stop = False
        self.reason = ""

    def record(
        self,
        step: str,
        status: Status,
        reason: str,
        duration_ms: int = 0,
        log_path: str = "",
        command: str = "",
    ) -> StepEntry:
        """
        Append a step outcome to history.

        An ERROR sets the stop flag and the stop reason
        "step=<name> <reason>".

        Returns:
            The appended entry
        """
        timestamp = now_epoch_string()
        entry = StepEntry(
            run_id=self.run_id,
            step=step,
            status=status.value,
            reason=reason,
            timestamp=timestamp,
            duration_ms=duration_ms,
            log_path=log_path,
            command=command,
        )
        self._steps.append(entry)

        self.updated_at = timestamp
        self.last_step = step
        self.last_status = status.value
        if status == Status.ERROR:
            self.stop = True
            self.reason = f"step={step} {reason}"

        return entry

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "stop": self.stop,
            "reason": self.reason,
            "updated_at": self.updated_at,
            "last_step": self.last_step,
            "last_status": self.last_status,
            "run_id": self.run_id,
            "steps": [entry.to_dict() for entry in self._steps],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunState":
        """
        Rebuild state from its serialized form.

        Raises:
            ValueError: If the data does not have the expected shape
        """
        if not isinstance(data, dict):
            raise ValueError(f"state must be an object, got {type(data).__name__}")
        steps = data.get("steps") or []
        if not isinstance(steps, list):
            raise ValueError("state 'steps' must be a list")
        stop = data.get("stop", False)
        if not isinstance(stop, bool):
            raise ValueError("state 'stop' must be a boolean")
        return cls(
            run_id=str(data.get("run_id", "")),
            stop=stop,
            reason=str(data.get("reason", "")),
            updated_at=str(data.get("updated_at", "")),
            last_step=str(data.get("last_step", "")),
            last_status=str(data.get("last_status", "")),
            steps=[StepEntry.from_dict(item) for item in steps],
        )

    def __repr__(self) -> str:
        return f"RunState(run_id={self.run_id}, stop={self.stop}, steps={len(self._steps)})"


class StateStore:
    """JSON file holding the RunState between invocations."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> RunState:
        """
        Load persisted state.

        Returns:
            The stored RunState, or an empty RunState when the file is
            missing, unreadable or malformed
        """
        try:
            content = self.path.read_text()
        except FileNotFoundError:
            logger.debug(f"No state file at {self.path}, starting empty")
            return RunState()
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(
                f"Could not read state file {self.path}: {e}; starting empty",
                extra={"event": "state_reset", "metadata": {"error": str(e)}},
            )
            return RunState()

        try:
            state = RunState.from_dict(json.loads(content))
        except (ValueError, TypeError) as e:
            logger.warning(
                f"Corrupt state file {self.path}: {e}; starting empty",
                extra={"event": "state_reset", "metadata": {"error": str(e)}},
            )
            return RunState()

        logger.debug(
            f"Loaded state from {self.path}",
            extra={"event": "state_loaded", "metadata": {"entries": len(state.steps)}},
        )
        return state

    def save(self, state: RunState) -> bool:
        """
        Write state to disk.

        Returns:
            True if the state was written
        """
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w") as f:
                json.dump(state.to_dict(), f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.warning(
                f"Could not save state to {self.path}: {e}",
                extra={"event": "state_save_failed", "metadata": {"error": str(e)}},
            )
            return False

        logger.debug(
            f"Saved state to {self.path}",
            extra={"event": "state_saved", "metadata": {"file": str(self.path)}},
        )
        return True
