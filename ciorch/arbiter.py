"""
Status arbitration for ciorch steps.

Exit-code steps are judged by the child's return code. Status-file steps
are judged only by the status artifact the tool writes; their exit code
is never consulted. A timed-out step is SKIP in either mode.
"""

import logging
from pathlib import Path
from typing import Optional, Tuple

from ciorch.steps import RecipeKind, Status
from ciorch.supervisor import SupervisedProcess

logger = logging.getLogger(__name__)

# Checked in this order within each line; the first matching line wins
STATUS_MARKERS = (
    ("status=OK", Status.OK),
    ("status=ERROR", Status.ERROR),
    ("status=SKIP", Status.SKIP),
)

TIMEBOX_REASON = "reason=timebox_exceeded"


def read_status_file(path: Path) -> Tuple[Status, Optional[str]]:
    """
    Read the verdict recorded in a status artifact.

    Args:
        path: Status artifact path

    Returns:
        (status, problem) where problem is None when a marker was found,
        otherwise "missing" or "no_marker" with status ERROR
    """
    try:
        with open(path, "r", errors="replace") as f:
            for line in f:
                for marker, status in STATUS_MARKERS:
                    if marker in line:
                        return status, None
    except OSError as e:
        logger.debug(f"Status file {path} unreadable: {e}")
        return Status.ERROR, "missing"

    return Status.ERROR, "no_marker"


def arbitrate(
    kind: RecipeKind,
    supervised: SupervisedProcess,
    status_path: Optional[Path] = None,
) -> Tuple[Status, str]:
    """
    Decide a step's final status.

    Args:
        kind: Recipe kind (EXIT_CODE or STATUS_FILE)
        supervised: Supervision result for the step's process
        status_path: Status artifact, required for STATUS_FILE

    Returns:
        (status, reason)
    """
    if supervised.timed_out:
        return Status.SKIP, TIMEBOX_REASON

    if kind == RecipeKind.STATUS_FILE:
        if status_path is None:
            return Status.ERROR, "reason=status_file(unset)"
        status, problem = read_status_file(status_path)
        if problem:
            return status, f"reason=status_file({status_path}) {problem}"
        return status, f"reason=status_file({status_path})"

    if kind == RecipeKind.EXIT_CODE:
        if supervised.returncode == 0:
            return Status.OK, "reason=command_ok"
        return Status.ERROR, f"reason=command_failed(exit={supervised.returncode})"

    raise ValueError(f"Cannot arbitrate recipe kind: {kind}")
