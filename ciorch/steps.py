"""
Step catalogue for ciorch.

Steps form a closed set. Every step has exactly one recipe describing how
the step runner executes it and how its outcome is judged.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class Status(str, Enum):
    """Outcome of a single step."""

    OK = "OK"
    SKIP = "SKIP"
    ERROR = "ERROR"


class Step(str, Enum):
    """Named pipeline stage."""

    PREFLIGHT = "preflight"
    VERIFY_LITE = "verify-lite"
    FULL_BUILD = "full-build"
    FULL_TEST = "full-test"
    BUNDLE_MAKE = "bundle-make"
    PR_CREATE = "pr-create"


class RecipeKind(str, Enum):
    """How a step is executed and judged."""

    INTERNAL = "internal"
    EXIT_CODE = "exit-code"
    STATUS_FILE = "status-file"
    MANUAL = "manual"


# Full pipeline, in execution order.
PLAN = (
    Step.PREFLIGHT,
    Step.VERIFY_LITE,
    Step.FULL_BUILD,
    Step.FULL_TEST,
    Step.BUNDLE_MAKE,
    Step.PR_CREATE,
)


@dataclass(frozen=True)
class StepRecipe:
    """Execution recipe for one step."""

    kind: RecipeKind
    program: str = ""
    args: tuple[str, ...] = field(default_factory=tuple)
    status_path: Optional[str] = None

    @property
    def command_text(self) -> str:
        """Literal command line, as recorded in logs and state."""
        return " ".join([self.program, *self.args])

    def with_overrides(self, data: dict) -> "StepRecipe":
        """Return a copy with program/args/status_path replaced from config data."""
        args = data.get("args", self.args)
        return StepRecipe(
            kind=self.kind,
            program=str(data.get("program", self.program)),
            args=tuple(str(a) for a in args),
            status_path=data.get("status_path", self.status_path),
        )


DEFAULT_RECIPES: dict[Step, StepRecipe] = {
    Step.PREFLIGHT: StepRecipe(kind=RecipeKind.INTERNAL, program="internal", args=("preflight",)),
    Step.VERIFY_LITE: StepRecipe(
        kind=RecipeKind.STATUS_FILE,
        program="go",
        args=("run", "./cmd/verify-lite"),
        status_path="out/verify-lite.status",
    ),
    Step.FULL_BUILD: StepRecipe(
        kind=RecipeKind.EXIT_CODE,
        program="docker",
        args=("build", "-t", "ci-self-runner:local", "-f", "ci/image/Dockerfile", "."),
    ),
    Step.FULL_TEST: StepRecipe(
        kind=RecipeKind.STATUS_FILE,
        program="sh",
        args=("ops/ci/run_verify_full.sh",),
        status_path="out/verify-full.status",
    ),
    Step.BUNDLE_MAKE: StepRecipe(
        kind=RecipeKind.EXIT_CODE,
        program="go",
        args=("run", "./cmd/review-pack"),
    ),
    Step.PR_CREATE: StepRecipe(kind=RecipeKind.MANUAL, program="manual"),
}


def parse_step(name: str) -> Optional[Step]:
    """Return the Step named by `name`, or None for an unknown name."""
    try:
        return Step(name)
    except ValueError:
        return None
