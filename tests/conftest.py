import sys

import pytest

from ciorch.config import OrchestratorConfig


def py_recipe(code: str, status_path: str = None) -> dict:
    """Step override running a Python snippet with the current interpreter."""
    recipe = {"program": sys.executable, "args": ["-c", code]}
    if status_path:
        recipe["status_path"] = status_path
    return recipe


def write_status(path: str, marker: str, exit_code: int = 0) -> str:
    """Python snippet that writes a status file, then exits with exit_code."""
    return (
        "import os, sys\n"
        f"os.makedirs(os.path.dirname({path!r}) or '.', exist_ok=True)\n"
        f"open({path!r}, 'w').write('verify: {marker}\\n')\n"
        f"sys.exit({exit_code})\n"
    )


@pytest.fixture
def make_config(tmp_path):
    """Build an OrchestratorConfig rooted in tmp_path with an empty preflight."""

    def _make(steps=None, **extra):
        raw = {
            "preflight": {"required_paths": [], "required_commands": []},
            "grace_seconds": 2,
        }
        raw.update(extra)
        if steps:
            raw["steps"] = steps
        return OrchestratorConfig(raw, repo_root=tmp_path)

    return _make


@pytest.fixture
def run_root(tmp_path):
    root = tmp_path / ".local" / "out" / "run" / "run-test"
    root.mkdir(parents=True)
    return root
