"""
Configuration management for ciorch.

Loads the optional .ciorch.yaml configuration file. Every key has a
built-in default, so a repository without a config file runs the stock
pipeline.
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from ciorch.errors import ConfigError
from ciorch.steps import DEFAULT_RECIPES, RecipeKind, Step, StepRecipe, parse_step


CONFIG_FILENAME = ".ciorch.yaml"
CONFIG_ENV_VAR = "CIORCH_CONFIG"

DEFAULT_STATE_PATH = ".local/ci/state.json"
DEFAULT_RUN_BASE = ".local/out/run"
DEFAULT_TIMEBOX_MINUTES = 20
DEFAULT_GRACE_SECONDS = 10.0

DEFAULT_REQUIRED_PATHS = [
    ".codex/00-RULES-READ-FIRST.md",
    "docs/ci/SYSTEM.md",
    "docs/ci/FLOW.md",
    "docs/ci/RUNNER_ISOLATION.md",
    "docs/ci/COLIMA_TUNING.md",
    "docs/ci/SHELL_POLICY.md",
    "docs/ci/RUNBOOK.md",
]
DEFAULT_REQUIRED_COMMANDS = [
    ["docker", "--version"],
    ["go", "version"],
]


def _mapping(value: Any, key: str) -> Dict[str, Any]:
    """Return a config section, treating an empty value as an empty mapping."""
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{key}: expected a mapping, got {type(value).__name__}")
    return value


def _string(value: Any, key: str) -> str:
    if not isinstance(value, str):
        raise ConfigError(f"{key}: expected a string, got {type(value).__name__}")
    return value


def _string_list(value: Any, key: str) -> List[str]:
    if not isinstance(value, list):
        raise ConfigError(f"{key}: expected a list, got {type(value).__name__}")
    return [_string(item, f"{key}[{i}]") for i, item in enumerate(value)]


class OrchestratorConfig:
    """Complete orchestrator configuration."""

    def __init__(self, raw_config: Optional[Dict[str, Any]] = None, repo_root: Optional[Path] = None):
        self.raw_config = raw_config or {}

        root = repo_root or self.raw_config.get("repo_root") or Path.cwd()
        if not isinstance(root, Path):
            root = _string(root, "repo_root")
        self.repo_root = Path(root).expanduser().resolve()

        self.state_path = self._resolve(_string(self.raw_config.get("state_path", DEFAULT_STATE_PATH), "state_path"))
        self.run_base = self._resolve(_string(self.raw_config.get("run_base", DEFAULT_RUN_BASE), "run_base"))
        self.timebox_minutes = self.raw_config.get("timebox_minutes", DEFAULT_TIMEBOX_MINUTES)
        try:
            self.grace_seconds = float(self.raw_config.get("grace_seconds", DEFAULT_GRACE_SECONDS))
        except (TypeError, ValueError):
            raise ConfigError(f"grace_seconds must be a number, got {self.raw_config.get('grace_seconds')!r}")

        self.logging = _mapping(self.raw_config.get("logging"), "logging")

        preflight = _mapping(self.raw_config.get("preflight"), "preflight")
        self.required_paths: List[str] = _string_list(
            preflight.get("required_paths", DEFAULT_REQUIRED_PATHS), "preflight.required_paths"
        )
        commands = preflight.get("required_commands", DEFAULT_REQUIRED_COMMANDS)
        if not isinstance(commands, list):
            raise ConfigError(f"preflight.required_commands: expected a list, got {type(commands).__name__}")
        # Each command is an argv list; scalars inside it are stringified
        self.required_commands: List[List[str]] = []
        for i, cmd in enumerate(commands):
            if not isinstance(cmd, list):
                raise ConfigError(f"preflight.required_commands[{i}]: expected an argv list, got {cmd!r}")
            self.required_commands.append([str(part) for part in cmd])

        self.recipes = self._build_recipes(_mapping(self.raw_config.get("steps"), "steps"))

        self.validate()

    def _resolve(self, value: str) -> Path:
        path = Path(value).expanduser()
        if not path.is_absolute():
            path = self.repo_root / path
        return path

    def _build_recipes(self, overrides: Dict[str, Any]) -> Dict[Step, StepRecipe]:
        recipes = dict(DEFAULT_RECIPES)
        for name, data in overrides.items():
            step = parse_step(name)
            if step is None:
                raise ConfigError(f"steps: unknown step '{name}'")
            if not isinstance(data, dict):
                raise ConfigError(f"steps.{name}: expected a mapping")
            base = recipes[step]
            if base.kind in (RecipeKind.MANUAL, RecipeKind.INTERNAL):
                raise ConfigError(f"steps.{name}: {base.kind.value} steps cannot be overridden")
            if "kind" in data and data["kind"] != base.kind.value:
                raise ConfigError(
                    f"steps.{name}: kind is fixed to '{base.kind.value}'"
                )
            if "args" in data and not isinstance(data["args"], list):
                raise ConfigError(f"steps.{name}: args must be a list")
            for key in ("program", "status_path"):
                if key in data:
                    _string(data[key], f"steps.{name}.{key}")
            recipes[step] = base.with_overrides(data)
        return recipes

    def recipe_for(self, step: Step) -> Optional[StepRecipe]:
        """Get the execution recipe for a step."""
        return self.recipes.get(step)

    def status_path_for(self, recipe: StepRecipe) -> Optional[Path]:
        """Resolve a recipe's status artifact path against the repo root."""
        if not recipe.status_path:
            return None
        return self._resolve(recipe.status_path)

    @property
    def fallback_log_path(self) -> Path:
        return self.run_base / "fallback.log"

    def get_log_level(self) -> str:
        """Get logging level."""
        return str(self.logging.get("level", "INFO")).upper()

    def get_log_format(self) -> str:
        """Get log format (structured or pretty)."""
        return self.logging.get("format", "structured")

    def should_log_to_console(self) -> bool:
        """Check if console logging is enabled."""
        return bool(self.logging.get("console", False))

    def validate(self) -> None:
        """Validate entire configuration."""
        if isinstance(self.timebox_minutes, bool) or not isinstance(self.timebox_minutes, int) or self.timebox_minutes <= 0:
            raise ConfigError(f"timebox_minutes must be a positive integer, got {self.timebox_minutes!r}")

        if self.grace_seconds < 0:
            raise ConfigError(f"grace_seconds must not be negative, got {self.grace_seconds}")

        if self.get_log_format() not in ("structured", "pretty"):
            raise ConfigError(f"logging.format must be 'structured' or 'pretty', got {self.get_log_format()!r}")

        for step, recipe in self.recipes.items():
            if recipe.kind in (RecipeKind.EXIT_CODE, RecipeKind.STATUS_FILE) and not recipe.program:
                raise ConfigError(f"steps.{step.value}: program is required")
            if recipe.kind == RecipeKind.STATUS_FILE and not recipe.status_path:
                raise ConfigError(f"steps.{step.value}: status_path is required")

    def __repr__(self) -> str:
        return f"OrchestratorConfig(repo_root={self.repo_root}, state_path={self.state_path})"


def _load_yaml(config_path: Path) -> Dict[str, Any]:
    """Load and parse a YAML configuration file."""
    try:
        with open(config_path, "r") as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax in {config_path}: {e}")
    except OSError as e:
        raise ConfigError(f"Could not read configuration file {config_path}: {e}")

    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ConfigError(f"Configuration file {config_path} must contain a mapping")
    return config


def load_config(config_path: Optional[Path] = None, repo_root: Optional[Path] = None) -> OrchestratorConfig:
    """
    Load orchestrator configuration.

    Args:
        config_path: Explicit config file. Defaults to $CIORCH_CONFIG, then
            .ciorch.yaml in the repo root.
        repo_root: Repository root. Defaults to the config's repo_root key,
            then the current directory.

    Returns:
        OrchestratorConfig instance

    Raises:
        ConfigError: If an explicitly named config file is missing, or
            any config file is invalid
    """
    explicit = config_path or os.environ.get(CONFIG_ENV_VAR)

    if explicit:
        path = Path(explicit).expanduser()
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")
        return OrchestratorConfig(_load_yaml(path), repo_root=repo_root)

    root = repo_root or Path.cwd()
    default_path = Path(root) / CONFIG_FILENAME
    if not default_path.exists():
        return OrchestratorConfig({}, repo_root=repo_root)
    return OrchestratorConfig(_load_yaml(default_path), repo_root=repo_root)
