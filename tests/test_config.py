import sys

import pytest
import yaml

from ciorch.config import (
    DEFAULT_REQUIRED_PATHS,
    OrchestratorConfig,
    load_config,
)
from ciorch.errors import ConfigError
from ciorch.steps import PLAN, RecipeKind, Step


def test_defaults(tmp_path):
    cfg = OrchestratorConfig({}, repo_root=tmp_path)

    assert cfg.repo_root == tmp_path.resolve()
    assert cfg.state_path == tmp_path.resolve() / ".local" / "ci" / "state.json"
    assert cfg.run_base == tmp_path.resolve() / ".local" / "out" / "run"
    assert cfg.fallback_log_path == cfg.run_base / "fallback.log"
    assert cfg.timebox_minutes == 20
    assert cfg.grace_seconds == 10.0
    assert cfg.required_paths == DEFAULT_REQUIRED_PATHS
    assert set(cfg.recipes) == set(PLAN)


def test_default_recipes_match_pipeline(tmp_path):
    cfg = OrchestratorConfig({}, repo_root=tmp_path)

    verify_lite = cfg.recipe_for(Step.VERIFY_LITE)
    assert verify_lite.kind == RecipeKind.STATUS_FILE
    assert verify_lite.command_text == "go run ./cmd/verify-lite"
    assert cfg.status_path_for(verify_lite) == tmp_path.resolve() / "out" / "verify-lite.status"

    assert cfg.recipe_for(Step.FULL_BUILD).command_text == (
        "docker build -t ci-self-runner:local -f ci/image/Dockerfile ."
    )
    assert cfg.recipe_for(Step.FULL_TEST).status_path == "out/verify-full.status"
    assert cfg.recipe_for(Step.PR_CREATE).kind == RecipeKind.MANUAL
    assert cfg.recipe_for(Step.PREFLIGHT).command_text == "internal preflight"


def test_step_override(tmp_path):
    cfg = OrchestratorConfig(
        {"steps": {"full-build": {"program": sys.executable, "args": ["-c", "pass"]}}},
        repo_root=tmp_path,
    )

    recipe = cfg.recipe_for(Step.FULL_BUILD)
    assert recipe.kind == RecipeKind.EXIT_CODE
    assert recipe.program == sys.executable
    assert recipe.args == ("-c", "pass")


@pytest.mark.parametrize("raw,match", [
    ({"steps": {"deploy": {"program": "x"}}}, "unknown step"),
    ({"steps": {"pr-create": {"program": "gh"}}}, "cannot be overridden"),
    ({"steps": {"preflight": {"program": "x"}}}, "cannot be overridden"),
    ({"steps": {"full-build": {"kind": "status-file"}}}, "kind is fixed"),
    ({"steps": {"full-build": "docker"}}, "expected a mapping"),
    ({"steps": {"verify-lite": {"status_path": ""}}}, "status_path is required"),
    ({"timebox_minutes": 0}, "timebox_minutes"),
    ({"timebox_minutes": "ten"}, "timebox_minutes"),
    ({"steps": {"full-build": {"args": "build ."}}}, "args must be a list"),
    ({"grace_seconds": -1}, "grace_seconds"),
    ({"grace_seconds": "soon"}, "grace_seconds"),
    ({"logging": {"format": "xml"}}, "logging.format"),
    ({"logging": "debug"}, "logging: expected a mapping"),
    ({"preflight": ["docs/x.md"]}, "preflight: expected a mapping"),
    ({"steps": ["full-build"]}, "steps: expected a mapping"),
    ({"preflight": {"required_paths": "docs/x.md"}}, "required_paths: expected a list"),
    ({"preflight": {"required_paths": [3]}}, r"required_paths\[0\]"),
    ({"preflight": {"required_commands": "docker"}}, "required_commands: expected a list"),
    ({"preflight": {"required_commands": ["docker"]}}, "expected an argv list"),
    ({"steps": {"full-build": {"program": ["docker"]}}}, "program: expected a string"),
    ({"steps": {"verify-lite": {"status_path": 7}}}, "status_path: expected a string"),
    ({"state_path": 1}, "state_path: expected a string"),
])
def test_invalid_config(tmp_path, raw, match):
    with pytest.raises(ConfigError, match=match):
        OrchestratorConfig(raw, repo_root=tmp_path)


def test_absolute_paths_kept(tmp_path):
    state = tmp_path / "elsewhere" / "state.json"
    cfg = OrchestratorConfig({"state_path": str(state)}, repo_root=tmp_path / "repo")

    assert cfg.state_path == state


def test_logging_settings(tmp_path):
    cfg = OrchestratorConfig({"logging": {"level": "debug", "format": "pretty", "console": True}}, repo_root=tmp_path)

    assert cfg.get_log_level() == "DEBUG"
    assert cfg.get_log_format() == "pretty"
    assert cfg.should_log_to_console()


def test_load_config_without_file_uses_defaults(monkeypatch, tmp_path):
    monkeypatch.delenv("CIORCH_CONFIG", raising=False)

    cfg = load_config(repo_root=tmp_path)

    assert cfg.timebox_minutes == 20


def test_load_config_reads_repo_file(monkeypatch, tmp_path):
    monkeypatch.delenv("CIORCH_CONFIG", raising=False)
    (tmp_path / ".ciorch.yaml").write_text(yaml.dump({"timebox_minutes": 45, "grace_seconds": 3}))

    cfg = load_config(repo_root=tmp_path)

    assert cfg.timebox_minutes == 45
    assert cfg.grace_seconds == 3.0


def test_load_config_env_var(monkeypatch, tmp_path):
    config_path = tmp_path / "custom.yaml"
    config_path.write_text(yaml.dump({"state_path": "state/ci.json"}))
    monkeypatch.setenv("CIORCH_CONFIG", str(config_path))

    cfg = load_config(repo_root=tmp_path)

    assert cfg.state_path == tmp_path.resolve() / "state" / "ci.json"


def test_load_config_explicit_missing(monkeypatch, tmp_path):
    monkeypatch.delenv("CIORCH_CONFIG", raising=False)

    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "absent.yaml", repo_root=tmp_path)


def test_load_config_invalid_yaml(monkeypatch, tmp_path):
    monkeypatch.delenv("CIORCH_CONFIG", raising=False)
    (tmp_path / ".ciorch.yaml").write_text("steps: [unclosed\n")

    with pytest.raises(ConfigError, match="Invalid YAML"):
        load_config(repo_root=tmp_path)


def test_load_config_non_mapping(monkeypatch, tmp_path):
    monkeypatch.delenv("CIORCH_CONFIG", raising=False)
    (tmp_path / ".ciorch.yaml").write_text("- a\n- b\n")

    with pytest.raises(ConfigError, match="mapping"):
        load_config(repo_root=tmp_path)


def test_empty_config_file_uses_defaults(monkeypatch, tmp_path):
    monkeypatch.delenv("CIORCH_CONFIG", raising=False)
    (tmp_path / ".ciorch.yaml").write_text("")

    assert load_config(repo_root=tmp_path).timebox_minutes == 20
