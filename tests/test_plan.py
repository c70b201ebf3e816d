"""Tests for PlanDriver."""

import json
from unittest.mock import MagicMock

import pytest

from conftest import py_recipe, write_status

from ciorch.command import Command, CommandKind
from ciorch.plan import ALREADY_STOPPED_REASON, PlanDriver
from ciorch.runner import StepResult, StepRunner
from ciorch.state import RunState, StateStore
from ciorch.steps import PLAN, Status, Step


def scripted_runner(outcomes):
    """StepRunner stand-in returning a fixed status per step name."""
    runner = MagicMock(spec=StepRunner)

    def _run(step, timebox_seconds, run_root):
        name = step.value if isinstance(step, Step) else step
        status = outcomes.get(name, Status.OK)
        return StepResult(
            step=name,
            status=status,
            reason=f"reason=scripted_{status.value.lower()}",
            duration_ms=1,
            log_path=str(run_root / f"{name}.log"),
            command=f"fake {name}",
        )

    runner.run.side_effect = _run
    return runner


@pytest.fixture
def state():
    return RunState(run_id="run-1-000")


class TestRunStep:
    """Single-step mode."""

    def test_ok_step_recorded(self, state, run_root, capsys):
        driver = PlanDriver(scripted_runner({}), state, run_root)

        result = driver.run_step(Step.FULL_BUILD)

        assert result.status == Status.OK
        assert [e.step for e in state.steps] == ["full-build"]
        assert not state.stop
        out = capsys.readouterr().out
        assert out.startswith("OK: full-build reason=scripted_ok duration_ms=1 log=")

    def test_error_sets_stop_reason(self, state, run_root):
        driver = PlanDriver(scripted_runner({"full-test": Status.ERROR}), state, run_root)

        driver.run_step(Step.FULL_TEST)

        assert state.stop
        assert state.reason == "step=full-test reason=scripted_error"

    def test_skip_does_not_stop(self, state, run_root):
        driver = PlanDriver(scripted_runner({"pr-create": Status.SKIP}), state, run_root)

        driver.run_step(Step.PR_CREATE)

        assert not state.stop

    def test_timebox_is_converted_to_seconds(self, state, run_root):
        runner = scripted_runner({})
        driver = PlanDriver(runner, state, run_root, timebox_minutes=3)

        driver.run_step(Step.PREFLIGHT)

        runner.run.assert_called_once_with(Step.PREFLIGHT, 180.0, run_root)


class TestRunPlan:
    """Full-plan mode."""

    def test_all_ok(self, state, run_root, capsys):
        driver = PlanDriver(scripted_runner({}), state, run_root)

        results = driver.run_plan()

        assert [r.step for r in results] == [s.value for s in PLAN]
        assert all(r.status == Status.OK for r in results)
        assert len(capsys.readouterr().out.strip().splitlines()) == len(PLAN)

    def test_steps_after_error_are_skipped_not_run(self, state, run_root):
        runner = scripted_runner({"full-build": Status.ERROR})
        driver = PlanDriver(runner, state, run_root)

        results = driver.run_plan()

        assert [r.status for r in results] == [
            Status.OK, Status.OK, Status.ERROR, Status.SKIP, Status.SKIP, Status.SKIP,
        ]
        assert len(state.run_entries()) == len(PLAN)
        assert [call.args[0] for call in runner.run.call_args_list] == [
            Step.PREFLIGHT, Step.VERIFY_LITE, Step.FULL_BUILD,
        ]
        for entry in state.steps[3:]:
            assert entry.status == "SKIP"
            assert entry.reason == ALREADY_STOPPED_REASON
        assert state.reason == "step=full-build reason=scripted_error"

    def test_skip_does_not_halt_the_plan(self, state, run_root):
        runner = scripted_runner({"verify-lite": Status.SKIP})
        driver = PlanDriver(runner, state, run_root)

        results = driver.run_plan()

        assert runner.run.call_count == len(PLAN)
        assert [r.status for r in results].count(Status.SKIP) == 1
        assert not state.stop

    def test_already_stopped_lines_are_printed(self, state, run_root, capsys):
        driver = PlanDriver(scripted_runner({"preflight": Status.ERROR}), state, run_root)

        driver.run_plan()

        lines = capsys.readouterr().out.strip().splitlines()
        assert lines[0].startswith("ERROR: preflight")
        assert lines[1].startswith("SKIP: verify-lite reason=already_stopped")
        assert len(lines) == len(PLAN)

    def test_stop_flag_set_before_plan_skips_everything(self, run_root):
        state = RunState(run_id="run-1-000", stop=True, reason="step=cli reason=x")
        runner = scripted_runner({})

        PlanDriver(runner, state, run_root).run_plan()

        runner.run.assert_not_called()
        assert [e.status for e in state.steps] == ["SKIP"] * len(PLAN)


class TestExecute:
    """Command dispatch."""

    def test_single_step_command(self, state, run_root):
        runner = scripted_runner({})
        driver = PlanDriver(runner, state, run_root, timebox_minutes=2)

        results = driver.execute(Command(kind=CommandKind.SINGLE_STEP, step=Step.BUNDLE_MAKE))

        assert [r.step for r in results] == ["bundle-make"]
        runner.run.assert_called_once_with(Step.BUNDLE_MAKE, 120.0, run_root)

    def test_run_plan_command(self, state, run_root):
        driver = PlanDriver(scripted_runner({}), state, run_root)

        results = driver.execute(Command(kind=CommandKind.RUN_PLAN))

        assert len(results) == len(PLAN)

    def test_help_is_not_a_plan_command(self, state, run_root):
        driver = PlanDriver(scripted_runner({}), state, run_root)

        with pytest.raises(ValueError):
            driver.execute(Command(kind=CommandKind.HELP))


class TestEndToEnd:
    """Real subprocesses through the real runner."""

    def test_status_file_error_stops_the_plan(self, tmp_path, make_config, run_root):
        status_path = "out/verify-lite.status"
        config = make_config(steps={
            "verify-lite": py_recipe(write_status(status_path, "status=ERROR"), status_path),
            "full-build": py_recipe("open('built.txt', 'w').write('x')"),
        })
        state = RunState(run_id="run-1-000")
        driver = PlanDriver(
            StepRunner(config),
            state,
            run_root,
            plan=(Step.PREFLIGHT, Step.VERIFY_LITE, Step.FULL_BUILD),
        )

        results = driver.run_plan()
        StateStore(config.state_path).save(state)

        assert [r.status for r in results] == [Status.OK, Status.ERROR, Status.SKIP]
        assert not (tmp_path / "built.txt").exists()
        persisted = json.loads(config.state_path.read_text())
        assert persisted["stop"] is True
        assert "verify-lite" in persisted["reason"]
        assert [s["status"] for s in persisted["steps"]] == ["OK", "ERROR", "SKIP"]
