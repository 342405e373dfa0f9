"""Tests for the archbuild CLI commands."""

import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from archbuild.build.coverage import TestOutcome
from archbuild.build.orchestrator import BuildResult
from archbuild.build.planner import ConflictingLinkageError
from archbuild.build.scheduler import FAILED, SKIPPED, SUCCEEDED, ActionResult
from archbuild.cli import main


class TestCLIBuild:
    """Tests for the 'archbuild build' command."""

    @pytest.fixture
    def project_dir(self, sample_mission):
        return sample_mission

    @pytest.fixture
    def mock_orchestrator(self):
        """Patch BuildOrchestrator and log file setup in the CLI module."""
        with (
            patch("archbuild.cli.BuildOrchestrator") as mock_orch_class,
            patch("archbuild.cli.setup_logging"),
        ):
            mock_instance = MagicMock()
            mock_orch_class.return_value = mock_instance
            yield mock_instance

    @pytest.fixture
    def success_result(self, tmp_path):
        return BuildResult(
            success=True,
            results={"native:bus": ActionResult("native:bus", SUCCEEDED)},
            installed=[tmp_path / ".archbuild" / "exe" / "cpu1" / "core-cpu1"],
            build_time=3.21,
            message="Build successful: 1 actions in 3.21s",
        )

    @pytest.fixture
    def failure_result(self):
        return BuildResult(
            success=False,
            results={
                "native:bus": ActionResult("native:bus", FAILED, error=RuntimeError("bus.c: syntax error")),
                "native:sensor": ActionResult("native:sensor", SKIPPED, blocked_by=["native:bus"]),
            },
            build_time=1.5,
            message="Build failed: 2 of 2 actions failed or skipped",
        )

    def test_build_success(self, mock_orchestrator, success_result, project_dir, monkeypatch, capsys):
        mock_orchestrator.build.return_value = success_result

        monkeypatch.setattr(sys, "argv", ["archbuild", "build", str(project_dir)])

        with pytest.raises(SystemExit) as exc_info:
            main()

        assert exc_info.value.code == 0
        captured = capsys.readouterr()
        assert "Build successful" in captured.out
        assert "Installed 1 files" in captured.out
        assert "native" in captured.out

        call_kwargs = mock_orchestrator.build.call_args.kwargs
        assert call_kwargs["architecture"] is None
        assert call_kwargs["clean"] is False
        assert call_kwargs["tables"] is True

    def test_build_options(self, success_result, project_dir, monkeypatch):
        with (
            patch("archbuild.cli.BuildOrchestrator") as mock_orch_class,
            patch("archbuild.cli.setup_logging"),
        ):
            mock_orch_class.return_value.build.return_value = success_result
            monkeypatch.setattr(
                sys, "argv",
                ["archbuild", "build", str(project_dir), "-a", "native", "-j", "3", "-c", "--no-tables"],
            )

            with pytest.raises(SystemExit):
                main()

        assert mock_orch_class.call_args.kwargs["jobs"] == 3
        call_kwargs = mock_orch_class.return_value.build.call_args.kwargs
        assert call_kwargs["architecture"] == "native"
        assert call_kwargs["clean"] is True
        assert call_kwargs["tables"] is False

    def test_build_failure(self, mock_orchestrator, failure_result, project_dir, monkeypatch, capsys):
        mock_orchestrator.build.return_value = failure_result

        monkeypatch.setattr(sys, "argv", ["archbuild", "build", str(project_dir)])

        with pytest.raises(SystemExit) as exc_info:
            main()

        assert exc_info.value.code == 1
        captured = capsys.readouterr()
        assert "Build failed" in captured.out
        assert "FAILED  native:bus: bus.c: syntax error" in captured.out
        assert "SKIPPED native:sensor (blocked by native:bus)" in captured.out

    def test_unknown_architecture(self, mock_orchestrator, project_dir, monkeypatch, capsys):
        monkeypatch.setattr(sys, "argv", ["archbuild", "build", str(project_dir), "-a", "sparc"])

        with pytest.raises(SystemExit) as exc_info:
            main()

        assert exc_info.value.code == 1
        captured = capsys.readouterr()
        assert "MissionConfigError" in captured.out
        assert "Unexpected error" not in captured.out
        assert "sparc" in captured.out
        mock_orchestrator.build.assert_not_called()

    def test_missing_mission_file(self, mock_orchestrator, tmp_path, monkeypatch, capsys):
        empty = tmp_path / "empty"
        empty.mkdir()
        monkeypatch.setattr(sys, "argv", ["archbuild", "build", str(empty)])

        with pytest.raises(SystemExit) as exc_info:
            main()

        assert exc_info.value.code == 1
        captured = capsys.readouterr()
        assert "File not found" in captured.out
        assert "mission.ini" in captured.out

    def test_structural_error(self, mock_orchestrator, project_dir, monkeypatch, capsys):
        mock_orchestrator.build.side_effect = ConflictingLinkageError("Unit 'bus' is dynamic on cpu1 but static on cpu2")

        monkeypatch.setattr(sys, "argv", ["archbuild", "build", str(project_dir)])

        with pytest.raises(SystemExit) as exc_info:
            main()

        assert exc_info.value.code == 1
        captured = capsys.readouterr()
        assert "ConflictingLinkageError" in captured.out
        assert "dynamic on cpu1" in captured.out

    def test_build_keyboard_interrupt(self, mock_orchestrator, project_dir, monkeypatch, capsys):
        mock_orchestrator.build.side_effect = KeyboardInterrupt()

        monkeypatch.setattr(sys, "argv", ["archbuild", "build", str(project_dir)])

        with pytest.raises(SystemExit) as exc_info:
            main()

        assert exc_info.value.code == 130
        assert "interrupted" in capsys.readouterr().out

    def test_build_unexpected_error_verbose(self, mock_orchestrator, project_dir, monkeypatch, capsys):
        mock_orchestrator.build.side_effect = RuntimeError("Unexpected error occurred")

        monkeypatch.setattr(sys, "argv", ["archbuild", "build", "-v", str(project_dir)])

        with pytest.raises(SystemExit) as exc_info:
            main()

        assert exc_info.value.code == 1
        captured = capsys.readouterr()
        assert "RuntimeError" in captured.out
        assert "Traceback:" in captured.out

    def test_build_with_nonexistent_project_dir(self, monkeypatch, capsys):
        monkeypatch.setattr(sys, "argv", ["archbuild", "build", str(Path("/nonexistent/path"))])

        with pytest.raises(SystemExit) as exc_info:
            main()

        assert exc_info.value.code == 2
        assert "does not exist" in capsys.readouterr().out.lower()


class TestCLITest:
    """Tests for the 'archbuild test' command."""

    def test_failing_test_reported(self, sample_mission, monkeypatch, capsys):
        result = BuildResult(
            success=False,
            results={"native:coverage-sensor-calibration": ActionResult("native:coverage-sensor-calibration", SUCCEEDED)},
            tests=[TestOutcome("coverage-sensor-calibration", False, 1, "calibration_test FAIL", 0.1)],
            message="Test failed: 1 of 1 tests failed",
        )
        with (
            patch("archbuild.cli.BuildOrchestrator") as mock_orch_class,
            patch("archbuild.cli.setup_logging"),
        ):
            mock_orch_class.return_value.test.return_value = result
            monkeypatch.setattr(sys, "argv", ["archbuild", "test", str(sample_mission), "--no-run"])

            with pytest.raises(SystemExit) as exc_info:
                main()

        assert exc_info.value.code == 1
        captured = capsys.readouterr()
        assert "Test failed: coverage-sensor-calibration" in captured.out
        assert "Tests: 0/1 passed" in captured.out
        assert mock_orch_class.return_value.test.call_args.kwargs["run"] is False


class TestCLIPlan:
    """Tests for the 'archbuild plan' command (runs the real planner)."""

    def test_plan_output(self, sample_mission, monkeypatch, capsys):
        monkeypatch.setattr(sys, "argv", ["archbuild", "plan", str(sample_mission)])

        with pytest.raises(SystemExit) as exc_info:
            main()

        assert exc_info.value.code == 0
        out = capsys.readouterr().out
        assert "Architecture: native" in out
        assert "sensor (dynamic) -> sensor.so" in out
        assert "core-cpu1: osal, bus" in out
        assert "sensor.so -> cpu1/cf/sensor.so" in out


class TestCLIMain:
    """Tests for argument parsing."""

    def test_main_help(self, monkeypatch, capsys):
        monkeypatch.setattr(sys, "argv", ["archbuild", "--help"])

        with pytest.raises(SystemExit) as exc_info:
            main()

        assert exc_info.value.code == 0
        out = capsys.readouterr().out
        assert "check-headers" in out
        assert "build" in out

    def test_build_help(self, monkeypatch, capsys):
        monkeypatch.setattr(sys, "argv", ["archbuild", "build", "--help"])

        with pytest.raises(SystemExit) as exc_info:
            main()

        assert exc_info.value.code == 0
        out = capsys.readouterr().out
        assert "--architecture" in out
        assert "--jobs" in out
        assert "--no-tables" in out

    def test_main_version(self, monkeypatch, capsys):
        monkeypatch.setattr(sys, "argv", ["archbuild", "--version"])

        with pytest.raises(SystemExit) as exc_info:
            main()

        assert exc_info.value.code == 0
        assert "0.1.0" in capsys.readouterr().out

    def test_no_command_prints_help(self, monkeypatch, capsys):
        monkeypatch.setattr(sys, "argv", ["archbuild"])

        with pytest.raises(SystemExit) as exc_info:
            main()

        assert exc_info.value.code == 0
        assert "usage" in capsys.readouterr().out
