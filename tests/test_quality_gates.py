"""Tests for ralph.lib.quality_gates module."""

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

from ralph.lib.quality_gates import (
    AUTO_DETECT,
    GateCheck,
    GateReport,
    GateResult,
    default_checks,
    extract_section,
    format_commands,
    format_for_memory,
    format_summary,
    infer_check_name,
    load_gate_config,
    parse_gate_config,
    run_check,
    run_command,
    run_quality_gates,
    BACK_PRESSURE_HEADING,
)


AGENTS_MD = """# Agent guide

## Back pressure
- Build: `make build`
- Lint (optional): `make lint`
- `pytest -q`

## Style
- Build: `not a check`
"""


def completed(returncode=0, stdout="", stderr=""):
    return MagicMock(returncode=returncode, stdout=stdout, stderr=stderr)


class TestParseGateConfig:
    """Tests for AGENTS.md parsing."""

    def test_back_pressure_section(self):
        checks = parse_gate_config(AGENTS_MD)
        assert [(c.name, c.command, c.required) for c in checks] == [
            ("Build", "make build", True),
            ("Lint", "make lint", False),
            ("Test", "pytest -q", True),
        ]

    def test_section_stops_at_same_level_heading(self):
        section = extract_section(AGENTS_MD, BACK_PRESSURE_HEADING)
        assert "not a check" not in section

    def test_setup_commands_are_optional(self):
        text = "## Setup commands\n- Install: `npm ci`\n"
        checks = parse_gate_config(text)
        assert checks == [GateCheck(name="Install", command="npm ci", required=False)]

    def test_defaults_without_section(self):
        checks = parse_gate_config("# Guide\nNothing here\n")
        assert [c.name for c in checks] == ["Typecheck", "Lint", "Test"]
        assert all(c.auto_detect and c.required for c in checks)

    def test_defaults_without_text(self):
        assert parse_gate_config(None) == default_checks()

    def test_load_from_working_dir(self, tmp_path):
        (tmp_path / "AGENTS.md").write_text(AGENTS_MD)
        assert len(load_gate_config(tmp_path)) == 3
        assert load_gate_config(tmp_path / "missing") == default_checks()


class TestInferCheckName:
    """Tests for infer_check_name()."""

    def test_keywords(self):
        assert infer_check_name("npm test") == "Test"
        assert infer_check_name("npx eslint .") == "Lint"
        assert infer_check_name("mypy src") == "Typecheck"
        assert infer_check_name("cargo build") == "Build"
        assert infer_check_name("./ci.sh") == "./ci.sh"


class TestRunCommand:
    """Tests for run_command()."""

    @patch("ralph.lib.quality_gates.subprocess.run")
    def test_combines_output(self, mock_run):
        mock_run.return_value = completed(1, stdout="out", stderr="err")
        outcome = run_command("make", Path("/tmp"), 10)
        assert outcome.exit_code == 1
        assert outcome.output == "out\nerr"

    @patch("ralph.lib.quality_gates.subprocess.run")
    def test_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="make", timeout=10)
        outcome = run_command("make", Path("/tmp"), 10)
        assert outcome.timed_out
        assert outcome.exit_code == -1
        assert "timed out after 10s" in outcome.output

    @patch("ralph.lib.quality_gates.subprocess.run")
    def test_truncates_long_output(self, mock_run):
        mock_run.return_value = completed(1, stdout="x" * 10000)
        outcome = run_command("make", Path("/tmp"), 10)
        assert len(outcome.output) <= 3000
        assert "[truncated]" in outcome.output


class TestRunCheck:
    """Tests for run_check() and auto-detection."""

    @patch("ralph.lib.quality_gates.subprocess.run")
    def test_explicit_command(self, mock_run):
        mock_run.return_value = completed(0, stdout="ok")
        result = run_check(GateCheck("Build", "make build"), Path("/tmp"))
        assert result.passed
        assert result.command == "make build"
        assert mock_run.call_args[0][0] == "make build"

    @patch("ralph.lib.quality_gates.subprocess.run")
    def test_timeout_fails(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="make", timeout=1)
        result = run_check(GateCheck("Build", "make build"), Path("/tmp"), timeout=1)
        assert not result.passed

    @patch("ralph.lib.quality_gates.subprocess.run")
    def test_auto_detect_skips_not_found(self, mock_run, tmp_path):
        (tmp_path / "package.json").write_text("{}")
        mock_run.side_effect = [completed(127), completed(127), completed(0, stdout="3 passed")]
        result = run_check(GateCheck("Test", AUTO_DETECT), tmp_path)
        assert result.passed
        assert result.command == "npm test"

    @patch("ralph.lib.quality_gates.subprocess.run")
    def test_auto_detect_failure(self, mock_run, tmp_path):
        (tmp_path / "pyproject.toml").write_text("")
        mock_run.return_value = completed(1, stdout="1 failed")
        result = run_check(GateCheck("Test", AUTO_DETECT), tmp_path)
        assert not result.passed
        assert result.command == "pytest -q"

    @patch("ralph.lib.quality_gates.subprocess.run")
    def test_auto_detect_nothing_configured(self, mock_run, tmp_path):
        (tmp_path / "package.json").write_text("{}")
        mock_run.return_value = completed(127)
        result = run_check(GateCheck("Lint", AUTO_DETECT), tmp_path)
        assert result.passed
        assert result.output == "No linting configured"

    @patch("ralph.lib.quality_gates.subprocess.run")
    def test_auto_detect_without_markers_runs_nothing(self, mock_run, tmp_path):
        result = run_check(GateCheck("Typecheck", AUTO_DETECT), tmp_path)
        assert result.passed
        mock_run.assert_not_called()

    def test_auto_detect_unknown_category(self, tmp_path):
        result = run_check(GateCheck("Format", AUTO_DETECT), tmp_path)
        assert result.passed
        assert "No auto-detection" in result.output


class TestRunQualityGates:
    """Tests for run_quality_gates() and reports."""

    @patch("ralph.lib.quality_gates.subprocess.run")
    def test_optional_failure_does_not_fail_report(self, mock_run, tmp_path):
        mock_run.side_effect = [completed(0), completed(1, stdout="lint error")]
        checks = [GateCheck("Build", "make build"), GateCheck("Lint", "make lint", required=False)]
        report = run_quality_gates(tmp_path, checks)
        assert report.all_passed
        assert report.has_failures
        assert [r.name for r in report.failures] == ["Lint"]

    @patch("ralph.lib.quality_gates.subprocess.run")
    def test_runs_in_declaration_order(self, mock_run, tmp_path):
        mock_run.return_value = completed(0)
        checks = [GateCheck("B", "b"), GateCheck("A", "a")]
        run_quality_gates(tmp_path, checks)
        assert [c[0][0] for c in mock_run.call_args_list] == ["b", "a"]


class TestFormatting:
    """Tests for summary renderers."""

    def report(self):
        return GateReport(results=[
            GateResult("Build", "make", True, "ok", 1.24),
            GateResult("Test", "pytest", False, "\n".join(f"line {i}" for i in range(8)), 2.0),
        ])

    def test_summary_failed(self):
        text = format_summary(self.report())
        assert text.startswith("❌ Some quality gates failed:")
        assert "✅ Build: passed (1.2s)" in text
        assert "❌ Test: FAILED (2.0s)" in text
        assert "   line 4" in text
        assert "line 5" not in text
        assert "   ..." in text

    def test_summary_passed(self):
        report = GateReport(results=[GateResult("Build", "make", True, "ok", 0.5)])
        assert format_summary(report).startswith("✅ All quality gates passed!")

    def test_summary_marks_optional(self):
        report = GateReport(results=[GateResult("Lint", "l", False, "", 0.1, required=False)])
        assert "❌ Lint (optional): FAILED" in format_summary(report)

    def test_for_memory(self):
        text = format_for_memory(self.report())
        assert text.startswith("### Quality Gate Results")
        assert "- ❌ Test: FAILED" in text
        assert "Fix failing checks before continuing" in text

    def test_commands(self):
        checks = [GateCheck("Build", "make build"), GateCheck("Test", AUTO_DETECT, required=False)]
        assert format_commands(checks) == (
            "- Build: `make build`\n- Test (optional): auto-detect from project tooling"
        )
