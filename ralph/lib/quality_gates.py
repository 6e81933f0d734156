"""
Quality gate ("back pressure") engine.

Checks come from the project's AGENTS.md:

    ## Back pressure
    - Build: `make build`
    - Lint (optional): `make lint`
    - `pytest -q`

A "Setup commands" section is used when there is no back pressure section;
checks found there are optional. With no usable section, three auto-detected
required checks are used (Typecheck, Lint, Test).

Checks run sequentially in declaration order. A check that times out fails;
it never raises.
"""

import logging
import re
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

__all__ = [
    "AUTO_DETECT",
    "CONFIG_DOCUMENT",
    "GateCheck",
    "GateResult",
    "GateReport",
    "Candidate",
    "AUTO_DETECT_POLICY",
    "default_checks",
    "extract_section",
    "parse_checks",
    "parse_gate_config",
    "load_gate_config",
    "infer_check_name",
    "run_command",
    "run_check",
    "run_quality_gates",
    "format_summary",
    "format_for_memory",
    "format_commands",
]

AUTO_DETECT = "AUTO_DETECT"
CONFIG_DOCUMENT = "AGENTS.md"
DEFAULT_TIMEOUT = 300
NOT_FOUND_EXIT = 127
MAX_OUTPUT_CHARS = 3000
SUMMARY_OUTPUT_LINES = 5

BACK_PRESSURE_HEADING = re.compile(r'^(#{1,6})\s*back\s*pressure\b.*$', re.IGNORECASE)
SETUP_COMMANDS_HEADING = re.compile(r'^(#{1,6})\s*setup\s*commands\b.*$', re.IGNORECASE)
ANY_HEADING = re.compile(r'^(#{1,6})\s')

# "- Name: `cmd`", "- Name (optional): cmd", "- Name: cmd (optional)"
NAMED_LINE = re.compile(
    r'^\s*[-*]\s*(?P<name>[A-Za-z][\w\- ]*?)\s*(?P<opt>\(optional\))?\s*:\s*(?P<rest>.+?)\s*$',
    re.IGNORECASE,
)
# "- `cmd`" with an optional trailing note
COMMAND_LINE = re.compile(r'^\s*[-*]\s*`(?P<cmd>[^`]+)`(?P<rest>.*)$')
OPTIONAL_MARK = re.compile(r'\(optional\)|\boptional:', re.IGNORECASE)


@dataclass
class GateCheck:
    """A named verification command."""
    name: str
    command: str
    required: bool = True

    @property
    def auto_detect(self) -> bool:
        return self.command == AUTO_DETECT


@dataclass
class GateResult:
    """Outcome of one check."""
    name: str
    command: str
    passed: bool
    output: str
    duration: float
    required: bool = True


@dataclass
class GateReport:
    """Outcome of a full quality gate run."""
    results: list[GateResult] = field(default_factory=list)

    @property
    def all_passed(self) -> bool:
        """True when every required check passed."""
        return all(r.passed for r in self.results if r.required)

    @property
    def failures(self) -> list[GateResult]:
        return [r for r in self.results if not r.passed]

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)


@dataclass(frozen=True)
class Candidate:
    """One command to try when auto-detecting a check.

    marker: file that must exist in the working directory for the
    candidate to apply. A missing marker counts as "not found".
    """
    command: str
    timeout: int
    marker: str | None = None


# Ordered fallbacks per check category. The first candidate that exists
# (exit code other than 127) decides the result.
AUTO_DETECT_POLICY: dict[str, tuple[Candidate, ...]] = {
    "typecheck": (
        Candidate("bun run typecheck", 120, "package.json"),
        Candidate("pnpm typecheck", 120, "package.json"),
        Candidate("npm run typecheck", 120, "package.json"),
        Candidate("npx tsc --noEmit", 120, "tsconfig.json"),
        Candidate("mypy .", 120, "pyproject.toml"),
    ),
    "lint": (
        Candidate("bun run lint", 120, "package.json"),
        Candidate("pnpm lint", 120, "package.json"),
        Candidate("npm run lint", 120, "package.json"),
        Candidate("npx eslint .", 120, "package.json"),
        Candidate("ruff check .", 120, "pyproject.toml"),
    ),
    "test": (
        Candidate("bun test", 300, "package.json"),
        Candidate("pnpm test", 300, "package.json"),
        Candidate("npm test", 300, "package.json"),
        Candidate("pytest -q", 300, "pyproject.toml"),
    ),
}
AUTO_DETECT_POLICY["tests"] = AUTO_DETECT_POLICY["test"]

NOT_CONFIGURED = {
    "typecheck": "No type checking configured",
    "lint": "No linting configured",
    "test": "No tests configured",
    "tests": "No tests configured",
}


def default_checks() -> list[GateCheck]:
    """The fallback check set: three required auto-detected checks."""
    return [
        GateCheck(name="Typecheck", command=AUTO_DETECT),
        GateCheck(name="Lint", command=AUTO_DETECT),
        GateCheck(name="Test", command=AUTO_DETECT),
    ]


def extract_section(text: str, heading: re.Pattern) -> str | None:
    """Return the body of the first section whose heading matches.

    The section ends at the next heading of the same or higher level.
    """
    lines = text.splitlines()
    for i, line in enumerate(lines):
        match = heading.match(line.strip())
        if not match:
            continue
        level = len(match.group(1))
        body = []
        for following in lines[i + 1:]:
            next_heading = ANY_HEADING.match(following)
            if next_heading and len(next_heading.group(1)) <= level:
                break
            body.append(following)
        return "\n".join(body)
    return None


def infer_check_name(command: str) -> str:
    """Guess a display name from command keywords."""
    cmd = command.lower()
    if "test" in cmd:
        return "Test"
    if any(k in cmd for k in ("lint", "eslint", "clippy")):
        return "Lint"
    if any(k in cmd for k in ("typecheck", "tsc", "mypy", "check")):
        return "Typecheck"
    if any(k in cmd for k in ("build", "compile")):
        return "Build"
    if any(k in cmd for k in ("format", "fmt")):
        return "Format"
    return command.split()[0] if command.split() else command


def _strip_command(rest: str) -> str:
    """Pull the command out of the text after 'Name:'."""
    inline = re.search(r'`([^`]+)`', rest)
    if inline:
        return inline.group(1).strip()
    return OPTIONAL_MARK.sub("", rest).strip()


def parse_checks(section: str, required: bool = True) -> list[GateCheck]:
    """Extract checks from the lines of a section."""
    checks = []
    for line in section.splitlines():
        optional = bool(OPTIONAL_MARK.search(line))

        command_only = COMMAND_LINE.match(line)
        if command_only:
            command = command_only.group("cmd").strip()
            checks.append(GateCheck(
                name=infer_check_name(command),
                command=command,
                required=required and not optional,
            ))
            continue

        named = NAMED_LINE.match(line)
        if named:
            command = _strip_command(named.group("rest"))
            if not command:
                continue
            checks.append(GateCheck(
                name=named.group("name").strip(),
                command=command,
                required=required and not optional,
            ))
    return checks


def parse_gate_config(text: str | None) -> list[GateCheck]:
    """Derive the check list from AGENTS.md content.

    Returns the default checks when there is no usable section.
    """
    if not text:
        return default_checks()

    section = extract_section(text, BACK_PRESSURE_HEADING)
    if section is not None:
        checks = parse_checks(section, required=True)
    else:
        setup = extract_section(text, SETUP_COMMANDS_HEADING)
        checks = parse_checks(setup, required=False) if setup is not None else []

    if not checks:
        logger.debug("No quality gate commands found, using defaults")
        return default_checks()
    return checks


def load_gate_config(working_dir: Path) -> list[GateCheck]:
    """Read AGENTS.md from the working directory and parse its checks."""
    path = working_dir / CONFIG_DOCUMENT
    if not path.exists():
        return default_checks()
    try:
        return parse_gate_config(path.read_text())
    except OSError as e:
        logger.warning(f"Failed to read {path}: {e}")
        return default_checks()


@dataclass
class CommandOutcome:
    exit_code: int
    output: str
    timed_out: bool = False


def _truncate(output: str, max_chars: int = MAX_OUTPUT_CHARS) -> str:
    if len(output) <= max_chars:
        return output
    marker = "\n\n... [truncated] ...\n\n"
    available = max_chars - len(marker)
    head = (available * 2) // 3
    tail = available - head
    return f"{output[:head]}{marker}{output[-tail:]}"


def run_command(command: str, cwd: Path, timeout: int) -> CommandOutcome:
    """Run a shell command, capturing combined output."""
    try:
        result = subprocess.run(
            command,
            shell=True,
            cwd=str(cwd),
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        return CommandOutcome(exit_code=-1, output=f"Command timed out after {timeout}s", timed_out=True)
    except OSError as e:
        return CommandOutcome(exit_code=NOT_FOUND_EXIT, output=str(e))

    output = "\n".join(part for part in (result.stdout.strip(), result.stderr.strip()) if part)
    return CommandOutcome(exit_code=result.returncode, output=_truncate(output))


def _auto_detect(check: GateCheck, cwd: Path) -> tuple[bool, str, str]:
    """Try the policy candidates for a check. Returns (passed, command, output)."""
    key = check.name.lower()
    candidates = AUTO_DETECT_POLICY.get(key)
    if candidates is None:
        return True, AUTO_DETECT, f"No auto-detection for {check.name}"

    for candidate in candidates:
        if candidate.marker and not (cwd / candidate.marker).exists():
            continue
        outcome = run_command(candidate.command, cwd, candidate.timeout)
        if outcome.exit_code == NOT_FOUND_EXIT:
            logger.debug(f"{check.name}: '{candidate.command}' not found, trying next")
            continue
        passed = outcome.exit_code == 0 and not outcome.timed_out
        return passed, candidate.command, outcome.output or ("Passed" if passed else "Failed")

    return True, AUTO_DETECT, NOT_CONFIGURED.get(key, f"No {check.name} configured")


def run_check(check: GateCheck, cwd: Path, timeout: int = DEFAULT_TIMEOUT) -> GateResult:
    """Run one check and time it."""
    start = time.monotonic()
    if check.auto_detect:
        passed, command, output = _auto_detect(check, cwd)
    else:
        outcome = run_command(check.command, cwd, timeout)
        passed = outcome.exit_code == 0 and not outcome.timed_out
        command = check.command
        output = outcome.output or ("Passed" if passed else "Failed")

    duration = time.monotonic() - start
    if not passed:
        level = logging.WARNING if check.required else logging.INFO
        logger.log(level, f"Quality gate '{check.name}' failed ({command})")

    return GateResult(
        name=check.name,
        command=command,
        passed=passed,
        output=output,
        duration=duration,
        required=check.required,
    )


def run_quality_gates(
    working_dir: Path,
    checks: list[GateCheck] | None = None,
    timeout: int = DEFAULT_TIMEOUT,
) -> GateReport:
    """Run every check sequentially and collect a report."""
    if checks is None:
        checks = load_gate_config(working_dir)
    report = GateReport()
    for check in checks:
        report.results.append(run_check(check, working_dir, timeout))
    return report


def _result_line(result: GateResult) -> str:
    icon = "✅" if result.passed else "❌"
    status = "passed" if result.passed else "FAILED"
    optional = "" if result.required else " (optional)"
    return f"{icon} {result.name}{optional}: {status} ({result.duration:.1f}s)"


def format_summary(report: GateReport) -> str:
    """Human-readable report: header, one line per check, output excerpt for failures."""
    lines = []
    if report.all_passed:
        lines.append("✅ All quality gates passed!")
    else:
        lines.append("❌ Some quality gates failed:")
    lines.append("")

    for result in report.results:
        lines.append(_result_line(result))
        if not result.passed and result.output:
            output_lines = result.output.splitlines()
            lines.extend(f"   {line}" for line in output_lines[:SUMMARY_OUTPUT_LINES])
            if len(output_lines) > SUMMARY_OUTPUT_LINES:
                lines.append("   ...")
    return "\n".join(lines)


def format_for_memory(report: GateReport) -> str:
    """Compact markdown block for the progress log."""
    lines = ["### Quality Gate Results"]
    for result in report.results:
        icon = "✅" if result.passed else "❌"
        lines.append(f"- {icon} {result.name}: {'passed' if result.passed else 'FAILED'}")
        if not result.passed and result.output:
            lines.extend(f"  {line}" for line in result.output.splitlines()[:3])
    if not report.all_passed:
        lines.append("")
        lines.append("⚠️ **Fix failing checks before continuing!**")
    return "\n".join(lines)


def format_commands(checks: list[GateCheck]) -> str:
    """Bullet list of check commands for prompts."""
    lines = []
    for check in checks:
        command = "auto-detect from project tooling" if check.auto_detect else f"`{check.command}`"
        suffix = "" if check.required else " (optional)"
        lines.append(f"- {check.name}{suffix}: {command}")
    return "\n".join(lines)
