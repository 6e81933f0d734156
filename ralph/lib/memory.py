"""
Memory providers: what happened in previous iterations.

Two backends share one interface, chosen once at startup:

- GitMemory: the last N commit subjects (default). Nothing stored locally.
- FileMemory: an append-only progress log with one block per iteration.

Both prefix the summary with the last quality gate status when results are
supplied, so a failing build carries into the next prompt.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from ralph.git.log import get_log_oneline
from ralph.lib.quality_gates import GateReport, format_for_memory

logger = logging.getLogger(__name__)

DEFAULT_LOG_COUNT = 10
RECENT_ENTRIES = 5
BANNER_OUTPUT_LINES = 3

ITERATION_HEADING_RE = re.compile(r'^## Iteration (\d+)(?: - (.+))?$', re.MULTILINE)


@dataclass
class MemoryEntry:
    """One iteration's record in the progress log."""
    iteration: int
    task_description: str
    task_id: str | None = None
    decisions: list[str] = field(default_factory=list)
    files_changed: list[str] = field(default_factory=list)
    notes: str = ""
    gate_report: GateReport | None = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class MemoryProvider(Protocol):
    """Interface the controller talks to."""

    def summarize(self, last_report: GateReport | None = None) -> str:
        """Text describing prior work, for the next prompt."""
        ...

    def record(self, entry: MemoryEntry) -> bool:
        """Persist an iteration's entry. False when history lives elsewhere."""
        ...

    def last_iteration(self) -> int:
        """Highest recorded iteration number, 0 if unknown."""
        ...


def format_gate_banner(report: GateReport | None) -> str:
    """Status block for the previous iteration's quality gates.

    Empty when there is no report.
    """
    if report is None or not report.results:
        return ""

    lines = []
    if report.has_failures:
        lines.append("⚠️ **LAST QUALITY GATE STATUS - FIX BEFORE CONTINUING:**")
    else:
        lines.append("✅ **Last Quality Gate Status:**")
    lines.append("")

    for result in report.results:
        icon = "✅" if result.passed else "❌"
        lines.append(f"{icon} {result.name}: {'passed' if result.passed else 'FAILED'}")
        if not result.passed and result.output:
            lines.extend(f"   {line}" for line in result.output.splitlines()[:BANNER_OUTPUT_LINES])

    if report.has_failures:
        lines.append("")
        lines.append("→ **Fix the failing checks before starting new work!**")

    return "\n".join(lines) + "\n\n---\n\n"


class GitMemory:
    """Memory backed by recent commit history."""

    def __init__(self, working_dir: Path, count: int = DEFAULT_LOG_COUNT):
        self.working_dir = working_dir
        self.count = count

    def summarize(self, last_report: GateReport | None = None) -> str:
        return format_gate_banner(last_report) + self._history()

    def _history(self) -> str:
        lines = get_log_oneline(self.working_dir, self.count)
        if lines is None:
            return "No git history available (not a git repository or no commits)."
        if not lines:
            return "No git commits found."
        commits = "\n".join(f"- {line}" for line in lines)
        return f"Recent Commits (last {self.count}):\n\n{commits}"

    def record(self, entry: MemoryEntry) -> bool:
        # Commit messages are the record
        logger.debug(f"Git memory: iteration {entry.iteration} recorded by commit history")
        return False

    def last_iteration(self) -> int:
        return 0


class FileMemory:
    """Memory backed by an append-only markdown progress log."""

    def __init__(self, path: Path):
        self.path = path

    def ensure_file(self):
        """Create the log with its header if missing."""
        if self.path.exists():
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            "# Ralph Progress Log\n"
            f"# Created: {datetime.now(timezone.utc).isoformat()}\n"
            "# This file tracks progress between Ralph iterations.\n"
            "# Delete this file when your sprint is complete.\n\n"
        )
        logger.info(f"Created progress log {self.path}")

    def record(self, entry: MemoryEntry) -> bool:
        self.ensure_file()
        with self.path.open("a") as f:
            f.write(format_entry(entry))
        return True

    def entries(self) -> list[MemoryEntry]:
        if not self.path.exists():
            return []
        return parse_entries(self.path.read_text())

    def summarize(self, last_report: GateReport | None = None) -> str:
        summary = format_gate_banner(last_report)
        entries = self.entries()
        if not entries:
            return summary + "No previous progress recorded."

        summary += f"Previous Progress ({len(entries)} iterations):\n\n"
        for entry in entries[-RECENT_ENTRIES:]:
            summary += f"Iteration {entry.iteration}: {entry.task_description}\n"
            if entry.decisions:
                summary += f"  Decisions: {', '.join(entry.decisions)}\n"
            if entry.files_changed:
                summary += f"  Files: {', '.join(entry.files_changed)}\n"
            summary += "\n"
        return summary

    def last_iteration(self) -> int:
        entries = self.entries()
        return max((e.iteration for e in entries), default=0)


def format_entry(entry: MemoryEntry) -> str:
    """Render one entry as a progress log block."""
    decisions = "\n".join(f"- {d}" for d in entry.decisions) or "- None"
    files = "\n".join(f"- {f}" for f in entry.files_changed) or "- None"
    task_id = f"Task ID: {entry.task_id}\n" if entry.task_id else ""
    gates = f"\n{format_for_memory(entry.gate_report)}\n" if entry.gate_report and entry.gate_report.results else ""

    return (
        f"\n## Iteration {entry.iteration} - {entry.timestamp}\n\n"
        f"### Task: {entry.task_description}\n"
        f"{task_id}\n"
        f"### Decisions\n{decisions}\n\n"
        f"### Files Changed\n{files}\n"
        f"{gates}\n"
        f"### Notes\n{entry.notes or 'None'}\n\n"
        "---\n"
    )


def parse_entries(text: str) -> list[MemoryEntry]:
    """Parse progress log blocks back into entries (gate results are not restored)."""
    entries = []
    headings = list(ITERATION_HEADING_RE.finditer(text))

    for i, heading in enumerate(headings):
        end = headings[i + 1].start() if i + 1 < len(headings) else len(text)
        block = text[heading.end():end]
        entry = MemoryEntry(
            iteration=int(heading.group(1)),
            task_description="",
            timestamp=(heading.group(2) or "").strip(),
        )

        section = ""
        notes = []
        for line in block.splitlines():
            if line.startswith("### Task:"):
                entry.task_description = line[len("### Task:"):].strip()
                section = ""
            elif line.startswith("Task ID:"):
                entry.task_id = line[len("Task ID:"):].strip()
            elif line.startswith("### Decisions"):
                section = "decisions"
            elif line.startswith("### Files Changed"):
                section = "files"
            elif line.startswith("### Notes"):
                section = "notes"
            elif line.startswith("### "):
                section = ""
            elif line.strip() == "---":
                section = ""
            elif line.startswith("- ") and section in ("decisions", "files"):
                value = line[2:].strip()
                if value == "None":
                    continue
                if section == "decisions":
                    entry.decisions.append(value)
                else:
                    entry.files_changed.append(value)
            elif section == "notes" and line.strip():
                notes.append(line)

        entry.notes = "\n".join(notes) if notes != ["None"] else ""
        entries.append(entry)

    return entries


def create_memory_provider(mode: str, working_dir: Path, progress_file: str, log_count: int = DEFAULT_LOG_COUNT) -> MemoryProvider:
    """Pick the backend for a run."""
    if mode == "file":
        path = Path(progress_file)
        if not path.is_absolute():
            path = working_dir / path
        return FileMemory(path)
    return GitMemory(working_dir, log_count)
