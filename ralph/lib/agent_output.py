"""
Parsers for agent text output.

The agent answers in loosely structured markdown. Everything here is
tolerant: a parser that finds nothing returns None or empty fields, and
the caller decides whether that is a failure.
"""

import json
import logging
import re
from dataclasses import dataclass, field

from ralph.lib.validate import ValidationError, validate

logger = logging.getLogger(__name__)

COMPLETION_MARKER = "<promise>COMPLETE</promise>"

ACTION_COMPLETE = "complete_task"
ACTION_PROGRESS = "task_progress"

SELECTED_RE = re.compile(r'SELECTED_TASK:\s*\**\s*#?(\w[\w-]*)', re.IGNORECASE)
SELECTED_DESC_RE = re.compile(r'TASK_DESCRIPTION:\s*\**\s*(.+?)\s*\**\s*$', re.IGNORECASE | re.MULTILINE)
REASONING_RE = re.compile(r'REASONING:\s*([\s\S]*?)(?=\n(?:SELECTED_TASK|TASK_DESCRIPTION)|$)', re.IGNORECASE)
LOOSE_TASK_RE = re.compile(r'Task\s*#?(\d+)', re.IGNORECASE)
LOOSE_DESC_RE = re.compile(r'Task\s*#?\d+[:\s]+(.+?)\s*$', re.IGNORECASE | re.MULTILINE)

COMPLETED_RE = re.compile(r'##\s*Completed:\s*(.+?)\s*$', re.IGNORECASE | re.MULTILINE)
CHANGES_RE = re.compile(r'##\s*Changes Made\s*\n([\s\S]*?)(?=\n##|\n---|\n\*\*|$)', re.IGNORECASE)
DECISIONS_RE = re.compile(r'##\s*Decisions\s*\n([\s\S]*?)(?=\n##|\n---|\n\*\*Completed|$)', re.IGNORECASE)
BULLET_RE = re.compile(r'^[-*]\s+(.+)$', re.MULTILINE)
JSON_BLOCK_RE = re.compile(r'```(?:json)?\s*\n(.*?)\n```', re.DOTALL)


@dataclass
class TaskSelection:
    """Answer from the selection phase."""
    task_id: str
    description: str = ""
    reasoning: str = ""


@dataclass
class StructuredOutput:
    """Markdown report at the end of an implementation run."""
    task_description: str = ""
    decisions: list[str] = field(default_factory=list)
    summary: str = ""

    @property
    def found(self) -> bool:
        return bool(self.task_description)


@dataclass
class CompletionRequest:
    """A complete_task / task_progress block emitted by the agent."""
    action: str
    task_description: str = ""
    commit_message: str = ""
    files_changed: list[str] = field(default_factory=list)
    decisions: list[str] = field(default_factory=list)
    summary: str = ""
    criteria_done: list[str] = field(default_factory=list)

    @property
    def completes_task(self) -> bool:
        return self.action == ACTION_COMPLETE


def parse_selection(text: str) -> TaskSelection | None:
    """Parse the selection answer.

    Tries the tagged SELECTED_TASK format, then a looser "Task #N".
    """
    tagged = SELECTED_RE.search(text)
    if tagged:
        desc = SELECTED_DESC_RE.search(text)
        reasoning = REASONING_RE.search(text)
        return TaskSelection(
            task_id=tagged.group(1),
            description=desc.group(1).strip() if desc else "",
            reasoning=reasoning.group(1).strip() if reasoning else "",
        )

    loose = LOOSE_TASK_RE.search(text)
    if loose:
        desc = LOOSE_DESC_RE.search(text)
        return TaskSelection(task_id=loose.group(1), description=desc.group(1).strip() if desc else "")

    return None


def parse_structured_output(text: str) -> StructuredOutput:
    """Extract "## Completed:", "## Changes Made" and "## Decisions"."""
    result = StructuredOutput()

    completed = COMPLETED_RE.search(text)
    if completed:
        result.task_description = completed.group(1).strip()

    changes = CHANGES_RE.search(text)
    if changes:
        result.summary = changes.group(1).strip()

    decisions = DECISIONS_RE.search(text)
    if decisions:
        result.decisions = [
            d.strip() for d in BULLET_RE.findall(decisions.group(1))
            if d.strip() and d.strip().lower() != "none"
        ]

    return result


def _clean(values: list[str]) -> list[str]:
    return [v.strip() for v in values if v.strip()]


def parse_completion_request(text: str) -> CompletionRequest | None:
    """
    Find the last valid fenced JSON block carrying a completion action.

    Blocks that fail the completion schema are logged and skipped, so a
    malformed report reads the same as no report.
    """
    request = None
    for block in JSON_BLOCK_RE.findall(text):
        try:
            data = json.loads(block)
        except json.JSONDecodeError as e:
            logger.debug(f"Skipping unparseable JSON block: {e}")
            continue
        if not isinstance(data, dict) or data.get("action") not in (ACTION_COMPLETE, ACTION_PROGRESS):
            continue
        try:
            validate(data, "completion")
        except ValidationError as e:
            logger.warning(f"Ignoring malformed {data['action']} block: {e}")
            continue
        request = CompletionRequest(
            action=data["action"],
            task_description=data.get("task_description", "").strip(),
            commit_message=data.get("commit_message", "").strip(),
            files_changed=_clean(data.get("files_changed", [])),
            decisions=_clean(data.get("decisions", [])),
            summary=data.get("summary", "").strip(),
            criteria_done=_clean(data.get("criteria_done", [])),
        )
    return request


def has_completion_marker(text: str) -> bool:
    """True when the agent declared the whole task list complete."""
    return COMPLETION_MARKER in text
