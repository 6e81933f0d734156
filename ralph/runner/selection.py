"""
Task selection and prompt assembly.

Phase 1 (select) shows the agent only the task summary and asks for one id.
Phase 2 (implement) shows it only the chosen task. When selection can't be
matched back to the list, or there is no list, the legacy prompt lets the
agent pick and implement in a single run.
"""

import logging
import threading

from ralph.agents.base import IMPLEMENT_TOOLS, Agent, AgentError, AgentRequest, ResultEvent, TextEvent
from ralph.lib.agent_output import COMPLETION_MARKER, TaskSelection, parse_selection
from ralph.lib.config import RalphConfig
from ralph.lib.prompts import build_section, render_prompt
from ralph.lib.quality_gates import GateCheck, format_commands
from ralph.lib.tasklist import TaskItem, TaskList

logger = logging.getLogger(__name__)

SELECT_USER_PROMPT = "Select the next task from the task list. Output SELECTED_TASK and TASK_DESCRIPTION only."
IMPLEMENT_USER_PROMPT = (
    "Implement the task described in your instructions. "
    "Run the quality gates, then finish with the completion block."
)
LEGACY_USER_PROMPT = (
    "Work on the highest-priority incomplete task from the task list in your instructions. "
    "Complete ONE task, run the quality gates and commit."
)


def build_selection_request(task_list: TaskList, config: RalphConfig) -> AgentRequest:
    return AgentRequest(
        stage="select",
        system_prompt=render_prompt("select", config.working_dir, task_summary=task_list.summary()),
        prompt=SELECT_USER_PROMPT,
        model=config.model,
        max_turns=1,
        allowed_tools=[],
    )


def match_selection(task_list: TaskList, selection: TaskSelection) -> TaskItem | None:
    """Map a selection answer to an incomplete item.

    Exact id first, then description in either direction.
    """
    for item in task_list.incomplete_items():
        if item.id == selection.task_id:
            return item
    if selection.description:
        return task_list.find_by_description(selection.description)
    return None


def select_task(
    agent: Agent,
    task_list: TaskList,
    config: RalphConfig,
    cancel: threading.Event | None = None,
) -> TaskItem | None:
    """Run the selection phase. None means fall back to legacy mode."""
    request = build_selection_request(task_list, config)
    chunks = []
    try:
        for event in agent.stream(request, cancel):
            if isinstance(event, TextEvent):
                chunks.append(event.text)
            elif isinstance(event, ResultEvent) and not event.success:
                logger.warning(f"Selection run reported errors: {'; '.join(event.errors)}")
    except AgentError as e:
        logger.warning(f"Task selection failed: {e}")
        print(f"WARNING: Task selection failed: {e}")
        return None

    output = "\n".join(chunks)
    selection = parse_selection(output)
    if selection is None:
        logger.warning(f"Could not parse task selection from: {output[:200]!r}")
        return None

    item = match_selection(task_list, selection)
    if item is None:
        logger.warning(f"Selected task {selection.task_id} ({selection.description!r}) is not in the task list")
    return item


def _task_details(item: TaskItem) -> str:
    parts = []
    extra = "\n".join(item.description.splitlines()[1:]).strip()
    if extra:
        parts.append(extra + "\n")
    if item.requirements:
        steps = "\n".join(f"{i}. {req}" for i, req in enumerate(item.requirements, 1))
        parts.append(build_section(steps, "### Requirements"))
    if item.criteria:
        criteria = "\n".join(f"- [{'x' if c.done else ' '}] {c.description}" for c in item.criteria)
        parts.append(build_section(criteria, "### Acceptance Criteria"))
    return "\n".join(parts)


def _gate_section(checks: list[GateCheck]) -> str:
    if not checks:
        return ""
    body = "Run these checks with the Bash tool before reporting completion:\n\n" + format_commands(checks)
    return build_section(body, "## Quality Gates")


def build_implementation_request(
    item: TaskItem,
    memory: str,
    checks: list[GateCheck],
    config: RalphConfig,
    guidelines: str | None = None,
    intervention: str | None = None,
) -> AgentRequest:
    system_prompt = render_prompt(
        "implement",
        config.working_dir,
        task_id=item.id,
        task_description=item.title,
        priority=item.priority.value,
        task_details=_task_details(item),
        memory=memory,
        gate_section=_gate_section(checks),
        guidelines_section=build_section(guidelines, "## Project Guidelines (AGENTS.md)"),
        intervention=build_section(intervention, "## Operator Message"),
    )
    return AgentRequest(
        stage="implement",
        system_prompt=system_prompt,
        prompt=IMPLEMENT_USER_PROMPT,
        model=config.model,
        max_turns=config.max_turns,
        allowed_tools=list(IMPLEMENT_TOOLS),
    )


def build_legacy_request(
    task_list: TaskList | None,
    memory: str,
    checks: list[GateCheck],
    config: RalphConfig,
    guidelines: str | None = None,
    intervention: str | None = None,
) -> AgentRequest:
    summary = task_list.summary() if task_list is not None else (
        "No task list found. Decide what to work on from the repository and guidelines."
    )
    system_prompt = render_prompt(
        "legacy",
        config.working_dir,
        task_summary=summary,
        memory=memory,
        gate_section=_gate_section(checks),
        guidelines_section=build_section(guidelines, "## Project Guidelines (AGENTS.md)"),
        intervention=build_section(intervention, "## Operator Message"),
        completion_marker=COMPLETION_MARKER,
    )
    return AgentRequest(
        stage="legacy",
        system_prompt=system_prompt,
        prompt=LEGACY_USER_PROMPT,
        model=config.model,
        max_turns=config.max_turns,
        allowed_tools=list(IMPLEMENT_TOOLS),
    )
