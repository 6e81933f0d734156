"""
Task completion: commit, record, reconcile.

The agent asks for completion with a JSON block; Ralph does the work so the
commit, the progress entry and the task list update happen together. Any
change still uncommitted afterwards gets a safety-net commit.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from ralph.git import commit, get_short_sha, has_uncommitted_changes, stage_all
from ralph.lib.agent_output import CompletionRequest
from ralph.lib.tasklist import TaskItem, TaskList, TaskListError

logger = logging.getLogger(__name__)

SAFETY_NET_PREFIX = "chore(ralph): auto-commit"


@dataclass
class CommitOutcome:
    sha: str | None = None
    error: str | None = None

    @property
    def committed(self) -> bool:
        return self.sha is not None


@dataclass
class CompletionResult:
    """What the completion step managed to do."""
    commit_sha: str | None = None
    safety_net_sha: str | None = None
    progress_recorded: bool = False
    item: TaskItem | None = None
    criteria_marked: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def message(self) -> str:
        parts = []
        if self.commit_sha:
            parts.append(f"✅ Committed: {self.commit_sha}")
        if self.safety_net_sha:
            parts.append(f"⚠️ Safety-net commit: {self.safety_net_sha}")
        if self.progress_recorded:
            parts.append("✅ Progress updated")
        if self.item is not None:
            parts.append(f"✅ PRD task {self.item.id} marked [DONE]")
        if self.criteria_marked:
            parts.append(f"✅ {len(self.criteria_marked)} criteria marked done")
        return " | ".join(parts) if parts else "No changes recorded"


def commit_all(working_dir: Path, message: str) -> CommitOutcome:
    """Stage everything and commit. A clean tree is not an error."""
    if not has_uncommitted_changes(working_dir):
        return CommitOutcome()

    staged = stage_all(working_dir)
    if not staged.success:
        return CommitOutcome(error=f"git add failed: {staged.stderr.strip()}")

    result = commit(working_dir, message)
    if not result.success:
        return CommitOutcome(error=f"git commit failed: {(result.stderr or result.stdout).strip()}")

    return CommitOutcome(sha=get_short_sha(working_dir) or "HEAD")


def safety_net_message(iteration: int, task_description: str) -> str:
    subject = f"{SAFETY_NET_PREFIX} iteration {iteration}"
    body = [f"Task: {task_description or 'unknown'}", "", "The agent reported success but left uncommitted changes."]
    return subject + "\n\n" + "\n".join(body)


def safety_net_commit(working_dir: Path, iteration: int, task_description: str) -> CommitOutcome:
    """Commit leftovers after a successful agent run."""
    if not has_uncommitted_changes(working_dir):
        return CommitOutcome()
    logger.warning(f"Iteration {iteration}: uncommitted changes after agent success, auto-committing")
    print("WARNING: Agent left uncommitted changes; creating a safety-net commit")
    return commit_all(working_dir, safety_net_message(iteration, task_description))


def reconcile_task_list(
    task_list: TaskList,
    selected: TaskItem | None,
    claimed_description: str,
    request: CompletionRequest | None = None,
) -> tuple[TaskItem | None, list[str]]:
    """
    Apply the agent's claim to the task list.

    Partial progress marks criteria on the selected (or claimed) item.
    Completion marks the selected item first, otherwise the item whose
    description fuzzy-matches the claim.

    Returns:
        (completed item or None, criteria descriptions marked done)
    """
    if request is not None and not request.completes_task:
        target = selected or task_list.find_by_description(request.task_description or claimed_description)
        if target is None:
            return None, []
        marked = []
        for text in request.criteria_done:
            try:
                marked.append(task_list.mark_criterion_done(target.id, text).description)
            except TaskListError as e:
                logger.warning(str(e))
        return None, marked

    if selected is not None and not task_list.get(selected.id).is_done:
        return task_list.mark_complete(selected.id), []

    if claimed_description:
        item = task_list.mark_complete_by_description(claimed_description)
        if item is None:
            logger.warning(f"Completed task '{claimed_description}' does not match any open task")
            print(f"WARNING: Could not match completed task '{claimed_description}' to the task list")
        return item, []

    return None, []
