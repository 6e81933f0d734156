"""
Task list model.

A task list (the PRD) is an ordered set of work items. Each item carries
acceptance criteria; an item's status is derived from them:

- done:    every criterion done (items without criteria: explicitly completed)
- working: some but not all criteria done, or explicitly picked up
- pending: everything else

Items are only ever mutated through mark_working, mark_criterion_done and
mark_complete. Persistence lives in prdparse.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)

__all__ = [
    "TaskStatus",
    "Priority",
    "PRIORITY_ORDER",
    "TaskListError",
    "Criterion",
    "TaskItem",
    "TaskList",
    "derive_status",
]


class TaskStatus(str, Enum):
    PENDING = "pending"
    WORKING = "working"
    DONE = "done"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


PRIORITY_ORDER = (Priority.HIGH, Priority.MEDIUM, Priority.LOW)


class TaskListError(Exception):
    """Raised when an operation references an item or criterion that doesn't exist."""
    pass


@dataclass
class Criterion:
    """Single acceptance criterion."""
    description: str
    done: bool = False


@dataclass
class TaskItem:
    """A unit of work in the task list."""
    id: str
    description: str
    priority: Priority = Priority.MEDIUM
    category: str = "general"
    requirements: list[str] = field(default_factory=list)
    criteria: list[Criterion] = field(default_factory=list)
    status: TaskStatus = TaskStatus.PENDING

    @property
    def passes(self) -> bool:
        """Legacy completion flag, always in sync with status."""
        return self.status == TaskStatus.DONE

    @property
    def is_done(self) -> bool:
        return self.status == TaskStatus.DONE

    @property
    def title(self) -> str:
        """First line of the description."""
        return self.description.splitlines()[0] if self.description else ""


def derive_status(criteria: list[Criterion], explicit: TaskStatus | None = None) -> TaskStatus:
    """
    Derive an item's status from its criteria.

    An explicit DONE wins (callers complete the criteria to keep them
    consistent). An explicit WORKING lifts an otherwise pending item.
    """
    if explicit == TaskStatus.DONE:
        return TaskStatus.DONE
    if criteria:
        done = sum(1 for c in criteria if c.done)
        if done == len(criteria):
            return TaskStatus.DONE
        if done:
            return TaskStatus.WORKING
    if explicit == TaskStatus.WORKING:
        return TaskStatus.WORKING
    return TaskStatus.PENDING


@dataclass
class TaskList:
    """Parsed task list document."""
    name: str = "Untitled"
    description: str = ""
    items: list[TaskItem] = field(default_factory=list)

    # --- queries ---------------------------------------------------------

    def get(self, item_id: str) -> TaskItem:
        """Return the item with the given id.

        Raises:
            TaskListError: If no item has that id
        """
        for item in self.items:
            if item.id == str(item_id):
                return item
        raise TaskListError(f"No task with id '{item_id}'")

    def incomplete_items(self) -> list[TaskItem]:
        """Items whose status is not done, in document order."""
        return [item for item in self.items if not item.is_done]

    def items_by_priority(self) -> dict[Priority, list[TaskItem]]:
        """Incomplete items bucketed by priority tier, order preserved within a tier."""
        buckets: dict[Priority, list[TaskItem]] = {p: [] for p in PRIORITY_ORDER}
        for item in self.incomplete_items():
            buckets[item.priority].append(item)
        return buckets

    def next_item(self) -> TaskItem | None:
        """First incomplete item from the highest non-empty tier."""
        for items in self.items_by_priority().values():
            if items:
                return items[0]
        return None

    def is_complete(self) -> bool:
        return all(item.is_done for item in self.items)

    def working_item(self) -> TaskItem | None:
        for item in self.items:
            if item.status == TaskStatus.WORKING:
                return item
        return None

    def counts(self) -> tuple[int, int]:
        """Return (done, total)."""
        return sum(1 for item in self.items if item.is_done), len(self.items)

    def find_by_description(self, text: str) -> TaskItem | None:
        """
        Match free text against incomplete items.

        Exact description match wins; otherwise the first item where one
        side contains the other, case-insensitively.
        """
        needle = text.strip()
        if not needle:
            return None
        candidates = self.incomplete_items()

        for item in candidates:
            if item.description == needle or item.title == needle:
                return item

        lowered = needle.lower()
        for item in candidates:
            desc = item.description.lower().strip()
            if not desc:
                continue
            if lowered in desc or desc in lowered:
                return item
        return None

    # --- mutations -------------------------------------------------------

    def mark_working(self, item_id: str) -> TaskItem:
        """
        Mark an item as being worked on.

        Any other item carrying only an explicit WORKING tag falls back to
        its criteria-derived status, so at most one item is picked up at a time.
        """
        item = self.get(item_id)
        for other in self.items:
            if other is not item and other.status == TaskStatus.WORKING:
                other.status = derive_status(other.criteria)
                logger.debug(f"Task {other.id} no longer working (now {other.status.value})")
        if not item.is_done:
            item.status = TaskStatus.WORKING
        return item

    def mark_criterion_done(self, item_id: str, match: int | str) -> Criterion:
        """
        Mark one acceptance criterion done.

        Args:
            item_id: Task id
            match: 0-based criterion index, or text matched case-insensitively
                   (exact first, then substring either way)

        Raises:
            TaskListError: If the item or criterion can't be found
        """
        item = self.get(item_id)
        criterion = _match_criterion(item, match)
        criterion.done = True
        explicit = TaskStatus.WORKING if item.status == TaskStatus.WORKING else None
        item.status = derive_status(item.criteria, explicit)
        return criterion

    def mark_complete(self, item_id: str) -> TaskItem:
        """Complete every criterion and mark the item done."""
        item = self.get(item_id)
        for criterion in item.criteria:
            criterion.done = True
        item.status = TaskStatus.DONE
        return item

    def mark_complete_by_description(self, text: str) -> TaskItem | None:
        """Fuzzy-match free text to an item and complete it. Returns None on a miss."""
        item = self.find_by_description(text)
        if item is None:
            logger.debug(f"No task matches '{text}'")
            return None
        return self.mark_complete(item.id)

    # --- rendering -------------------------------------------------------

    def summary(self) -> str:
        """Render a compact progress summary for prompts and status output."""
        done, total = self.counts()
        lines = [f"PRD: {self.name}", f"Progress: {done}/{total} tasks complete"]

        incomplete = self.incomplete_items()
        if incomplete:
            lines.append("")
            lines.append("Remaining tasks:")
            for priority, items in self.items_by_priority().items():
                for item in items:
                    marker = " [WORKING]" if item.status == TaskStatus.WORKING else ""
                    lines.append(f"- Task {item.id} [{priority.value}]{marker} {item.title}")
                    for criterion in item.criteria:
                        check = "x" if criterion.done else " "
                        lines.append(f"  - [{check}] {criterion.description}")
        return "\n".join(lines)


def _match_criterion(item: TaskItem, match: int | str) -> Criterion:
    if isinstance(match, int):
        if 0 <= match < len(item.criteria):
            return item.criteria[match]
        raise TaskListError(f"Task {item.id} has no criterion #{match}")

    needle = match.strip().lower()
    for criterion in item.criteria:
        if criterion.description.lower() == needle:
            return criterion
    if needle:
        for criterion in item.criteria:
            text = criterion.description.lower()
            if needle in text or text in needle:
                return criterion
    raise TaskListError(f"Task {item.id} has no criterion matching '{match}'")
