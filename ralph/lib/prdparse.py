"""
PRD markdown parser for Ralph.

Reads two dialects in a single forward scan:

Feature dialect:

    # Project name
    ## High Priority
    ## [WORKING] Feature: Add login
    ### Requirements
    - Email and password
    ### Acceptance Criteria
    - [x] Form renders
    - [ ] Submits

Legacy checkbox dialect:

    - [DONE] Set up project
    - [ ] Add login
      - validate email

Each line is classified in a fixed order; the classifiers feed a small
scan state (current tier, current item, current subsection).
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from ralph.lib.tasklist import (
    PRIORITY_ORDER,
    Criterion,
    Priority,
    TaskItem,
    TaskList,
    TaskStatus,
    derive_status,
)

logger = logging.getLogger(__name__)

# Searched in order when no explicit path is configured
TASK_LIST_CANDIDATES = ("do.md", "plans/prd.md", "prd.md")

HEADING_RE = re.compile(r'^(#{1,6})\s+(.+?)\s*$')
FEATURE_RE = re.compile(
    r'^#{1,3}\s+(?:\[(?P<pre>DONE|WORKING|x| )\]\s*)?Feature\s*:\s*'
    r'(?:\[(?P<post>DONE|WORKING)\]\s*)?(?P<desc>.+?)\s*$',
    re.IGNORECASE,
)
PRIORITY_RE = re.compile(r'\b(high|medium|low)\s+priority\b', re.IGNORECASE)
SUBSECTION_RE = re.compile(
    r'^(?:#{2,6}\s+)?\**\s*(requirements|acceptance\s+criteria|steps)\s*:?\s*\**\s*:?\s*$',
    re.IGNORECASE,
)
CRITERION_RE = re.compile(r'^\s*[-*]\s+\[([ xX])\]\s+(.+?)\s*$')
LEGACY_TASK_RE = re.compile(r'^[-*]\s*\[([ xX]|DONE|WORKING)\]\s*\*{0,2}(.+?)\*{0,2}\s*$', re.IGNORECASE)
LEGACY_STEP_RE = re.compile(r'^\s+[-*]\s+(.+?)\s*$')
BULLET_RE = re.compile(r'^\s*[-*]\s+(.+?)\s*$')
METADATA_RE = re.compile(r'^\*{0,2}(id|category|priority)\*{0,2}\s*:\s*\*{0,2}\s*(.+?)\s*$', re.IGNORECASE)

SECTION_REQUIREMENTS = "requirements"
SECTION_CRITERIA = "criteria"
SECTION_OTHER = "other"


@dataclass
class _Pending:
    """An item being accumulated, before normalization."""
    description: list[str]
    priority: Priority
    explicit: TaskStatus | None = None
    legacy: bool = False
    id: str | None = None
    category: str | None = None
    requirements: list[str] = field(default_factory=list)
    criteria: list[Criterion] = field(default_factory=list)


@dataclass
class _ScanState:
    priority: Priority = Priority.MEDIUM
    item: _Pending | None = None
    section: str | None = None
    name: str | None = None
    description: list[str] = field(default_factory=list)
    seen_structure: bool = False
    done: list[_Pending] = field(default_factory=list)

    def flush(self):
        if self.item is not None:
            self.done.append(self.item)
        self.item = None
        self.section = None


def _tag_to_status(tag: str | None) -> TaskStatus | None:
    if tag is None:
        return None
    tag = tag.strip().upper()
    if tag in ("X", "DONE"):
        return TaskStatus.DONE
    if tag == "WORKING":
        return TaskStatus.WORKING
    return None


def _parse_priority(value: str) -> Priority | None:
    try:
        return Priority(value.strip().lower())
    except ValueError:
        return None


def parse_task_list(text: str) -> TaskList:
    """Parse PRD markdown into a normalized TaskList."""
    state = _ScanState()
    in_comment = False

    for line in text.splitlines():
        # Skip HTML comment blocks
        if '<!--' in line:
            in_comment = True
        if in_comment:
            if '-->' in line:
                in_comment = False
            continue

        if not line.strip():
            continue

        heading = HEADING_RE.match(line)

        feature = FEATURE_RE.match(line)
        if feature:
            state.flush()
            state.seen_structure = True
            explicit = _tag_to_status(feature.group("pre")) or _tag_to_status(feature.group("post"))
            state.item = _Pending(
                description=[feature.group("desc")],
                priority=state.priority,
                explicit=explicit,
            )
            continue

        if heading and PRIORITY_RE.search(heading.group(2)):
            state.flush()
            state.seen_structure = True
            state.priority = Priority(PRIORITY_RE.search(heading.group(2)).group(1).lower())
            continue

        subsection = SUBSECTION_RE.match(line)
        if subsection and state.item is not None:
            kind = subsection.group(1).lower()
            state.section = SECTION_CRITERIA if kind.startswith("acceptance") else SECTION_REQUIREMENTS
            continue

        if heading:
            if len(heading.group(1)) == 1 and state.name is None and state.item is None and not state.done:
                state.name = heading.group(2)
            elif state.item is not None:
                state.section = SECTION_OTHER
            else:
                state.seen_structure = True
            continue

        if state.item is not None and state.section == SECTION_CRITERIA:
            criterion = CRITERION_RE.match(line)
            if criterion:
                state.item.criteria.append(
                    Criterion(description=criterion.group(2), done=criterion.group(1).lower() == "x")
                )
            continue

        # Inside a feature's subsection, checkboxes are content, not new tasks
        if state.item is not None and not state.item.legacy and state.section is not None:
            if state.section == SECTION_REQUIREMENTS:
                _add_requirement(state.item, line)
            continue

        legacy = LEGACY_TASK_RE.match(line)
        if legacy:
            state.flush()
            state.seen_structure = True
            state.item = _Pending(
                description=[legacy.group(2).strip()],
                priority=state.priority,
                explicit=_tag_to_status(legacy.group(1)),
                legacy=True,
            )
            continue

        if state.item is None:
            if not state.seen_structure and not BULLET_RE.match(line):
                state.description.append(line.strip())
            continue

        if state.section == SECTION_REQUIREMENTS:
            _add_requirement(state.item, line)
            continue

        if state.section == SECTION_OTHER:
            continue

        if state.item.legacy:
            criterion = CRITERION_RE.match(line)
            if criterion:
                state.item.criteria.append(
                    Criterion(description=criterion.group(2), done=criterion.group(1).lower() == "x")
                )
                continue
            step = LEGACY_STEP_RE.match(line)
            if step:
                state.item.criteria.append(Criterion(description=step.group(1)))
                continue

        metadata = METADATA_RE.match(line)
        if metadata:
            _apply_metadata(state.item, metadata.group(1).lower(), metadata.group(2))
            continue

        if not BULLET_RE.match(line):
            state.item.description.append(line.strip())

    state.flush()

    return TaskList(
        name=state.name or "Untitled",
        description="\n".join(state.description),
        items=_normalize(state.done),
    )


def _add_requirement(item: _Pending, line: str):
    checkbox = CRITERION_RE.match(line)
    if checkbox:
        item.requirements.append(checkbox.group(2))
        return
    bullet = BULLET_RE.match(line)
    if bullet:
        item.requirements.append(bullet.group(1))


def _apply_metadata(item: _Pending, key: str, value: str):
    if key == "id":
        item.id = value
    elif key == "category":
        item.category = value
    elif key == "priority":
        priority = _parse_priority(value)
        if priority is not None:
            item.priority = priority
        else:
            logger.warning(f"Ignoring unknown priority '{value}'")


def _normalize(pending: list[_Pending]) -> list[TaskItem]:
    """Fill missing ids/categories and derive status."""
    used = {p.id for p in pending if p.id}
    next_id = 1
    items = []

    for position, raw in enumerate(pending, 1):
        item_id = raw.id
        if not item_id:
            candidate = max(position, next_id)
            while str(candidate) in used:
                candidate += 1
            item_id = str(candidate)
            used.add(item_id)
            next_id = candidate + 1

        criteria = raw.criteria
        if raw.explicit == TaskStatus.DONE:
            for criterion in criteria:
                criterion.done = True

        items.append(TaskItem(
            id=item_id,
            description="\n".join(raw.description),
            priority=raw.priority,
            category=raw.category or "general",
            requirements=raw.requirements,
            criteria=criteria,
            status=derive_status(criteria, raw.explicit),
        ))

    return items


def serialize_task_list(task_list: TaskList) -> str:
    """Render a TaskList back to the feature dialect."""
    lines = [f"# {task_list.name}", ""]
    if task_list.description:
        lines.extend([task_list.description, ""])

    for priority in PRIORITY_ORDER:
        tier = [item for item in task_list.items if item.priority == priority]
        if not tier:
            continue
        lines.extend([f"## {priority.value.title()} Priority", ""])

        for item in tier:
            tag = ""
            if item.status == TaskStatus.DONE:
                tag = "[DONE] "
            elif item.status == TaskStatus.WORKING:
                tag = "[WORKING] "
            first, *rest = item.description.splitlines() or [""]
            lines.append(f"## {tag}Feature: {first}")
            lines.extend(rest)
            lines.append("")
            lines.append(f"ID: {item.id}")
            lines.append(f"Category: {item.category}")
            lines.append("")

            if item.requirements:
                lines.append("### Requirements")
                lines.extend(f"- {req}" for req in item.requirements)
                lines.append("")

            if item.criteria:
                lines.append("### Acceptance Criteria")
                for criterion in item.criteria:
                    check = "x" if criterion.done else " "
                    lines.append(f"- [{check}] {criterion.description}")
                lines.append("")

    return "\n".join(lines).rstrip() + "\n"


def find_task_list(working_dir: Path, explicit: str | None = None) -> Path | None:
    """Locate the task list file.

    An explicit path (relative to working_dir) wins; otherwise the first
    existing of TASK_LIST_CANDIDATES. Returns None if nothing exists.
    """
    if explicit:
        path = Path(explicit)
        if not path.is_absolute():
            path = working_dir / path
        return path if path.exists() else None

    for candidate in TASK_LIST_CANDIDATES:
        path = working_dir / candidate
        if path.exists():
            return path
    return None


def load_task_list(path: Path) -> TaskList | None:
    """Load and parse a task list file. Returns None if the file doesn't exist."""
    if not path.exists():
        return None
    return parse_task_list(path.read_text())


def save_task_list(path: Path, task_list: TaskList):
    """Write a task list to disk."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(serialize_task_list(task_list))
    logger.debug(f"Saved task list to {path}")


def create_single_task(description: str, name: str = "Quick Task") -> TaskList:
    """Build a one-item task list at high priority."""
    return TaskList(
        name=name,
        items=[TaskItem(id="1", description=description, priority=Priority.HIGH, category="functional")],
    )
