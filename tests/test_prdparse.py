"""Tests for ralph.lib.prdparse module."""

from pathlib import Path

from ralph.lib.prdparse import (
    create_single_task,
    find_task_list,
    load_task_list,
    parse_task_list,
    save_task_list,
    serialize_task_list,
)
from ralph.lib.tasklist import Priority, TaskStatus


FEATURE_DOC = """# Shop

An online shop.

## High Priority

## Feature: Add login
ID: auth-1
Category: functional

### Requirements
- Email and password

### Acceptance Criteria
- [x] Form renders
- [ ] Submits

## Medium Priority

## [DONE] Feature: Set up CI
### Acceptance Criteria
- [ ] Pipeline runs
"""

LEGACY_DOC = """# Tasks
<!-- managed by hand -->
- [DONE] Set up project
- [ ] Add login
  - validate email
  - hash password
- [x] Write docs
"""


class TestParseFeatureDialect:
    """Tests for the feature heading format."""

    def test_name_and_description(self):
        tl = parse_task_list(FEATURE_DOC)
        assert tl.name == "Shop"
        assert tl.description == "An online shop."

    def test_items_and_metadata(self):
        tl = parse_task_list(FEATURE_DOC)
        assert [i.id for i in tl.items] == ["auth-1", "2"]
        login = tl.items[0]
        assert login.description == "Add login"
        assert login.priority == Priority.HIGH
        assert login.category == "functional"
        assert login.requirements == ["Email and password"]
        assert [c.done for c in login.criteria] == [True, False]

    def test_status_derived_from_criteria(self):
        tl = parse_task_list(FEATURE_DOC)
        assert tl.items[0].status == TaskStatus.WORKING

    def test_explicit_done_completes_criteria(self):
        ci = parse_task_list(FEATURE_DOC).items[1]
        assert ci.priority == Priority.MEDIUM
        assert ci.status == TaskStatus.DONE
        assert ci.criteria[0].done is True

    def test_done_tag_after_feature_keyword(self):
        tl = parse_task_list("## Feature: [DONE] Ship it\n")
        assert tl.items[0].status == TaskStatus.DONE

    def test_default_name(self):
        assert parse_task_list("## Feature: x\n").name == "Untitled"

    def test_checkboxes_under_requirements_stay_requirements(self):
        doc = (
            "## Feature: Add login\n"
            "### Requirements\n"
            "- [ ] email field\n"
            "- password field\n"
            "### Acceptance Criteria\n"
            "- [ ] works\n"
        )
        tl = parse_task_list(doc)
        assert len(tl.items) == 1
        login = tl.items[0]
        assert login.requirements == ["email field", "password field"]
        assert [c.description for c in login.criteria] == ["works"]
        assert login.status == TaskStatus.PENDING

    def test_checkboxes_under_other_heading_ignored(self):
        doc = "## Feature: Add login\n### Notes\n- [ ] maybe later\n### Acceptance Criteria\n- [x] works\n"
        tl = parse_task_list(doc)
        assert len(tl.items) == 1
        assert [c.description for c in tl.items[0].criteria] == ["works"]
        assert tl.items[0].status == TaskStatus.DONE


class TestParseLegacyDialect:
    """Tests for the checkbox list format."""

    def test_items(self):
        tl = parse_task_list(LEGACY_DOC)
        assert [i.description for i in tl.items] == ["Set up project", "Add login", "Write docs"]
        assert [i.id for i in tl.items] == ["1", "2", "3"]

    def test_statuses(self):
        tl = parse_task_list(LEGACY_DOC)
        assert [i.status for i in tl.items] == [TaskStatus.DONE, TaskStatus.PENDING, TaskStatus.DONE]

    def test_indented_steps_become_criteria(self):
        login = parse_task_list(LEGACY_DOC).items[1]
        assert [c.description for c in login.criteria] == ["validate email", "hash password"]
        assert not any(c.done for c in login.criteria)

    def test_comments_skipped(self):
        tl = parse_task_list(LEGACY_DOC)
        assert all("managed" not in i.description for i in tl.items)

    def test_steps_subsection_does_not_swallow_next_task(self):
        doc = "- [ ] Add login\n  Steps:\n  - validate email\n- [ ] Add cart\n"
        tl = parse_task_list(doc)
        assert [i.description for i in tl.items] == ["Add login", "Add cart"]
        assert tl.items[0].requirements == ["validate email"]


class TestSerialize:
    """Tests for serialize_task_list()."""

    def test_round_trip_preserves_items(self):
        original = parse_task_list(FEATURE_DOC)
        reparsed = parse_task_list(serialize_task_list(original))
        assert reparsed.name == original.name
        assert [(i.id, i.description, i.priority, i.status) for i in reparsed.items] == \
            [(i.id, i.description, i.priority, i.status) for i in original.items]
        assert reparsed.items[0].requirements == ["Email and password"]

    def test_legacy_becomes_feature_dialect(self):
        text = serialize_task_list(parse_task_list(LEGACY_DOC))
        assert "## [DONE] Feature: Set up project" in text
        assert "## Feature: Add login" in text
        assert "- [ ] validate email" in text

    def test_mutation_persists(self, tmp_path):
        path = tmp_path / "prd.md"
        path.write_text(FEATURE_DOC)
        tl = load_task_list(path)
        tl.mark_complete("auth-1")
        save_task_list(path, tl)
        assert load_task_list(path).is_complete()


class TestFindTaskList:
    """Tests for task list discovery."""

    def test_none_when_missing(self, tmp_path):
        assert find_task_list(tmp_path) is None

    def test_do_md_wins(self, tmp_path):
        (tmp_path / "prd.md").write_text("x")
        (tmp_path / "do.md").write_text("x")
        assert find_task_list(tmp_path) == tmp_path / "do.md"

    def test_plans_dir(self, tmp_path):
        (tmp_path / "plans").mkdir()
        (tmp_path / "plans" / "prd.md").write_text("x")
        (tmp_path / "prd.md").write_text("x")
        assert find_task_list(tmp_path) == tmp_path / "plans" / "prd.md"

    def test_explicit_relative(self, tmp_path):
        (tmp_path / "todo.md").write_text("x")
        assert find_task_list(tmp_path, "todo.md") == tmp_path / "todo.md"
        assert find_task_list(tmp_path, "other.md") is None

    def test_load_missing_returns_none(self, tmp_path):
        assert load_task_list(tmp_path / "nope.md") is None


class TestCreateSingleTask:
    """Tests for create_single_task()."""

    def test_single_high_item(self):
        tl = create_single_task("Fix the flaky test")
        assert len(tl.items) == 1
        assert tl.items[0].id == "1"
        assert tl.items[0].priority == Priority.HIGH
        assert not tl.is_complete()

    def test_survives_save_and_load(self, tmp_path):
        path = tmp_path / "do.md"
        save_task_list(path, create_single_task("Fix the flaky test"))
        tl = load_task_list(path)
        assert tl.items[0].description == "Fix the flaky test"
        assert tl.items[0].priority == Priority.HIGH
