"""Tests for ralph.runner.selection module."""

from pathlib import Path

from ralph.agents.base import AgentError, IMPLEMENT_TOOLS, ResultEvent, TextEvent
from ralph.lib.agent_output import TaskSelection
from ralph.lib.config import RalphConfig
from ralph.lib.quality_gates import GateCheck
from ralph.lib.tasklist import Criterion, Priority, TaskItem, TaskList, TaskStatus
from ralph.runner.selection import (
    build_implementation_request,
    build_legacy_request,
    match_selection,
    select_task,
)


def task_list():
    return TaskList(name="Shop", items=[
        TaskItem(id="1", description="Set up", status=TaskStatus.DONE),
        TaskItem(
            id="2",
            description="Add login\nSessions expire after a day",
            priority=Priority.HIGH,
            requirements=["Email and password"],
            criteria=[Criterion("Form renders", True), Criterion("Submits")],
        ),
        TaskItem(id="3", description="Add cart"),
    ])


def config():
    return RalphConfig(working_dir=Path("/w"), api_key="sk", max_turns=20, model="test-model")


class FakeAgent:
    def __init__(self, events=None, error=None):
        self.events = events or []
        self.error = error

    def stream(self, request, cancel=None):
        if self.error:
            raise self.error
        yield from self.events


class TestMatchSelection:
    """Tests for match_selection()."""

    def test_by_id(self):
        assert match_selection(task_list(), TaskSelection("3")).id == "3"

    def test_done_id_falls_back_to_description(self):
        assert match_selection(task_list(), TaskSelection("1", "Add cart")).id == "3"

    def test_unknown(self):
        assert match_selection(task_list(), TaskSelection("9")) is None


class TestSelectTask:
    """Tests for select_task()."""

    def test_selects(self):
        agent = FakeAgent([TextEvent("SELECTED_TASK: 2\nTASK_DESCRIPTION: Add login"), ResultEvent(True)])
        assert select_task(agent, task_list(), config()).id == "2"

    def test_agent_error_returns_none(self, capsys):
        agent = FakeAgent(error=AgentError("crashed", exit_code=1))
        assert select_task(agent, task_list(), config()) is None
        assert "Task selection failed" in capsys.readouterr().out

    def test_unparseable_returns_none(self):
        agent = FakeAgent([TextEvent("hmm"), ResultEvent(True)])
        assert select_task(agent, task_list(), config()) is None


class TestBuildRequests:
    """Tests for implementation and legacy requests."""

    def test_implementation_request(self):
        item = task_list().get("2")
        request = build_implementation_request(
            item, "No previous progress recorded.", [GateCheck("Test", "pytest -q")], config(),
            guidelines="Use tabs.", intervention="Hurry up",
        )
        assert request.stage == "implement"
        assert request.model == "test-model"
        assert request.max_turns == 20
        assert request.allowed_tools == IMPLEMENT_TOOLS
        prompt = request.system_prompt
        assert "Task ID: 2" in prompt
        assert "Sessions expire after a day" in prompt
        assert "1. Email and password" in prompt
        assert "- [x] Form renders" in prompt
        assert "- Test: `pytest -q`" in prompt
        assert "Use tabs." in prompt
        assert "Hurry up" in prompt
        assert "Add cart" not in prompt

    def test_legacy_request_with_list(self):
        request = build_legacy_request(task_list(), "memory text", [], config())
        assert request.stage == "legacy"
        assert "Task 3 [medium] Add cart" in request.system_prompt
        assert "<promise>COMPLETE</promise>" in request.system_prompt

    def test_legacy_request_without_list(self):
        request = build_legacy_request(None, "memory text", [], config())
        assert "No task list found" in request.system_prompt
