"""
Agent invocation interface.

An agent takes a request (context prompt, user prompt, tool set, turn
budget) and produces a stream of typed events. Ralph only reads the
stream; tool execution is the agent's business.
"""

import threading
from dataclasses import dataclass, field
from typing import Iterator, Protocol, Union

# Tools the implementing agent may use
IMPLEMENT_TOOLS = ["Read", "Write", "Edit", "Bash", "Glob", "Grep", "WebSearch", "WebFetch"]
# Tools whose input carries a file_path we count as changed
FILE_WRITE_TOOLS = ("Write", "Edit", "MultiEdit", "NotebookEdit")


@dataclass
class AgentRequest:
    """One agent invocation."""
    stage: str  # "select", "implement" or "legacy"
    system_prompt: str
    prompt: str
    model: str
    max_turns: int
    allowed_tools: list[str] = field(default_factory=list)

    @property
    def disallowed_tools(self) -> list[str]:
        return [t for t in IMPLEMENT_TOOLS if t not in self.allowed_tools]


@dataclass
class TextEvent:
    text: str


@dataclass
class ToolUseEvent:
    name: str
    input: dict = field(default_factory=dict)

    @property
    def file_path(self) -> str | None:
        if self.name in FILE_WRITE_TOOLS:
            path = self.input.get("file_path") or self.input.get("notebook_path")
            return str(path) if path else None
        return None


@dataclass
class ResultEvent:
    """Terminal event of a run."""
    success: bool
    num_turns: int = 0
    cost_usd: float | None = None
    errors: list[str] = field(default_factory=list)
    result_text: str = ""


AgentEvent = Union[TextEvent, ToolUseEvent, ResultEvent]


class AgentError(Exception):
    """The agent could not be run or died without a result."""

    def __init__(self, message: str, exit_code: int | None = None, stderr: str = ""):
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


class Agent(Protocol):
    def stream(self, request: AgentRequest, cancel: threading.Event | None = None) -> Iterator[AgentEvent]:
        """Run the request, yielding events until the run ends or cancel is set."""
        ...
