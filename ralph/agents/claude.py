"""
Claude CLI agent.

Runs `claude -p --output-format stream-json` (command from agents.yaml) and
turns each JSON line into an event:

    {"type": "assistant", "message": {"content": [{"type": "text", ...},
                                                  {"type": "tool_use", ...}]}}
    {"type": "result", "subtype": "success", "num_turns": 3, ...}

stdout and stderr are read as raw chunks from their file descriptors with
selectors, so the cancel flag is polled at least every POLL_INTERVAL
seconds even while the agent is silent, and every complete line is
surfaced as soon as it arrives.
"""

import codecs
import json
import logging
import os
import selectors
import subprocess
import threading
from pathlib import Path
from typing import Iterator

from ralph.agents.base import AgentError, AgentEvent, AgentRequest, ResultEvent, TextEvent, ToolUseEvent
from ralph.lib.agents_config import AgentsConfig, get_stage_command

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.1
STDERR_TAIL_CHARS = 2000
READ_CHUNK = 65536


class LineReader:
    """Splits raw pipe chunks into decoded lines; an empty chunk means EOF."""

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    def feed(self, chunk: bytes) -> list[str]:
        eof = not chunk
        self._pending += self._decoder.decode(chunk, final=eof)
        if eof:
            rest, self._pending = self._pending, ""
            return [rest] if rest else []
        *lines, self._pending = self._pending.split("\n")
        return lines


def parse_stream_line(line: str) -> list[AgentEvent]:
    """Convert one stream-json line into zero or more events."""
    line = line.strip()
    if not line:
        return []
    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        logger.debug(f"Ignoring non-JSON agent output: {line[:200]}")
        return []
    if not isinstance(data, dict):
        return []

    kind = data.get("type")
    if kind == "assistant":
        events: list[AgentEvent] = []
        for block in data.get("message", {}).get("content", []) or []:
            if block.get("type") == "text" and block.get("text"):
                events.append(TextEvent(text=block["text"]))
            elif block.get("type") == "tool_use":
                events.append(ToolUseEvent(name=block.get("name", ""), input=block.get("input") or {}))
        return events

    if kind == "result":
        is_error = bool(data.get("is_error")) or data.get("subtype") != "success"
        errors = [str(e) for e in data.get("errors") or []]
        if is_error and not errors:
            detail = data.get("result") or data.get("subtype") or "unknown error"
            errors = [str(detail)]
        return [ResultEvent(
            success=not is_error,
            num_turns=int(data.get("num_turns") or 0),
            cost_usd=data.get("total_cost_usd"),
            errors=errors,
            result_text=str(data.get("result") or ""),
        )]

    return []


class ClaudeAgent:
    """Streams events from the Claude CLI."""

    def __init__(
        self,
        working_dir: Path,
        agents_config: AgentsConfig,
        api_key: str = "",
        use_oauth: bool = False,
    ):
        self.working_dir = working_dir
        self.agents_config = agents_config
        self.api_key = api_key
        self.use_oauth = use_oauth

    def _env(self) -> dict[str, str]:
        if self.use_oauth:
            # Remove ANTHROPIC_API_KEY so Claude uses OAuth credentials instead
            return {k: v for k, v in os.environ.items() if k != "ANTHROPIC_API_KEY"}
        env = dict(os.environ)
        if self.api_key:
            env["ANTHROPIC_API_KEY"] = self.api_key
        return env

    def build_command(self, request: AgentRequest):
        context = {
            "prompt": request.prompt,
            "system_prompt": request.system_prompt,
            "model": request.model,
            "max_turns": str(request.max_turns),
            "allowed_tools": ",".join(request.allowed_tools),
            "disallowed_tools": ",".join(request.disallowed_tools),
        }
        return get_stage_command(self.agents_config, request.stage, context)

    def stream(self, request: AgentRequest, cancel: threading.Event | None = None) -> Iterator[AgentEvent]:
        """
        Run the agent and yield events as they arrive.

        Raises:
            AgentError: If the binary can't be started, or it exits non-zero
                        without producing a result event
        """
        stage_cmd = self.build_command(request)
        stdin_input = stage_cmd.get_stdin_input(request.prompt, request.system_prompt)
        logger.debug(f"Running agent stage '{request.stage}': {stage_cmd.cmd[0]}")

        try:
            proc = subprocess.Popen(
                stage_cmd.cmd,
                cwd=str(self.working_dir),
                stdin=subprocess.PIPE if stdin_input is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=self._env(),
            )
        except OSError as e:
            raise AgentError(f"Failed to start agent '{stage_cmd.cmd[0]}': {e}") from e

        if stdin_input is not None:
            try:
                proc.stdin.write(stdin_input.encode("utf-8"))
                proc.stdin.close()
            except BrokenPipeError:
                logger.warning("Agent closed stdin before the prompt was written")

        stdout_fd = proc.stdout.fileno()
        stderr_fd = proc.stderr.fileno()
        readers = {stdout_fd: LineReader(), stderr_fd: LineReader()}
        sel = selectors.DefaultSelector()
        sel.register(stdout_fd, selectors.EVENT_READ)
        sel.register(stderr_fd, selectors.EVENT_READ)
        err_chunks: list[str] = []
        saw_result = False

        try:
            while sel.get_map():
                if cancel is not None and cancel.is_set():
                    logger.info("Agent run cancelled")
                    return
                for key, _ in sel.select(timeout=POLL_INTERVAL):
                    chunk = os.read(key.fd, READ_CHUNK)
                    if not chunk:
                        sel.unregister(key.fd)
                    lines = readers[key.fd].feed(chunk)
                    if key.fd == stderr_fd:
                        err_chunks.extend(lines)
                        continue
                    for line in lines:
                        for event in parse_stream_line(line):
                            if isinstance(event, ResultEvent):
                                saw_result = True
                            yield event

            code = proc.wait()
            stderr = "\n".join(err_chunks).strip()
            if code != 0 and not saw_result:
                raise AgentError(
                    f"Agent exited with code {code}",
                    exit_code=code,
                    stderr=stderr[-STDERR_TAIL_CHARS:],
                )
            if stderr:
                logger.debug(f"Agent stderr: {stderr[-STDERR_TAIL_CHARS:]}")
        finally:
            sel.close()
            if proc.poll() is None:
                proc.terminate()
                try:
                    proc.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    proc.kill()
                    proc.wait()
            proc.stdout.close()
            proc.stderr.close()
