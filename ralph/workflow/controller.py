"""
Iteration controller.

Runs iterations strictly one after another. Each iteration:

1. stop if the task list is already complete
2. build the memory summary, folding in a pending operator message
3. select a task (two-phase) or fall back to the legacy single-phase prompt
4. run the agent, watching for the operator interrupt
5. commit the agent's work and safety-net any leftovers
6. record progress and update the task list
7. stop on the completion marker

Agent failures halt the run unless HITL is on.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from ralph.agents.base import Agent, AgentError, AgentRequest, ResultEvent, TextEvent, ToolUseEvent
from ralph.git import get_changed_files
from ralph.lib.agent_output import (
    CompletionRequest,
    has_completion_marker,
    parse_completion_request,
    parse_structured_output,
)
from ralph.lib.config import RalphConfig
from ralph.lib.memory import MemoryEntry, MemoryProvider
from ralph.lib.prdparse import load_task_list, save_task_list
from ralph.lib.quality_gates import CONFIG_DOCUMENT, GateCheck, GateReport, format_summary, run_quality_gates
from ralph.lib.tasklist import TaskItem, TaskList
from ralph.runner.completion import (
    CompletionResult,
    commit_all,
    reconcile_task_list,
    safety_net_commit,
)
from ralph.runner.intervention import InterventionChannel
from ralph.runner.selection import build_implementation_request, build_legacy_request, select_task
from ralph.workflow.fsm import IterationFSM

logger = logging.getLogger(__name__)

STATUS_COMPLETE = "complete"
STATUS_HALTED = "halted"
STATUS_MAX_ITERATIONS = "max_iterations"
STATUS_STOPPED = "stopped"

EXIT_CODES = {
    STATUS_COMPLETE: 0,
    STATUS_MAX_ITERATIONS: 0,
    STATUS_HALTED: 1,
    STATUS_STOPPED: 130,
}

GateRunner = Callable[[Path, list[GateCheck], int], GateReport]


@dataclass
class LoopResult:
    """How a run ended."""
    status: str
    iterations: int
    last_error: str | None = None

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self.status]


@dataclass
class AgentRun:
    """Everything observed from one agent invocation."""
    text: str = ""
    files_changed: list[str] = field(default_factory=list)
    result: ResultEvent | None = None
    error: str | None = None
    interrupted: bool = False


@dataclass
class IterationOutcome:
    success: bool
    interrupted: bool = False
    complete: bool = False
    error: str | None = None
    task_description: str = ""
    completion: CompletionResult | None = None


def _default_gate_runner(working_dir: Path, checks: list[GateCheck], timeout: int) -> GateReport:
    return run_quality_gates(working_dir, checks, timeout)


class IterationController:
    """Drives the agent through the task list."""

    def __init__(
        self,
        config: RalphConfig,
        agent: Agent,
        channel: InterventionChannel,
        memory: MemoryProvider,
        task_list_path: Path | None,
        gate_checks: list[GateCheck],
        hitl: bool = False,
        gate_runner: GateRunner | None = None,
        guidelines: str | None = None,
    ):
        self.config = config
        self.agent = agent
        self.channel = channel
        self.memory = memory
        self.task_list_path = task_list_path
        self.gate_checks = gate_checks
        self.hitl = hitl
        self.gate_runner = gate_runner or _default_gate_runner
        self.guidelines = guidelines
        self.fsm = IterationFSM()
        self.last_report: GateReport | None = None
        self.last_error: str | None = None

    @property
    def working_dir(self) -> Path:
        return self.config.working_dir

    def load_task_list(self) -> TaskList | None:
        if self.task_list_path is None:
            return None
        try:
            return load_task_list(self.task_list_path)
        except OSError as e:
            logger.warning(f"Failed to read task list {self.task_list_path}: {e}")
            print(f"WARNING: Could not read {self.task_list_path}: {e}")
            return None

    # --- loop ------------------------------------------------------------

    def run(self, max_iterations: int) -> LoopResult:
        """Run until complete, halted, stopped or out of iterations."""
        start = self.memory.last_iteration()
        done = 0
        restarting = False

        while True:
            task_list = self.load_task_list()
            if task_list is not None and task_list.is_complete():
                self.fsm.finish()
                print(f"\nPRD COMPLETE after {done} iterations")
                return LoopResult(STATUS_COMPLETE, done, self.last_error)

            if done >= max_iterations:
                self.fsm.exhaust()
                print(f"\nMax iterations reached ({max_iterations})")
                return LoopResult(STATUS_MAX_ITERATIONS, done, self.last_error)

            if self.hitl and done > 0 and not restarting:
                if not self.channel.confirm_continue():
                    self.fsm.stop()
                    return LoopResult(STATUS_STOPPED, done, self.last_error)

            number = start + done + 1
            print(f"\n=== Iteration {number} ===")
            outcome = self.run_iteration(number, task_list)

            if outcome.interrupted:
                restarting = True
                print(f"Restarting iteration {number}")
                continue
            restarting = False
            done += 1

            if not outcome.success:
                self.last_error = outcome.error
                print(f"ERROR: Iteration {number} failed: {outcome.error}")
                if not self.hitl:
                    self.fsm.halt()
                    print("Stopping due to error. Use --hitl mode to continue despite errors.")
                    return LoopResult(STATUS_HALTED, done, self.last_error)
                continue

            if outcome.completion is not None:
                print(outcome.completion.message())

            if outcome.complete:
                self.fsm.finish()
                print(f"\nPRD COMPLETE after {done} iterations")
                return LoopResult(STATUS_COMPLETE, done, self.last_error)

    # --- single iteration ------------------------------------------------

    def run_iteration(self, number: int, task_list: TaskList | None) -> IterationOutcome:
        intervention = self.channel.take()
        intervention_text = intervention.format() if intervention else None
        memory = self.memory.summarize(self.last_report)

        selected: TaskItem | None = None
        if task_list is not None and task_list.items:
            self.fsm.select()
            print("Selecting next task...")
            selected = select_task(self.agent, task_list, self.config, self.channel.interrupt)
            if self.channel.interrupt_requested():
                return self._interrupted(intervention)
            if selected is not None:
                task_list.mark_working(selected.id)
                print(f"Selected task {selected.id}: {selected.title}")
            else:
                print("WARNING: Task selection failed, falling back to single-phase mode")

        if selected is not None:
            request = build_implementation_request(
                selected, memory, self.gate_checks, self.config, self.guidelines, intervention_text,
            )
        else:
            request = build_legacy_request(
                task_list, memory, self.gate_checks, self.config, self.guidelines, intervention_text,
            )

        self.fsm.implement()
        run = self.invoke(request)
        if run.interrupted:
            return self._interrupted(intervention)
        if run.error:
            self.fsm.fail()
            return IterationOutcome(success=False, error=run.error)

        self.fsm.verify()
        completion_request = parse_completion_request(run.text)
        structured = parse_structured_output(run.text)
        complete_signal = has_completion_marker(run.text)
        if completion_request is None and not structured.found and not complete_signal:
            self.fsm.fail()
            return IterationOutcome(success=False, error="Agent finished without a completion report")

        claimed = (
            (completion_request.task_description if completion_request else "")
            or structured.task_description
            or (selected.title if selected else "")
        )
        result = CompletionResult()
        if not run.files_changed:
            run.files_changed = get_changed_files(self.working_dir)

        if completion_request is not None and completion_request.commit_message:
            committed = commit_all(self.working_dir, completion_request.commit_message)
            if committed.error:
                result.warnings.append(committed.error)
                print(f"WARNING: {committed.error}")
            result.commit_sha = committed.sha

        safety = safety_net_commit(self.working_dir, number, claimed)
        if safety.error:
            self.fsm.fail()
            return IterationOutcome(success=False, error=f"Safety-net commit failed: {safety.error}")
        result.safety_net_sha = safety.sha

        self.fsm.record()
        self._record(number, task_list, selected, claimed, completion_request, structured, run, result)
        self.fsm.next_iteration()

        return IterationOutcome(
            success=True,
            complete=complete_signal,
            task_description=claimed,
            completion=result,
        )

    def invoke(self, request: AgentRequest) -> AgentRun:
        """Consume the agent stream, checking the interrupt flag between events."""
        run = AgentRun()
        chunks = []
        try:
            for event in self.agent.stream(request, self.channel.interrupt):
                if self.channel.interrupt_requested():
                    break
                if isinstance(event, TextEvent):
                    chunks.append(event.text)
                    print(event.text)
                elif isinstance(event, ToolUseEvent):
                    logger.debug(f"Tool: {event.name}")
                    print(f"  -> {event.name}")
                    if event.file_path and event.file_path not in run.files_changed:
                        run.files_changed.append(event.file_path)
                elif isinstance(event, ResultEvent):
                    run.result = event
        except AgentError as e:
            run.error = str(e)
            if e.stderr:
                logger.warning(f"Agent stderr: {e.stderr}")
            return run

        run.text = "\n".join(chunks)
        if self.channel.interrupt_requested():
            run.interrupted = True
        elif run.result is None:
            run.error = "Agent ended without a result"
        elif not run.result.success:
            run.error = "Agent run failed: " + ("; ".join(run.result.errors) or "unknown error")
        else:
            cost = f", ${run.result.cost_usd:.4f}" if run.result.cost_usd is not None else ""
            logger.info(f"Agent finished in {run.result.num_turns} turns{cost}")
        return run

    def _interrupted(self, consumed) -> IterationOutcome:
        message = self.channel.prompt_and_push()
        # Nothing new entered: the message taken for this attempt goes back for the retry
        if message is None and consumed is not None:
            self.channel.push(consumed.text)
        self.channel.clear_interrupt()
        self.fsm.restart()
        return IterationOutcome(success=False, interrupted=True)

    def _record(
        self,
        number: int,
        task_list: TaskList | None,
        selected: TaskItem | None,
        claimed: str,
        request: CompletionRequest | None,
        structured,
        run: AgentRun,
        result: CompletionResult,
    ):
        if task_list is not None:
            item, marked = reconcile_task_list(task_list, selected, claimed, request)
            result.item = item
            result.criteria_marked = marked
            if item is not None or marked or selected is not None:
                save_task_list(self.task_list_path, task_list)
                if item is not None:
                    print(f" -> Marked task {item.id} as [DONE] in PRD")

        report = None
        if self.config.run_gates and self.gate_checks:
            report = self.gate_runner(self.working_dir, self.gate_checks, self.config.gate_timeout)
            print(format_summary(report))
        self.last_report = report

        files = (request.files_changed if request else []) or run.files_changed
        entry = MemoryEntry(
            iteration=number,
            task_description=claimed or "Unknown task",
            task_id=(result.item.id if result.item else (selected.id if selected else None)),
            decisions=(request.decisions if request and request.decisions else structured.decisions),
            files_changed=files,
            notes=(request.summary if request and request.summary else structured.summary),
            gate_report=report,
        )
        result.progress_recorded = self.memory.record(entry)


def read_guidelines(working_dir: Path) -> str | None:
    """AGENTS.md content, shown to the implementing agent."""
    path = working_dir / CONFIG_DOCUMENT
    if not path.exists():
        return None
    try:
        return path.read_text().strip() or None
    except OSError as e:
        logger.warning(f"Failed to read {path}: {e}")
        return None
