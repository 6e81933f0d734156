"""Workflow engine for Ralph runs.

Wraps the iteration controller with a Prefect @flow and runs quality gates
as a Prefect @task, so each run and gate execution shows up in Prefect's
run history. The controller itself has no Prefect dependency; the gate
task is injected as its gate runner.
"""

import logging
from pathlib import Path

from prefect import flow, task

from ralph.lib.quality_gates import GateCheck, GateReport, run_quality_gates
from ralph.notifications import notify_outcome
from ralph.workflow.controller import IterationController, LoopResult

logger = logging.getLogger(__name__)


@task(
    name="quality_gates",
    description="Run the project's quality gate commands sequentially",
)
def task_quality_gates(working_dir: Path, checks: list[GateCheck], timeout: int) -> GateReport:
    """Quality gates as a Prefect task.

    No retries: a failing check is a result, not a transient error.
    """
    return run_quality_gates(working_dir, checks, timeout)


@flow(name="ralph_loop", validate_parameters=False)
def run_ralph(controller: IterationController, max_iterations: int) -> LoopResult:
    """Run the loop to a terminal state and send a desktop notification."""
    controller.gate_runner = task_quality_gates

    print(f"\n{'=' * 60}")
    print(f"Ralph: up to {max_iterations} iterations in {controller.working_dir}")
    print("Press Ctrl+\\ to send a message to the agent, Ctrl+C to stop")
    print('=' * 60)

    result = controller.run(max_iterations)
    logger.info(f"Run finished: {result.status} after {result.iterations} iterations")
    notify_outcome(result)
    return result
