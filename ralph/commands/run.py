"""
ralph run - Drive the agent through the task list.
"""

import logging
from pathlib import Path

from ralph.agents.claude import ClaudeAgent
from ralph.lib.agents_config import load_agents_config, validate_stage_binaries
from ralph.lib.config import RalphConfig, load_config, validate_config
from ralph.lib.memory import create_memory_provider
from ralph.lib.prdparse import find_task_list
from ralph.lib.quality_gates import load_gate_config
from ralph.runner.intervention import InterventionChannel, KeyboardListener
from ralph.workflow.controller import IterationController, read_guidelines
from ralph.workflow.engine import run_ralph

logger = logging.getLogger(__name__)

STAGES = ["select", "implement", "legacy"]


def load_valid_config(args, require_auth: bool = True) -> RalphConfig | None:
    """Load config and print every validation error. None when invalid."""
    config_path = Path(args.config) if getattr(args, "config", None) else None
    config = load_config(config_path=config_path)
    if getattr(args, "verbose", False):
        config.verbose = True

    errors = validate_config(config, require_auth)
    if errors:
        print("ERROR: Invalid configuration:")
        for error in errors:
            print(f"  - {error}")
        print("Fix ralph.yaml, .env or RALPH_* environment variables and retry.")
        return None
    return config


def build_controller(
    config: RalphConfig,
    task_list_path: Path | None,
    channel: InterventionChannel,
    hitl: bool = False,
) -> IterationController | None:
    """Wire up agent, memory and gates. None when the agent binary is missing."""
    agents_config = load_agents_config(config.working_dir)
    check = validate_stage_binaries(agents_config, STAGES)
    if not check.ok:
        print(f"ERROR: {check.error_message}")
        return None

    agent = ClaudeAgent(
        config.working_dir,
        agents_config,
        api_key=config.api_key,
        use_oauth=config.auth_mode == "oauth",
    )
    memory = create_memory_provider(
        config.progress_mode, config.working_dir, config.progress_file, config.git_log_count,
    )
    return IterationController(
        config=config,
        agent=agent,
        channel=channel,
        memory=memory,
        task_list_path=task_list_path,
        gate_checks=load_gate_config(config.working_dir),
        hitl=hitl,
        guidelines=read_guidelines(config.working_dir),
    )


def run_loop(config: RalphConfig, task_list_path: Path | None, max_iterations: int, hitl: bool) -> int:
    """Run the flow with the keyboard listener attached. Returns the exit code."""
    channel = InterventionChannel()
    controller = build_controller(config, task_list_path, channel, hitl)
    if controller is None:
        return 2

    listener = KeyboardListener(channel)
    listener.start()
    try:
        result = run_ralph(controller, max_iterations)
    except KeyboardInterrupt:
        print("\nAborted by user")
        return 130
    finally:
        listener.stop()

    if result.last_error:
        print(f"Last error: {result.last_error}")
    print(f"\nResult: {result.status} ({result.iterations} iterations)")
    return result.exit_code


def cmd_run(args) -> int:
    """Execute the loop against the discovered task list."""
    if args.iterations < 1:
        print(f"ERROR: iterations must be at least 1 (got {args.iterations})")
        return 2

    config = load_valid_config(args)
    if config is None:
        return 2

    task_list_path = find_task_list(config.working_dir, config.prd_file)
    if task_list_path is None:
        if config.prd_file:
            print(f"WARNING: Task list {config.prd_file} not found.")
        print("WARNING: No PRD file found. Ralph will work without a task list.")
    else:
        logger.info(f"Using task list {task_list_path}")
        print(f"Task list: {task_list_path}")

    return run_loop(config, task_list_path, args.iterations, args.hitl)
