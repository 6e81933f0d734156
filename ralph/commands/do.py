"""
ralph do - Run the loop on a single ad-hoc task.
"""

from ralph.commands.run import load_valid_config, run_loop
from ralph.lib.prdparse import create_single_task, save_task_list

DO_FILE = "do.md"
DEFAULT_MAX_ITERATIONS = 3


def cmd_do(args) -> int:
    """Write do.md with one High-priority item, then run."""
    description = " ".join(args.description).strip()
    if not description:
        print("ERROR: Task description is required")
        return 2
    if args.max < 1:
        print(f"ERROR: --max must be at least 1 (got {args.max})")
        return 2

    config = load_valid_config(args)
    if config is None:
        return 2

    path = config.working_dir / DO_FILE
    if path.exists():
        print(f"WARNING: Replacing existing {DO_FILE}")
    save_task_list(path, create_single_task(description))
    print(f"Created {path}")

    return run_loop(config, path, args.max, args.hitl)
