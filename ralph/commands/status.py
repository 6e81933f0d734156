"""
ralph status - Show task list progress.
"""

from ralph.commands.run import load_valid_config
from ralph.lib.prdparse import find_task_list, load_task_list


def cmd_status(args) -> int:
    config = load_valid_config(args, require_auth=False)
    if config is None:
        return 2

    path = find_task_list(config.working_dir, config.prd_file)
    task_list = load_task_list(path) if path else None
    if task_list is None:
        print("No PRD file found (looked for do.md, plans/prd.md, prd.md)")
        return 1

    print(f"File: {path}")
    print(task_list.summary())
    if task_list.is_complete():
        print("\nAll tasks complete.")
    return 0
