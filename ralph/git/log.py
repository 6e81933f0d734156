"""Git history queries."""

from pathlib import Path

from ralph.git.runner import run_git


def get_log_oneline(worktree: Path, count: int) -> list[str] | None:
    """
    Last `count` commits as one-line summaries, newest first.

    Returns None when history can't be read (not a repository, or no
    commits yet), and an empty list when git reports nothing.
    """
    result = run_git(["log", "--oneline", "-n", str(count)], worktree, timeout=10)
    if not result.success:
        return None
    return [line.strip() for line in result.stdout.splitlines() if line.strip()]
