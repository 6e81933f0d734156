"""Git commit operations."""

from pathlib import Path

from ralph.git.runner import run_git, GitResult


def stage_all(worktree: Path) -> GitResult:
    """Stage all changes (new, modified, deleted)."""
    return run_git(["add", "-A"], worktree)


def commit(worktree: Path, message: str) -> GitResult:
    """Create a commit with the given message."""
    return run_git(["commit", "-m", message], worktree)


def get_short_sha(worktree: Path, ref: str = "HEAD") -> str | None:
    """Abbreviated SHA of a ref, or None on error."""
    result = run_git(["rev-parse", "--short", ref], worktree)
    if result.success:
        return result.stdout.strip() or None
    return None
