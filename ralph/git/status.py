"""Git status operations."""

from pathlib import Path

from ralph.git.runner import run_git


def has_uncommitted_changes(worktree: Path) -> bool:
    """Check if worktree has any uncommitted changes (staged, unstaged, or untracked)."""
    result = run_git(["status", "--porcelain"], worktree)
    return result.success and bool(result.stdout.strip())


def get_changed_files(worktree: Path) -> list[str]:
    """List changed paths (staged, unstaged and untracked).

    Uses -z output so names with spaces survive. Empty on git failure.
    """
    result = run_git(["status", "--porcelain", "-z"], worktree)
    if not result.success or not result.stdout:
        return []

    files = []
    entries = result.stdout.split('\0')
    i = 0
    while i < len(entries):
        entry = entries[i]
        if len(entry) < 4:
            i += 1
            continue
        status, filename = entry[:2], entry[3:]
        files.append(filename)
        # Renames and copies carry the source path as a separate entry
        i += 2 if status[0] in ('R', 'C') else 1
    return files
