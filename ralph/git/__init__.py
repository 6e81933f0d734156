"""Git operations used by the iteration loop.

Return type conventions:
- Functions returning GitResult: caller checks .success before using output.
  Examples: stage_all(), commit()
- Functions returning bool: True when the condition holds, False otherwise
  (including on git failure). Example: has_uncommitted_changes()
- Functions returning parsed values: empty/None on failure.
  Examples: get_changed_files() -> [], get_log_oneline() -> None
"""

from ralph.git.runner import run_git, GitResult
from ralph.git.status import has_uncommitted_changes, get_changed_files
from ralph.git.commit import stage_all, commit, get_short_sha
from ralph.git.log import get_log_oneline

__all__ = [
    "run_git",
    "GitResult",
    "has_uncommitted_changes",
    "get_changed_files",
    "stage_all",
    "commit",
    "get_short_sha",
    "get_log_oneline",
]
