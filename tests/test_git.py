"""Tests for ralph.git module."""

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

from ralph.git.runner import GitResult, run_git
from ralph.git.status import get_changed_files, has_uncommitted_changes
from ralph.git.log import get_log_oneline
from ralph.git import commit, get_short_sha, stage_all


class TestGitResult:
    """Test GitResult dataclass."""

    def test_success_when_returncode_zero(self):
        assert GitResult(returncode=0, stdout="ok", stderr="").success is True

    def test_failure_when_timed_out(self):
        assert GitResult(returncode=0, stdout="", stderr="", timed_out=True).success is False


class TestRunGit:
    """Test run_git function."""

    @patch("ralph.git.runner.subprocess.run")
    def test_passes_cwd_with_C_flag(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="", stderr="")
        run_git(["status", "--porcelain"], Path("/my/repo"))
        assert mock_run.call_args[0][0] == ["git", "-C", "/my/repo", "status", "--porcelain"]

    @patch("ralph.git.runner.subprocess.run")
    def test_handles_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="git", timeout=30)
        result = run_git(["status"], Path("/tmp"))
        assert result.timed_out
        assert "timed out" in result.stderr

    @patch("ralph.git.runner.subprocess.run")
    def test_missing_git_binary(self, mock_run):
        mock_run.side_effect = FileNotFoundError("git")
        result = run_git(["status"], Path("/tmp"))
        assert result.returncode == 127
        assert not result.success

    @patch("ralph.git.runner.subprocess.run")
    def test_runs_without_locks_or_prompts(self, mock_run, monkeypatch):
        monkeypatch.setenv("GIT_OPTIONAL_LOCKS", "1")
        monkeypatch.setenv("HOME", "/home/dev")
        mock_run.return_value = MagicMock(returncode=0, stdout="", stderr="")
        run_git(["status", "--porcelain"], Path("/my/repo"))
        env = mock_run.call_args[1]["env"]
        assert env["GIT_OPTIONAL_LOCKS"] == "0"
        assert env["GIT_TERMINAL_PROMPT"] == "0"
        assert env["HOME"] == "/home/dev"


class TestStatus:
    """Test status helpers."""

    @patch("ralph.git.status.run_git")
    def test_clean(self, mock_run):
        mock_run.return_value = GitResult(returncode=0, stdout="", stderr="")
        assert has_uncommitted_changes(Path("/tmp")) is False

    @patch("ralph.git.status.run_git")
    def test_dirty(self, mock_run):
        mock_run.return_value = GitResult(returncode=0, stdout=" M a.py\n", stderr="")
        assert has_uncommitted_changes(Path("/tmp")) is True

    @patch("ralph.git.status.run_git")
    def test_failure_is_clean(self, mock_run):
        mock_run.return_value = GitResult(returncode=128, stdout="", stderr="not a git repository")
        assert has_uncommitted_changes(Path("/tmp")) is False

    @patch("ralph.git.status.run_git")
    def test_changed_files_with_rename(self, mock_run):
        mock_run.return_value = GitResult(
            returncode=0,
            stdout=" M src/app.py\0R  new name.py\0old name.py\0?? notes.md\0",
            stderr="",
        )
        assert get_changed_files(Path("/tmp")) == ["src/app.py", "new name.py", "notes.md"]


class TestCommitAndLog:
    """Test commit and log helpers."""

    @patch("ralph.git.runner.subprocess.run")
    def test_stage_and_commit_args(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="", stderr="")
        stage_all(Path("/r"))
        commit(Path("/r"), "feat: add login")
        calls = [c[0][0] for c in mock_run.call_args_list]
        assert calls[0] == ["git", "-C", "/r", "add", "-A"]
        assert calls[1] == ["git", "-C", "/r", "commit", "-m", "feat: add login"]

    @patch("ralph.git.runner.subprocess.run")
    def test_short_sha(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="abc1234\n", stderr="")
        assert get_short_sha(Path("/r")) == "abc1234"

    @patch("ralph.git.log.run_git")
    def test_log_oneline(self, mock_run):
        mock_run.return_value = GitResult(returncode=0, stdout="a1 one\nb2 two\n", stderr="")
        assert get_log_oneline(Path("/r"), 5) == ["a1 one", "b2 two"]
        assert mock_run.call_args[0][0] == ["log", "--oneline", "-n", "5"]

    @patch("ralph.git.log.run_git")
    def test_log_without_history(self, mock_run):
        mock_run.return_value = GitResult(returncode=128, stdout="", stderr="no commits")
        assert get_log_oneline(Path("/r"), 5) is None
