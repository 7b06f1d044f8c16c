"""Tests for git helpers and the GitRepo adapter."""

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from codex_loop.git_tools import (
    GitError,
    GitRepo,
    commit,
    create_branch,
    current_branch,
    ensure_gitignore,
    is_git_repo,
    missing_gitignore_entries,
    stage_all,
    stage_forced,
    stage_tracked,
    status_porcelain,
    working_tree_diff,
)


class TestArgv:
    pytestmark = pytest.mark.unit

    def test_status_respects_untracked_flag(self, tmp_path: Path):
        with patch(
            "codex_loop.git_tools._run_git", return_value=SimpleNamespace(stdout="")
        ) as run_git:
            status_porcelain(tmp_path)
            status_porcelain(tmp_path, ignore_untracked=True)

        assert run_git.call_args_list[0].args == ("status", "--porcelain")
        assert run_git.call_args_list[1].args == ("status", "--porcelain", "-uno")

    def test_stage_helpers(self, tmp_path: Path):
        with patch("codex_loop.git_tools._run_git") as run_git:
            stage_tracked(tmp_path)
            stage_all(tmp_path)
            stage_forced(tmp_path, ".codex_logs")

        assert [c.args for c in run_git.call_args_list] == [
            ("add", "-u"),
            ("add", "-A"),
            ("add", "-f", ".codex_logs"),
        ]

    def test_commit_allow_empty_flag(self, tmp_path: Path):
        with patch(
            "codex_loop.git_tools._run_git", return_value=SimpleNamespace(stdout="abc1234\n")
        ) as run_git:
            sha = commit(tmp_path, "msg", allow_empty=True)

        assert run_git.call_args_list[0].args == ("commit", "-m", "msg", "--allow-empty")
        assert sha == "abc1234"

    def test_repo_commit_returns_false_on_git_error(self, tmp_path: Path, caplog):
        with patch("codex_loop.git_tools._run_git", side_effect=GitError("nothing to commit")):
            with caplog.at_level("WARNING"):
                assert GitRepo(tmp_path).commit("msg") is False
        assert "nothing to commit" in caplog.text

    def test_missing_git_binary_raises_git_error(self, monkeypatch, tmp_path: Path):
        def _raise(*args, **kwargs):
            raise FileNotFoundError("git")

        monkeypatch.setattr("codex_loop.git_tools.subprocess.run", _raise)
        with pytest.raises(GitError, match="could not run"):
            working_tree_diff(tmp_path)

    def test_is_git_repo(self, tmp_path: Path):
        assert is_git_repo(tmp_path) is False
        (tmp_path / ".git").mkdir()
        assert is_git_repo(tmp_path) is True


class TestEnsureGitignore:
    pytestmark = pytest.mark.unit

    def test_creates_file(self, tmp_path: Path):
        added = ensure_gitignore(tmp_path, [".codex/state.json", ".codex_logs/"])
        assert added == [".codex/state.json", ".codex_logs/"]
        assert (tmp_path / ".gitignore").read_text(encoding="utf-8") == (
            ".codex/state.json\n.codex_logs/\n"
        )

    def test_appends_only_missing_entries(self, tmp_path: Path):
        (tmp_path / ".gitignore").write_text("node_modules\n.codex_logs/", encoding="utf-8")
        added = ensure_gitignore(tmp_path, [".codex/state.json", ".codex_logs/"])
        assert added == [".codex/state.json"]
        assert (tmp_path / ".gitignore").read_text(encoding="utf-8") == (
            "node_modules\n.codex_logs/\n.codex/state.json\n"
        )

    def test_noop_when_complete(self, tmp_path: Path):
        (tmp_path / ".gitignore").write_text(".codex/state.json\n.codex_logs/\n", encoding="utf-8")
        assert ensure_gitignore(tmp_path, [".codex/state.json", ".codex_logs/"]) == []

    def test_missing_entries_match_whole_lines(self, tmp_path: Path):
        (tmp_path / ".gitignore").write_text(".codex_logs/old\n  .codex/state.json  \n", encoding="utf-8")
        assert missing_gitignore_entries(tmp_path, [".codex/state.json", ".codex_logs/"]) == [
            ".codex_logs/"
        ]

    def test_missing_entries_without_gitignore(self, tmp_path: Path):
        assert missing_gitignore_entries(tmp_path, ["a", "b"]) == ["a", "b"]
        assert not (tmp_path / ".gitignore").exists()


@pytest.mark.integration
class TestGitRepoIntegration:
    def test_clean_repo_has_empty_status_and_diff(self, git_repo: Path):
        repo = GitRepo(git_repo)
        assert repo.status() == ""
        assert repo.status(ignore_untracked=True) == ""
        assert repo.diff() == ""

    def test_untracked_files_filtered_on_request(self, git_repo: Path):
        (git_repo / "new.txt").write_text("n\n", encoding="utf-8")
        repo = GitRepo(git_repo)
        assert "?? new.txt" in repo.status()
        assert repo.status(ignore_untracked=True) == ""
        assert repo.diff() == ""

    def test_tracked_change_shows_in_status_and_diff(self, git_repo: Path):
        (git_repo / "tracked.txt").write_text("a\nb\n", encoding="utf-8")
        repo = GitRepo(git_repo)
        assert "tracked.txt" in repo.status(ignore_untracked=True)
        assert "+b" in repo.diff()

    def test_stage_tracked_leaves_untracked_out_of_commit(self, git_repo: Path, git):
        (git_repo / "tracked.txt").write_text("changed\n", encoding="utf-8")
        (git_repo / "new.txt").write_text("n\n", encoding="utf-8")
        repo = GitRepo(git_repo)

        repo.stage_tracked()
        assert repo.commit("iter 1") is True

        files = git(git_repo, "show", "--name-only", "--pretty=format:", "HEAD").split()
        assert files == ["tracked.txt"]
        assert "?? new.txt" in repo.status()

    def test_stage_all_includes_untracked(self, git_repo: Path, git):
        (git_repo / "new.txt").write_text("n\n", encoding="utf-8")
        repo = GitRepo(git_repo)

        repo.stage_all()
        assert repo.commit("iter 1") is True
        assert repo.status() == ""

    def test_stage_forced_adds_ignored_path(self, git_repo: Path, git):
        ensure_gitignore(git_repo, [".codex_logs/"])
        logs = git_repo / ".codex_logs" / "run" / "iter-1"
        logs.mkdir(parents=True)
        (logs / "output.txt").write_text("out", encoding="utf-8")
        repo = GitRepo(git_repo)

        repo.stage_forced(".codex_logs")
        repo.commit("logs")

        files = git(git_repo, "show", "--name-only", "--pretty=format:", "HEAD").split()
        assert ".codex_logs/run/iter-1/output.txt" in files

    def test_commit_without_changes_fails_unless_allowed(self, git_repo: Path):
        repo = GitRepo(git_repo)
        assert repo.commit("nothing") is False
        assert repo.commit("nothing", allow_empty=True) is True

    def test_create_branch_uses_timestamped_name(self, git_repo: Path):
        name = create_branch(git_repo)
        assert name.startswith("codex-")
        assert current_branch(git_repo) == name
        assert GitRepo(git_repo).current_branch() == name
