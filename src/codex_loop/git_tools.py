"""Git helpers for status, diffs, staging, and per-iteration commits."""

from __future__ import annotations

import datetime as dt
import logging
import os
import subprocess
from collections.abc import Iterable
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_GIT_TIMEOUT = 120
BRANCH_PREFIX = "codex-"


def _git_subprocess_isolation_kwargs() -> dict[str, object]:
    """Return kwargs that keep child console events away from the parent on Windows."""
    if os.name != "nt":
        return {}
    new_pg = int(getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0))
    no_win = int(getattr(subprocess, "CREATE_NO_WINDOW", 0))
    flags = new_pg | no_win
    return {"creationflags": flags} if flags else {}


class GitError(RuntimeError):
    """Raised when a git command fails unexpectedly."""


def _run_git(
    *args: str,
    cwd: Path,
    check: bool = True,
    timeout: int = DEFAULT_GIT_TIMEOUT,
) -> subprocess.CompletedProcess[str]:
    """Run a git command and return the CompletedProcess."""
    cmd = ["git", *args]
    logger.debug("git %s (cwd=%s)", " ".join(args), cwd)
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
            **_git_subprocess_isolation_kwargs(),
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise GitError(f"`git {' '.join(args)}` could not run: {exc}") from exc
    if check and result.returncode != 0:
        raise GitError(
            f"`git {' '.join(args)}` failed (rc={result.returncode}): {result.stderr.strip()}"
        )
    return result


# ---------------------------------------------------------------------------
# Query helpers
# ---------------------------------------------------------------------------


def is_git_repo(repo: str | Path) -> bool:
    """Return True when *repo* has a ``.git`` entry."""
    return (Path(repo) / ".git").exists()


def status_porcelain(repo: str | Path, *, ignore_untracked: bool = False) -> str:
    """Return ``git status --porcelain`` output.

    With ``ignore_untracked`` the query runs with ``-uno`` so untracked files
    never show up.
    """
    args = ["status", "--porcelain"]
    if ignore_untracked:
        args.append("-uno")
    return _run_git(*args, cwd=Path(repo)).stdout


def working_tree_diff(repo: str | Path) -> str:
    """Return the unstaged ``git diff`` of tracked files, untouched."""
    return _run_git("diff", cwd=Path(repo)).stdout


def current_branch(repo: str | Path) -> str:
    """Return the name of the current branch."""
    return _run_git("rev-parse", "--abbrev-ref", "HEAD", cwd=Path(repo)).stdout.strip()


def head_sha(repo: str | Path) -> str:
    """Return the short SHA of HEAD."""
    return _run_git("rev-parse", "--short", "HEAD", cwd=Path(repo)).stdout.strip()


# ---------------------------------------------------------------------------
# Mutation helpers
# ---------------------------------------------------------------------------


def stage_tracked(repo: str | Path) -> None:
    """Stage modifications and deletions of already-tracked files."""
    _run_git("add", "-u", cwd=Path(repo))


def stage_all(repo: str | Path) -> None:
    """Stage every change, including new files not covered by ``.gitignore``."""
    _run_git("add", "-A", cwd=Path(repo))


def stage_forced(repo: str | Path, path: str | Path) -> None:
    """Stage *path* even if it is ignored."""
    _run_git("add", "-f", str(path), cwd=Path(repo))


def commit(repo: str | Path, message: str, *, allow_empty: bool = False) -> str:
    """Commit the index and return the new short SHA."""
    args = ["commit", "-m", message]
    if allow_empty:
        args.append("--allow-empty")
    _run_git(*args, cwd=Path(repo))
    return head_sha(repo)


def create_branch(repo: str | Path, branch_name: str | None = None) -> str:
    """Create and checkout a new branch; return its name.

    If *branch_name* is None a local-time stamped name is generated:
    ``codex-20260206-153012``.
    """
    if branch_name is None:
        branch_name = f"{BRANCH_PREFIX}{dt.datetime.now().strftime('%Y%m%d-%H%M%S')}"
    _run_git("checkout", "-b", branch_name, cwd=Path(repo))
    logger.info("Created branch %s", branch_name)
    return branch_name


def _read_gitignore(repo: str | Path) -> str:
    path = Path(repo) / ".gitignore"
    return path.read_text(encoding="utf-8") if path.exists() else ""


def missing_gitignore_entries(repo: str | Path, entries: Iterable[str]) -> list[str]:
    """Return the *entries* that no line of ``.gitignore`` lists yet."""
    present = {line.strip() for line in _read_gitignore(repo).splitlines()}
    return [entry for entry in entries if entry not in present]


def ensure_gitignore(repo: str | Path, entries: Iterable[str]) -> list[str]:
    """Append any of *entries* missing from ``.gitignore``; return those added."""
    path = Path(repo) / ".gitignore"
    existing = _read_gitignore(repo)
    missing = missing_gitignore_entries(repo, entries)
    if not missing:
        return []
    newline = "" if not existing or existing.endswith("\n") else "\n"
    with path.open("a", encoding="utf-8") as handle:
        handle.write(newline + "\n".join(missing) + "\n")
    logger.info("Added %s to %s", ", ".join(missing), path)
    return missing


# ---------------------------------------------------------------------------
# Repository adapter
# ---------------------------------------------------------------------------


class GitRepo:
    """Version-control adapter bound to one working tree.

    The loop controller only talks to git through this surface, so tests can
    hand it any object with the same methods.
    """

    def __init__(self, repo_path: str | Path) -> None:
        self.repo_path = Path(repo_path).resolve()

    def status(self, ignore_untracked: bool = False) -> str:
        return status_porcelain(self.repo_path, ignore_untracked=ignore_untracked)

    def diff(self) -> str:
        return working_tree_diff(self.repo_path)

    def stage_tracked(self) -> None:
        stage_tracked(self.repo_path)

    def stage_all(self) -> None:
        stage_all(self.repo_path)

    def stage_forced(self, path: str | Path) -> None:
        stage_forced(self.repo_path, path)

    def commit(self, message: str, *, allow_empty: bool = False) -> bool:
        """Commit staged changes; log and return False when git refuses."""
        try:
            sha = commit(self.repo_path, message, allow_empty=allow_empty)
        except GitError as exc:
            logger.warning("Commit failed: %s", exc)
            return False
        logger.info("Committed %s", sha)
        return True

    def current_branch(self) -> str | None:
        try:
            return current_branch(self.repo_path)
        except GitError as exc:
            logger.warning("Could not determine current branch: %s", exc)
            return None
