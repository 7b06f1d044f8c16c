"""Tests for the codex-loop command line."""

from __future__ import annotations

import shlex
import sys
from pathlib import Path

import pytest

import codex_loop.__main__ as main_module


def test_main_entrypoint_source_is_ascii_safe() -> None:
    source_text = Path(main_module.__file__).read_text(encoding="utf-8")
    assert source_text.isascii()


def _write_prompt(repo: Path, text: str = "Do the thing.\n") -> Path:
    prompt = repo / ".codex" / "CODEX_PROMPT.md"
    prompt.parent.mkdir(parents=True, exist_ok=True)
    prompt.write_text(text, encoding="utf-8")
    return prompt


@pytest.mark.unit
def test_missing_repo_is_an_error(tmp_path: Path, capsys) -> None:
    rc = main_module.main(["--repo", str(tmp_path / "nope")])
    assert rc == 1
    assert "repo path does not exist" in capsys.readouterr().err


@pytest.mark.unit
def test_directory_without_git_is_an_error(tmp_path: Path, capsys) -> None:
    _write_prompt(tmp_path)
    rc = main_module.main(["--repo", str(tmp_path)])
    assert rc == 1
    assert "not a git repository" in capsys.readouterr().err


@pytest.mark.integration
def test_missing_prompt_is_an_error(git_repo: Path, capsys) -> None:
    rc = main_module.main(["--repo", str(git_repo)])
    assert rc == 1
    assert "prompt file not found" in capsys.readouterr().err


@pytest.mark.integration
def test_invalid_max_loops_is_an_error(git_repo: Path, caplog) -> None:
    _write_prompt(git_repo)
    rc = main_module.main(["--repo", str(git_repo), "--max-loops", "0"])
    assert rc == 1
    assert "max_iterations must be >= 1" in caplog.text


@pytest.mark.integration
def test_dry_run_prints_plan_without_side_effects(git_repo: Path, capsys) -> None:
    _write_prompt(git_repo)
    rc = main_module.main(
        ["--repo", str(git_repo), "--dry-run", "--max-loops", "7", "--model", "o4-mini"]
    )
    out = capsys.readouterr().out

    assert rc == 0
    assert "[dry-run] agent command: codex exec --full-auto --cd" in out
    assert "--model o4-mini" in out
    assert "[dry-run] loop iterations: 7" in out
    assert "[dry-run] .gitignore missing: .codex/state.json, .codex_logs/" in out
    assert "[dry-run] skipping agent execution and git commits." in out
    assert not (git_repo / ".codex_logs").exists()
    assert not (git_repo / ".gitignore").exists()


@pytest.mark.integration
def test_prompt_path_may_be_absolute(git_repo: Path, tmp_path: Path, capsys) -> None:
    prompt = tmp_path / "task.md"
    prompt.write_text("task\n", encoding="utf-8")
    rc = main_module.main(["--repo", str(git_repo), "--prompt", str(prompt), "--dry-run"])
    assert rc == 0
    assert f"[dry-run] prompt path: {prompt}" in capsys.readouterr().out


@pytest.mark.integration
def test_full_run_with_custom_agent_hits_limit(git_repo: Path, tmp_path: Path, capsys) -> None:
    _write_prompt(git_repo)
    script = tmp_path / "agent.py"
    script.write_text("import sys\nprint(len(sys.stdin.read()))\n", encoding="utf-8")
    agent_cmd = f"{shlex.quote(sys.executable)} {shlex.quote(str(script))}"

    rc = main_module.main(
        [
            "--repo",
            str(git_repo),
            "--agent-cmd",
            agent_cmd,
            "--no-commit",
            "--max-loops",
            "1",
        ]
    )
    out = capsys.readouterr().out

    assert rc == 2
    assert "Run Summary" in out
    assert "Outcome:     stop_at_iteration_limit" in out
    gitignore = (git_repo / ".gitignore").read_text(encoding="utf-8").splitlines()
    assert ".codex/state.json" in gitignore
    assert ".codex_logs/" in gitignore
    runs = list((git_repo / ".codex_logs").iterdir())
    assert len(runs) == 1
    assert (runs[0] / "iter-1" / "output.txt").read_text(encoding="utf-8").strip() == "14"


@pytest.mark.integration
def test_full_run_stops_on_completion(git_repo: Path, tmp_path: Path) -> None:
    _write_prompt(git_repo)
    script = tmp_path / "agent.py"
    script.write_text("import sys\nsys.stdin.read()\nprint('DONE: true')\n", encoding="utf-8")
    agent_cmd = f"{shlex.quote(sys.executable)} {shlex.quote(str(script))}"

    rc = main_module.main(
        [
            "--repo",
            str(git_repo),
            "--agent-cmd",
            agent_cmd,
            "--completion-key",
            "DONE",
            "--no-gitignore",
        ]
    )

    assert rc == 0
    assert not (git_repo / ".gitignore").exists()


@pytest.mark.integration
def test_dry_run_is_quiet_when_gitignore_is_complete(git_repo: Path, capsys) -> None:
    _write_prompt(git_repo)
    (git_repo / ".gitignore").write_text(".codex/state.json\n.codex_logs/\n", encoding="utf-8")
    rc = main_module.main(["--repo", str(git_repo), "--dry-run"])
    assert rc == 0
    assert ".gitignore missing" not in capsys.readouterr().out


@pytest.mark.integration
def test_yolo_requires_force_yolo(git_repo: Path, capsys) -> None:
    _write_prompt(git_repo)
    rc = main_module.main(["--repo", str(git_repo), "--yolo", "--dry-run"])
    assert rc == 1
    assert "Refusing to run with --yolo without --force-yolo." in capsys.readouterr().err


@pytest.mark.integration
def test_force_yolo_enables_bypass(git_repo: Path, capsys) -> None:
    _write_prompt(git_repo)
    rc = main_module.main(["--repo", str(git_repo), "--yolo", "--force-yolo", "--dry-run"])
    out = capsys.readouterr().out
    assert rc == 0
    assert "--dangerously-bypass-approvals-and-sandbox" in out
    assert "--full-auto" not in out


@pytest.mark.integration
def test_agent_cmd_of_only_quotes_is_a_config_error(git_repo: Path, caplog) -> None:
    _write_prompt(git_repo)
    rc = main_module.main(["--repo", str(git_repo), "--agent-cmd", "''", "--dry-run"])
    assert rc == 1
    assert "Invalid --agent-cmd" in caplog.text
