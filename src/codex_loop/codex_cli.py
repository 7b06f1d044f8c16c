"""Runners that spawn the Codex CLI (``codex exec``) or any other agent command."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping, Sequence
from pathlib import Path

from codex_loop.agent_runner import AgentRunner
from codex_loop.runner_common import (
    format_command,
    resolve_binary,
    run_agent_process,
    split_command,
)
from codex_loop.schemas import AgentResult, AgentSettings

logger = logging.getLogger(__name__)


class CodexRunner(AgentRunner):
    """Spawn ``codex exec`` with the payload on stdin.

    Parameters
    ----------
    settings:
        Binary, model, sandbox and approval flags.  Defaults mirror a
        ``--full-auto`` run in a ``workspace-write`` sandbox.
    env_overrides:
        Extra environment variables forwarded to the child process.  Use this
        to inject ``CODEX_API_KEY`` without touching the system environment.
    """

    name = "Codex"

    def __init__(
        self,
        settings: AgentSettings | None = None,
        env_overrides: Mapping[str, str] | None = None,
    ) -> None:
        self.settings = settings or AgentSettings()
        self.env_overrides = dict(env_overrides or {})

    def run(self, repo_path: str | Path, payload: str) -> AgentResult:
        repo_path = Path(repo_path).resolve()
        if not repo_path.is_dir():
            return AgentResult(errors=[f"repo_path does not exist: {repo_path}"])

        cmd = self.build_command(repo_path)
        logger.info("Running Codex CLI (cwd=%s, payload_len=%d)", repo_path, len(payload))
        return run_agent_process(
            cmd,
            cwd=repo_path,
            stdin_text=payload,
            process_name="Codex",
            env={**os.environ, **self.env_overrides},
            timeout=self.settings.timeout,
        )

    def describe(self, repo_path: str | Path) -> str:
        return format_command(self.build_command(Path(repo_path).resolve()))

    def build_command(self, repo_path: Path) -> list[str]:
        s = self.settings
        cmd = [resolve_binary(s.binary), "exec"]
        if s.yolo:
            cmd.append("--dangerously-bypass-approvals-and-sandbox")
        elif s.full_auto:
            cmd.append("--full-auto")
        cmd.extend(["--cd", str(repo_path)])
        if s.model:
            cmd.extend(["--model", s.model])
        if s.sandbox:
            cmd.extend(["--sandbox", s.sandbox])
        if s.search:
            cmd.append("--search")
        cmd.extend(s.extra_args)
        # "-" tells codex exec to read the prompt from stdin.
        cmd.append("-")
        return cmd


class CommandRunner(AgentRunner):
    """Run an arbitrary agent command with the payload on stdin."""

    name = "command"

    def __init__(
        self,
        command: str | Sequence[str],
        *,
        timeout: float | None = None,
        env_overrides: Mapping[str, str] | None = None,
    ) -> None:
        self.command = split_command(command)
        if not self.command:
            raise ValueError("Agent command must not be empty")
        self.timeout = timeout
        self.env_overrides = dict(env_overrides or {})

    def run(self, repo_path: str | Path, payload: str) -> AgentResult:
        repo_path = Path(repo_path).resolve()
        cmd = [resolve_binary(self.command[0]), *self.command[1:]]
        logger.info("Running agent command %s (cwd=%s)", format_command(cmd), repo_path)
        return run_agent_process(
            cmd,
            cwd=repo_path,
            stdin_text=payload,
            process_name=self.command[0],
            env={**os.environ, **self.env_overrides},
            timeout=self.timeout,
        )

    def describe(self, repo_path: str | Path) -> str:
        return format_command(self.command)
