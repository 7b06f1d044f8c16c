"""Shared helpers for agent runner implementations."""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
import time
from collections.abc import Mapping, Sequence
from pathlib import Path

from codex_loop.schemas import AgentResult

logger = logging.getLogger(__name__)


def resolve_binary(name: str) -> str:
    """Resolve a binary name to a full executable path when possible."""
    expanded = os.path.expandvars(os.path.expanduser(str(name or "").strip()))
    if len(expanded) >= 2 and expanded[0] == expanded[-1] and expanded[0] in {"'", '"'}:
        # Accept copy/paste paths wrapped in shell quotes.
        expanded = expanded[1:-1].strip()
    if not expanded:
        return ""
    resolved = shutil.which(expanded)
    if resolved:
        return resolved
    return expanded


def split_command(command: str | Sequence[str] | None) -> list[str]:
    """Turn a shell-like string or a sequence into argv tokens.

    Blank tokens are dropped; an empty command yields an empty list.
    """
    if command is None:
        return []
    if isinstance(command, str):
        raw = command.strip()
        if not raw:
            return []
        try:
            parts = shlex.split(raw, posix=os.name != "nt")
        except ValueError:
            logger.warning(
                "Could not parse command %r with shell quoting; falling back to whitespace split.",
                raw,
            )
            parts = raw.split()
        return [part for part in parts if part]
    return [str(part).strip() for part in command if part is not None and str(part).strip()]


def format_command(cmd: Sequence[str]) -> str:
    """Render argv for display, quoting parts that contain spaces."""
    return " ".join(f'"{part}"' if " " in part else part for part in cmd)


def _as_text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def run_agent_process(
    cmd: Sequence[str],
    *,
    cwd: Path,
    stdin_text: str,
    process_name: str,
    env: Mapping[str, str] | None = None,
    timeout: float | None = None,
) -> AgentResult:
    """Spawn *cmd*, feed *stdin_text*, and capture stdout in full.

    Spawn errors and timeouts come back as a failed :class:`AgentResult`
    carrying whatever output was produced before the process stopped.
    """
    start = time.monotonic()
    try:
        proc = subprocess.run(
            list(cmd),
            cwd=cwd,
            input=stdin_text,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            env=dict(env) if env is not None else None,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as exc:
        logger.warning("%s timed out after %ss", process_name, timeout)
        stderr = _as_text(exc.stderr).strip()
        return AgentResult(
            exit_code=-1,
            transcript=_as_text(exc.stdout),
            stderr=stderr,
            errors=[f"{process_name} timed out after {timeout}s"] + ([stderr] if stderr else []),
            timed_out=True,
            duration_seconds=time.monotonic() - start,
        )
    except (OSError, ValueError) as exc:
        logger.warning("Failed to execute %s: %s", process_name, exc)
        return AgentResult(
            exit_code=-1,
            errors=[f"Failed to execute {process_name}: {exc}"],
            duration_seconds=time.monotonic() - start,
        )

    stderr = (proc.stderr or "").strip()
    errors: list[str] = []
    if proc.returncode != 0:
        errors.append(stderr or f"{process_name} exited with status {proc.returncode}")
    return AgentResult(
        exit_code=proc.returncode,
        transcript=proc.stdout or "",
        stderr=stderr,
        errors=errors,
        duration_seconds=time.monotonic() - start,
    )
