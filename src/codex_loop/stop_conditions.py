"""Stop-condition evaluation: completion marker, test command, and clean tree.

Each signal is computed once per iteration.  :func:`decide` turns the signals
into a :class:`StopDecision` without touching git or subprocesses.
"""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Callable
from pathlib import Path

from codex_loop.git_tools import GitError
from codex_loop.schemas import RunConfig, StopDecision, StopReason, StopSignals

logger = logging.getLogger(__name__)

StatusQuery = Callable[[bool], str]
TestRunner = Callable[[str], "bool | None"]


def completion_marker(key: str) -> str:
    """Return the literal text an agent prints to declare the task done."""
    return f"{key}: true"


def parse_promise(transcript: str, key: str = "PROMISE") -> bool:
    """Return True when *transcript* contains ``"<key>: true"`` anywhere."""
    if not transcript:
        return False
    return completion_marker(key) in transcript


def run_test_command(
    command: str,
    cwd: str | Path,
    *,
    timeout: float | None = None,
) -> bool | None:
    """Run *command* through the shell in *cwd*; True iff it exits 0.

    Returns ``None`` for a blank command.  A command that cannot be started
    or exceeds *timeout* counts as a failure.
    """
    command = (command or "").strip()
    if not command:
        return None

    logger.info("Running tests: %s (cwd=%s)", command, cwd)
    try:
        proc = subprocess.run(
            command,
            shell=True,
            cwd=cwd,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        logger.warning("Test command timed out after %ss", timeout)
        return False
    except (OSError, ValueError) as exc:
        logger.warning("Test command could not run: %s", exc)
        return False

    if proc.returncode != 0:
        logger.info("Tests failed (exit %d)", proc.returncode)
        return False
    return True


def evaluate_stop_conditions(
    transcript: str,
    config: RunConfig,
    *,
    status: StatusQuery,
    run_tests: TestRunner,
) -> StopSignals:
    """Compute the three stop signals for one iteration.

    Parameters
    ----------
    transcript:
        Captured agent stdout.
    config:
        Run settings deciding which conditions are live.
    status:
        ``status(ignore_untracked)`` returning porcelain status text.
    run_tests:
        Callable running the configured test command.
    """
    completion_found = parse_promise(transcript, config.completion_key)

    tests_passed: bool | None = None
    if config.tests_enabled:
        tests_passed = bool(run_tests(config.test_command))

    no_diff = False
    if config.stop_on_no_diff:
        try:
            no_diff = status(config.ignore_untracked_for_no_diff).strip() == ""
        except GitError as exc:
            logger.warning("Could not query working tree status: %s", exc)

    return StopSignals(
        completion_found=completion_found,
        tests_passed=tests_passed,
        no_diff=no_diff,
    )


def decide(signals: StopSignals, config: RunConfig) -> tuple[StopDecision, list[StopReason]]:
    """Map one iteration's signals to a decision.

    Any live signal stops the run; every one that fired is reported.
    """
    reasons: list[StopReason] = []
    if config.stop_on_promise and signals.completion_found:
        reasons.append(StopReason.COMPLETION)
    if signals.tests_passed is True:
        reasons.append(StopReason.TESTS_PASSED)
    if config.stop_on_no_diff and signals.no_diff:
        reasons.append(StopReason.NO_DIFF)

    if reasons:
        return StopDecision.STOP_COMPLETED, reasons
    return StopDecision.CONTINUE_RUNNING, []
