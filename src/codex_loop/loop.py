"""Loop controller.

The :class:`LoopController` invokes an agent against a git working tree over
and over with the same task payload, checkpointing every iteration, until a
stop condition fires or the iteration budget runs out.
"""

from __future__ import annotations

import datetime as dt
import logging
from pathlib import Path
from typing import Protocol

from codex_loop.agent_runner import AgentRunner
from codex_loop.checkpoint import CheckpointWriter
from codex_loop.git_tools import GitError, GitRepo
from codex_loop.schemas import (
    AgentResult,
    IterationRecord,
    RunConfig,
    RunOutcome,
    RunState,
    StageMode,
    StopDecision,
    StopSignals,
    TaskPayload,
)
from codex_loop.stop_conditions import (
    TestRunner,
    decide,
    evaluate_stop_conditions,
    run_test_command,
)

logger = logging.getLogger(__name__)

SUMMARY_MAX_CHARS = 72
SUMMARY_FALLBACK = "updates"


class VersionControl(Protocol):
    """The git operations the controller relies on (see :class:`GitRepo`)."""

    def status(self, ignore_untracked: bool = False) -> str: ...

    def diff(self) -> str: ...

    def stage_tracked(self) -> None: ...

    def stage_all(self) -> None: ...

    def stage_forced(self, path: str | Path) -> None: ...

    def commit(self, message: str, *, allow_empty: bool = False) -> bool: ...

    def current_branch(self) -> str | None: ...


# ---------------------------------------------------------------------------
# Commit message helpers
# ---------------------------------------------------------------------------


def first_line_summary(text: str) -> str:
    """Return the first non-blank line of *text*, stripped and capped at 72 chars."""
    for line in (text or "").splitlines():
        if line.strip():
            return line.strip()[:SUMMARY_MAX_CHARS]
    return SUMMARY_FALLBACK


def render_commit_message(template: str, iteration: int, transcript: str) -> str:
    """Fill ``{n}`` and ``{summary}`` in a commit message template."""
    return template.replace("{n}", str(iteration)).replace(
        "{summary}", first_line_summary(transcript)
    )


def format_run_id(now: dt.datetime | None = None) -> str:
    """Return a local-time run id such as ``20260206-153012``."""
    return (now or dt.datetime.now()).strftime("%Y%m%d-%H%M%S")


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


class LoopController:
    """Drive repeated agent runs with checkpointing and stop evaluation.

    Parameters
    ----------
    repo_path:
        Root of the working tree the agent edits.
    runner:
        The :class:`AgentRunner` invoked once per iteration.
    vcs:
        Version-control adapter; a :class:`GitRepo` for *repo_path* by default.
    checkpoints:
        Where iteration artifacts go; defaults to ``<repo>/<config.log_dir>``.
    test_runner:
        ``test_runner(command)`` returning whether the tests passed.  Defaults
        to running the command through the shell inside *repo_path*.
    branch:
        Branch name recorded in the run state; detected from git if omitted.
    run_id:
        Identifier of the run's log directory; a timestamp if omitted.
    """

    def __init__(
        self,
        repo_path: str | Path,
        runner: AgentRunner,
        *,
        vcs: VersionControl | None = None,
        checkpoints: CheckpointWriter | None = None,
        test_runner: TestRunner | None = None,
        branch: str | None = None,
        run_id: str | None = None,
    ) -> None:
        self.repo_path = Path(repo_path).resolve()
        if not self.repo_path.is_dir():
            raise FileNotFoundError(f"Repository path does not exist: {self.repo_path}")
        self.runner = runner
        self.vcs: VersionControl = vcs if vcs is not None else GitRepo(self.repo_path)
        self.checkpoints = checkpoints
        self.test_runner = test_runner
        self.branch = branch
        self.run_id = run_id

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    def run(self, payload: TaskPayload, config: RunConfig) -> RunOutcome:
        """Execute the loop and return how it ended."""
        run_id = self.run_id or format_run_id()
        writer = self.checkpoints or CheckpointWriter(self.repo_path / config.log_dir)
        log_root = writer.ensure_run_root(run_id)
        branch = self.branch if self.branch is not None else self.vcs.current_branch()

        state = RunState(repo_root=str(self.repo_path), branch=branch, run_id=run_id)
        logger.info(
            "Starting loop: run_id=%s, branch=%s, max_iterations=%d, payload_len=%d, payload_sha256=%s",
            run_id,
            branch,
            config.max_iterations,
            payload.length_chars,
            payload.sha256,
        )

        writer.write_iteration(
            run_id,
            0,
            prompt=payload.text,
            metadata={
                "runId": run_id,
                "branch": branch,
                "payloadSha256": payload.sha256,
                "payloadSource": payload.source,
                "maxIterations": config.max_iterations,
            },
        )
        self._save_state(state, config)

        records: list[IterationRecord] = []
        for index in range(1, config.max_iterations + 1):
            logger.info("──── Iteration %d / %d ────", index, config.max_iterations)
            record = self._run_iteration(index, payload, config, writer, run_id)
            records.append(record)

            state.touch(index, record.completion_found)
            self._save_state(state, config)

            signals = StopSignals(
                completion_found=record.completion_found,
                tests_passed=record.tests_passed,
                no_diff=record.no_diff,
            )
            decision, reasons = decide(signals, config)
            if decision == StopDecision.STOP_COMPLETED:
                logger.info(
                    "Stopping after iteration %d: %s",
                    index,
                    ", ".join(reason.value for reason in reasons),
                )
                return RunOutcome(
                    decision=decision,
                    reasons=reasons,
                    iterations=index,
                    run_id=run_id,
                    log_root=str(log_root),
                    records=records,
                    state=state,
                )

        logger.info("Reached iteration limit (%d) without a stop signal", config.max_iterations)
        return RunOutcome(
            decision=StopDecision.STOP_AT_ITERATION_LIMIT,
            iterations=config.max_iterations,
            run_id=run_id,
            log_root=str(log_root),
            records=records,
            state=state,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _run_iteration(
        self,
        index: int,
        payload: TaskPayload,
        config: RunConfig,
        writer: CheckpointWriter,
        run_id: str,
    ) -> IterationRecord:
        result = self._invoke_agent(payload)
        log = logger.info if result.success else logger.warning
        log(
            "Agent %s (exit=%d, %.1fs, transcript_len=%d)",
            "finished" if result.success else "failed",
            result.exit_code,
            result.duration_seconds,
            len(result.transcript),
        )
        diff = self._capture_diff()

        captured = IterationRecord(
            index=index,
            exit_code=result.exit_code,
            transcript=result.transcript,
            diff=diff,
            duration_seconds=result.duration_seconds,
            agent_errors=result.errors,
        )
        writer.write_iteration(
            run_id,
            index,
            transcript=captured.transcript,
            diff=captured.diff,
            metadata=captured.metadata(),
        )

        signals = evaluate_stop_conditions(
            result.transcript,
            config,
            status=self.vcs.status,
            run_tests=self._test_runner(config),
        )
        if signals.completion_found:
            logger.info("Completion signal detected.")

        committed = False
        message: str | None = None
        if config.commit_each_iteration:
            committed, message = self._commit(index, result.transcript, config)

        record = captured.model_copy(
            update={
                "completion_found": signals.completion_found,
                "tests_passed": signals.tests_passed,
                "no_diff": signals.no_diff,
                "committed": committed,
                "commit_message": message,
            }
        )
        writer.write_iteration(run_id, index, result=record.evaluation())
        return record

    def _invoke_agent(self, payload: TaskPayload) -> AgentResult:
        try:
            return self.runner.run(self.repo_path, payload.text)
        except Exception as exc:
            logger.exception("%s runner raised; recording a failed iteration", self.runner.name)
            return AgentResult(errors=[f"{type(exc).__name__}: {exc}"])

    def _capture_diff(self) -> str:
        try:
            return self.vcs.diff()
        except GitError as exc:
            logger.warning("Could not compute working tree diff: %s", exc)
            return ""

    def _test_runner(self, config: RunConfig) -> TestRunner:
        if self.test_runner is not None:
            return self.test_runner
        repo_path = self.repo_path

        def _run(command: str) -> bool | None:
            return run_test_command(command, repo_path, timeout=config.test_timeout)

        return _run

    def _commit(self, index: int, transcript: str, config: RunConfig) -> tuple[bool, str | None]:
        """Stage and commit the iteration's changes.  Never raises."""
        try:
            # Staging decisions always look at tracked files only.
            pending = self.vcs.status(True).strip() != ""
        except GitError as exc:
            logger.warning("Could not query tracked status before commit: %s", exc)
            return False, None
        if not pending and not config.allow_empty_commit:
            logger.info("No tracked changes; skipping commit")
            return False, None

        message = render_commit_message(config.commit_message_template, index, transcript)
        try:
            if config.stage_mode == StageMode.ALL:
                self.vcs.stage_all()
            else:
                self.vcs.stage_tracked()
            if config.commit_logs:
                self.vcs.stage_forced(config.log_dir)
        except GitError as exc:
            logger.warning("Staging failed; skipping commit: %s", exc)
            return False, message

        committed = self.vcs.commit(message, allow_empty=config.allow_empty_commit)
        if not committed:
            logger.warning("Commit failed for iteration %d", index)
        return committed, message

    def _save_state(self, state: RunState, config: RunConfig) -> None:
        path = self.repo_path / config.state_path
        try:
            state.save(path)
        except OSError as exc:
            logger.warning("Could not write run state %s: %s", path, exc)
