"""CLI entrypoint for codex-loop."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from dotenv import find_dotenv, load_dotenv
from pydantic import ValidationError

from codex_loop.agent_runner import AgentRunner
from codex_loop.codex_cli import CodexRunner, CommandRunner
from codex_loop.errors import CodexLoopError, ConfigError
from codex_loop.git_tools import (
    GitError,
    create_branch,
    ensure_gitignore,
    is_git_repo,
    missing_gitignore_entries,
)
from codex_loop.loop import LoopController, format_run_id
from codex_loop.schemas import (
    DEFAULT_COMMIT_TEMPLATE,
    DEFAULT_COMPLETION_KEY,
    DEFAULT_LOG_DIR,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_PROMPT_PATH,
    DEFAULT_STATE_PATH,
    AgentSettings,
    RunConfig,
    RunOutcome,
    StageMode,
    TaskPayload,
)

logger = logging.getLogger(__name__)

EXIT_COMPLETED = 0
EXIT_ERROR = 1
EXIT_ITERATION_LIMIT = 2


def _build_parser() -> argparse.ArgumentParser:
    """Build and return the command-line parser."""
    p = argparse.ArgumentParser(
        prog="codex-loop",
        description=(
            "Run a coding agent against a git repository repeatedly with the same "
            "prompt until it reports completion, tests pass, or nothing changes."
        ),
    )
    p.add_argument("--repo", type=str, default=".", help="Target git repository (default: cwd).")
    p.add_argument(
        "--prompt",
        type=str,
        default=DEFAULT_PROMPT_PATH,
        help=f"Prompt file, relative to the repo (default: {DEFAULT_PROMPT_PATH}).",
    )

    # -- Loop -----------------------------------------------------------------
    loop_g = p.add_argument_group("loop")
    loop_g.add_argument(
        "--max-loops",
        type=int,
        default=DEFAULT_MAX_ITERATIONS,
        help=f"Maximum iterations (default: {DEFAULT_MAX_ITERATIONS}).",
    )
    loop_g.add_argument(
        "--no-stop-on-promise",
        action="store_true",
        help="Keep looping even when the agent prints the completion marker.",
    )
    loop_g.add_argument(
        "--completion-key",
        type=str,
        default=DEFAULT_COMPLETION_KEY,
        help=f"Completion marker key; the agent prints '<KEY>: true' (default: {DEFAULT_COMPLETION_KEY}).",
    )
    loop_g.add_argument(
        "--stop-on-tests-pass",
        action="store_true",
        help="Stop once --test-cmd exits 0.",
    )
    loop_g.add_argument("--test-cmd", type=str, default="", help="Shell command that runs the tests.")
    loop_g.add_argument(
        "--test-timeout",
        type=float,
        default=None,
        help="Seconds before the test command is treated as failed.",
    )
    loop_g.add_argument(
        "--stop-on-no-diff",
        action="store_true",
        help="Stop when an iteration leaves no pending changes.",
    )
    loop_g.add_argument(
        "--include-untracked",
        action="store_true",
        help="Count untracked files as pending changes for --stop-on-no-diff.",
    )

    # -- Git ------------------------------------------------------------------
    git_g = p.add_argument_group("git")
    git_g.add_argument("--no-commit", action="store_true", help="Do not commit after iterations.")
    git_g.add_argument(
        "--stage",
        choices=[mode.value for mode in StageMode],
        default=StageMode.TRACKED.value,
        help="Stage tracked files only, or everything (default: tracked).",
    )
    git_g.add_argument(
        "--commit-template",
        type=str,
        default=DEFAULT_COMMIT_TEMPLATE,
        help="Commit message template with {n} and {summary} placeholders.",
    )
    git_g.add_argument(
        "--allow-empty-commit",
        action="store_true",
        help="Commit even when no tracked file changed.",
    )
    git_g.add_argument(
        "--log-dir",
        type=str,
        default=DEFAULT_LOG_DIR,
        help=f"Iteration log directory inside the repo (default: {DEFAULT_LOG_DIR}).",
    )
    git_g.add_argument(
        "--log-commit",
        action="store_true",
        help="Force-add the log directory to each iteration commit.",
    )
    git_g.add_argument(
        "--new-branch",
        action="store_true",
        help="Create and switch to a codex-YYYYMMDD-HHMMSS branch before looping.",
    )
    git_g.add_argument(
        "--no-gitignore",
        action="store_true",
        help="Do not add the state file and log directory to .gitignore.",
    )

    # -- Agent ----------------------------------------------------------------
    agent_g = p.add_argument_group("agent")
    agent_g.add_argument("--codex-bin", type=str, default="codex", help="Codex CLI binary.")
    agent_g.add_argument("--model", type=str, default="gpt-5", help="Model passed to Codex.")
    agent_g.add_argument(
        "--sandbox",
        type=str,
        default="workspace-write",
        help="Codex sandbox mode (default: workspace-write).",
    )
    agent_g.add_argument(
        "--no-full-auto",
        action="store_true",
        help="Do not pass --full-auto to Codex.",
    )
    agent_g.add_argument(
        "--yolo",
        action="store_true",
        help="Run Codex without approvals or sandbox (blocked unless --force-yolo).",
    )
    agent_g.add_argument(
        "--force-yolo",
        action="store_true",
        help="Required to enable --yolo.",
    )
    agent_g.add_argument("--search", action="store_true", help="Enable Codex web search.")
    agent_g.add_argument(
        "--agent-arg",
        action="append",
        default=[],
        help="Extra argument forwarded to Codex (repeatable).",
    )
    agent_g.add_argument(
        "--agent-cmd",
        type=str,
        default="",
        help="Run this command as the agent instead of Codex (prompt on stdin).",
    )
    agent_g.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds before an agent invocation is killed (default: no limit).",
    )

    p.add_argument(
        "--dry-run",
        action="store_true",
        help="Show planned actions without running the agent or committing.",
    )
    p.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging.",
    )
    return p


def _build_run_config(args: argparse.Namespace) -> RunConfig:
    """Translate parsed flags into a validated :class:`RunConfig`."""
    try:
        return RunConfig(
            max_iterations=args.max_loops,
            stop_on_promise=not args.no_stop_on_promise,
            stop_on_tests_pass=args.stop_on_tests_pass,
            stop_on_no_diff=args.stop_on_no_diff,
            ignore_untracked_for_no_diff=not args.include_untracked,
            completion_key=args.completion_key,
            test_command=args.test_cmd,
            test_timeout=args.test_timeout,
            commit_each_iteration=not args.no_commit,
            stage_mode=args.stage,
            commit_message_template=args.commit_template,
            allow_empty_commit=args.allow_empty_commit,
            log_dir=args.log_dir,
            commit_logs=args.log_commit,
            state_path=DEFAULT_STATE_PATH,
        )
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc


def _build_runner(args: argparse.Namespace) -> AgentRunner:
    """Return the agent runner selected on the command line."""
    timeout = args.timeout if args.timeout and args.timeout > 0 else None
    if args.agent_cmd.strip():
        try:
            return CommandRunner(args.agent_cmd, timeout=timeout)
        except ValueError as exc:
            raise ConfigError(f"Invalid --agent-cmd {args.agent_cmd!r}: {exc}") from exc
    settings = AgentSettings(
        binary=args.codex_bin,
        model=args.model or None,
        sandbox=args.sandbox or None,
        full_auto=not args.no_full_auto,
        yolo=args.yolo,
        search=args.search,
        extra_args=tuple(args.agent_arg),
        timeout=timeout,
    )
    return CodexRunner(settings)


def _print_summary(outcome: RunOutcome) -> None:
    print("\n" + "=" * 60)
    print("  codex-loop - Run Summary")
    print("=" * 60)
    print(f"  Run id:      {outcome.run_id}")
    print(f"  Branch:      {outcome.state.branch or '-'}")
    print(f"  Iterations:  {outcome.iterations}")
    print(f"  Outcome:     {outcome.decision.value}")
    if outcome.reasons:
        print(f"  Reasons:     {', '.join(reason.value for reason in outcome.reasons)}")
    print(f"  Logs:        {outcome.log_root}")
    print("=" * 60)

    if outcome.records:
        print(f"\n  {'#':>3}  {'Exit':>4}  {'Promise':<7}  {'Tests':<5}  {'Clean':<5}  {'Commit':<6}")
        print(f"  {'-' * 3}  {'-' * 4}  {'-' * 7}  {'-' * 5}  {'-' * 5}  {'-' * 6}")
        for r in outcome.records:
            tests = "-" if r.tests_passed is None else ("pass" if r.tests_passed else "fail")
            print(
                f"  {r.index:>3}  "
                f"{r.exit_code:>4}  "
                f"{'yes' if r.completion_found else 'no':<7}  "
                f"{tests:<5}  "
                f"{'yes' if r.no_diff else 'no':<5}  "
                f"{'yes' if r.committed else 'no':<6}"
            )
    print()


def _run(args: argparse.Namespace) -> int:
    repo = Path(args.repo).resolve()
    if not repo.is_dir():
        print(f"Error: repo path does not exist: {repo}", file=sys.stderr)
        return EXIT_ERROR
    if not is_git_repo(repo):
        print(f"Error: not a git repository (no .git found): {repo}", file=sys.stderr)
        return EXIT_ERROR

    prompt_path = Path(args.prompt)
    if not prompt_path.is_absolute():
        prompt_path = repo / prompt_path
    if not prompt_path.is_file():
        print(f"Error: prompt file not found: {prompt_path}", file=sys.stderr)
        return EXIT_ERROR

    if args.yolo and not args.force_yolo:
        print("Error: Refusing to run with --yolo without --force-yolo.", file=sys.stderr)
        return EXIT_ERROR

    config = _build_run_config(args)
    runner = _build_runner(args)
    run_id = format_run_id()
    gitignore_entries = [config.state_path, f"{config.log_dir.rstrip('/')}/"]

    if args.dry_run:
        print(f"[dry-run] agent command: {runner.describe(repo)}")
        print(f"[dry-run] loop iterations: {config.max_iterations}")
        print(f"[dry-run] prompt path: {prompt_path}")
        print(f"[dry-run] logs dir: {repo / config.log_dir / run_id}")
        if not args.no_gitignore:
            missing = missing_gitignore_entries(repo, gitignore_entries)
            if missing:
                print(f"[dry-run] .gitignore missing: {', '.join(missing)}")
        print("[dry-run] skipping agent execution and git commits.")
        return EXIT_COMPLETED

    if not args.no_gitignore:
        ensure_gitignore(repo, gitignore_entries)

    branch = None
    if args.new_branch:
        branch = create_branch(repo)

    payload = TaskPayload.from_file(prompt_path)
    controller = LoopController(repo, runner, branch=branch, run_id=run_id)
    outcome = controller.run(payload, config)
    _print_summary(outcome)
    return EXIT_COMPLETED if outcome.completed else EXIT_ITERATION_LIMIT


def main(argv: list[str] | None = None) -> int:
    """Parse arguments and run the loop."""
    load_dotenv(find_dotenv(usecwd=True))
    parser = _build_parser()
    args = parser.parse_args(argv)
    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        datefmt="%H:%M:%S",
    )
    try:
        return _run(args)
    except (CodexLoopError, GitError, OSError) as exc:
        logger.error("%s", exc)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
