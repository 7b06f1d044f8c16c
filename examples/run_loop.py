#!/usr/bin/env python3
"""Example: drive the loop programmatically.

Usage:
    python examples/run_loop.py /path/to/repo "Add type hints to utils.py" --loops 5
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Allow running from the repo root without installing the package
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from codex_loop.codex_cli import CodexRunner
from codex_loop.loop import LoopController
from codex_loop.schemas import RunConfig, TaskPayload


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the Codex loop against a repository.")
    parser.add_argument("repo", help="Path to the target repo")
    parser.add_argument("task", help="Task description sent to the agent every iteration")
    parser.add_argument("--loops", type=int, default=5, help="Max iterations (default 5)")
    parser.add_argument("--test-cmd", default="", help="Stop once this command exits 0")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s  %(levelname)-8s  %(message)s",
        datefmt="%H:%M:%S",
    )

    config = RunConfig(
        max_iterations=args.loops,
        stop_on_tests_pass=bool(args.test_cmd),
        test_command=args.test_cmd,
    )
    payload = TaskPayload(
        text=f"{args.task}\n\nWhen the task is complete, print `PROMISE: true`.\n",
        source="command line",
    )

    outcome = LoopController(args.repo, CodexRunner()).run(payload, config)

    print(f"\nDone! {outcome.iterations} iterations, outcome: {outcome.decision.value}")
    print(f"Logs written to: {outcome.log_root}")


if __name__ == "__main__":
    main()
