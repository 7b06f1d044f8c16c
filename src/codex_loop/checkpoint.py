"""Per-iteration checkpoint artifacts under a run-scoped log directory.

Layout::

    <root>/<run_id>/iter-0/prompt.md      payload snapshot
                          /meta.json
    <root>/<run_id>/iter-N/output.txt     agent transcript
                          /diff.patch     working-tree diff
                          /meta.json      capture-time metadata
                          /result.json    stop signals and commit outcome
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from codex_loop.errors import CheckpointError
from codex_loop.file_io import atomic_write_text, write_json

logger = logging.getLogger(__name__)

PROMPT_FILE = "prompt.md"
TRANSCRIPT_FILE = "output.txt"
DIFF_FILE = "diff.patch"
META_FILE = "meta.json"
RESULT_FILE = "result.json"


class CheckpointWriter:
    """Write transcript, diff, and metadata files for each iteration.

    Artifacts are independent: a failure writing one is logged and the rest
    are still attempted.  Writing the same iteration again overwrites it.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def run_root(self, run_id: str) -> Path:
        return self.root / run_id

    def iteration_dir(self, run_id: str, index: int) -> Path:
        return self.run_root(run_id) / f"iter-{index}"

    def ensure_run_root(self, run_id: str) -> Path:
        """Create the run directory; raise :class:`CheckpointError` if impossible."""
        path = self.run_root(run_id)
        try:
            path.mkdir(parents=True, exist_ok=True)
            probe = path / ".write-check"
            probe.write_text("", encoding="utf-8")
            probe.unlink()
        except OSError as exc:
            raise CheckpointError(f"Checkpoint directory is not writable: {path}: {exc}") from exc
        return path

    def write_iteration(
        self,
        run_id: str,
        index: int,
        *,
        transcript: str | None = None,
        diff: str | None = None,
        metadata: dict[str, Any] | None = None,
        prompt: str | None = None,
        result: dict[str, Any] | None = None,
    ) -> list[str]:
        """Write the given artifacts for iteration *index*.

        Returns the file names that could not be written.
        """
        iter_dir = self.iteration_dir(run_id, index)
        artifacts: list[tuple[str, Any]] = []
        if prompt is not None:
            artifacts.append((PROMPT_FILE, prompt))
        if transcript is not None:
            artifacts.append((TRANSCRIPT_FILE, transcript))
        if diff is not None:
            artifacts.append((DIFF_FILE, diff))
        if metadata is not None:
            artifacts.append((META_FILE, metadata))
        if result is not None:
            artifacts.append((RESULT_FILE, result))

        failed: list[str] = []
        for name, content in artifacts:
            target = iter_dir / name
            try:
                if name in (META_FILE, RESULT_FILE):
                    write_json(target, content)
                else:
                    atomic_write_text(target, content)
            except (OSError, TypeError, ValueError) as exc:
                logger.warning("Could not write checkpoint %s: %s", target, exc)
                failed.append(name)
        return failed
