"""codex-loop - run a coding agent against a repository until it is done."""

from importlib.metadata import PackageNotFoundError, version

from codex_loop.loop import LoopController
from codex_loop.schemas import IterationRecord, RunConfig, RunOutcome, RunState, TaskPayload

__all__ = [
    "IterationRecord",
    "LoopController",
    "RunConfig",
    "RunOutcome",
    "RunState",
    "TaskPayload",
]

try:
    __version__ = version("codex-loop")
except PackageNotFoundError:
    __version__ = "0.0.0"
