"""Pydantic models for run settings, iteration records, and loop outcomes."""

from __future__ import annotations

import datetime as dt
import hashlib
import logging
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from codex_loop.file_io import atomic_write_text

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 20
DEFAULT_COMPLETION_KEY = "PROMISE"
DEFAULT_COMMIT_TEMPLATE = "codex-loop: iter {n} - {summary}"
DEFAULT_LOG_DIR = ".codex_logs"
DEFAULT_STATE_PATH = ".codex/state.json"
DEFAULT_PROMPT_PATH = ".codex/CODEX_PROMPT.md"


def _utc_now() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Run settings
# ---------------------------------------------------------------------------


class StageMode(str, Enum):
    """Which working-tree changes are staged before an iteration commit."""

    TRACKED = "tracked"
    ALL = "all"


class RunConfig(BaseModel):
    """Resolved settings for one run.  Immutable once the loop starts."""

    model_config = ConfigDict(frozen=True)

    max_iterations: int = DEFAULT_MAX_ITERATIONS
    stop_on_promise: bool = True
    stop_on_tests_pass: bool = False
    stop_on_no_diff: bool = False
    ignore_untracked_for_no_diff: bool = True
    completion_key: str = DEFAULT_COMPLETION_KEY
    test_command: str = ""
    test_timeout: float | None = None
    commit_each_iteration: bool = True
    stage_mode: StageMode = StageMode.TRACKED
    commit_message_template: str = DEFAULT_COMMIT_TEMPLATE
    allow_empty_commit: bool = False
    log_dir: str = DEFAULT_LOG_DIR
    commit_logs: bool = False
    state_path: str = DEFAULT_STATE_PATH

    @field_validator("max_iterations")
    @classmethod
    def _check_max_iterations(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_iterations must be >= 1")
        return value

    @field_validator("stage_mode", mode="before")
    @classmethod
    def _normalize_stage_mode(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("test_command", mode="before")
    @classmethod
    def _strip_test_command(cls, value: Any) -> str:
        return str(value or "").strip()

    @field_validator("completion_key")
    @classmethod
    def _check_completion_key(cls, value: str) -> str:
        key = value.strip()
        if not key:
            raise ValueError("completion_key must be a non-empty string")
        return key

    @field_validator("test_timeout")
    @classmethod
    def _check_test_timeout(cls, value: float | None) -> float | None:
        if value is not None and value <= 0:
            return None
        return value

    @property
    def tests_enabled(self) -> bool:
        """True when the tests-pass condition can actually run."""
        return self.stop_on_tests_pass and bool(self.test_command)


class AgentSettings(BaseModel):
    """Options forwarded to the Codex CLI on every invocation."""

    model_config = ConfigDict(frozen=True)

    binary: str = "codex"
    model: str | None = "gpt-5"
    sandbox: str | None = "workspace-write"
    full_auto: bool = True
    yolo: bool = False
    search: bool = False
    extra_args: tuple[str, ...] = ()
    timeout: float | None = None


class TaskPayload(BaseModel):
    """The task text handed unchanged to the agent on every iteration."""

    model_config = ConfigDict(frozen=True)

    text: str
    source: str | None = None

    @property
    def length_chars(self) -> int:
        return len(self.text)

    @property
    def sha256(self) -> str:
        return hashlib.sha256(self.text.encode("utf-8")).hexdigest()[:16]

    @classmethod
    def from_file(cls, path: str | Path) -> TaskPayload:
        """Read a payload from an existing prompt file."""
        source = Path(path)
        return cls(text=source.read_text(encoding="utf-8"), source=str(source))


# ---------------------------------------------------------------------------
# Agent invocation
# ---------------------------------------------------------------------------


class AgentResult(BaseModel):
    """Captured result of a single agent subprocess."""

    exit_code: int = -1
    transcript: str = ""
    stderr: str = ""
    errors: list[str] = Field(default_factory=list)
    timed_out: bool = False
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


# ---------------------------------------------------------------------------
# Stop evaluation
# ---------------------------------------------------------------------------


class StopSignals(BaseModel):
    """Stop-condition signals computed once per iteration."""

    completion_found: bool = False
    tests_passed: bool | None = None
    no_diff: bool = False


class StopDecision(str, Enum):
    """What the controller does after an iteration."""

    CONTINUE_RUNNING = "continue_running"
    STOP_COMPLETED = "stop_completed"
    STOP_AT_ITERATION_LIMIT = "stop_at_iteration_limit"


class StopReason(str, Enum):
    """Which enabled condition ended the run."""

    COMPLETION = "completion"
    TESTS_PASSED = "tests_passed"
    NO_DIFF = "no_diff"


# ---------------------------------------------------------------------------
# Records and state
# ---------------------------------------------------------------------------


# Filled in after stop evaluation and commit; absent from capture-time metadata.
EVALUATED_FIELDS = frozenset(
    {"completion_found", "tests_passed", "no_diff", "committed", "commit_message"}
)


class IterationRecord(BaseModel):
    """Everything observed during one iteration."""

    model_config = ConfigDict(frozen=True)

    index: int
    exit_code: int = -1
    transcript: str = ""
    diff: str = ""
    completion_found: bool = False
    tests_passed: bool | None = None
    no_diff: bool = False
    committed: bool = False
    commit_message: str | None = None
    duration_seconds: float = 0.0
    agent_errors: list[str] = Field(default_factory=list)
    timestamp: str = Field(default_factory=_utc_now)

    def metadata(self) -> dict[str, Any]:
        """Return the capture-time fields stored next to the transcript and diff."""
        return self.model_dump(mode="json", exclude={"transcript", "diff", *EVALUATED_FIELDS})

    def evaluation(self) -> dict[str, Any]:
        """Return the stop signals and commit outcome known once the iteration ends."""
        return self.model_dump(mode="json", include={"index", *EVALUATED_FIELDS})


class RunState(BaseModel):
    """Progress record rewritten after every iteration for outside observers.

    Serialized with the camelCase keys other tools read from
    ``.codex/state.json``.
    """

    model_config = ConfigDict(populate_by_name=True)

    repo_root: str = Field(alias="repoRoot")
    branch: str | None = None
    run_id: str = Field(alias="runId")
    iteration: int = 0
    promise_found: bool = Field(default=False, alias="promiseFound")
    timestamp: str = Field(default_factory=_utc_now)

    def touch(self, iteration: int, promise_found: bool) -> None:
        self.iteration = iteration
        self.promise_found = promise_found
        self.timestamp = _utc_now()

    def save(self, path: str | Path) -> None:
        """Atomically overwrite the state file at *path*."""
        atomic_write_text(Path(path), self.model_dump_json(indent=2, by_alias=True))

    @classmethod
    def load(cls, path: str | Path) -> RunState | None:
        """Load a state file, or return ``None`` when it is missing or unreadable."""
        target = Path(path)
        if not target.exists():
            return None
        try:
            raw = target.read_text(encoding="utf-8")
            if not raw.strip():
                logger.warning("State file is empty; ignoring: %s", target)
                return None
            return cls.model_validate_json(raw)
        except (OSError, ValidationError) as exc:
            logger.warning("Could not load state file %s: %s", target, exc)
            return None


class RunOutcome(BaseModel):
    """Final result returned to the caller of the loop."""

    decision: StopDecision
    reasons: list[StopReason] = Field(default_factory=list)
    iterations: int = 0
    run_id: str
    log_root: str
    records: list[IterationRecord] = Field(default_factory=list)
    state: RunState

    @property
    def completed(self) -> bool:
        return self.decision == StopDecision.STOP_COMPLETED
