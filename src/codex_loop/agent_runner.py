"""Abstract base class for the agent process driven by the loop.

Every runner (the Codex CLI, or an arbitrary command) implements the same
interface so the loop controller can invoke any of them interchangeably.
"""

from __future__ import annotations

import abc
from pathlib import Path

from codex_loop.schemas import AgentResult


class AgentRunner(abc.ABC):
    """Common interface for agent CLI wrappers.

    Subclasses must implement :meth:`run`, which accepts the working tree
    root and the task payload and returns an :class:`AgentResult`.
    Implementations report failures inside the result instead of raising.
    """

    #: Human-readable name used in log lines.
    name: str = "base"

    @abc.abstractmethod
    def run(self, repo_path: str | Path, payload: str) -> AgentResult:
        """Execute a single agent invocation and return its captured output.

        Parameters
        ----------
        repo_path:
            Working directory (the target git repository).
        payload:
            Task text written to the agent's stdin.
        """

    def describe(self, repo_path: str | Path) -> str:
        """Return a printable form of the command this runner would spawn."""
        return self.name
