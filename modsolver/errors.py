"""
Exceptions raised by the solver core and its metadata loaders.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from modsolver.conflicts import Failure


class SolverError(Exception):
    """Base class for every error raised by modsolver."""


class MalformedIndexError(SolverError):
    """Raised when index entries cannot be turned into an Index."""


class MalformedRecordError(SolverError):
    """Raised when a raw metadata record or constraint string cannot be parsed."""


class ResolutionImpossible(SolverError):
    """Every alternative at the root of the choice tree has been exhausted."""

    def __init__(self, failure: "Failure"):
        super().__init__(failure)
        self.failure = failure

    def __str__(self) -> str:
        return self.failure.render()


class ResolutionTooDeep(SolverError):
    """The search hit the configured backjump limit before finishing."""

    def __init__(self, max_backjumps: int, last_conflict: Any = None):
        super().__init__(max_backjumps)
        self.max_backjumps = max_backjumps
        self.last_conflict = last_conflict

    def __str__(self) -> str:
        return f"backjump limit reached ({self.max_backjumps})"


class InternalSolverError(SolverError):
    """A solver invariant was violated. This is a defect, not a user error."""
