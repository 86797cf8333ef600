"""
Search variables, conflict sets and the structured failure handed to callers.

A conflict is a returned value, never an exception: the explorer inspects the
variables it mentions to decide how far back to jump, and unions the conflicts
of exhausted decision points.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Tuple, Union

from modsolver.qualify import QPN
from modsolver.structures import OptionalStanza


@dataclass(frozen=True)
class PackageVar:
    """Which instance of a qualified package to use."""

    qpn: QPN

    def __str__(self) -> str:
        return str(self.qpn)


@dataclass(frozen=True)
class FlagVar:
    qpn: QPN
    flag: str

    def __str__(self) -> str:
        return f"{self.qpn}:flag:{self.flag}"


@dataclass(frozen=True)
class StanzaVar:
    qpn: QPN
    stanza: OptionalStanza

    def __str__(self) -> str:
        return f"{self.qpn}:{self.stanza.value}"


Var = Union[PackageVar, FlagVar, StanzaVar]

ConflictSet = FrozenSet[Var]


def _merge_messages(*groups: Iterable[str]) -> Tuple[str, ...]:
    seen = []
    for group in groups:
        for message in group:
            if message not in seen:
                seen.append(message)
    return tuple(seen)


@dataclass(frozen=True)
class Conflict:
    """
    The decisions responsible for a dead end, plus what went wrong there.

    `implicated` keeps every variable that was ever part of the set, including
    the ones dropped on the way up, so a root failure can still name them.
    """

    variables: ConflictSet = frozenset()
    messages: Tuple[str, ...] = ()
    implicated: ConflictSet = frozenset()

    def __contains__(self, var: object) -> bool:
        return var in self.variables

    def union(self, other: "Conflict") -> "Conflict":
        return Conflict(
            self.variables | other.variables,
            _merge_messages(self.messages, other.messages),
            self.implicated | other.implicated | self.variables | other.variables,
        )

    def without(self, var: Var) -> "Conflict":
        return Conflict(self.variables - {var}, self.messages, self.implicated | self.variables)

    def with_variables(self, variables: Iterable[Var]) -> "Conflict":
        return Conflict(self.variables | frozenset(variables), self.messages, self.implicated)


@dataclass(frozen=True)
class Failure:
    """Global unsatisfiability: the root ran out of alternatives."""

    conflict_set: ConflictSet
    trace: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_conflict(cls, conflict: Conflict) -> "Failure":
        return cls(conflict_set=conflict.variables | conflict.implicated, trace=conflict.messages)

    def render(self) -> str:
        lines = ["Could not resolve dependencies:"]
        lines.extend(f"  {message}" for message in self.trace)
        if self.conflict_set:
            names = ", ".join(sorted(str(v) for v in self.conflict_set))
            lines.append(f"  conflict set: {names}")
        return "\n".join(lines)
