"""
PartialAssignment: the explorer's working state along one search path.

A child assignment is a copy of its parent with one more decision applied, so
dropping a child is all backtracking needs. Containers are copied shallowly;
their values (tuples, frozensets, instances) are never mutated in place.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Tuple

from packaging.specifiers import SpecifierSet

from modsolver.conflicts import ConflictSet, FlagVar, PackageVar, StanzaVar, Var
from modsolver.qualify import QPN
from modsolver.structures import Instance


@dataclass(frozen=True)
class Requirement:
    """
    A constraint on a qualified package pulled in by some decision.

    `blame` lists the decisions that introduced it (empty for user targets);
    `component` is None when any component will do.
    """

    qpn: QPN
    specifier: SpecifierSet
    component: Optional[str]
    blame: ConflictSet
    origin: str

    def describe(self) -> str:
        target = f"{self.qpn.name}{self.specifier}"
        if self.component is not None and self.component != "lib":
            target += f" ({self.component})"
        return f"{self.origin} requires {target}"


@dataclass(frozen=True)
class Goal:
    """An open decision and the decisions that made it necessary."""

    var: Var
    reason: ConflictSet


class PartialAssignment:
    def __init__(self, roots: Tuple[QPN, ...] = ()):
        self.roots = roots
        # decision order is insertion order
        self.packages: Dict[QPN, Instance] = {}
        self.flags: Dict[FlagVar, bool] = {}
        self.stanzas: Dict[StanzaVar, bool] = {}
        self.requirements: Dict[QPN, Tuple[Requirement, ...]] = {}
        # dependent -> dependency -> blame of the edge
        self.edges: Dict[QPN, Dict[QPN, ConflictSet]] = {}
        # FlaggedDeps paths already turned into requirements, per chosen package
        self.activated: Dict[QPN, FrozenSet[Tuple[int, ...]]] = {}
        self.goals: Tuple[Goal, ...] = ()
        self.goal_reasons: Dict[Var, ConflictSet] = {}

    def copy(self) -> "PartialAssignment":
        other = PartialAssignment(self.roots)
        other.packages = dict(self.packages)
        other.flags = dict(self.flags)
        other.stanzas = dict(self.stanzas)
        other.requirements = dict(self.requirements)
        other.edges = dict(self.edges)
        other.activated = dict(self.activated)
        other.goals = self.goals
        other.goal_reasons = dict(self.goal_reasons)
        return other

    def is_known_package(self, qpn: QPN) -> bool:
        """Chosen already, or waiting as an open goal."""
        return PackageVar(qpn) in self.goal_reasons

    def add_goal(self, goal: Goal) -> None:
        self.goal_reasons.setdefault(goal.var, goal.reason)
        self.goals = self.goals + (goal,)

    def add_goals_front(self, goals: List[Goal]) -> None:
        for goal in goals:
            self.goal_reasons.setdefault(goal.var, goal.reason)
        self.goals = tuple(goals) + self.goals

    def pop_goal(self) -> Goal:
        goal, self.goals = self.goals[0], self.goals[1:]
        return goal

    def add_requirement(self, requirement: Requirement) -> None:
        self.requirements[requirement.qpn] = self.requirements.get(requirement.qpn, ()) + (requirement,)

    def add_edge(self, dependent: QPN, dependency: QPN, blame: ConflictSet) -> None:
        targets = dict(self.edges.get(dependent, {}))
        targets[dependency] = targets.get(dependency, frozenset()) | blame
        self.edges[dependent] = targets

    def find_path(self, start: QPN, goal: QPN) -> Optional[List[QPN]]:
        """A chain of dependency edges from start to goal, if one exists."""
        parents: Dict[QPN, Optional[QPN]] = {start: None}
        queue = deque([start])
        while queue:
            current = queue.popleft()
            if current == goal:
                path = [current]
                while parents[path[-1]] is not None:
                    path.append(parents[path[-1]])  # type: ignore[arg-type]
                return list(reversed(path))
            for nxt in self.edges.get(current, {}):
                if nxt not in parents:
                    parents[nxt] = current
                    queue.append(nxt)
        return None

    def __repr__(self) -> str:
        chosen = ", ".join(f"{q}-{i}" for q, i in self.packages.items())
        return f"PartialAssignment({chosen})"
