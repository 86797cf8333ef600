"""
The choice tree, built lazily: a node is only materialised when the explorer
asks for it.

Decision precedence is fixed: a package decision is followed by its flag
decisions (declaration order), then its optional stanza decisions, then the
package goals it referenced, in first-reference order.

Optional stanzas start disabled unless the user asks for them or a component
of theirs is already required; they are switched on only when a conflict
names them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple, Union

from packaging.specifiers import SpecifierSet

from modsolver.assignment import Goal, PartialAssignment, Requirement
from modsolver.conflicts import Conflict, ConflictSet, FlagVar, PackageVar, StanzaVar, Var
from modsolver.index import Index
from modsolver.preferences import PreferencePolicy, PreferNewest
from modsolver.qualify import QPN, QualifyOptions, qualify_dependency
from modsolver.structures import (
    Dependency,
    Flagged,
    FlaggedDeps,
    Instance,
    PackageConstraint,
    PackageName,
    PInfo,
    Simple,
    package_name,
    stanza_of,
)

logger = logging.getLogger(__name__)

USER = "user target"


@dataclass(frozen=True)
class DoneNode:
    """Nothing left to decide and nothing contradicted."""

    assignment: PartialAssignment


@dataclass(frozen=True)
class FailNode:
    conflict: Conflict


@dataclass(frozen=True)
class ChoiceNode:
    """
    An open decision. `options` are in preference order; `reason` holds the
    decisions that made `var` necessary in the first place.
    """

    var: Var
    options: Tuple[object, ...]
    reason: ConflictSet
    assignment: PartialAssignment


Node = Union[DoneNode, FailNode, ChoiceNode]

_ActiveEntry = Tuple[Tuple[int, ...], Simple, FrozenSet[Var]]


class ChoiceTreeBuilder:
    """
    Expands nodes of the choice tree on demand. The index, qualify options and
    user constraints are read-only for the lifetime of the builder.
    """

    def __init__(
        self,
        index: Index,
        options: QualifyOptions,
        constraints: Iterable[PackageConstraint] = (),
        policy: Optional[PreferencePolicy] = None,
    ):
        self._index = index
        self._options = options
        self._policy = policy or PreferNewest()
        self._constraints: Dict[PackageName, List[PackageConstraint]] = {}
        for constraint in constraints:
            self._constraints.setdefault(constraint.name, []).append(constraint)

    # ---- tree navigation ----

    def root(self, targets: Sequence[str]) -> Node:
        roots = tuple(QPN.toplevel(package_name(t)) for t in dict.fromkeys(targets))
        assignment = PartialAssignment(roots)
        for qpn in roots:
            assignment.add_requirement(Requirement(qpn, SpecifierSet(), None, frozenset(), USER))
            assignment.add_goal(Goal(PackageVar(qpn), frozenset()))
        return self.expand(assignment)

    def expand(self, assignment: PartialAssignment) -> Node:
        """The node for the next open goal of `assignment`."""
        if not assignment.goals:
            return DoneNode(assignment)
        state = assignment.copy()
        goal = state.pop_goal()
        if isinstance(goal.var, PackageVar):
            return self._package_node(state, goal)
        if isinstance(goal.var, FlagVar):
            return self._flag_node(state, goal)
        return self._stanza_node(state, goal)

    def child(self, node: ChoiceNode, value: object) -> Node:
        """Apply one decision to the node's assignment and expand the result."""
        state = node.assignment.copy()
        var = node.var
        if isinstance(var, PackageVar):
            conflict = self._choose_package(state, var, value)  # type: ignore[arg-type]
        elif isinstance(var, FlagVar):
            conflict = self._choose_flag(state, var, bool(value))
        else:
            conflict = self._choose_stanza(state, var, bool(value))
        if conflict is not None:
            return FailNode(conflict)
        return self.expand(state)

    # ---- node construction ----

    def _package_node(self, state: PartialAssignment, goal: Goal) -> Node:
        var: PackageVar = goal.var  # type: ignore[assignment]
        qpn = var.qpn
        instances = self._index.lookup_instances(qpn.name)
        wanted_by = "; ".join(r.describe() for r in state.requirements.get(qpn, ()))
        if not instances:
            return FailNode(Conflict(goal.reason, (f"unknown package {qpn.name} ({wanted_by})",), frozenset({var})))

        candidates: List[Instance] = []
        disqualified: List[str] = []
        for instance, info in instances.items():
            if info.disqualified:
                disqualified.append(f"{qpn.name}-{instance} is disqualified ({info.fail_reason})")
            else:
                candidates.append(instance)
        if not candidates:
            messages = tuple(disqualified) + (f"no usable instance of {qpn} ({wanted_by})",)
            return FailNode(Conflict(goal.reason, messages, frozenset({var})))

        return ChoiceNode(var, tuple(self._policy.order(qpn, candidates)), goal.reason, state)

    def _flag_node(self, state: PartialAssignment, goal: Goal) -> Node:
        var: FlagVar = goal.var  # type: ignore[assignment]
        info = self._info(state, var.qpn)
        decl = info.flags[var.flag]
        pinned = {c.flag_value(var.flag) for c in self._constraints.get(var.qpn.name, ())} - {None}
        if len(pinned) > 1:
            return FailNode(Conflict(goal.reason, (f"conflicting user constraints on flag {var}",)))
        if pinned:
            options: Tuple[bool, ...] = (pinned.pop(),)
        elif decl.manual:
            options = (decl.default,)
        else:
            options = (decl.default, not decl.default)
        return ChoiceNode(var, options, goal.reason, state)

    def _stanza_node(self, state: PartialAssignment, goal: Goal) -> Node:
        """
        Off unless asked for. A stanza requested by the user is the only option;
        one whose components are already required is tried on first.
        """
        var: StanzaVar = goal.var  # type: ignore[assignment]
        if any(var.stanza in c.stanzas for c in self._constraints.get(var.qpn.name, ())):
            options: Tuple[bool, ...] = (True,)
        elif _needs_stanza(state.requirements.get(var.qpn, ()), var):
            options = (True, False)
        else:
            options = (False, True)
        return ChoiceNode(var, options, goal.reason, state)

    # ---- decisions ----

    def _choose_package(self, state: PartialAssignment, var: PackageVar, instance: Instance) -> Optional[Conflict]:
        qpn = var.qpn
        info = self._index.lookup(qpn.name, instance)
        label = f"{qpn}-{instance}"

        for requirement in state.requirements.get(qpn, ()):
            problem = self._check(requirement, instance, info)
            if problem is not None:
                return Conflict(requirement.blame | {var}, (f"rejecting {label}: {problem}",))
        for constraint in self._constraints.get(qpn.name, ()):
            problem = self._check_constraint(constraint, instance)
            if problem is not None:
                return Conflict(frozenset({var}), (f"rejecting {label}: {problem}",))

        state.packages[qpn] = instance
        reason = frozenset({var})
        goals = [Goal(FlagVar(qpn, flag), reason) for flag in info.flags]
        goals.extend(Goal(StanzaVar(qpn, stanza), reason) for stanza in info.stanzas())
        state.add_goals_front(goals)
        return self._activate(state, qpn, info)

    def _choose_flag(self, state: PartialAssignment, var: FlagVar, value: bool) -> Optional[Conflict]:
        state.flags[var] = value
        return self._activate(state, var.qpn, self._info(state, var.qpn))

    def _choose_stanza(self, state: PartialAssignment, var: StanzaVar, value: bool) -> Optional[Conflict]:
        info = self._info(state, var.qpn)
        needed = _needs_stanza(state.requirements.get(var.qpn, ()), var)
        if not value and needed:
            return Conflict(
                needed[0].blame | {var},
                (f"{needed[0].describe()}, but {var.stanza.value} of {var.qpn} are disabled",),
            )
        if value and not info.stanza_buildable(var.stanza):
            instance = state.packages[var.qpn]
            return Conflict(
                frozenset({var, PackageVar(var.qpn)}),
                (f"{var.stanza.value} of {var.qpn}-{instance} are not buildable",),
            )
        state.stanzas[var] = value
        return self._activate(state, var.qpn, info)

    # ---- dependency expansion ----

    def _activate(self, state: PartialAssignment, qpn: QPN, info: PInfo) -> Optional[Conflict]:
        """Turn every newly enabled dependency of `qpn` into a requirement."""
        done = state.activated.get(qpn, frozenset())
        fresh = [entry for entry in self._active_entries(state, qpn, info.deps) if entry[0] not in done]
        if not fresh:
            return None
        state.activated[qpn] = done | {path for path, _, _ in fresh}
        package_var = PackageVar(qpn)
        for _path, simple, guards in fresh:
            if not info.components.get(simple.component, True):
                continue
            conflict = self._add_dependency(state, qpn, simple.dep, guards | {package_var})
            if conflict is not None:
                return conflict
        return None

    def _active_entries(self, state: PartialAssignment, qpn: QPN, deps: FlaggedDeps) -> List[_ActiveEntry]:
        found: List[_ActiveEntry] = []

        def walk(entries: FlaggedDeps, path: Tuple[int, ...], guards: FrozenSet[Var]) -> None:
            for position, entry in enumerate(entries):
                here = path + (position,)
                if isinstance(entry, Simple):
                    found.append((here, entry, guards))
                elif isinstance(entry, Flagged):
                    flag_var = FlagVar(qpn, entry.flag)
                    value = state.flags.get(flag_var)
                    if value is None:
                        continue
                    branch = entry.if_true if value else entry.if_false
                    walk(branch, here + (int(value),), guards | {flag_var})
                else:
                    stanza_var = StanzaVar(qpn, entry.stanza)
                    if state.stanzas.get(stanza_var):
                        walk(entry.deps, here, guards | {stanza_var})

        walk(deps, (), frozenset())
        return found

    def _add_dependency(
        self, state: PartialAssignment, parent: QPN, dep: Dependency, blame: ConflictSet
    ) -> Optional[Conflict]:
        target = qualify_dependency(self._options, parent, dep)
        origin = f"{parent}-{state.packages[parent]}"
        requirement = Requirement(target, dep.specifier, dep.component, blame, origin)
        state.add_requirement(requirement)

        cycle = state.find_path(target, parent)
        state.add_edge(parent, target, blame)
        if cycle is not None:
            return self._cycle_conflict(state, cycle, blame)

        chosen = state.packages.get(target)
        if chosen is not None:
            problem = self._check(requirement, chosen, self._index.lookup(target.name, chosen))
            if problem is not None:
                return Conflict(blame | {PackageVar(target)}, (f"{target}-{chosen} already chosen: {problem}",))
            stanza = stanza_of(dep.component)
            if stanza is not None and state.stanzas.get(StanzaVar(target, stanza)) is False:
                return Conflict(
                    blame | {StanzaVar(target, stanza)},
                    (f"{requirement.describe()}, but {stanza.value} of {target} are disabled",),
                )
        elif not state.is_known_package(target):
            state.add_goal(Goal(PackageVar(target), blame))
        return None

    def _cycle_conflict(self, state: PartialAssignment, cycle: List[QPN], blame: ConflictSet) -> Conflict:
        variables: Set[Var] = set(blame)
        for position, qpn in enumerate(cycle):
            variables.add(PackageVar(qpn))
            if position + 1 < len(cycle):
                variables |= state.edges[qpn][cycle[position + 1]]
        rendered = " -> ".join(str(q) for q in cycle + [cycle[0]])
        logger.debug("cycle detected: %s", rendered)
        return Conflict(frozenset(variables), (f"dependency cycle: {rendered}",))

    # ---- checks ----

    def _check(self, requirement: Requirement, instance: Instance, info: PInfo) -> Optional[str]:
        if not requirement.specifier.contains(instance.version, prereleases=True):
            return f"conflicts with {requirement.describe()}"
        component = requirement.component
        if component is not None:
            buildable = info.components.get(component)
            if buildable is None:
                return f"does not provide {component} ({requirement.describe()})"
            if not buildable:
                return f"{component} is not buildable ({requirement.describe()})"
        return None

    @staticmethod
    def _check_constraint(constraint: PackageConstraint, instance: Instance) -> Optional[str]:
        if not constraint.specifier.contains(instance.version, prereleases=True):
            return f"conflicts with user constraint {constraint}"
        if constraint.installed is True and not instance.is_installed:
            return f"user constraint {constraint} requires an installed instance"
        if constraint.installed is False and instance.is_installed:
            return f"user constraint {constraint} requires building from source"
        return None

    def _info(self, state: PartialAssignment, qpn: QPN) -> PInfo:
        return self._index.lookup(qpn.name, state.packages[qpn])


def _needs_stanza(requirements: Iterable[Requirement], var: StanzaVar) -> List[Requirement]:
    """Requirements on a component that only exists when `var` is enabled."""
    return [r for r in requirements if r.component is not None and stanza_of(r.component) is var.stanza]
