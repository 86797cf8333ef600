"""
Turn a complete, consistent assignment into an install plan: every dependency
comes before its dependents.

The dependency graph is a resolvelib DirectedGraph with edges dependent ->
dependency. A cycle here is a solver defect (the tree builder rejects cycles
while searching), so it raises InternalSolverError instead of failing softly.
"""

from __future__ import annotations

import heapq
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterator, List, Optional, Sequence, Tuple

from resolvelib.structs import DirectedGraph

from modsolver.assignment import PartialAssignment
from modsolver.errors import InternalSolverError
from modsolver.index import Index
from modsolver.qualify import QPN
from modsolver.structures import Instance, OptionalStanza, PackageName, PInfo, stanza_of


@dataclass(frozen=True)
class PlanEntry:
    qpn: QPN
    instance: Instance
    flags: Tuple[Tuple[str, bool], ...]
    stanzas: FrozenSet[OptionalStanza]
    components: Tuple[str, ...]
    depends: Tuple[QPN, ...]

    @property
    def name(self) -> PackageName:
        return self.qpn.name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "package": str(self.qpn),
            "name": self.name,
            "version": str(self.instance.version),
            "installed_id": self.instance.installed_id,
            "flags": {flag: value for flag, value in self.flags},
            "stanzas": sorted(s.value for s in self.stanzas),
            "components": list(self.components),
            "depends": [str(q) for q in self.depends],
        }

    def __str__(self) -> str:
        text = f"{self.qpn}-{self.instance}"
        if self.flags:
            text += " " + " ".join(("+" if v else "-") + f for f, v in self.flags)
        return text


class InstallPlan(Sequence[PlanEntry]):
    """Topologically ordered, immutable sequence of plan entries."""

    def __init__(self, entries: Sequence[PlanEntry]):
        self._entries = tuple(entries)
        self._by_qpn = {entry.qpn: entry for entry in self._entries}

    def __getitem__(self, item):
        return self._entries[item]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[PlanEntry]:
        return iter(self._entries)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, InstallPlan) and self._entries == other._entries

    def __hash__(self) -> int:
        return hash(self._entries)

    def lookup(self, qpn: QPN) -> Optional[PlanEntry]:
        return self._by_qpn.get(qpn)

    def lookup_name(self, name: PackageName) -> Optional[PlanEntry]:
        """The top-level entry for `name`."""
        return self._by_qpn.get(QPN.toplevel(name))

    def to_dict(self) -> Dict[str, Any]:
        return {"install_plan": [entry.to_dict() for entry in self._entries]}

    def __repr__(self) -> str:
        return f"InstallPlan({', '.join(str(e) for e in self._entries)})"


def _built_components(info: PInfo, stanzas: FrozenSet[OptionalStanza]) -> Tuple[str, ...]:
    built = []
    for component, buildable in info.components.items():
        stanza = stanza_of(component)
        if buildable and (stanza is None or stanza in stanzas):
            built.append(component)
    return tuple(built)


def build_graph(assignment: PartialAssignment) -> DirectedGraph:
    graph = DirectedGraph()
    for qpn in assignment.packages:
        graph.add(qpn)
    for dependent, targets in assignment.edges.items():
        if dependent not in graph:
            raise InternalSolverError(f"edge from undecided package {dependent}")
        for target in targets:
            if target not in graph:
                raise InternalSolverError(f"{dependent} depends on undecided package {target}")
            graph.connect(dependent, target)
    return graph


def topological_order(graph: DirectedGraph, position: Dict[QPN, int]) -> List[QPN]:
    """Dependencies first; among ready vertices, the earliest decision goes first."""
    waiting = {qpn: len(set(graph.iter_children(qpn))) for qpn in graph}
    ready = [(position[qpn], qpn) for qpn, count in waiting.items() if count == 0]
    heapq.heapify(ready)
    order: List[QPN] = []
    while ready:
        _, qpn = heapq.heappop(ready)
        order.append(qpn)
        for parent in graph.iter_parents(qpn):
            waiting[parent] -= 1
            if waiting[parent] == 0:
                heapq.heappush(ready, (position[parent], parent))
    if len(order) != len(graph):
        stuck = sorted((str(q) for q, count in waiting.items() if count > 0))
        raise InternalSolverError(f"dependency cycle survived to plan assembly: {', '.join(stuck)}")
    return order


def assemble_plan(index: Index, assignment: PartialAssignment) -> InstallPlan:
    position = {qpn: i for i, qpn in enumerate(assignment.packages)}
    graph = build_graph(assignment)
    entries = []
    for qpn in topological_order(graph, position):
        instance = assignment.packages[qpn]
        info = index.lookup(qpn.name, instance)
        flags = tuple((var.flag, value) for var, value in assignment.flags.items() if var.qpn == qpn)
        stanzas = frozenset(var.stanza for var, on in assignment.stanzas.items() if on and var.qpn == qpn)
        depends = tuple(sorted(set(graph.iter_children(qpn)), key=position.__getitem__))
        entries.append(
            PlanEntry(
                qpn=qpn,
                instance=instance,
                flags=flags,
                stanzas=stanzas,
                components=_built_components(info, stanzas),
                depends=depends,
            )
        )
    return InstallPlan(entries)
