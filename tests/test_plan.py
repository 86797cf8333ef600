from __future__ import annotations

import pytest
from packaging.version import Version

from modsolver.assignment import PartialAssignment
from modsolver.conflicts import FlagVar, PackageVar, StanzaVar
from modsolver.errors import InternalSolverError
from modsolver.plan import assemble_plan, build_graph, topological_order
from modsolver.qualify import QPN
from modsolver.structures import Instance, OptionalStanza
from tests.helpers import entry, make_index

A, B, C, D = (QPN.toplevel(n) for n in "abcd")
V1 = Instance(Version("1.0"))


def _assignment(packages, edges):
    assignment = PartialAssignment(roots=(packages[0],))
    for qpn in packages:
        assignment.packages[qpn] = V1
    for dependent, dependency in edges:
        assignment.add_edge(dependent, dependency, frozenset({PackageVar(dependent)}))
    return assignment


def test_ties_are_broken_by_decision_order() -> None:
    assignment = _assignment([A, B, C, D], [(A, C), (A, B), (A, D)])
    graph = build_graph(assignment)

    order = topological_order(graph, {q: i for i, q in enumerate([A, B, C, D])})

    assert order == [B, C, D, A]


def test_diamond_order() -> None:
    assignment = _assignment([A, B, C, D], [(A, B), (A, C), (B, D), (C, D)])
    index = make_index(*(entry(n, "1.0") for n in "abcd"))

    plan = assemble_plan(index, assignment)

    assert [e.name for e in plan] == ["d", "b", "c", "a"]
    assert plan.lookup(A).depends == (B, C)
    assert plan.lookup(D).depends == ()


def test_cycle_at_assembly_is_an_internal_error() -> None:
    assignment = _assignment([A, B], [(A, B), (B, A)])
    index = make_index(entry("a", "1.0"), entry("b", "1.0"))

    with pytest.raises(InternalSolverError, match="cycle"):
        assemble_plan(index, assignment)


def test_edge_to_undecided_package_is_an_internal_error() -> None:
    assignment = _assignment([A], [(A, B)])

    with pytest.raises(InternalSolverError, match="undecided"):
        build_graph(assignment)


def test_entry_carries_flags_stanzas_and_built_components() -> None:
    index = make_index(
        entry(
            "a",
            "1.0",
            components={"lib": True, "exe:cli": True, "test:unit": True, "bench:speed": True, "exe:broken": False},
            flags={"fast": True},
        )
    )
    assignment = _assignment([A], [])
    assignment.flags[FlagVar(A, "fast")] = False
    assignment.stanzas[StanzaVar(A, OptionalStanza.TESTS)] = True
    assignment.stanzas[StanzaVar(A, OptionalStanza.BENCHMARKS)] = False

    planned = assemble_plan(index, assignment)[0]

    assert planned.flags == (("fast", False),)
    assert planned.stanzas == frozenset({OptionalStanza.TESTS})
    assert planned.components == ("lib", "exe:cli", "test:unit")
    assert str(planned) == "a-1.0 -fast"


def test_plan_serialises_to_dict() -> None:
    index = make_index(entry("a", "1.0"), entry("b", "1.0", installed_id="b-1.0-xyz"))
    assignment = _assignment([A, B], [(A, B)])
    assignment.packages[B] = Instance(Version("1.0"), "b-1.0-xyz")

    plan = assemble_plan(index, assignment)

    assert plan.to_dict() == {
        "install_plan": [
            {
                "package": "b",
                "name": "b",
                "version": "1.0",
                "installed_id": "b-1.0-xyz",
                "flags": {},
                "stanzas": [],
                "components": ["lib"],
                "depends": [],
            },
            {
                "package": "a",
                "name": "a",
                "version": "1.0",
                "installed_id": None,
                "flags": {},
                "stanzas": [],
                "components": ["lib"],
                "depends": ["b"],
            },
        ]
    }
    assert str(plan[0]) == "b-1.0/installed-b-1.0-xyz"
    assert plan.lookup_name("c") is None
