from __future__ import annotations

from packaging.version import Version
from resolvelib.reporters import BaseReporter

from modsolver.conflicts import PackageVar
from modsolver.explorer import Decision, Explorer, LoggingReporter
from modsolver.qualify import QPN, derive_qualify_options
from modsolver.structures import Instance
from modsolver.tree import ChoiceNode, ChoiceTreeBuilder, DoneNode, FailNode
from tests.helpers import entry, make_index


class RecordingReporter(BaseReporter):
    def __init__(self):
        self.pinned = []
        self.rejected = []
        self.exhausted = 0
        self.result = "unset"

    def pinning(self, candidate):
        self.pinned.append(candidate)

    def rejecting_candidate(self, criterion, candidate):
        self.rejected.append((candidate, criterion))

    def resolving_conflicts(self, causes):
        self.exhausted += 1

    def ending(self, state):
        self.result = state


def _explore(index, targets, reporter=None, max_backjumps=None):
    builder = ChoiceTreeBuilder(index, derive_qualify_options(index))
    explorer = Explorer(builder, reporter, max_backjumps)
    return explorer.explore(builder.root(targets))


def _wide_index(width):
    entries = [entry("a", "1.0"), entry("a", "2.0"), entry("c", "1.0", deps=["a <2"])]
    for i in range(1, width + 1):
        entries.append(entry(f"b{i}", "1.0"))
        entries.append(entry(f"b{i}", "2.0"))
    return make_index(*entries)


def test_backjump_skips_unrelated_decisions() -> None:
    targets = ["a"] + [f"b{i}" for i in range(1, 11)] + ["c"]

    outcome = _explore(_wide_index(10), targets)

    assert outcome.ok
    assert outcome.stats.backjumps == 10
    # chronological backtracking would revisit all 2**10 combinations of the b packages
    assert outcome.stats.nodes < 30
    chosen = {str(q): str(i.version) for q, i in outcome.assignment.packages.items()}
    assert chosen["a"] == "1.0"
    assert all(chosen[f"b{i}"] == "2.0" for i in range(1, 11))


def test_reporter_sees_decisions_and_rejections() -> None:
    reporter = RecordingReporter()

    outcome = _explore(_wide_index(1), ["a", "b1", "c"], reporter)

    a = PackageVar(QPN.toplevel("a"))
    assert reporter.pinned[0] == Decision(a, Instance(Version("2.0")))
    assert Decision(a, Instance(Version("1.0"))) in reporter.pinned
    assert len(reporter.rejected) == 1
    assert reporter.exhausted == 1
    assert reporter.result is outcome.assignment


def test_failed_search_returns_conflict() -> None:
    index = make_index(entry("a", "1.0", deps=["b >=2"]), entry("b", "1.0"))
    reporter = RecordingReporter()

    outcome = _explore(index, ["a"], reporter)

    assert not outcome.ok
    assert outcome.conflict is not None
    assert outcome.conflict.variables == frozenset()
    assert {str(v) for v in outcome.conflict.implicated} == {"a", "b"}
    assert reporter.result is None


def test_backjump_limit_stops_the_search() -> None:
    targets = ["a"] + [f"b{i}" for i in range(1, 4)] + ["c"]

    outcome = _explore(_wide_index(3), targets, max_backjumps=2)

    assert outcome.limit_reached
    assert not outcome.ok
    assert outcome.stats.backjumps == 3


def test_logging_reporter_runs(caplog) -> None:
    caplog.set_level("DEBUG", logger="modsolver.explorer")

    outcome = _explore(_wide_index(1), ["a", "b1", "c"], LoggingReporter())

    assert outcome.ok
    assert "try " in caplog.text


def test_tree_is_built_lazily() -> None:
    index = make_index(entry("a", "1.0", deps=["b"]), entry("b", "1.0"))
    builder = ChoiceTreeBuilder(index, derive_qualify_options(index))

    root = builder.root(["a"])
    assert isinstance(root, ChoiceNode)
    assert root.assignment.packages == {}

    child = builder.child(root, root.options[0])
    assert isinstance(child, ChoiceNode)
    assert child.var == PackageVar(QPN.toplevel("b"))
    assert child.reason == frozenset({PackageVar(QPN.toplevel("a"))})
    # expanding a child leaves its parent untouched
    assert root.assignment.packages == {}

    assert isinstance(builder.child(child, child.options[0]), DoneNode)


def test_unknown_package_goal_is_a_fail_node() -> None:
    index = make_index(entry("a", "1.0"))
    builder = ChoiceTreeBuilder(index, derive_qualify_options(index))

    node = builder.root(["missing"])

    assert isinstance(node, FailNode)
    assert node.conflict.implicated == frozenset({PackageVar(QPN.toplevel("missing"))})
