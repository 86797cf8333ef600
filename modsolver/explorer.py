"""
Depth-first exploration of the choice tree with conflict-directed backjumping.

The search runs on an explicit stack of frames, one per open decision on the
current path. A failed child hands back a Conflict. If the frame's variable is
not in it, no other value for that variable can help, so the frame is dropped
unchanged and the conflict travels further up (the backjump). A frame that runs
out of options fails with the union of its children's conflicts, minus its own
variable, plus the decisions that made the variable necessary.

Progress is reported through a resolvelib reporter.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from resolvelib.reporters import BaseReporter

from modsolver.assignment import PartialAssignment
from modsolver.conflicts import Conflict, Var
from modsolver.tree import ChoiceNode, ChoiceTreeBuilder, DoneNode, Node

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Decision:
    """One edge of the choice tree: `var` set to `value`."""

    var: Var
    value: object

    def __str__(self) -> str:
        return f"{self.var}={self.value}"


class LoggingReporter(BaseReporter):
    """Logs every decision and rejection at DEBUG level."""

    def pinning(self, candidate):
        logger.debug("try %s", candidate)

    def rejecting_candidate(self, criterion, candidate):
        for message in criterion.messages:
            logger.debug("  %s failed: %s", candidate, message)

    def resolving_conflicts(self, causes):
        logger.debug("exhausted decision point (%d causes)", len(causes))


@dataclass
class SearchStats:
    nodes: int = 0
    backjumps: int = 0
    max_depth: int = 0


@dataclass
class SearchOutcome:
    """
    Exactly one of `assignment` (success) and `conflict` (failure) is set.
    `limit_reached` marks a search stopped by max_backjumps.
    """

    assignment: Optional[PartialAssignment] = None
    conflict: Optional[Conflict] = None
    limit_reached: bool = False
    stats: SearchStats = field(default_factory=SearchStats)

    @property
    def ok(self) -> bool:
        return self.assignment is not None


class _Frame:
    __slots__ = ("node", "position", "accumulated")

    def __init__(self, node: ChoiceNode):
        self.node = node
        self.position = 0
        self.accumulated = Conflict()

    @property
    def var(self) -> Var:
        return self.node.var

    def next_value(self) -> Optional[object]:
        if self.position >= len(self.node.options):
            return _EXHAUSTED
        value = self.node.options[self.position]
        self.position += 1
        return value

    def last_decision(self) -> Decision:
        return Decision(self.var, self.node.options[self.position - 1])

    def exhausted(self) -> Conflict:
        return self.accumulated.without(self.var).with_variables(self.node.reason)


_EXHAUSTED = object()


class Explorer:
    def __init__(
        self,
        builder: ChoiceTreeBuilder,
        reporter: Optional[BaseReporter] = None,
        max_backjumps: Optional[int] = None,
    ):
        self._builder = builder
        self._reporter = reporter or BaseReporter()
        self._max_backjumps = max_backjumps

    def explore(self, root: Node) -> SearchOutcome:
        stats = SearchStats()
        reporter = self._reporter
        reporter.starting()
        stack: List[_Frame] = []
        node = root

        while True:
            stats.nodes += 1
            reporter.starting_round(stats.nodes)
            if isinstance(node, DoneNode):
                logger.debug("search finished: %d nodes, %d backjumps", stats.nodes, stats.backjumps)
                reporter.ending(node.assignment)
                return SearchOutcome(assignment=node.assignment, stats=stats)

            conflict: Optional[Conflict] = None
            if isinstance(node, ChoiceNode):
                stack.append(_Frame(node))
                stats.max_depth = max(stats.max_depth, len(stack))
            else:
                conflict = node.conflict
                if stack:
                    reporter.rejecting_candidate(conflict, stack[-1].last_decision())

            next_node: Optional[Node] = None
            while stack:
                frame = stack[-1]
                if conflict is not None:
                    if frame.var not in conflict:
                        stack.pop()
                        stats.backjumps += 1
                        if self._max_backjumps is not None and stats.backjumps > self._max_backjumps:
                            logger.info("backjump limit %d reached", self._max_backjumps)
                            return SearchOutcome(conflict=conflict, limit_reached=True, stats=stats)
                        continue
                    frame.accumulated = frame.accumulated.union(conflict)
                    conflict = None

                value = frame.next_value()
                if value is _EXHAUSTED:
                    stack.pop()
                    conflict = frame.exhausted()
                    reporter.resolving_conflicts(conflict.messages)
                    continue

                decision = Decision(frame.var, value)
                reporter.pinning(decision)
                next_node = self._builder.child(frame.node, value)
                break

            if next_node is None:
                assert conflict is not None
                logger.debug("search failed: %d nodes, %d backjumps", stats.nodes, stats.backjumps)
                reporter.ending(None)
                return SearchOutcome(conflict=conflict, stats=stats)
            node = next_node
