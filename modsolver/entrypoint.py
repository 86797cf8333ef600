"""
Entrypoint: build the qualify options once for an index, then resolve any
number of target sets against it.

resolve() returns an InstallPlan or raises ResolutionImpossible /
ResolutionTooDeep; try_resolve() folds those into a (resolved, plan, failure)
tuple for batch callers.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Sequence, Tuple

from resolvelib.reporters import BaseReporter

from modsolver.conflicts import Failure
from modsolver.errors import ResolutionImpossible, ResolutionTooDeep
from modsolver.explorer import Explorer
from modsolver.index import Index, IndexEntry
from modsolver.plan import InstallPlan, assemble_plan
from modsolver.preferences import PreferencePolicy
from modsolver.qualify import QualifyOptions, derive_qualify_options
from modsolver.settings import SolverSettings
from modsolver.structures import PackageConstraint
from modsolver.tree import ChoiceTreeBuilder

logger = logging.getLogger(__name__)


class ResolutionRunner:
    """
    Holds a built Index and its QualifyOptions. Both are read-only, so one
    runner can serve many resolve() calls.
    """

    def __init__(
        self,
        index: Index,
        settings: Optional[SolverSettings] = None,
        policy: Optional[PreferencePolicy] = None,
        reporter: Optional[BaseReporter] = None,
    ):
        self._index = index
        self._settings = settings or SolverSettings()
        self._policy = policy or self._settings.policy()
        self._reporter = reporter
        self._options = derive_qualify_options(index, self._settings.bootstrap_package)
        logger.debug("qualify options: %s", self._options)

    @property
    def index(self) -> Index:
        return self._index

    @property
    def qualify_options(self) -> QualifyOptions:
        return self._options

    def resolve(
        self,
        targets: Sequence[str],
        constraints: Iterable[PackageConstraint] = (),
    ) -> InstallPlan:
        """
        Pick one instance, flag assignment and stanza set for every package
        needed by `targets`.

        :param targets: Root package names.
        :param constraints: User constraints on versions, flags and stanzas.
        :return: The install plan, dependencies first.
        :raises ResolutionImpossible: No consistent assignment exists.
        :raises ResolutionTooDeep: max_backjumps was exceeded.
        """
        builder = ChoiceTreeBuilder(self._index, self._options, constraints, self._policy)
        explorer = Explorer(builder, self._reporter, self._settings.max_backjumps)
        outcome = explorer.explore(builder.root(targets))
        logger.info(
            "search for %s: %d nodes, %d backjumps, depth %d",
            ", ".join(targets),
            outcome.stats.nodes,
            outcome.stats.backjumps,
            outcome.stats.max_depth,
        )
        if outcome.limit_reached:
            raise ResolutionTooDeep(self._settings.max_backjumps or 0, outcome.conflict)
        if outcome.assignment is None:
            assert outcome.conflict is not None
            raise ResolutionImpossible(Failure.from_conflict(outcome.conflict))
        return assemble_plan(self._index, outcome.assignment)

    def try_resolve(
        self,
        targets: Sequence[str],
        constraints: Iterable[PackageConstraint] = (),
    ) -> Tuple[bool, Optional[InstallPlan], Optional[Failure]]:
        try:
            plan = self.resolve(targets, constraints)
        except ResolutionImpossible as exc:
            return False, None, exc.failure
        except ResolutionTooDeep as exc:
            conflict = exc.last_conflict
            trace = (str(exc),) + (conflict.messages if conflict is not None else ())
            variables = conflict.variables if conflict is not None else frozenset()
            return False, None, Failure(variables, trace)
        return True, plan, None


def resolve_one(
    entries: Iterable[IndexEntry],
    targets: Sequence[str],
    constraints: Iterable[PackageConstraint] = (),
    settings: Optional[SolverSettings] = None,
) -> InstallPlan:
    """
    One-shot resolve: build the index from `entries` and resolve `targets`.
    """
    runner = ResolutionRunner(Index.build(entries), settings=settings)
    return runner.resolve(targets, constraints)
