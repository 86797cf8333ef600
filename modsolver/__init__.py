"""
modsolver: dependency resolution over a package index with a lazily built
choice tree and conflict-directed backjumping.

Build an Index from (name, instance, info) entries, then resolve root targets
into a topologically ordered InstallPlan.
"""

from modsolver.entrypoint import ResolutionRunner, resolve_one
from modsolver.errors import ResolutionImpossible, ResolutionTooDeep, SolverError
from modsolver.index import Index
from modsolver.plan import InstallPlan, PlanEntry
from modsolver.qualify import QualifyOptions, derive_qualify_options
from modsolver.settings import SolverSettings

__all__ = [
    "Index",
    "InstallPlan",
    "PlanEntry",
    "QualifyOptions",
    "ResolutionImpossible",
    "ResolutionRunner",
    "ResolutionTooDeep",
    "SolverError",
    "SolverSettings",
    "derive_qualify_options",
    "resolve_one",
]
