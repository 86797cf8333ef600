"""
Solver settings. The CLI fills these from its arguments; library callers
construct them directly.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from modsolver.preferences import PreferencePolicy, get_policy
from modsolver.qualify import BOOTSTRAP_PACKAGE


@dataclass(frozen=True)
class SolverSettings:
    # package every build links against; never qualified twice when base_shim holds
    bootstrap_package: str = BOOTSTRAP_PACKAGE
    # None = unlimited
    max_backjumps: Optional[int] = None
    preference: str = "newest"

    def policy(self) -> PreferencePolicy:
        return get_policy(self.preference)
