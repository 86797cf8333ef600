"""
Instance preference policies: the order in which the choice tree offers the
instances of one package. Policies are injected; the solver never ranks
instances on its own.

Orders are stable: instances that compare equal keep their index order.
"""

from __future__ import annotations

from typing import Any, Iterable, List, Mapping, Optional

from packaging.specifiers import SpecifierSet

from modsolver.qualify import QPN
from modsolver.structures import Instance, PackageName


class PreferencePolicy:
    """Base policy. Subclasses override sort_key; lower keys are tried first."""

    name = "index-order"

    def sort_key(self, qpn: QPN, instance: Instance) -> Any:
        return 0

    def order(self, qpn: QPN, instances: Iterable[Instance]) -> List[Instance]:
        return sorted(instances, key=lambda i: self.sort_key(qpn, i))


class PreferNewest(PreferencePolicy):
    """Newest version first; an installed build wins over source of the same version."""

    name = "newest"

    def sort_key(self, qpn: QPN, instance: Instance) -> Any:
        return (_Descending(instance.version), not instance.is_installed)


class PreferInstalled(PreferencePolicy):
    """Pre-built instances first (to minimise rebuilds), newest first within each group."""

    name = "installed"

    def sort_key(self, qpn: QPN, instance: Instance) -> Any:
        return (not instance.is_installed, _Descending(instance.version))


class PreferVersions(PreferencePolicy):
    """
    Soft per-package preferences: instances inside the preferred range come
    first, then the rest; `fallback` orders within each group.
    """

    name = "preferred-versions"

    def __init__(self, preferred: Mapping[PackageName, SpecifierSet], fallback: Optional[PreferencePolicy] = None):
        self._preferred = dict(preferred)
        self._fallback = fallback or PreferNewest()

    def sort_key(self, qpn: QPN, instance: Instance) -> Any:
        spec = self._preferred.get(qpn.name)
        outside = spec is not None and not spec.contains(instance.version, prereleases=True)
        return (outside, self._fallback.sort_key(qpn, instance))


class _Descending:
    """Reverses the ordering of a wrapped comparable value."""

    __slots__ = ("value",)

    def __init__(self, value: Any):
        self.value = value

    def __lt__(self, other: "_Descending") -> bool:
        return other.value < self.value

    def __eq__(self, other: object) -> bool:
        return isinstance(other, _Descending) and self.value == other.value


POLICIES = {
    PreferNewest.name: PreferNewest,
    PreferInstalled.name: PreferInstalled,
    PreferencePolicy.name: PreferencePolicy,
}


def get_policy(name: str) -> PreferencePolicy:
    try:
        return POLICIES[name]()
    except KeyError:
        raise ValueError(f"unknown preference policy {name!r}; choose from {sorted(POLICIES)}") from None
