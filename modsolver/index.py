"""
The package index: name -> instance -> PInfo, built once per resolution run.

Entries are grouped by package name first, then each group is turned into a
direct-access table keyed by instance, so every later lookup is a dict access.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, Iterator, List, Mapping, Tuple

from modsolver.errors import MalformedIndexError
from modsolver.structures import Instance, PackageName, PInfo, package_name, referenced_flags

logger = logging.getLogger(__name__)

IndexEntry = Tuple[PackageName, Instance, PInfo]

_EMPTY: Mapping[Instance, PInfo] = MappingProxyType({})


def _group_by_name(entries: Iterable[IndexEntry]) -> Dict[PackageName, List[Tuple[Instance, PInfo]]]:
    """Group (instance, info) pairs under their package name, keeping input order per group."""
    groups: Dict[PackageName, List[Tuple[Instance, PInfo]]] = {}
    for entry in entries:
        try:
            name, instance, info = entry
        except (TypeError, ValueError):
            raise MalformedIndexError(f"index entry is not a (name, instance, info) triple: {entry!r}") from None
        if not isinstance(name, str) or not isinstance(instance, Instance) or not isinstance(info, PInfo):
            raise MalformedIndexError(f"index entry has wrong types: {entry!r}")
        _check_flags(name, instance, info)
        groups.setdefault(package_name(name), []).append((instance, info))
    return groups


def _check_flags(name: PackageName, instance: Instance, info: PInfo) -> None:
    for flag in referenced_flags(info.deps):
        if flag not in info.flags:
            raise MalformedIndexError(
                f"{name}-{instance}: dependency condition uses undeclared flag {flag!r}"
            )


class Index:
    """
    Immutable table of package metadata.

    Package names are canonicalised on the way in and on every lookup, so
    "Foo_Bar" and "foo-bar" are the same package.

    Duplicate (name, instance) keys: the last entry in input order wins. The
    surviving instance keeps the enumeration position of its first occurrence.
    """

    def __init__(self, table: Mapping[PackageName, Mapping[Instance, PInfo]]):
        self._table: Mapping[PackageName, Mapping[Instance, PInfo]] = MappingProxyType(
            {package_name(name): MappingProxyType(dict(instances)) for name, instances in table.items()}
        )

    @classmethod
    def build(cls, entries: Iterable[IndexEntry]) -> "Index":
        groups = _group_by_name(entries)
        table: Dict[PackageName, Dict[Instance, PInfo]] = {}
        duplicates = 0
        for name, pairs in groups.items():
            instances: Dict[Instance, PInfo] = {}
            for instance, info in pairs:
                if instance in instances:
                    duplicates += 1
                instances[instance] = info
            table[name] = instances
        if duplicates:
            logger.debug("index build: %d duplicate entries overwritten (last wins)", duplicates)
        index = cls(table)
        logger.debug("index build: %d packages, %d instances", len(index), index.instance_count())
        return index

    def lookup_instances(self, name: PackageName) -> Mapping[Instance, PInfo]:
        """All known instances of `name`; empty if the package is unknown."""
        return self._table.get(package_name(name), _EMPTY)

    def lookup(self, name: PackageName, instance: Instance) -> PInfo:
        return self._table[package_name(name)][instance]

    def all_package_names(self) -> FrozenSet[PackageName]:
        return frozenset(self._table)

    def instance_count(self) -> int:
        return sum(len(v) for v in self._table.values())

    def items(self) -> Iterator[IndexEntry]:
        for name, instances in self._table.items():
            for instance, info in instances.items():
                yield name, instance, info

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and package_name(name) in self._table

    def __iter__(self) -> Iterator[PackageName]:
        return iter(self._table)

    def __len__(self) -> int:
        return len(self._table)

    def __repr__(self) -> str:
        return f"Index(packages={len(self)}, instances={self.instance_count()})"
