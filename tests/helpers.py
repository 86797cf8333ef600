"""Builders for small hand-written package universes."""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Union

from packaging.specifiers import SpecifierSet
from packaging.version import Version

from modsolver.index import Index, IndexEntry
from modsolver.plan import InstallPlan
from modsolver.qualify import QualifyOptions, qualify_dependency
from modsolver.structures import (
    LIBRARY,
    Dependency,
    DependencyKind,
    DisqualifyKind,
    FailReason,
    Flagged,
    FlaggedDep,
    FlaggedDeps,
    FlagInfo,
    Instance,
    PInfo,
    Simple,
    Stanza,
)


def dep(name: str, spec: str = "", component: str = LIBRARY, kind: DependencyKind = DependencyKind.RUNTIME) -> Dependency:
    return Dependency(name, SpecifierSet(spec), component, kind)


def simple(name: str, spec: str = "", **kwargs) -> Simple:
    declared_by = kwargs.pop("declared_by", LIBRARY)
    return Simple(dep(name, spec, **kwargs), component=declared_by)


def _deps(items: Iterable[Union[str, FlaggedDep]]) -> FlaggedDeps:
    out: List[FlaggedDep] = []
    for item in items:
        if isinstance(item, str):
            name, _, spec = item.partition(" ")
            out.append(simple(name, spec))
        else:
            out.append(item)
    return tuple(out)


def flagged(flag: str, if_true: Sequence = (), if_false: Sequence = ()) -> Flagged:
    return Flagged(flag, _deps(if_true), _deps(if_false))


def stanza(kind, deps: Sequence = ()) -> Stanza:
    return Stanza(kind, _deps(deps))


def entry(
    name: str,
    version: str,
    deps: Sequence = (),
    components: Optional[Mapping[str, bool]] = None,
    flags: Optional[Mapping[str, Union[bool, FlagInfo]]] = None,
    broken: Optional[str] = None,
    installed_id: Optional[str] = None,
) -> IndexEntry:
    """One index entry. String deps read "name spec", e.g. "b >=3.0"."""
    flag_infos: Dict[str, FlagInfo] = {}
    for flag, decl in (flags or {}).items():
        flag_infos[flag] = decl if isinstance(decl, FlagInfo) else FlagInfo(default=decl)
    info = PInfo(
        deps=_deps(deps),
        components=dict(components) if components is not None else {LIBRARY: True},
        flags=flag_infos,
        fail_reason=FailReason(DisqualifyKind.BROKEN, broken) if broken else None,
    )
    return name, Instance(Version(version), installed_id), info


def make_index(*entries: IndexEntry) -> Index:
    return Index.build(entries)


def chosen_versions(plan: InstallPlan) -> Dict[str, str]:
    return {str(e.qpn): str(e.instance.version) for e in plan}


def _enabled(deps: FlaggedDeps, flags: Mapping[str, bool], stanzas, info: PInfo) -> Iterable[Dependency]:
    for item in deps:
        if isinstance(item, Simple):
            if info.components.get(item.component, True):
                yield item.dep
        elif isinstance(item, Flagged):
            yield from _enabled(item.if_true if flags[item.flag] else item.if_false, flags, stanzas, info)
        elif item.stanza in stanzas:
            yield from _enabled(item.deps, flags, stanzas, info)


def unmet_dependencies(index: Index, plan: InstallPlan, options: QualifyOptions) -> List[str]:
    """Every dependency edge of the plan that no earlier plan entry satisfies."""
    problems = []
    position = {e.qpn: i for i, e in enumerate(plan)}
    for i, planned in enumerate(plan):
        info = index.lookup(planned.name, planned.instance)
        for d in _enabled(info.deps, dict(planned.flags), planned.stanzas, info):
            target = qualify_dependency(options, planned.qpn, d)
            other = plan.lookup(target)
            if other is None:
                problems.append(f"{planned}: missing {target}")
                continue
            if not d.specifier.contains(other.instance.version, prereleases=True):
                problems.append(f"{planned}: {other} outside {d.specifier}")
            if d.component not in other.components:
                problems.append(f"{planned}: {other} does not build {d.component}")
            if position[target] >= i:
                problems.append(f"{planned}: {other} is not installed first")
    return problems
