"""
Package-level types shared by the index, the choice tree and the plan.

PackageName (PN) = canonicalised name string. Instance = (version, provenance).
PInfo bundles everything the solver needs to know about one instance.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterator, List, Mapping, Optional, Tuple, Union

from packaging.specifiers import SpecifierSet
from packaging.utils import canonicalize_name
from packaging.version import Version

PackageName = str

# Component names: "lib" is the main library; everything else is "<kind>:<name>".
LIBRARY = "lib"
TEST_PREFIX = "test:"
BENCHMARK_PREFIX = "bench:"

# Whether one component of an instance can be built in the current environment.
IsBuildable = bool


def package_name(name: str) -> PackageName:
    """Canonical form of a package name (PEP 503 style)."""
    return canonicalize_name(name)


class DependencyKind(enum.Enum):
    RUNTIME = "runtime"
    SETUP = "setup"
    BUILD_TOOL = "build-tool"


class OptionalStanza(enum.Enum):
    TESTS = "tests"
    BENCHMARKS = "benchmarks"

    @property
    def component_prefix(self) -> str:
        return TEST_PREFIX if self is OptionalStanza.TESTS else BENCHMARK_PREFIX


def stanza_of(component: str) -> Optional[OptionalStanza]:
    """The optional stanza a component belongs to, or None for always-built components."""
    if component.startswith(TEST_PREFIX):
        return OptionalStanza.TESTS
    if component.startswith(BENCHMARK_PREFIX):
        return OptionalStanza.BENCHMARKS
    return None


@dataclass(frozen=True)
class Instance:
    """One concrete version of a package: pre-built (installed_id set) or from source."""

    version: Version
    installed_id: Optional[str] = None

    @property
    def is_installed(self) -> bool:
        return self.installed_id is not None

    def __str__(self) -> str:
        if self.installed_id is not None:
            return f"{self.version}/installed-{self.installed_id}"
        return str(self.version)


@dataclass(frozen=True)
class Dependency:
    """A dependency on `component` of package `name`, restricted to `specifier`."""

    name: PackageName
    specifier: SpecifierSet = field(default_factory=SpecifierSet)
    component: str = LIBRARY
    kind: DependencyKind = DependencyKind.RUNTIME

    def __post_init__(self):
        object.__setattr__(self, "name", package_name(self.name))

    def __str__(self) -> str:
        text = f"{self.name}{self.specifier}"
        if self.component != LIBRARY:
            text += f" ({self.component})"
        return text


# FlaggedDeps: a tree of dependencies guarded by flags and optional stanzas.


@dataclass(frozen=True)
class Simple:
    """An unconditional dependency, declared by `component` of the owning package."""

    dep: Dependency
    component: str = LIBRARY


@dataclass(frozen=True)
class Flagged:
    flag: str
    if_true: Tuple["FlaggedDep", ...] = ()
    if_false: Tuple["FlaggedDep", ...] = ()


@dataclass(frozen=True)
class Stanza:
    """Dependencies that only apply when an optional stanza is enabled."""

    stanza: OptionalStanza
    deps: Tuple["FlaggedDep", ...] = ()


FlaggedDep = Union[Simple, Flagged, Stanza]
FlaggedDeps = Tuple[FlaggedDep, ...]


def flatten_flagged_deps(deps: FlaggedDeps) -> Iterator[Tuple[Dependency, str]]:
    """Yield every (dependency, declaring component) pair, ignoring all conditions."""
    for entry in deps:
        if isinstance(entry, Simple):
            yield entry.dep, entry.component
        elif isinstance(entry, Flagged):
            yield from flatten_flagged_deps(entry.if_true)
            yield from flatten_flagged_deps(entry.if_false)
        else:
            yield from flatten_flagged_deps(entry.deps)


def referenced_flags(deps: FlaggedDeps) -> Iterator[str]:
    for entry in deps:
        if isinstance(entry, Flagged):
            yield entry.flag
            yield from referenced_flags(entry.if_true)
            yield from referenced_flags(entry.if_false)
        elif isinstance(entry, Stanza):
            yield from referenced_flags(entry.deps)


def referenced_stanzas(deps: FlaggedDeps) -> Iterator[OptionalStanza]:
    for entry in deps:
        if isinstance(entry, Stanza):
            yield entry.stanza
            yield from referenced_stanzas(entry.deps)
        elif isinstance(entry, Flagged):
            yield from referenced_stanzas(entry.if_true)
            yield from referenced_stanzas(entry.if_false)


@dataclass(frozen=True)
class FlagInfo:
    """Declaration of one flag. Manual flags are never flipped by the solver."""

    default: bool = True
    manual: bool = False
    description: str = ""


class DisqualifyKind(enum.Enum):
    SHADOWED = "shadowed"
    BROKEN = "broken"
    EXCLUDED = "excluded"


@dataclass(frozen=True)
class FailReason:
    """Why an instance is globally excluded, for reasons external to the solver."""

    kind: DisqualifyKind
    message: str = ""

    def __str__(self) -> str:
        if self.message:
            return f"{self.kind.value}: {self.message}"
        return self.kind.value


def _default_components() -> Dict[str, IsBuildable]:
    return {LIBRARY: True}


@dataclass(frozen=True)
class PInfo:
    """Dependencies, component buildability, flag declarations and disqualification."""

    deps: FlaggedDeps = ()
    components: Mapping[str, IsBuildable] = field(default_factory=_default_components)
    flags: Mapping[str, FlagInfo] = field(default_factory=dict)
    fail_reason: Optional[FailReason] = None

    @property
    def disqualified(self) -> bool:
        return self.fail_reason is not None

    def stanzas(self) -> List[OptionalStanza]:
        """Optional stanzas this instance declares, in a fixed order."""
        found = set(referenced_stanzas(self.deps))
        for component in self.components:
            stanza = stanza_of(component)
            if stanza is not None:
                found.add(stanza)
        return [s for s in OptionalStanza if s in found]

    def stanza_buildable(self, stanza: OptionalStanza) -> bool:
        prefix = stanza.component_prefix
        return all(ok for name, ok in self.components.items() if name.startswith(prefix))


@dataclass(frozen=True)
class PackageConstraint:
    """
    A user constraint on every qualified copy of a package.

    installed=True restricts to pre-built instances, installed=False to source.
    """

    name: PackageName
    specifier: SpecifierSet = field(default_factory=SpecifierSet)
    installed: Optional[bool] = None
    flags: Tuple[Tuple[str, bool], ...] = ()
    stanzas: FrozenSet[OptionalStanza] = frozenset()

    def __post_init__(self):
        object.__setattr__(self, "name", package_name(self.name))

    def flag_value(self, flag: str) -> Optional[bool]:
        for name, value in self.flags:
            if name == flag:
                return value
        return None

    def __str__(self) -> str:
        parts = [f"{self.name}{self.specifier}"]
        if self.installed is True:
            parts.append("installed")
        elif self.installed is False:
            parts.append("source")
        parts.extend(("+" if v else "-") + f for f, v in self.flags)
        parts.extend("+" + s.value for s in sorted(self.stanzas, key=lambda s: s.value))
        return " ".join(parts)


@dataclass(frozen=True)
class Environment:
    """Facts about the build environment used to evaluate component buildability."""

    compiler: str = "ghc"
    os: str = "linux"
    arch: str = "x86_64"
