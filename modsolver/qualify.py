"""
Qualification: which copy of a package a dependency refers to.

QualifyOptions are derived once from the Index before the search starts and
are passed read-only to every node of the choice tree.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from modsolver.index import Index
from modsolver.structures import Dependency, DependencyKind, PackageName, flatten_flagged_deps, package_name

BOOTSTRAP_PACKAGE: PackageName = "base"


@dataclass(frozen=True)
class QualifyOptions:
    base_shim: bool
    setup_independent: bool
    bootstrap_package: PackageName = BOOTSTRAP_PACKAGE


def derive_qualify_options(index: Index, bootstrap_package: PackageName = BOOTSTRAP_PACKAGE) -> QualifyOptions:
    """
    base_shim: some pre-built instance depends on the bootstrap package, in any
    branch of its dependency tree (flag conditions are ignored). Toolchains link
    every build against that package, so it must never get a second qualified copy.

    setup_independent is policy, not data: setup and build-tool dependencies are
    always resolved in their own subtree.
    """
    bootstrap_package = package_name(bootstrap_package)
    base_shim = any(
        dep.name == bootstrap_package
        for _name, instance, info in index.items()
        if instance.is_installed
        for dep, _component in flatten_flagged_deps(info.deps)
    )
    return QualifyOptions(
        base_shim=base_shim,
        setup_independent=True,
        bootstrap_package=bootstrap_package,
    )


@dataclass(frozen=True)
class Qualifier:
    """
    Top level (owner is None), the setup script of `owner`, or the build tool
    `tool` used by `owner`.
    """

    owner: Optional[PackageName] = None
    tool: Optional[PackageName] = None
    setup: bool = False

    @classmethod
    def for_setup(cls, owner: PackageName) -> "Qualifier":
        return cls(owner=owner, setup=True)

    @classmethod
    def for_exe(cls, owner: PackageName, tool: PackageName) -> "Qualifier":
        return cls(owner=owner, tool=tool)

    @property
    def is_toplevel(self) -> bool:
        return self.owner is None

    def __str__(self) -> str:
        if self.owner is None:
            return ""
        if self.setup:
            return f"{self.owner}:setup."
        return f"{self.owner}:{self.tool}:exe."


TOPLEVEL = Qualifier()


@dataclass(frozen=True)
class QPN:
    """A qualified package name."""

    qualifier: Qualifier
    name: PackageName

    @classmethod
    def toplevel(cls, name: PackageName) -> "QPN":
        return cls(TOPLEVEL, name)

    def __str__(self) -> str:
        return f"{self.qualifier}{self.name}"


def qualify_dependency(options: QualifyOptions, parent: QPN, dep: Dependency) -> QPN:
    """The qualified package a dependency of `parent` refers to."""
    if dep.kind is DependencyKind.RUNTIME or not options.setup_independent:
        return QPN(parent.qualifier, dep.name)
    if options.base_shim and dep.name == options.bootstrap_package:
        return QPN(parent.qualifier, dep.name)
    if dep.kind is DependencyKind.SETUP:
        return QPN(Qualifier.for_setup(parent.name), dep.name)
    return QPN(Qualifier.for_exe(parent.name, dep.name), dep.name)
