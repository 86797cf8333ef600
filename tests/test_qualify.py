from __future__ import annotations

from modsolver.qualify import QPN, Qualifier, QualifyOptions, derive_qualify_options, qualify_dependency
from modsolver.structures import DependencyKind
from tests.helpers import dep, entry, flagged, make_index


def test_derivation_is_deterministic() -> None:
    index = make_index(
        entry("base", "4.0", installed_id="base-4"),
        entry("base", "3.0", deps=["base"], installed_id="base-3"),
        entry("foo", "1.0", deps=["base"]),
    )

    assert derive_qualify_options(index) == derive_qualify_options(index)


def test_base_shim_detected_through_flag_branches() -> None:
    index = make_index(
        entry("base", "4.0", installed_id="base-4"),
        entry("base", "3.0", deps=[flagged("old", if_false=["base >=4"])], flags={"old": True}, installed_id="base-3"),
    )

    options = derive_qualify_options(index)

    assert options.base_shim is True
    assert options.setup_independent is True


def test_source_instances_do_not_trigger_base_shim() -> None:
    index = make_index(
        entry("base", "4.0", installed_id="base-4"),
        entry("foo", "1.0", deps=["base"]),
    )

    assert derive_qualify_options(index).base_shim is False


def test_custom_bootstrap_package() -> None:
    index = make_index(entry("foo", "1.0", deps=["stdlib"], installed_id="foo-1"))

    assert derive_qualify_options(index).base_shim is False
    options = derive_qualify_options(index, bootstrap_package="stdlib")
    assert options.base_shim is True
    assert options.bootstrap_package == "stdlib"


def test_runtime_dependencies_inherit_the_parent_qualifier() -> None:
    options = QualifyOptions(base_shim=False, setup_independent=True)
    parent = QPN(Qualifier.for_setup("app"), "helper")

    assert qualify_dependency(options, parent, dep("text")) == QPN(Qualifier.for_setup("app"), "text")


def test_setup_and_build_tool_dependencies_get_their_own_qualifier() -> None:
    options = QualifyOptions(base_shim=False, setup_independent=True)
    parent = QPN.toplevel("app")

    setup = qualify_dependency(options, parent, dep("cabal", kind=DependencyKind.SETUP))
    tool = qualify_dependency(options, parent, dep("happy", kind=DependencyKind.BUILD_TOOL))

    assert setup == QPN(Qualifier.for_setup("app"), "cabal")
    assert str(setup) == "app:setup.cabal"
    assert tool == QPN(Qualifier.for_exe("app", "happy"), "happy")


def test_base_shim_keeps_bootstrap_package_unqualified() -> None:
    parent = QPN.toplevel("app")
    setup_dep = dep("base", kind=DependencyKind.SETUP)

    shimmed = qualify_dependency(QualifyOptions(base_shim=True, setup_independent=True), parent, setup_dep)
    plain = qualify_dependency(QualifyOptions(base_shim=False, setup_independent=True), parent, setup_dep)

    assert shimmed == QPN.toplevel("base")
    assert plain == QPN(Qualifier.for_setup("app"), "base")


def test_bootstrap_package_name_is_canonicalised() -> None:
    index = make_index(entry("Text", "1.0", deps=["Base"], installed_id="text-1"))

    options = derive_qualify_options(index, bootstrap_package="BASE")

    assert options.base_shim is True
    assert options.bootstrap_package == "base"
