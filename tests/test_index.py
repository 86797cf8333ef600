from __future__ import annotations

import pytest
from packaging.version import Version

from modsolver.errors import MalformedIndexError
from modsolver.index import Index
from modsolver.structures import Instance, PInfo
from tests.helpers import entry, flagged, make_index


def test_lookup_returns_supplied_info_for_every_key() -> None:
    entries = [
        entry("a", "1.0"),
        entry("a", "2.0", deps=["b >=1"]),
        entry("b", "1.0"),
        entry("b", "1.0", installed_id="b-1.0-abc"),
    ]

    index = Index.build(entries)

    for name, instance, info in entries:
        assert index.lookup_instances(name)[instance] is info
    assert index.all_package_names() == frozenset({"a", "b"})
    assert index.instance_count() == 4


def test_unknown_package_yields_empty_mapping() -> None:
    index = make_index(entry("a", "1.0"))

    assert dict(index.lookup_instances("nope")) == {}
    assert "nope" not in index


def test_instances_keep_input_order_within_a_package() -> None:
    index = make_index(entry("a", "2.0"), entry("b", "1.0"), entry("a", "1.0"), entry("a", "3.0"))

    versions = [str(i.version) for i in index.lookup_instances("a")]

    assert versions == ["2.0", "1.0", "3.0"]


def test_duplicate_key_last_entry_wins() -> None:
    first = entry("a", "1.0", deps=["b"])
    second = entry("a", "1.0", deps=["c"])
    index = make_index(first, entry("a", "2.0"), second)

    instances = index.lookup_instances("a")

    assert instances[Instance(Version("1.0"))] is second[2]
    # the overwritten key keeps the position of its first occurrence
    assert [str(i.version) for i in instances] == ["1.0", "2.0"]


def test_duplicate_key_order_is_input_order_not_content() -> None:
    with_deps = entry("a", "1.0", deps=["b"])
    without = entry("a", "1.0")

    assert make_index(with_deps, without).lookup("a", with_deps[1]) is without[2]
    assert make_index(without, with_deps).lookup("a", with_deps[1]) is with_deps[2]


def test_undeclared_flag_in_condition_is_malformed() -> None:
    bad = entry("a", "1.0", deps=[flagged("debug", ["b"])])

    with pytest.raises(MalformedIndexError, match="undeclared flag 'debug'"):
        make_index(bad)


def test_entry_that_is_not_a_triple_is_malformed() -> None:
    with pytest.raises(MalformedIndexError):
        Index.build([("a", Instance(Version("1.0")))])  # type: ignore[list-item]

    with pytest.raises(MalformedIndexError):
        Index.build([("a", "1.0", PInfo())])  # type: ignore[list-item]


def test_index_is_read_only() -> None:
    index = make_index(entry("a", "1.0"))

    with pytest.raises(TypeError):
        index.lookup_instances("a")[Instance(Version("9.0"))] = PInfo()  # type: ignore[index]


def test_package_names_are_canonicalised() -> None:
    older = entry("Foo_Bar", "1.0")
    newer = entry("foo.bar", "1.0", deps=["baz"])
    index = make_index(older, newer)

    assert index.all_package_names() == frozenset({"foo-bar"})
    assert "FOO-BAR" in index
    assert index.lookup_instances("Foo_Bar") == index.lookup_instances("foo-bar")
    assert index.lookup("FOO_bar", older[1]) is newer[2]
