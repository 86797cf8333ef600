"""
Metadata sources: turn raw package records into index entries.

Records come from a JSON file or a MongoDB collection. The solver core never
fetches anything itself; callers load entries here and hand them to
Index.build() before the search starts.

Record layout (one document per package instance):

    {
        "name": "foo",
        "version": "1.2.0",
        "installed_id": null,              # set for pre-built instances
        "depends": [
            "bar>=1.0,<2",                 # unconditional, declared by the library
            {"name": "baz", "version": ">=2", "component": "lib:core",
             "kind": "setup", "declared_by": "exe:foo"},
            {"if": "debug", "then": [...], "else": [...]},
            {"stanza": "tests", "depends": [...]}
        ],
        "components": {"lib": true, "exe:foo": {"buildable": true, "os": ["linux"]}},
        "flags": {"debug": {"default": false, "manual": true}, "fast": true},
        "disqualified": {"kind": "broken", "message": "missing .so"}
    }
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from packaging.requirements import InvalidRequirement
from packaging.requirements import Requirement as PackagingRequirement
from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version
from pymongo import MongoClient

from modsolver.errors import MalformedRecordError
from modsolver.index import Index, IndexEntry
from modsolver.structures import (
    LIBRARY,
    Dependency,
    DependencyKind,
    DisqualifyKind,
    Environment,
    FailReason,
    Flagged,
    FlaggedDep,
    FlagInfo,
    Instance,
    OptionalStanza,
    PackageConstraint,
    PInfo,
    Simple,
    Stanza,
    package_name,
)

logger = logging.getLogger(__name__)


def _parse_version(text: Any, where: str) -> Version:
    try:
        return Version(str(text))
    except InvalidVersion:
        raise MalformedRecordError(f"{where}: invalid version {text!r}") from None


def _parse_specifier(text: Optional[str], where: str) -> SpecifierSet:
    try:
        return SpecifierSet(text or "")
    except InvalidSpecifier:
        raise MalformedRecordError(f"{where}: invalid version range {text!r}") from None


def _parse_requirement(text: str, where: str) -> Tuple[str, SpecifierSet]:
    try:
        req = PackagingRequirement(text)
    except InvalidRequirement as exc:
        raise MalformedRecordError(f"{where}: invalid dependency {text!r}: {exc}") from None
    return package_name(req.name), req.specifier


def _parse_dep_entry(raw: Any, where: str) -> FlaggedDep:
    if isinstance(raw, str):
        name, spec = _parse_requirement(raw, where)
        return Simple(Dependency(name, spec))
    if not isinstance(raw, dict):
        raise MalformedRecordError(f"{where}: dependency entry must be a string or an object, got {raw!r}")

    if "if" in raw:
        return Flagged(
            flag=str(raw["if"]),
            if_true=_parse_deps(raw.get("then") or [], where),
            if_false=_parse_deps(raw.get("else") or [], where),
        )
    if "stanza" in raw:
        try:
            stanza = OptionalStanza(raw["stanza"])
        except ValueError:
            raise MalformedRecordError(f"{where}: unknown stanza {raw['stanza']!r}") from None
        return Stanza(stanza, _parse_deps(raw.get("depends") or [], where))
    if "name" not in raw:
        raise MalformedRecordError(f"{where}: dependency object without name: {raw!r}")

    try:
        kind = DependencyKind(raw.get("kind", DependencyKind.RUNTIME.value))
    except ValueError:
        raise MalformedRecordError(f"{where}: unknown dependency kind {raw.get('kind')!r}") from None
    dep = Dependency(
        name=package_name(str(raw["name"])),
        specifier=_parse_specifier(raw.get("version"), where),
        component=str(raw.get("component", LIBRARY)),
        kind=kind,
    )
    return Simple(dep, component=str(raw.get("declared_by", LIBRARY)))


def _parse_deps(raw: Sequence[Any], where: str) -> Tuple[FlaggedDep, ...]:
    if not isinstance(raw, list):
        raise MalformedRecordError(f"{where}: depends must be a list")
    return tuple(_parse_dep_entry(entry, where) for entry in raw)


def _component_buildable(raw: Any, env: Environment) -> bool:
    """A component is buildable if marked so and every os/arch/compiler restriction matches."""
    if isinstance(raw, bool):
        return raw
    if not isinstance(raw, dict):
        raise MalformedRecordError(f"component must be a bool or an object, got {raw!r}")
    if not raw.get("buildable", True):
        return False
    for key, fact in (("os", env.os), ("arch", env.arch), ("compilers", env.compiler)):
        allowed = raw.get(key)
        if allowed is not None and fact not in allowed:
            return False
    return True


def _parse_flags(raw: Mapping[str, Any], where: str) -> Dict[str, FlagInfo]:
    if not isinstance(raw, dict):
        raise MalformedRecordError(f"{where}: flags must be an object, got {raw!r}")
    flags: Dict[str, FlagInfo] = {}
    for name, decl in raw.items():
        if isinstance(decl, bool):
            flags[name] = FlagInfo(default=decl)
        elif isinstance(decl, dict):
            flags[name] = FlagInfo(
                default=bool(decl.get("default", True)),
                manual=bool(decl.get("manual", False)),
                description=str(decl.get("description", "")),
            )
        else:
            raise MalformedRecordError(f"{where}: flag {name!r} must be a bool or an object")
    return flags


def _parse_fail_reason(raw: Any, where: str) -> Optional[FailReason]:
    if not raw:
        return None
    if isinstance(raw, str):
        return FailReason(DisqualifyKind.EXCLUDED, raw)
    try:
        return FailReason(DisqualifyKind(raw.get("kind", "excluded")), str(raw.get("message", "")))
    except (AttributeError, ValueError):
        raise MalformedRecordError(f"{where}: bad disqualification {raw!r}") from None


def parse_record(record: Mapping[str, Any], env: Optional[Environment] = None) -> IndexEntry:
    """Convert one raw package record into a (name, instance, info) index entry."""
    env = env or Environment()
    try:
        name = package_name(str(record["name"]))
        raw_version = record["version"]
    except KeyError as exc:
        raise MalformedRecordError(f"record without {exc.args[0]!r}: {dict(record)!r}") from None

    where = f"{name}-{raw_version}"
    instance = Instance(_parse_version(raw_version, where), record.get("installed_id"))
    components_raw = record.get("components") or {LIBRARY: True}
    if not isinstance(components_raw, dict):
        raise MalformedRecordError(f"{where}: components must be an object, got {components_raw!r}")
    info = PInfo(
        deps=_parse_deps(record.get("depends") or [], where),
        components={str(c): _component_buildable(v, env) for c, v in components_raw.items()},
        flags=_parse_flags(record.get("flags") or {}, where),
        fail_reason=_parse_fail_reason(record.get("disqualified"), where),
    )
    return name, instance, info


def parse_records(records: Iterable[Mapping[str, Any]], env: Optional[Environment] = None) -> Iterator[IndexEntry]:
    for record in records:
        yield parse_record(record, env)


def build_index(records: Iterable[Mapping[str, Any]], env: Optional[Environment] = None) -> Index:
    return Index.build(parse_records(records, env))


def read_json_records(path: str) -> List[Dict[str, Any]]:
    """Records from a JSON file holding either a list or {"packages": [...]}."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("packages")
    if not isinstance(data, list):
        raise MalformedRecordError(f"{path}: expected a list of package records")
    return data


def load_entries_from_json(path: str, env: Optional[Environment] = None) -> List[IndexEntry]:
    entries = list(parse_records(read_json_records(path), env))
    logger.info("loaded %d index entries from %s", len(entries), path)
    return entries


def iter_collection_records(collection: Any, batch_size: int = 50_000) -> Iterator[Dict[str, Any]]:
    """Stream package records from a pymongo collection, in natural order."""
    cursor = collection.find({}, {"_id": 0}).batch_size(batch_size)
    try:
        for doc in cursor:
            yield doc
    finally:
        cursor.close()


def load_entries_from_mongo(
    mongo_uri: str = "mongodb://localhost:27017",
    db_name: str = "packages",
    collection_name: str = "package_index",
    env: Optional[Environment] = None,
    batch_size: int = 50_000,
) -> List[IndexEntry]:
    client = MongoClient(mongo_uri)
    try:
        collection = client[db_name][collection_name]
        entries = list(parse_records(iter_collection_records(collection, batch_size), env))
    finally:
        client.close()
    logger.info("loaded %d index entries from %s.%s", len(entries), db_name, collection_name)
    return entries


def parse_constraint(text: str) -> PackageConstraint:
    """
    Parse a user constraint such as "foo>=1.2", "foo +tests", "foo -debug +fast",
    "foo installed" or "foo source".
    """
    tokens = text.split()
    if not tokens:
        raise MalformedRecordError("empty constraint")
    name, spec = _parse_requirement(tokens[0], "constraint")
    installed: Optional[bool] = None
    flags: List[Tuple[str, bool]] = []
    stanzas = set()
    for token in tokens[1:]:
        if token == "installed":
            installed = True
        elif token == "source":
            installed = False
        elif token[:1] in "+-" and len(token) > 1:
            on, word = token[0] == "+", token[1:]
            if word in (s.value for s in OptionalStanza):
                if on:
                    stanzas.add(OptionalStanza(word))
            else:
                flags.append((word, on))
        else:
            raise MalformedRecordError(f"constraint {text!r}: cannot parse {token!r}")
    return PackageConstraint(
        name=name,
        specifier=spec,
        installed=installed,
        flags=tuple(flags),
        stanzas=frozenset(stanzas),
    )


def load_constraints(texts: Iterable[str]) -> List[PackageConstraint]:
    return [parse_constraint(t) for t in texts]
