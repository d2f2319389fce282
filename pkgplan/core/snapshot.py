"""
Package graph snapshots

Builds a PackageGraph and a Policy from a JSON document (optionally
compressed). The format is:

    {
      "origins": [{"archive": "main", "uri": "https://mirror/main", "trusted": true}],
      "pins": [{"package": "kernel*", "priority": 1001, "version": "6.1*"}],
      "holds": ["glibc"],
      "packages": [
        {"name": "vim", "arch": "x86_64", "installed": "9.0-1", "auto": false,
         "selection": "normal",
         "versions": [
           {"version": "9.1-1", "archive": "main", "filename": "vim-9.1-1.rpm",
            "size": 1200, "installed_size": 4000, "checksum": "<sha256>",
            "depends": ["libc (>= 2.30) | libc-compat", "ncurses"],
            "provides": ["editor"]}
         ]}
      ]
    }

The installed version of a package does not need to appear in "versions";
it is added as a non-downloadable version when missing.
"""

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Tuple, Union

from .compression import decompress
from .evr import OPERATORS
from .graph import OrGroup, PackageGraph, Relation, RelationKind, Selection, Version
from .policy import Pin, Policy

logger = logging.getLogger(__name__)

RELATION_RE = re.compile(
    r'^\s*(?P<name>[^\s()|]+)\s*'
    r'(?:\(\s*(?P<op><<|>>|<=|>=|==|<|>|=)\s*(?P<version>[^\s()]+)\s*\))?\s*$'
)

# JSON key -> relation kind
RELATION_KEYS = {
    'depends': RelationKind.DEPENDS,
    'recommends': RelationKind.RECOMMENDS,
    'suggests': RelationKind.SUGGESTS,
    'conflicts': RelationKind.CONFLICTS,
    'replaces': RelationKind.REPLACES,
    'provides': RelationKind.PROVIDES,
}


class SnapshotError(ValueError):
    """Malformed snapshot document."""


@dataclass
class Snapshot:
    graph: PackageGraph
    policy: Policy


def parse_relation(text: str, kind: RelationKind) -> Relation:
    """Parse "name" or "name (op version)".

    Raises:
        SnapshotError: if text is not a relation
    """
    match = RELATION_RE.match(text)
    if not match:
        raise SnapshotError(f"Invalid relation: {text!r}")
    op = match.group('op')
    if op is not None and op not in OPERATORS:
        raise SnapshotError(f"Invalid operator in {text!r}")
    return Relation(kind, match.group('name'), op, match.group('version'))


def parse_relation_string(text: str, kind: RelationKind = RelationKind.DEPENDS) -> OrGroup:
    """Parse an or-group like "libc (>= 2.3) | libc-compat"."""
    return tuple(parse_relation(part, kind) for part in text.split('|'))


def _parse_relations(data: Dict[str, Any]) -> Dict[RelationKind, Tuple[OrGroup, ...]]:
    relations = {}
    for key, kind in RELATION_KEYS.items():
        entries = data.get(key)
        if not entries:
            continue
        if kind == RelationKind.PROVIDES:
            # Each provide is its own group; "|" makes no sense there
            relations[kind] = tuple((parse_relation(entry, kind),) for entry in entries)
        else:
            relations[kind] = tuple(parse_relation_string(entry, kind) for entry in entries)
    return relations


def _parse_version(data: Dict[str, Any]) -> Version:
    if 'version' not in data:
        raise SnapshotError(f"Version entry without 'version': {data!r}")
    return Version(
        version=str(data['version']),
        size=int(data.get('size', 0)),
        installed_size=int(data.get('installed_size', 0)),
        section=data.get('section', ''),
        archive=data.get('archive', ''),
        filename=data.get('filename', ''),
        checksum=data.get('checksum', ''),
        relations=_parse_relations(data),
    )


def graph_from_dict(data: Dict[str, Any]) -> Snapshot:
    """Build a graph and policy from a decoded snapshot document.

    Raises:
        SnapshotError: on malformed input
    """
    graph = PackageGraph()

    for origin in data.get('origins', []):
        graph.add_origin(origin['archive'], origin['uri'], bool(origin.get('trusted', True)))
    known_archives = {o.archive for o in graph.origins()}

    for entry in data.get('packages', []):
        name = entry.get('name')
        if not name:
            raise SnapshotError(f"Package entry without name: {entry!r}")
        try:
            selection = Selection(entry.get('selection', 'normal'))
        except ValueError:
            raise SnapshotError(f"{name}: unknown selection {entry.get('selection')!r}")

        pkg = graph.add_package(name, arch=entry.get('arch', ''), selection=selection,
                                auto_installed=bool(entry.get('auto', False)))
        installed = entry.get('installed')
        installed = str(installed) if installed is not None else None

        for ver_data in entry.get('versions', []):
            ver = _parse_version(ver_data)
            if ver.archive and ver.archive not in known_archives:
                logger.debug(f"{name} {ver.version}: archive {ver.archive} has no origin")
                ver.archive = ''
            graph.add_version(pkg, ver, installed=(ver.version == installed))

        if installed is not None and pkg.current is None:
            graph.add_version(pkg, Version(version=installed), installed=True)

    return Snapshot(graph=graph, policy=policy_from_dict(data))


def policy_from_dict(data: Dict[str, Any]) -> Policy:
    pins: List[Pin] = []
    for pin in data.get('pins', []):
        pins.append(Pin(package=pin.get('package', '*'),
                        priority=int(pin['priority']),
                        version=pin.get('version'),
                        archive=pin.get('archive')))
    return Policy(pins=pins, holds=data.get('holds', []))


def load_snapshot(path: Union[str, Path]) -> Snapshot:
    """Load a snapshot file (plain or compressed JSON).

    Raises:
        SnapshotError: on malformed input
        OSError: if the file can't be read
    """
    try:
        text = decompress(path)
    except ValueError as e:
        raise SnapshotError(f"{path}: {e}") from e
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise SnapshotError(f"{path}: invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise SnapshotError(f"{path}: top level must be an object")
    snapshot = graph_from_dict(data)
    logger.debug(f"Loaded {len(snapshot.graph)} packages from {path}")
    return snapshot
