"""
Package graph

Read-mostly snapshot of packages, their available versions and typed
relationships. Every query is deterministic and side-effect free; asking
about an unknown name yields an empty result, never an error.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .cancel import is_cancelled
from .evr import check_relation, version_sort_key
from .package_ids import package_id_build

logger = logging.getLogger(__name__)


class RelationKind(Enum):
    """Type of relation declared by a version."""
    DEPENDS = "depends"
    RECOMMENDS = "recommends"
    SUGGESTS = "suggests"
    CONFLICTS = "conflicts"
    REPLACES = "replaces"
    PROVIDES = "provides"


class Selection(Enum):
    """Selection state recorded for a package by the installed-state store."""
    NORMAL = "normal"
    HOLD = "hold"
    INSTALL = "install"
    DEINSTALL = "deinstall"
    PURGE = "purge"


@dataclass(frozen=True)
class Relation:
    """A (kind, target, optional version constraint) triple."""
    kind: RelationKind
    target: str
    op: Optional[str] = None
    version: Optional[str] = None

    def matches(self, name: str, version: str) -> bool:
        """Check the relation against a concrete package name and version."""
        return name == self.target and check_relation(version, self.op, self.version)

    def __str__(self) -> str:
        if self.op:
            return f"{self.target} ({self.op} {self.version})"
        return self.target


OrGroup = Tuple[Relation, ...]


def format_group(group: Sequence[Relation]) -> str:
    """Render an or-group as "a (>= 1) | b"."""
    return ' | '.join(str(rel) for rel in group)


@dataclass(frozen=True)
class Origin:
    """Where the artifacts of an archive come from."""
    archive: str
    uri: str
    trusted: bool = True


@dataclass(eq=False)
class Version:
    """One available (or installed) version of a package."""
    version: str
    size: int = 0
    installed_size: int = 0
    section: str = ""
    archive: str = ""
    filename: str = ""
    checksum: str = ""
    relations: Dict[RelationKind, Tuple[OrGroup, ...]] = field(default_factory=dict)
    package: Optional['Package'] = field(default=None, repr=False)

    @property
    def provides(self) -> List[Relation]:
        return [group[0] for group in self.relations.get(RelationKind.PROVIDES, ())]

    @property
    def downloadable(self) -> bool:
        return bool(self.archive and self.filename)

    @property
    def package_id(self) -> str:
        pkg = self.package
        return package_id_build(pkg.name if pkg else '', self.version,
                                pkg.arch if pkg else '', self.archive or 'installed')

    def provides_relation(self, relation: Relation) -> bool:
        """Check whether a Provides entry of this version satisfies relation.

        Unversioned provides only satisfy unversioned relations.
        """
        for prov in self.provides:
            if prov.target != relation.target:
                continue
            if not relation.op:
                return True
            if prov.version and check_relation(prov.version, relation.op, relation.version):
                return True
        return False

    def satisfies(self, relation: Relation) -> bool:
        """Check whether this version satisfies relation by name or provides."""
        if self.package is not None and relation.matches(self.package.name, self.version):
            return True
        return self.provides_relation(relation)

    def __str__(self) -> str:
        name = self.package.name if self.package else '?'
        return f"{name} {self.version}"


@dataclass(eq=False)
class Package:
    """A package identity with its versions and installed state."""
    id: int
    name: str
    arch: str = ""
    versions: List[Version] = field(default_factory=list)
    current: Optional[Version] = None
    selection: Selection = Selection.NORMAL
    auto_installed: bool = False

    @property
    def installed(self) -> bool:
        return self.current is not None

    def find_version(self, version: str) -> Optional[Version]:
        for ver in self.versions:
            if ver.version == version:
                return ver
        return None

    def __str__(self) -> str:
        return self.name


PackageRef = Union[Package, str]


class PackageGraph:
    """Packages, versions and relations with provides/reverse indexes."""

    def __init__(self):
        self._packages: List[Package] = []
        self._by_name: Dict[str, Package] = {}
        self._origins: Dict[str, Origin] = {}
        # provided name -> [(Package, Version)]
        self._provides: Dict[str, List[Tuple[Package, Version]]] = {}
        # (kind, target name) -> [(Package, Version)]
        self._reverse: Dict[Tuple[RelationKind, str], List[Tuple[Package, Version]]] = {}

    # =========================================================================
    # Building
    # =========================================================================

    def add_origin(self, archive: str, uri: str, trusted: bool = True) -> Origin:
        origin = Origin(archive=archive, uri=uri, trusted=trusted)
        self._origins[archive] = origin
        return origin

    def add_package(self, name: str, arch: str = "",
                    selection: Selection = Selection.NORMAL,
                    auto_installed: bool = False) -> Package:
        """Add a package, or return the existing one with that name."""
        pkg = self._by_name.get(name)
        if pkg is not None:
            return pkg
        pkg = Package(id=len(self._packages), name=name, arch=arch,
                      selection=selection, auto_installed=auto_installed)
        self._packages.append(pkg)
        self._by_name[name] = pkg
        return pkg

    def add_version(self, pkg: Package, version: Version, installed: bool = False) -> Version:
        """Attach a version to a package and index its relations.

        Versions are kept newest first.
        """
        version.package = pkg
        pkg.versions.append(version)
        pkg.versions.sort(key=lambda v: version_sort_key(v.version), reverse=True)
        if installed:
            pkg.current = version

        for kind, groups in version.relations.items():
            for group in groups:
                for rel in group:
                    if kind == RelationKind.PROVIDES:
                        self._provides.setdefault(rel.target, []).append((pkg, version))
                    else:
                        self._reverse.setdefault((kind, rel.target), []).append((pkg, version))
        return version

    # =========================================================================
    # Queries
    # =========================================================================

    def packages(self) -> List[Package]:
        """All packages in stable id order."""
        return list(self._packages)

    def __len__(self) -> int:
        return len(self._packages)

    def find(self, name: str) -> Optional[Package]:
        return self._by_name.get(name)

    def _lookup(self, pkg: PackageRef) -> Optional[Package]:
        if isinstance(pkg, Package):
            return pkg
        return self._by_name.get(pkg)

    def versions_of(self, pkg: PackageRef) -> Tuple[Version, ...]:
        """Versions of a package, newest first."""
        found = self._lookup(pkg)
        return tuple(found.versions) if found else ()

    def relations_of(self, ver: Optional[Version], kind: RelationKind) -> Tuple[OrGroup, ...]:
        """Relations of one kind, grouped by or-group."""
        if ver is None:
            return ()
        return ver.relations.get(kind, ())

    def providers_of(self, name: str) -> List[Tuple[Package, Version]]:
        """(Package, Version) pairs declaring "Provides: name"."""
        return list(self._provides.get(name, ()))

    def is_virtual(self, name: str) -> bool:
        """True if nothing is called name but something provides it."""
        pkg = self._by_name.get(name)
        if pkg is not None and pkg.versions:
            return False
        return bool(self._provides.get(name))

    def reverse_depends(self, pkg: PackageRef, kind: RelationKind = RelationKind.DEPENDS
                        ) -> List[Tuple[Package, Version]]:
        """(Package, Version) pairs whose `kind` relation targets pkg.

        Targets are the package name and every name any of its versions
        provides.
        """
        found = self._lookup(pkg)
        if found is None:
            return []
        names = [found.name]
        for ver in found.versions:
            names.extend(prov.target for prov in ver.provides if prov.target not in names)

        seen = set()
        result = []
        for name in names:
            for owner, ver in self._reverse.get((kind, name), ()):
                if owner is found or id(ver) in seen:
                    continue
                seen.add(id(ver))
                result.append((owner, ver))
        result.sort(key=lambda pair: pair[0].id)
        return result

    def relations_targeting(self, name: str, kind: RelationKind) -> List[Tuple[Package, Version]]:
        """(Package, Version) pairs with a `kind` relation naming exactly name."""
        return list(self._reverse.get((kind, name), ()))

    def referencing(self, names: Iterable[str]) -> List[Package]:
        """Packages with any non-provides relation naming one of names."""
        found = {}
        for name in names:
            for kind in RelationKind:
                for owner, _ in self._reverse.get((kind, name), ()):
                    found[owner.id] = owner
        return [found[pid] for pid in sorted(found)]

    def origin_of(self, ver: Version) -> Optional[Origin]:
        return self._origins.get(ver.archive) if ver.archive else None

    def origins(self) -> List[Origin]:
        return list(self._origins.values())

    # =========================================================================
    # Dependency listings
    # =========================================================================

    @staticmethod
    def display_version(pkg: Package) -> Optional[Version]:
        """Installed version, else the newest one."""
        if pkg.current is not None:
            return pkg.current
        return pkg.versions[0] if pkg.versions else None

    def get_depends(self, pkg: PackageRef, recursive: bool = False,
                    cancel=None) -> List[Tuple[Package, Version]]:
        """Packages the given package depends on.

        Virtual targets (no version of their own) are skipped.
        """
        output: List[Tuple[Package, Version]] = []
        found = self._lookup(pkg)
        if found is not None:
            self._collect_depends(output, found, recursive, cancel)
        return output

    def _collect_depends(self, output, pkg: Package, recursive: bool, cancel):
        for group in self.relations_of(self.display_version(pkg), RelationKind.DEPENDS):
            for rel in group:
                if is_cancelled(cancel):
                    return
                target = self._by_name.get(rel.target)
                ver = self.display_version(target) if target else None
                if ver is None:
                    continue
                if recursive:
                    if any(p is target for p, _ in output):
                        continue
                    output.append((target, ver))
                    self._collect_depends(output, target, recursive, cancel)
                else:
                    output.append((target, ver))

    def get_requires(self, pkg: PackageRef, recursive: bool = False,
                     cancel=None) -> List[Tuple[Package, Version]]:
        """Packages that depend on the given package."""
        output: List[Tuple[Package, Version]] = []
        found = self._lookup(pkg)
        if found is not None:
            self._collect_requires(output, found, recursive, cancel)
        return output

    def _collect_requires(self, output, pkg: Package, recursive: bool, cancel):
        for parent in self._packages:
            if is_cancelled(cancel):
                return
            ver = self.display_version(parent)
            if ver is None:
                continue
            deps = self.get_depends(parent, recursive=False)
            if not any(dep is pkg for dep, _ in deps):
                continue
            if recursive:
                if any(p is parent for p, _ in output):
                    continue
                output.append((parent, ver))
                self._collect_requires(output, parent, recursive, cancel)
            else:
                output.append((parent, ver))
