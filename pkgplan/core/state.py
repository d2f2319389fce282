"""
State overlay

Per-package mutable annotation (candidate, pending mode, flags) layered over
the read-only package graph. Entries live in an arena keyed by the package's
integer handle and are dropped wholesale by reset(); one transaction owns
one overlay.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .graph import (
    OrGroup, Package, PackageGraph, Relation, RelationKind, Version, format_group
)
from .policy import Policy

logger = logging.getLogger(__name__)


class Mode(Enum):
    """Pending action for a package."""
    KEEP = "keep"
    INSTALL = "install"
    DELETE = "delete"
    PURGE = "purge"


@dataclass
class StateEntry:
    """Mutable state of one package within a transaction."""
    candidate: Optional[Version]
    mode: Mode = Mode.KEEP
    auto_installed: bool = False
    reinstall: bool = False
    protected: bool = False
    inst_broken: bool = False      # candidate would leave a Depends unmet
    policy_broken: bool = False    # candidate would leave a Recommends unmet

    @property
    def deleting(self) -> bool:
        return self.mode in (Mode.DELETE, Mode.PURGE)


class StateOverlay:
    """Candidate versions and pending modes for every package in a graph."""

    def __init__(self, graph: PackageGraph, policy: Optional[Policy] = None):
        self.graph = graph
        self.policy = policy or Policy()
        self._entries: Dict[int, StateEntry] = {}
        self.reset()

    def reset(self):
        """Drop every entry and start over with all packages in Keep."""
        self._entries = {
            pkg.id: StateEntry(candidate=self._initial_candidate(pkg),
                               auto_installed=pkg.auto_installed)
            for pkg in self.graph.packages()
        }

    def _initial_candidate(self, pkg: Package) -> Optional[Version]:
        if pkg.current is not None:
            return pkg.current
        preferred = self.policy.preferred_version(pkg)
        if preferred is not None:
            return preferred
        if pkg.versions:
            return pkg.versions[0]
        return None

    # =========================================================================
    # Entry access
    # =========================================================================

    def entry(self, pkg: Package) -> StateEntry:
        return self._entries[pkg.id]

    def entries(self) -> List[Tuple[Package, StateEntry]]:
        return [(pkg, self._entries[pkg.id]) for pkg in self.graph.packages()]

    def candidate_version(self, pkg: Package) -> Optional[Version]:
        return self._entries[pkg.id].candidate

    def set_candidate(self, pkg: Package, ver: Version):
        """Select which version an Install of pkg would use."""
        if ver.package is not pkg:
            raise ValueError(f"{ver} is not a version of {pkg.name}")
        entry = self._entries[pkg.id]
        entry.candidate = ver
        if entry.mode == Mode.INSTALL:
            self._update_flags(pkg)

    def install_version(self, pkg: Package) -> Optional[Version]:
        """The version pkg will have once the transaction is applied."""
        entry = self._entries[pkg.id]
        if entry.mode == Mode.INSTALL:
            return entry.candidate
        if entry.deleting:
            return None
        return pkg.current

    def is_held(self, pkg: Package) -> bool:
        return self.policy.is_held(pkg)

    # =========================================================================
    # Marking
    # =========================================================================

    def mark_install(self, pkg: Package, auto: bool = False) -> bool:
        """Put pkg in Install mode.

        A package without candidate whose name has exactly one provider is
        replaced by that provider. An up-to-date package stays in Keep
        unless a reinstall was requested.

        Args:
            pkg: Package to install
            auto: True when installed only to satisfy another package

        Returns:
            True if pkg (or its substitute) is now in Install mode
        """
        entry = self._entries[pkg.id]
        if entry.candidate is None:
            owners = {owner.id: owner for owner, _ in self.graph.providers_of(pkg.name)}
            if len(owners) == 1:
                owner = next(iter(owners.values()))
                logger.debug(f"Selecting {owner.name} instead of virtual {pkg.name}")
                return self.mark_install(owner, auto)
            return False

        if not pkg.installed:
            entry.auto_installed = auto
        elif not auto:
            entry.auto_installed = False

        if entry.candidate is pkg.current and not entry.reinstall:
            entry.mode = Mode.KEEP
            entry.inst_broken = entry.policy_broken = False
            return False

        entry.mode = Mode.INSTALL
        self._update_flags(pkg)
        return True

    def set_reinstall(self, pkg: Package, reinstall: bool = True):
        entry = self._entries[pkg.id]
        entry.reinstall = reinstall
        if reinstall and pkg.current is not None:
            entry.candidate = pkg.current
            entry.mode = Mode.INSTALL
            self._update_flags(pkg)

    def mark_delete(self, pkg: Package, purge: bool = False) -> bool:
        """Put pkg in Delete (or Purge) mode.

        Deleting a package that is not installed only cancels a pending
        install.

        Returns:
            True if pkg is now scheduled for removal
        """
        entry = self._entries[pkg.id]
        entry.reinstall = False
        entry.inst_broken = entry.policy_broken = False
        if not pkg.installed:
            entry.mode = Mode.KEEP
            return False
        entry.mode = Mode.PURGE if purge else Mode.DELETE
        return True

    def mark_keep(self, pkg: Package):
        entry = self._entries[pkg.id]
        entry.mode = Mode.KEEP
        entry.reinstall = False
        entry.inst_broken = entry.policy_broken = False
        if pkg.current is not None:
            entry.candidate = pkg.current

    def _update_flags(self, pkg: Package):
        entry = self._entries[pkg.id]
        entry.inst_broken = bool(self.unmet_groups(pkg, RelationKind.DEPENDS, entry.candidate))
        entry.policy_broken = bool(self.unmet_groups(pkg, RelationKind.RECOMMENDS, entry.candidate))

    # =========================================================================
    # Satisfaction
    # =========================================================================

    def relation_satisfied(self, rel: Relation) -> bool:
        """True if some package's install version satisfies rel."""
        return bool(self.satisfiers(rel))

    def satisfiers(self, rel: Relation) -> List[Package]:
        """Packages whose install version satisfies rel, by name or provides."""
        found = []
        target = self.graph.find(rel.target)
        if target is not None:
            ver = self.install_version(target)
            if ver is not None and rel.matches(target.name, ver.version):
                found.append(target)
        for owner, ver in self.graph.providers_of(rel.target):
            if owner in found:
                continue
            if self.install_version(owner) is ver and ver.provides_relation(rel):
                found.append(owner)
        return found

    def group_satisfied(self, group: OrGroup) -> bool:
        return any(self.relation_satisfied(rel) for rel in group)

    def unmet_groups(self, pkg: Package, kind: RelationKind = RelationKind.DEPENDS,
                     version: Optional[Version] = None) -> List[OrGroup]:
        """Or-groups of `kind` that no install version satisfies.

        Checks `version` when given, else the install version of pkg.
        """
        ver = version if version is not None else self.install_version(pkg)
        return [group for group in self.graph.relations_of(ver, kind)
                if not self.group_satisfied(group)]

    def conflicts_of(self, pkg: Package, version: Optional[Version] = None) -> List[Package]:
        """Other packages whose install version conflicts with pkg's, either way.

        Checks `version` when given, else the install version of pkg.
        """
        ver = version if version is not None else self.install_version(pkg)
        if ver is None:
            return []
        found: Dict[int, Package] = {}

        for group in self.graph.relations_of(ver, RelationKind.CONFLICTS):
            for rel in group:
                for other in self.satisfiers(rel):
                    if other is not pkg:
                        found[other.id] = other

        names = [pkg.name] + [prov.target for prov in ver.provides]
        for name in names:
            for owner, owner_ver in self.graph.relations_targeting(name, RelationKind.CONFLICTS):
                if owner is pkg or owner.id in found:
                    continue
                if self.install_version(owner) is not owner_ver:
                    continue
                for group in owner_ver.relations.get(RelationKind.CONFLICTS, ()):
                    if any(rel.target == name and ver.satisfies(rel) for rel in group):
                        found[owner.id] = owner
                        break

        return [found[pid] for pid in sorted(found)]

    def is_broken(self, pkg: Package) -> bool:
        if self.install_version(pkg) is None:
            return False
        return bool(self.unmet_groups(pkg)) or bool(self.conflicts_of(pkg))

    def broken_packages(self) -> List[Package]:
        return [pkg for pkg in self.graph.packages() if self.is_broken(pkg)]

    def broken_count(self) -> int:
        return len(self.broken_packages())

    def describe_broken(self, pkg: Package) -> List[str]:
        """Human readable reasons why pkg is broken."""
        reasons = []
        for group in self.unmet_groups(pkg):
            reasons.append(f"{pkg.name}: Depends: {format_group(group)} but it is not going to be installed")
        for other in self.conflicts_of(pkg):
            reasons.append(f"{pkg.name}: Conflicts: {other.name}")
        return reasons

    # =========================================================================
    # Counts
    # =========================================================================

    def inst_count(self) -> int:
        return sum(1 for e in self._entries.values() if e.mode == Mode.INSTALL)

    def del_count(self) -> int:
        return sum(1 for e in self._entries.values() if e.deleting)

    def bad_count(self) -> int:
        """Install-mode entries that have nothing to install."""
        return sum(1 for e in self._entries.values()
                   if e.mode == Mode.INSTALL and e.candidate is None)
