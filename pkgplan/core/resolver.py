"""
Constraint resolver

Mutates a StateOverlay until every package has its Depends met and no two
install versions conflict, or until no further progress is possible.

Callers protect() every explicitly requested package, then call
resolve(). A False result is not an error: the caller inspects the
residual broken count and decides what to do.
"""

import logging
from collections import deque
from typing import Dict, List, Optional, Tuple

from .cancel import is_cancelled
from .evr import version_sort_key
from .graph import OrGroup, Package, Relation, Version
from .state import Mode, StateOverlay

logger = logging.getLogger(__name__)

# Each package gets at most this many fix attempts per resolve() call
MAX_ATTEMPTS = 10


class ConstraintResolver:
    """Worklist resolver over a StateOverlay."""

    def __init__(self, overlay: StateOverlay, max_attempts: int = MAX_ATTEMPTS,
                 cancel=None):
        self.overlay = overlay
        self.graph = overlay.graph
        self.max_attempts = max_attempts
        self.cancel = cancel
        self._collateral: Dict[int, Package] = {}

    # =========================================================================
    # Protection
    # =========================================================================

    def protect(self, pkg: Package):
        """Never change the pending state of pkg."""
        self.overlay.entry(pkg).protected = True

    def clear(self, pkg: Package):
        self.overlay.entry(pkg).protected = False
        self._collateral.pop(pkg.id, None)

    def is_protected(self, pkg: Package) -> bool:
        return self.overlay.entry(pkg).protected

    def allow_collateral(self, pkg: Package):
        """Packages that only break because pkg goes away may be removed too."""
        self._collateral[pkg.id] = pkg

    # =========================================================================
    # Resolution
    # =========================================================================

    def resolve(self, allow_removal: bool = False) -> bool:
        """Fix broken packages until a fixed point is reached.

        Args:
            allow_removal: Remove unprotected packages that cannot be fixed
                by installing something

        Returns:
            True if the broken count reached zero
        """
        overlay = self.overlay
        queue = deque()
        queued = set()
        attempts: Dict[int, int] = {}

        def enqueue(pkg: Package):
            if pkg.id not in queued:
                queued.add(pkg.id)
                queue.append(pkg)

        for pkg in overlay.broken_packages():
            enqueue(pkg)

        logger.debug(f"Resolving {len(queue)} broken package(s), allow_removal={allow_removal}")

        while queue:
            if is_cancelled(self.cancel):
                logger.debug("Resolution cancelled")
                break
            pkg = queue.popleft()
            queued.discard(pkg.id)
            if not overlay.is_broken(pkg):
                continue
            if attempts.get(pkg.id, 0) >= self.max_attempts:
                logger.debug(f"Giving up on {pkg.name} after {self.max_attempts} attempts")
                continue
            attempts[pkg.id] = attempts.get(pkg.id, 0) + 1

            for changed in self._fix(pkg, allow_removal):
                for dirty in self._affected_by(changed):
                    if overlay.is_broken(dirty):
                        enqueue(dirty)

        broken = overlay.broken_count()
        logger.debug(f"Resolution finished with {broken} broken package(s)")
        return broken == 0

    def resolve_by_keep(self, include_protected: bool = False) -> List[Package]:
        """Revert broken pending installs to their installed state.

        Args:
            include_protected: Also revert protected packages

        Returns:
            Packages that were kept back
        """
        overlay = self.overlay
        kept: List[Package] = []
        while True:
            victims = [pkg for pkg in overlay.broken_packages()
                       if overlay.entry(pkg).mode == Mode.INSTALL
                       and (include_protected or not self.is_protected(pkg))]
            if not victims:
                break
            for pkg in victims:
                logger.debug(f"Keeping back {pkg.name}")
                self.clear(pkg)
                overlay.mark_keep(pkg)
                kept.append(pkg)
        return kept

    def _fix(self, pkg: Package, allow_removal: bool) -> List[Package]:
        """Try to fix one broken package; return the packages that changed."""
        overlay = self.overlay
        changed: List[Package] = []

        for group in overlay.unmet_groups(pkg):
            if overlay.group_satisfied(group):
                continue
            choice = self._choose_candidate(group, pkg)
            if choice is None:
                logger.debug(f"{pkg.name}: no candidate for {' | '.join(map(str, group))}")
                continue
            target, ver = choice
            if self._install(target, ver):
                logger.debug(f"{pkg.name}: installing {target.name} {ver.version}")
                changed.append(target)

        for other in overlay.conflicts_of(pkg):
            ver = self._non_conflicting_version(other, pkg)
            if ver is not None and self._install(other, ver):
                logger.debug(f"{pkg.name}: moving {other.name} to {ver.version} to avoid conflict")
                changed.append(other)

        if changed or not overlay.is_broken(pkg):
            return changed

        if self.is_protected(pkg):
            logger.debug(f"{pkg.name} is broken but protected, leaving it")
            return changed

        if allow_removal or self._is_collateral(pkg):
            was_pending = overlay.entry(pkg).mode == Mode.INSTALL
            overlay.mark_delete(pkg)
            if was_pending and not pkg.installed:
                logger.debug(f"{pkg.name}: cancelling install")
            else:
                logger.debug(f"{pkg.name}: removing")
            changed.append(pkg)
        return changed

    def _install(self, pkg: Package, ver: Version) -> bool:
        """Move pkg to ver; True if its install version changed."""
        overlay = self.overlay
        before = overlay.install_version(pkg)
        if overlay.candidate_version(pkg) is not ver:
            overlay.set_candidate(pkg, ver)
        overlay.mark_install(pkg, auto=True)
        return overlay.install_version(pkg) is not before

    def _affected_by(self, pkg: Package) -> List[Package]:
        """Packages whose brokenness may change when pkg changes."""
        names = {pkg.name}
        for ver in pkg.versions:
            names.update(prov.target for prov in ver.provides)
        affected = {pkg.id: pkg}
        for other in self.graph.referencing(names):
            affected[other.id] = other
        for other in self.overlay.conflicts_of(pkg):
            affected[other.id] = other
        return [affected[pid] for pid in sorted(affected)]

    def _is_collateral(self, pkg: Package) -> bool:
        """True if an unmet group of pkg was met by a package being removed on request."""
        for group in self.overlay.unmet_groups(pkg):
            for rel in group:
                for victim in self._collateral.values():
                    if victim.current is not None and victim.current.satisfies(rel):
                        return True
        return False

    # =========================================================================
    # Candidate selection
    # =========================================================================

    def _choose_candidate(self, group: OrGroup, dependent: Package
                          ) -> Optional[Tuple[Package, Version]]:
        """Pick what to install for an unmet or-group.

        Members are tried left to right, first looking for a choice that
        conflicts with nothing, then for one that only conflicts with
        unprotected packages.
        """
        for strict in (True, False):
            for rel in group:
                choice = self._candidate_for(rel, dependent, strict)
                if choice is not None:
                    return choice
        return None

    def _candidate_for(self, rel: Relation, dependent: Package, strict: bool
                       ) -> Optional[Tuple[Package, Version]]:
        target = self.graph.find(rel.target)
        if target is not None and target is not dependent and target.versions:
            ver = self._version_for(target, rel)
            if ver is not None and self._installs_cleanly(target, ver, strict):
                return target, ver

        owners: Dict[int, Tuple[Package, Version]] = {}
        for owner, ver in self.graph.providers_of(rel.target):
            if owner is dependent or owner.id in owners:
                continue
            if ver is not self.overlay.candidate_version(owner):
                continue
            if not ver.provides_relation(rel):
                continue
            if not self._may_change(owner, ver):
                continue
            if self._installs_cleanly(owner, ver, strict):
                owners[owner.id] = (owner, ver)

        if not owners:
            return None
        if len(owners) == 1:
            return next(iter(owners.values()))

        # Several providers: only a unique highest priority wins
        policy = self.overlay.policy
        ranked = sorted(owners.values(), key=lambda pair: policy.priority(pair[1]), reverse=True)
        if policy.priority(ranked[0][1]) > policy.priority(ranked[1][1]):
            return ranked[0]
        logger.debug(f"{rel.target} has several equally preferred providers: "
                     f"{', '.join(owner.name for owner, _ in ranked)}")
        return None

    def _may_change(self, pkg: Package, ver: Version) -> bool:
        """Whether the resolver may make ver the install version of pkg."""
        overlay = self.overlay
        if overlay.install_version(pkg) is ver:
            return True
        entry = overlay.entry(pkg)
        if entry.protected:
            return False
        if overlay.is_held(pkg) and ver is not pkg.current:
            return False
        return True

    def _version_for(self, pkg: Package, rel: Relation) -> Optional[Version]:
        """Best version of pkg satisfying rel that the resolver may select."""
        overlay = self.overlay
        policy = overlay.policy
        entry = overlay.entry(pkg)

        ordered = [entry.candidate] if entry.candidate is not None else []
        others = [v for v in pkg.versions
                  if v is not entry.candidate and (v.downloadable or v is pkg.current)]
        others.sort(key=lambda v: (policy.priority(v), version_sort_key(v.version)), reverse=True)
        ordered.extend(others)

        for ver in ordered:
            if rel.matches(pkg.name, ver.version) and self._may_change(pkg, ver):
                return ver
        return None

    def _installs_cleanly(self, pkg: Package, ver: Version, strict: bool) -> bool:
        for other in self.overlay.conflicts_of(pkg, ver):
            if strict or self.is_protected(other):
                return False
        return True

    def _non_conflicting_version(self, other: Package, pkg: Package) -> Optional[Version]:
        """A version of `other` that no longer conflicts with pkg, if allowed."""
        overlay = self.overlay
        if self.is_protected(other) or overlay.is_held(other):
            return None
        current = overlay.install_version(other)
        policy = overlay.policy
        versions = [v for v in other.versions
                    if v is not current and (v.downloadable or v is other.current)]
        versions.sort(key=lambda v: (policy.priority(v), version_sort_key(v.version)), reverse=True)
        for ver in versions:
            if pkg not in overlay.conflicts_of(other, ver):
                return ver
        return None
