"""
Transaction planner

Turns a list of install/remove requests into a validated Plan, or fails with
a PlanError carrying the derived report. One Transaction owns one
StateOverlay; a new attempt starts from a fresh Transaction.

Example:
    planner = TransactionPlanner(graph, policy, options)
    plan = planner.plan([Request('vim'), Request('nano', remove=True)])
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from .cancel import is_cancelled
from .config import TransactionOptions
from .errors import (
    AmbiguousVirtualPackage, ConfirmationRequired, NoInstallationCandidate,
    PackageNotInstalled, UnresolvableDependencies,
)
from .evr import compare_versions
from .graph import Package, PackageGraph, Relation, RelationKind, Selection, Version
from .package_ids import package_id_split
from .policy import Policy
from .resolver import ConstraintResolver
from .state import Mode, StateOverlay

logger = logging.getLogger(__name__)


class TransactionState(Enum):
    START = "start"
    REQUESTS_APPLIED = "requests-applied"
    RESOLVED = "resolved"
    VALIDATED = "validated"
    AUTOREMOVE_APPLIED = "autoremove-applied"
    REPORTED = "reported"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


@dataclass
class Request:
    """One user request: install (optionally a given version) or remove."""
    name: str
    remove: bool = False
    version: Optional[str] = None
    provider: Optional[str] = None    # picks among providers of a virtual name

    @classmethod
    def from_package_id(cls, package_id: str, remove: bool = False) -> 'Request':
        """Build a request from a name;version;arch;data identifier."""
        parts = package_id_split(package_id)
        if parts is None:
            raise ValueError(f"Invalid package id: {package_id!r}")
        return cls(name=parts.name, remove=remove, version=parts.version or None)

    def __str__(self) -> str:
        prefix = '-' if self.remove else ''
        suffix = f"={self.version}" if self.version else ''
        return f"{prefix}{self.name}{suffix}"


@dataclass
class Report:
    """What the caller should be told about a plan."""
    extra: List[str] = field(default_factory=list)
    recommended: List[str] = field(default_factory=list)
    suggested: List[str] = field(default_factory=list)
    recommended_groups: List[List[str]] = field(default_factory=list)
    suggested_groups: List[List[str]] = field(default_factory=list)
    autoremoved: List[str] = field(default_factory=list)
    kept_back: List[str] = field(default_factory=list)
    problems: List[str] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)


@dataclass
class PlanEntry:
    """One package of the install or delete set."""
    package: Package
    version: Optional[Version]
    mode: Mode
    auto_installed: bool = False
    reinstall: bool = False

    @property
    def name(self) -> str:
        return self.package.name

    @property
    def package_id(self) -> str:
        return self.version.package_id if self.version is not None else self.package.name

    @property
    def is_upgrade(self) -> bool:
        current = self.package.current
        if self.mode != Mode.INSTALL or current is None or self.version is None:
            return False
        return compare_versions(self.version.version, current.version) > 0

    @property
    def is_downgrade(self) -> bool:
        current = self.package.current
        if self.mode != Mode.INSTALL or current is None or self.version is None:
            return False
        return compare_versions(self.version.version, current.version) < 0

    def __str__(self) -> str:
        ver = f" {self.version.version}" if self.version is not None else ''
        return f"{self.mode.value} {self.name}{ver}"


@dataclass
class Plan:
    """A validated transaction, ready for the executor."""
    install: List[PlanEntry] = field(default_factory=list)
    delete: List[PlanEntry] = field(default_factory=list)
    expected_installs: int = 0
    broken_count: int = 0
    bad_count: int = 0
    report: Report = field(default_factory=Report)
    transaction: Optional['Transaction'] = field(default=None, repr=False)

    @property
    def empty(self) -> bool:
        return not self.install and not self.delete

    @property
    def download_size(self) -> int:
        return sum(e.version.size for e in self.install if e.version is not None)

    def normalize_purge(self):
        """Upgrade every Delete entry to Purge."""
        for entry in self.delete:
            if entry.mode == Mode.DELETE:
                entry.mode = Mode.PURGE
                if self.transaction is not None:
                    self.transaction.overlay.entry(entry.package).mode = Mode.PURGE


class Transaction:
    """One planning attempt over a graph.

    Methods must be called in state-machine order: apply_requests,
    resolve, validate, auto_remove, build_report, accept.
    """

    def __init__(self, graph: PackageGraph, policy: Optional[Policy] = None,
                 options: Optional[TransactionOptions] = None, cancel=None):
        self.graph = graph
        self.policy = policy or Policy()
        self.options = options or TransactionOptions()
        self.cancel = cancel
        self.overlay = StateOverlay(graph, self.policy)
        self.resolver = ConstraintResolver(self.overlay, cancel=cancel)
        self.state = TransactionState.START
        self.report = Report()
        self.requested: Dict[str, Package] = {}
        self.expected_installs = 0
        self.upgrading_all = False
        self.broken_before = self.overlay.broken_count()
        self.broken = self.broken_before
        if self.broken_before:
            logger.info(f"{self.broken_before} package(s) already broken, repair mode enabled")

    @property
    def repair_mode(self) -> bool:
        return self.broken_before > 0

    def _note(self, message: str):
        logger.info(message)
        self.report.notes.append(message)

    # =========================================================================
    # RequestsApplied
    # =========================================================================

    def apply_requests(self, requests: Sequence[Request], strict: bool = False):
        """Mark every request in the overlay.

        Raises:
            AmbiguousVirtualPackage: virtual name with several providers
            NoInstallationCandidate: nothing installable for a name/version
            PackageNotInstalled: strict removal of a missing package
        """
        for request in requests:
            if is_cancelled(self.cancel):
                break
            self._apply_request(request, strict)
        self.state = TransactionState.REQUESTS_APPLIED

    def _apply_request(self, request: Request, strict: bool):
        overlay = self.overlay
        pkg, provided = self._select_package(request, strict)
        if pkg is None:
            return

        if request.remove:
            self.requested[pkg.name] = pkg
            self.resolver.clear(pkg)
            self.resolver.protect(pkg)
            if not pkg.installed:
                overlay.mark_delete(pkg)
                if strict:
                    raise PackageNotInstalled(pkg.name, report=self.report)
                self._note(f"Package {pkg.name} is not installed, so not removed")
                return
            overlay.mark_delete(pkg, purge=self.options.purge)
            self.resolver.allow_collateral(pkg)
            return

        if pkg.installed and not self.options.upgrade and not request.version:
            self._note(f"Skipping {pkg.name}, it is already installed and upgrade is not set.")
            return

        if provided is not None:
            overlay.set_candidate(pkg, provided)
        elif request.version:
            ver = pkg.find_version(request.version)
            if ver is None:
                raise NoInstallationCandidate(pkg.name, version=request.version,
                                              report=self.report)
            overlay.set_candidate(pkg, ver)
        else:
            preferred = self.policy.preferred_version(pkg)
            if preferred is None:
                replaced_by = [owner.name for owner, _ in
                               self.graph.reverse_depends(pkg, RelationKind.REPLACES)]
                raise NoInstallationCandidate(pkg.name, replaced_by=replaced_by,
                                              report=self.report)
            if not overlay.is_held(pkg):
                overlay.set_candidate(pkg, preferred)

        self.requested[pkg.name] = pkg
        self.resolver.clear(pkg)
        self.resolver.protect(pkg)

        if overlay.mark_install(pkg, auto=False):
            self.expected_installs += 1
            return

        if self.options.reinstall:
            if pkg.current is None or not pkg.current.downloadable:
                self._note(f"Reinstallation of {pkg.name} is not possible, it cannot be downloaded.")
                return
            overlay.set_reinstall(pkg)
            self.expected_installs += 1
            return

        if overlay.is_held(pkg):
            self._note(f"{pkg.name} is held at {pkg.current.version}")
        else:
            self._note(f"{pkg.name} is already the newest version.")

    def _select_package(self, request: Request, strict: bool = False
                        ) -> Tuple[Optional[Package], Optional[Version]]:
        """Map a request name to a real package, substituting providers.

        Returns:
            (package, version) where version is the provider version picked
            for a versioned virtual request, else None
        """
        pkg = self.graph.find(request.name)
        if pkg is not None and pkg.versions:
            return pkg, None

        owners: Dict[int, Package] = {}
        for owner, _ in self.graph.providers_of(request.name):
            owners.setdefault(owner.id, owner)
        candidates = [owners[pid] for pid in sorted(owners)]

        if request.remove:
            candidates = [owner for owner in candidates if owner.installed]

        provided: Dict[int, Version] = {}
        if request.version and not request.remove and candidates:
            wanted = Relation(RelationKind.PROVIDES, request.name, '=', request.version)
            for owner, ver in self.graph.providers_of(request.name):
                if not ver.provides_relation(wanted):
                    continue
                best = provided.get(owner.id)
                if best is None or compare_versions(ver.version, best.version) > 0:
                    provided[owner.id] = ver
            candidates = [owner for owner in candidates if owner.id in provided]
            if not candidates:
                raise NoInstallationCandidate(request.name, version=request.version,
                                              report=self.report)

        if len(candidates) == 1:
            self._note(f"Note, selecting '{candidates[0].name}' instead of '{request.name}'")
            return candidates[0], provided.get(candidates[0].id)

        if len(candidates) > 1:
            if request.provider:
                for owner in candidates:
                    if owner.name == request.provider:
                        self._note(f"Note, selecting '{owner.name}' instead of '{request.name}'")
                        return owner, provided.get(owner.id)
            raise AmbiguousVirtualPackage(request.name, [o.name for o in candidates],
                                          report=self.report)

        if request.remove:
            if strict:
                raise PackageNotInstalled(request.name, report=self.report)
            self._note(f"Package {request.name} is not installed, so not removed")
            return None, None

        replaced_by = []
        if pkg is not None:
            replaced_by = [owner.name for owner, _ in
                           self.graph.reverse_depends(pkg, RelationKind.REPLACES)]
        else:
            replaced_by = sorted({owner.name for owner, _ in
                                  self.graph.relations_targeting(request.name, RelationKind.REPLACES)})
        raise NoInstallationCandidate(request.name, replaced_by=replaced_by, report=self.report)

    def upgrade_all(self):
        """Mark every installed, non-held package with a newer preferred version."""
        overlay = self.overlay
        self.upgrading_all = True
        for pkg in self.graph.packages():
            if is_cancelled(self.cancel):
                break
            if not pkg.installed or overlay.is_held(pkg):
                continue
            if pkg.selection in (Selection.DEINSTALL, Selection.PURGE):
                continue
            if overlay.entry(pkg).mode != Mode.KEEP:
                continue
            preferred = self.policy.preferred_version(pkg)
            if preferred is None or preferred is pkg.current:
                continue
            if compare_versions(preferred.version, pkg.current.version) <= 0:
                continue
            overlay.set_candidate(pkg, preferred)
            if overlay.mark_install(pkg, auto=True):
                logger.debug(f"Upgrading {pkg.name} {pkg.current.version} -> {preferred.version}")
                self.requested[pkg.name] = pkg
                self.expected_installs += 1
        self.state = TransactionState.REQUESTS_APPLIED

    # =========================================================================
    # Resolved / Validated
    # =========================================================================

    def resolve(self):
        """Run the resolver; a failed solve only leaves a broken count."""
        if not self.resolver.resolve(allow_removal=self.repair_mode):
            logger.debug("Resolver did not converge, re-measuring broken count")

        if self.upgrading_all and self.overlay.broken_count():
            for pkg in self.resolver.resolve_by_keep():
                if self.requested.pop(pkg.name, None) is None:
                    continue
                self.expected_installs -= 1
                self.report.kept_back.append(pkg.name)
                logger.info(f"{pkg.name} has been kept back")
            self._drop_orphaned_installs()

        self.broken = self.overlay.broken_count()
        self.state = TransactionState.RESOLVED

    def _drop_orphaned_installs(self):
        """Return to Keep the new auto installs nothing pending still depends on."""
        overlay = self.overlay
        orphans = {pkg.id: pkg for pkg, entry in overlay.entries()
                   if entry.mode == Mode.INSTALL and entry.auto_installed
                   and not pkg.installed and pkg.name not in self.requested}
        if not orphans:
            return

        stack = [pkg for pkg, _ in overlay.entries()
                 if pkg.id not in orphans and overlay.install_version(pkg) is not None]
        seen = {pkg.id for pkg in stack}
        while stack:
            pkg = stack.pop()
            for group in self.graph.relations_of(overlay.install_version(pkg), RelationKind.DEPENDS):
                for rel in group:
                    for dep in overlay.satisfiers(rel):
                        if dep.id not in seen:
                            seen.add(dep.id)
                            stack.append(dep)

        for pid, pkg in orphans.items():
            if pid not in seen:
                logger.debug(f"Dropping {pkg.name}, nothing needs it any more")
                self.resolver.clear(pkg)
                overlay.mark_keep(pkg)

    def validate(self):
        """Reject the transaction when anything is left broken.

        Raises:
            UnresolvableDependencies: with the report attached
        """
        if self.broken == 0:
            self.state = TransactionState.VALIDATED
            return

        broken = self.overlay.broken_packages()
        for pkg in broken:
            self.report.problems.extend(self.overlay.describe_broken(pkg))
        self.build_report()
        self.state = TransactionState.REJECTED
        raise UnresolvableDependencies([pkg.name for pkg in broken],
                                       self.report.problems, report=self.report)

    # =========================================================================
    # AutoRemoveApplied
    # =========================================================================

    def auto_remove(self) -> List[Package]:
        """Remove auto-installed packages nothing manual still needs.

        Marks every package reachable through Depends (and Recommends when
        autoremove_recommends is set) from the manually installed ones,
        then deletes the unreachable auto-installed packages. Running it
        again deletes nothing more.
        """
        self.state = TransactionState.AUTOREMOVE_APPLIED
        if not self.options.auto_remove:
            return []

        overlay = self.overlay
        kinds = [RelationKind.DEPENDS]
        if self.options.autoremove_recommends:
            kinds.append(RelationKind.RECOMMENDS)

        stack = [pkg for pkg, entry in overlay.entries()
                 if overlay.install_version(pkg) is not None
                 and (not entry.auto_installed or entry.protected)]
        reachable = {pkg.id for pkg in stack}
        while stack:
            pkg = stack.pop()
            ver = overlay.install_version(pkg)
            for kind in kinds:
                for group in self.graph.relations_of(ver, kind):
                    for rel in group:
                        for dep in overlay.satisfiers(rel):
                            if dep.id not in reachable:
                                reachable.add(dep.id)
                                stack.append(dep)

        garbage = [pkg for pkg, entry in overlay.entries()
                   if overlay.install_version(pkg) is not None
                   and entry.auto_installed and pkg.id not in reachable]
        for pkg in garbage:
            logger.info(f"Auto-removing {pkg.name}, no longer needed")
            overlay.mark_delete(pkg, purge=self.options.purge)
            self.report.autoremoved.append(pkg.name)
        return garbage

    # =========================================================================
    # Reported
    # =========================================================================

    def build_report(self) -> Report:
        """Fill the extra, recommended and suggested sets."""
        overlay = self.overlay
        report = self.report
        report.extra = []
        report.recommended, report.recommended_groups = [], []
        report.suggested, report.suggested_groups = [], []

        for pkg, entry in overlay.entries():
            if entry.mode != Mode.INSTALL:
                continue
            if pkg.name not in self.requested:
                report.extra.append(pkg.name)
            for kind, names, groups in (
                    (RelationKind.RECOMMENDS, report.recommended, report.recommended_groups),
                    (RelationKind.SUGGESTS, report.suggested, report.suggested_groups)):
                for group in self.graph.relations_of(entry.candidate, kind):
                    members = self._unmet_members(group, report)
                    if members:
                        groups.append(members)
                        names.extend(m for m in members if m not in names)

        if self.state != TransactionState.REJECTED:
            self.state = TransactionState.REPORTED
        return report

    def _unmet_members(self, group, report: Report) -> List[str]:
        """Member names of a group nobody satisfies; empty if satisfied."""
        members = []
        for rel in group:
            target = self.graph.find(rel.target)
            if target is not None and self.overlay.install_version(target) is not None:
                return []
            if rel.target in report.recommended or rel.target in report.suggested:
                return []
            if any(self.overlay.install_version(owner) is ver
                   for owner, ver in self.graph.providers_of(rel.target)):
                return []
            members.append(rel.target)
        return members

    # =========================================================================
    # Accepted
    # =========================================================================

    def accept(self, allow_extra: bool = False) -> Plan:
        """Turn the transaction into a Plan.

        Raises:
            UnresolvableDependencies: broken count is not zero
            ConfirmationRequired: more changes than requested and not allow_extra
        """
        overlay = self.overlay
        if self.broken:
            self.state = TransactionState.REJECTED
            raise UnresolvableDependencies([p.name for p in overlay.broken_packages()],
                                           self.report.problems, report=self.report)

        inst_count = overlay.inst_count()
        if inst_count != self.expected_installs and not allow_extra:
            logger.debug(f"Install count {inst_count} != expected {self.expected_installs}")
            raise ConfirmationRequired(self, report=self.report)

        self.state = TransactionState.ACCEPTED
        return self.to_plan()

    def to_plan(self) -> Plan:
        overlay = self.overlay
        plan = Plan(expected_installs=self.expected_installs,
                    broken_count=self.broken,
                    bad_count=overlay.bad_count(),
                    report=self.report,
                    transaction=self)
        for pkg, entry in overlay.entries():
            if entry.mode == Mode.INSTALL:
                plan.install.append(PlanEntry(pkg, entry.candidate, entry.mode,
                                              entry.auto_installed, entry.reinstall))
            elif entry.deleting:
                plan.delete.append(PlanEntry(pkg, pkg.current, entry.mode))
        return plan

    def fix_missing(self, names: Sequence[str]) -> Optional[Plan]:
        """Give up on packages whose artifacts cannot be fetched.

        The named packages are kept at their installed state and pending
        installs broken by that are kept back too.

        Returns:
            A new Plan, or None if the result is still broken
        """
        overlay = self.overlay
        for name in names:
            pkg = self.graph.find(name)
            if pkg is None:
                continue
            logger.info(f"Keeping {name}, its archive is missing")
            self.resolver.clear(pkg)
            overlay.mark_keep(pkg)

        self.resolver.resolve_by_keep(include_protected=True)
        self.broken = overlay.broken_count()
        if self.broken:
            logger.warning(f"{self.broken} package(s) still broken after fixing missing archives")
            return None
        return self.to_plan()


class TransactionPlanner:
    """Entry point for planning: one fresh Transaction per attempt."""

    def __init__(self, graph: PackageGraph, policy: Optional[Policy] = None,
                 options: Optional[TransactionOptions] = None, cancel=None):
        self.graph = graph
        self.policy = policy or Policy()
        self.options = options or TransactionOptions()
        self.cancel = cancel

    def begin(self) -> Transaction:
        return Transaction(self.graph, self.policy, self.options, self.cancel)

    def prepare(self, requests: Sequence[Request] = (), upgrade_all: bool = False,
                strict: Optional[bool] = None) -> Transaction:
        """Run a transaction up to the Reported state.

        Raises:
            PlanError: any planning failure, with the report attached
        """
        txn = self.begin()
        txn.apply_requests(requests, strict=self.options.strict if strict is None else strict)
        if upgrade_all:
            txn.upgrade_all()
        txn.resolve()
        txn.validate()
        txn.auto_remove()
        txn.build_report()
        return txn

    def plan(self, requests: Sequence[Request] = (), allow_extra: bool = False,
             upgrade_all: bool = False, strict: Optional[bool] = None) -> Plan:
        """Plan a request set all the way to acceptance.

        Raises:
            ConfirmationRequired: call e.transaction.accept(allow_extra=True)
                to go ahead anyway
        """
        txn = self.prepare(requests, upgrade_all=upgrade_all, strict=strict)
        return txn.accept(allow_extra=allow_extra)
