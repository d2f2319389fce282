"""
Acquire & apply executor

Runs an accepted Plan: purge normalization, sanity gate, simulation,
archive resolution, cache lock and free-space check, trust check, then the
fetch/apply loop. The cache lock is released on every exit path.

Example:
    executor = Executor(graph, options, engine=CommandApplyEngine(...))
    result = executor.execute(plan)
"""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

from .cancel import is_cancelled
from .config import TransactionOptions
from .download import ArchiveSet, Fetcher, FetchItem, FetchResult, FetchStatus, build_fetch_items
from .errors import (
    ApplyFailed, ApplyIncomplete, HardFetchFailure, InsufficientSpace,
    OrderingError, PreconditionFailed, TransientFetchFailure, UntrustedArtifacts,
)
from .install import (
    ApplyEngine, ApplyOutcome, ApplyStatus, ApplyStep, CommandApplyEngine,
    StepAction, order_plan,
)
from .lock import CacheLock
from .report import LoggingReportSink

logger = logging.getLogger(__name__)

# Memory-backed filesystems never run out of blocks the way disks do
MEMORY_FILESYSTEMS = ('ramfs', 'tmpfs')

MOUNTS_FILE = Path('/proc/self/mounts')


class ExecutionStatus(Enum):
    NOTHING_TO_DO = "nothing-to-do"
    SIMULATED = "simulated"
    PRINTED = "printed"
    DOWNLOADED = "downloaded"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass
class ExecutionResult:
    status: ExecutionStatus
    plan: object = None
    steps: List[ApplyStep] = field(default_factory=list)
    fetched: List[FetchResult] = field(default_factory=list)
    applied: List[ApplyStep] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status != ExecutionStatus.CANCELLED


# =============================================================================
# Free space
# =============================================================================

def has_enough_space(needed: int, partial: int, block_size: int, free_blocks: int) -> bool:
    """True if free_blocks * block_size covers needed - partial bytes."""
    return free_blocks * block_size >= needed - partial


def filesystem_type(path: Path, mounts_file: Path = MOUNTS_FILE) -> Optional[str]:
    """Type of the filesystem holding path, from the mount table."""
    try:
        lines = mounts_file.read_text().splitlines()
    except OSError:
        return None
    target = str(Path(path).resolve())
    best, best_type = '', None
    for line in lines:
        parts = line.split()
        if len(parts) < 3:
            continue
        mount_point = parts[1].replace('\\040', ' ')
        inside = target == mount_point or target.startswith(mount_point.rstrip('/') + '/')
        if inside and len(mount_point) >= len(best):
            best, best_type = mount_point, parts[2]
    return best_type


def check_free_space(path: Path, needed: int, partial: int = 0):
    """Make sure the archive directory can take the download.

    Raises:
        InsufficientSpace: not enough free blocks
        PreconditionFailed: free space can't be determined
    """
    try:
        st = os.statvfs(path)
    except OSError as e:
        raise PreconditionFailed(f"Couldn't determine free space in {path}: {e}", detail=str(path))

    block_size = st.f_frsize or st.f_bsize
    if has_enough_space(needed, partial, block_size, st.f_bavail):
        return
    fs_type = filesystem_type(path)
    if fs_type in MEMORY_FILESYSTEMS:
        logger.debug(f"{path} is on {fs_type}, ignoring free space")
        return
    raise InsufficientSpace(str(path), needed - partial, st.f_bavail * block_size)


# =============================================================================
# Executor
# =============================================================================

class Executor:
    """Fetches and applies accepted plans."""

    def __init__(self, graph, options: Optional[TransactionOptions] = None,
                 fetcher: Optional[Fetcher] = None, engine: Optional[ApplyEngine] = None,
                 sink=None, cancel=None):
        self.graph = graph
        self.options = options or TransactionOptions()
        self.sink = sink or LoggingReportSink()
        self.fetcher = fetcher or Fetcher(max_workers=self.options.max_workers, sink=self.sink)
        self.engine = engine
        self.cancel = cancel

    @property
    def cache_dir(self) -> Path:
        return self.options.get_cache_dir()

    def _get_engine(self) -> ApplyEngine:
        if self.engine is not None:
            return self.engine
        opts = self.options
        if opts.install_command or opts.remove_command:
            self.engine = CommandApplyEngine(opts.install_command, opts.remove_command,
                                             opts.purge_command)
            return self.engine
        raise PreconditionFailed("No apply engine or apply command configured")

    def execute(self, plan) -> ExecutionResult:
        """Run a plan to completion.

        Raises:
            PlanError subclasses for every terminal failure
        """
        opts = self.options

        if opts.purge:
            plan.normalize_purge()

        if plan.broken_count:
            raise PreconditionFailed(f"{plan.broken_count} package(s) still broken")
        if plan.delete and not opts.allow_remove:
            raise PreconditionFailed("Packages need to be removed but remove is disabled.",
                                     package=plan.delete[0].name)

        if plan.empty and not plan.bad_count:
            self.sink.message("0 upgraded, 0 newly installed, 0 to remove.")
            return ExecutionResult(ExecutionStatus.NOTHING_TO_DO, plan)

        if opts.simulate:
            return self._simulate(plan)

        if not (opts.print_uris or opts.download_only):
            self._get_engine()

        archives = build_fetch_items(plan, self.graph, self.cache_dir)

        lock = None
        if not (opts.print_uris or opts.no_locking):
            lock = CacheLock(self.cache_dir)
            lock.acquire()
        try:
            if not opts.print_uris:
                self.cache_dir.mkdir(parents=True, exist_ok=True)
                check_free_space(self.cache_dir, archives.needed_bytes, archives.partial_bytes)

            warnings = self._check_trust(plan)

            if opts.print_uris:
                for item in archives.items:
                    self.sink.fetch_item(item)
                return ExecutionResult(ExecutionStatus.PRINTED, plan, warnings=warnings)

            return self._fetch_and_apply(plan, archives, warnings)
        finally:
            if lock is not None:
                lock.release()

    def _simulate(self, plan) -> ExecutionResult:
        warnings = []
        try:
            steps = order_plan(plan)
        except OrderingError as e:
            message = f"Unable to order the transaction: {e}"
            self.sink.error(message)
            warnings.append(message)
            steps = []
        self.sink.plan_summary(plan, steps)
        for step in steps:
            label = {StepAction.INSTALL: 'Inst', StepAction.REMOVE: 'Remv',
                     StepAction.PURGE: 'Purg'}[step.action]
            self.sink.message(f"{label} {step.package} ({step.version})")
        return ExecutionResult(ExecutionStatus.SIMULATED, plan, steps=steps, warnings=warnings)

    def _check_trust(self, plan) -> List[str]:
        """Warn about untrusted artifacts; fail unless overridden.

        Raises:
            UntrustedArtifacts: untrusted artifacts without allow_unauthenticated
        """
        untrusted = []
        for entry in plan.install:
            origin = self.graph.origin_of(entry.version) if entry.version is not None else None
            if origin is not None and not origin.trusted:
                untrusted.append(entry.name)
        if not untrusted:
            return []

        message = ("WARNING: The following packages cannot be authenticated! "
                   + ' '.join(untrusted))
        self.sink.warning(message)
        if not self.options.allow_unauthenticated:
            raise UntrustedArtifacts(untrusted)
        return [message]

    # =========================================================================
    # Fetch / apply loop
    # =========================================================================

    def _fetch_round(self, items: List[FetchItem]) -> List[FetchResult]:
        if self.options.download:
            return self.fetcher.fetch(items, self.cancel)
        # No-download mode: only local artifacts can still turn up
        results = []
        local = [item for item in items if item.local]
        local_results = {id(r.item): r for r in self.fetcher.fetch(local, self.cancel)} if local else {}
        for item in items:
            if item.local:
                results.append(local_results[id(item)])
            else:
                results.append(FetchResult(item, FetchStatus.FAILED,
                                           "Not in the cache and downloading is disabled"))
        return results

    def _check_round(self, results: List[FetchResult]):
        """Raise TransientFetchFailure if some items need another round."""
        transient = [r for r in results if r.status == FetchStatus.IDLE]
        if transient:
            raise TransientFetchFailure(
                f"{len(transient)} archive(s) not fetched yet",
                package=transient[0].item.package,
                detail='\n'.join(f"{r.item.uri}: {r.error}" for r in transient))

    def _fetch_all(self, plan, archives: ArchiveSet, fetched: List[FetchResult]):
        """Fetch until nothing is pending; may replace the plan via fix-missing.

        Returns:
            (plan, archives) to apply, or None if cancelled
        """
        pending = list(archives.items)
        fixed_missing = False

        while pending:
            if is_cancelled(self.cancel):
                return None

            results = self._fetch_round(pending)
            fetched.extend(results)
            transient = [r for r in results if r.status == FetchStatus.IDLE]
            failed = [r for r in results if r.status == FetchStatus.FAILED]
            failures = [f"{r.item.uri}: {r.error}" for r in failed + transient]
            for r in failed:
                self.sink.error(f"Failed to fetch {r.item.uri}  {r.error}")

            if failed and not self.options.fix_missing:
                raise HardFetchFailure(
                    "Unable to fetch some archives, maybe try with fix_missing?",
                    failures, package=failed[0].item.package)
            if failed and transient:
                raise HardFetchFailure("Fix-missing and media swapping can not be combined",
                                       failures, package=failed[0].item.package)

            if failed:
                if fixed_missing or plan.transaction is None:
                    raise HardFetchFailure("Unable to fetch some archives", failures,
                                           package=failed[0].item.package)
                fixed_missing = True
                missing = [r.item.package for r in failed]
                self.sink.warning(f"Keeping back packages with missing archives: {' '.join(missing)}")
                plan = plan.transaction.fix_missing(missing)
                if plan is None:
                    raise ApplyFailed("Unable to correct missing packages.")
                archives = build_fetch_items(plan, self.graph, self.cache_dir)
                pending = list(archives.items)
                continue

            try:
                self._check_round(results)
            except TransientFetchFailure as e:
                if not any(r.ok for r in results):
                    raise HardFetchFailure("Some archives are still unavailable, giving up",
                                           failures, package=e.package) from e
                for r in transient:
                    self.sink.warning(f"Retrying {r.item.uri}: {r.error}")
                pending = [r.item for r in transient]
                continue

            pending = []

        return plan, archives

    def _fetch_and_apply(self, plan, archives: ArchiveSet, warnings: List[str]) -> ExecutionResult:
        fetched: List[FetchResult] = []

        outcome = self._fetch_all(plan, archives, fetched)
        if outcome is None:
            return ExecutionResult(ExecutionStatus.CANCELLED, plan, fetched=fetched,
                                   warnings=warnings)
        plan, archives = outcome

        if self.options.download_only:
            self.sink.message("Download complete and in download only mode")
            return ExecutionResult(ExecutionStatus.DOWNLOADED, plan, fetched=fetched,
                                   warnings=warnings)

        steps = order_plan(plan, archives.paths)
        self.sink.plan_summary(plan, steps)
        engine = self._get_engine()

        result = engine.apply(steps, self.cancel)
        applied = list(result.applied)
        if result.status == ApplyStatus.INCOMPLETE and not is_cancelled(self.cancel):
            result = self._recover(engine, result, plan, fetched)
            applied.extend(result.applied)

        if is_cancelled(self.cancel) and result.status != ApplyStatus.COMPLETED:
            return ExecutionResult(ExecutionStatus.CANCELLED, plan, steps, fetched, applied, warnings)
        if result.status == ApplyStatus.FAILED:
            raise ApplyFailed(result.error or "Apply failed",
                              package=result.remaining[0].package if result.remaining else None)
        if result.status == ApplyStatus.INCOMPLETE:
            raise ApplyIncomplete(result.error or "Apply did not finish",
                                  [step.package for step in result.remaining])
        return ExecutionResult(ExecutionStatus.COMPLETED, plan, steps, fetched, applied, warnings)

    def _recover(self, engine: ApplyEngine, outcome: ApplyOutcome,
                 plan, fetched: List[FetchResult]) -> ApplyOutcome:
        """Fetch what the remaining steps need once more and resume."""
        logger.info(f"Apply stopped early ({outcome.error}), fetching missing archives again")
        remaining = {step.package for step in outcome.remaining
                     if step.action == StepAction.INSTALL}
        archives = build_fetch_items(plan, self.graph, self.cache_dir)
        items = [item for item in archives.items if item.package in remaining]

        if items:
            results = self._fetch_round(items)
            fetched.extend(results)
            missing = [r.item.package for r in results if not r.ok]
            if missing:
                raise ApplyIncomplete(f"Unable to fetch {' '.join(missing)} again",
                                      [step.package for step in outcome.remaining])

        return engine.apply(outcome.remaining, self.cancel)
