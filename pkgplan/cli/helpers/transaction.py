"""Shared flow for install/remove/upgrade: plan, confirm, execute."""

import os
import sys
from pathlib import Path
from typing import List, Sequence

from ...core.cancel import CancelToken
from ...core.config import TransactionOptions, load_options
from ...core.errors import ConfirmationRequired, PlanError
from ...core.executor import ExecutionStatus, Executor
from ...core.planner import Plan, Request, TransactionPlanner
from ...core.report import ReportSink
from ...core.snapshot import Snapshot, load_snapshot
from ...core.state import Mode
from .. import colors

SNAPSHOT_ENV = "PKGPLAN_SNAPSHOT"


class ConsoleReportSink(ReportSink):
    """Print executor events to the terminal."""

    def __init__(self, quiet: bool = False):
        self.quiet = quiet

    def plan_summary(self, plan, steps=None):
        if self.quiet or not steps:
            return
        print(f"\n{colors.bold('Apply order:')}")
        for step in steps:
            print(f"  {step}")

    def fetch_item(self, item):
        checksum = f"SHA256:{item.checksum}" if item.checksum else ""
        print(f"'{item.uri}' {item.destination.name} {item.size} {checksum}".rstrip())

    def warning(self, message: str):
        print(colors.warning(f"W: {message}"))

    def error(self, message: str):
        print(colors.error(f"E: {message}"))

    def message(self, message: str):
        if not self.quiet:
            print(message)


def load_context(args) -> Snapshot:
    """Load the snapshot named on the command line or in the environment.

    Raises:
        PlanError: no snapshot given
    """
    path = getattr(args, 'snapshot', None) or os.environ.get(SNAPSHOT_ENV)
    if not path:
        raise PlanError(f"No package snapshot given (use --snapshot or ${SNAPSHOT_ENV})")
    return load_snapshot(Path(path))


def build_options(args) -> TransactionOptions:
    """Config file settings overridden by command line switches."""
    config = getattr(args, 'config', None)
    options = load_options(Path(config) if config else None)

    switches = {
        'simulate': 'simulate',
        'print_uris': 'print_uris',
        'download_only': 'download_only',
        'fix_missing': 'fix_missing',
        'allow_unauthenticated': 'allow_unauthenticated',
        'reinstall': 'reinstall',
        'purge': 'purge',
        'strict': 'strict',
        'auto_remove': 'auto_remove',
    }
    for attr, field_name in switches.items():
        if getattr(args, attr, False):
            setattr(options, field_name, True)

    if getattr(args, 'no_download', False):
        options.download = False
    if getattr(args, 'no_upgrade', False):
        options.upgrade = False
    if getattr(args, 'no_remove', False):
        options.allow_remove = False
    if getattr(args, 'no_lock', False):
        options.no_locking = True
    if getattr(args, 'cache_dir', None):
        options.cache_dir = Path(args.cache_dir)
    return options


def confirm(prompt: str = "Do you want to continue?") -> bool:
    try:
        answer = input(f"\n{prompt} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ('y', 'yes')


def _section(title: str, names: Sequence[str], color_func):
    if not names:
        return
    print(f"\n{colors.bold(title)}")
    print("  " + ' '.join(color_func(name) for name in names))


def print_plan(plan: Plan):
    """Show what a plan will do, apt style."""
    report = plan.report
    for note in report.notes:
        print(colors.dim(note))

    new = [e.name for e in plan.install if e.package.current is None]
    upgrades = [e.name for e in plan.install if e.is_upgrade]
    downgrades = [e.name for e in plan.install if e.is_downgrade]
    reinstalls = [e.name for e in plan.install if e.reinstall]
    removals = [e.name + ('*' if e.mode == Mode.PURGE else '') for e in plan.delete]

    _section("The following extra packages will be installed:", report.extra, colors.pkg_install)
    _section("Suggested packages:", [" | ".join(g) for g in report.suggested_groups], colors.dim)
    _section("Recommended packages:", [" | ".join(g) for g in report.recommended_groups], colors.dim)
    _section("The following packages will be REMOVED:", removals, colors.pkg_remove)
    _section("The following packages were automatically removed:", report.autoremoved, colors.pkg_remove)
    _section("The following NEW packages will be installed:", new, colors.pkg_install)
    _section("The following packages have been kept back:", report.kept_back, colors.warning)
    _section("The following packages will be upgraded:", upgrades, colors.pkg_upgrade)
    _section("The following packages will be DOWNGRADED:", downgrades, colors.warning)
    _section("The following packages will be reinstalled:", reinstalls, colors.pkg_upgrade)

    print(f"\n{colors.count(len(upgrades))} upgraded, {colors.count(len(new))} newly installed, "
          f"{colors.count(len(reinstalls))} reinstalled, {colors.count(len(removals))} to remove.")


def print_plan_error(e: PlanError):
    print(colors.error(f"E: {e}"))
    if e.detail:
        for line in e.detail.splitlines():
            print(f"  {colors.error(line)}")
    report = e.report
    if report is not None and report.notes:
        for note in report.notes:
            print(colors.dim(note))


def run_transaction(args, requests: List[Request], upgrade_all: bool = False) -> int:
    """Plan, confirm and execute a request set.

    Returns:
        Process exit code
    """
    cancel = CancelToken()
    try:
        snapshot = load_context(args)
        options = build_options(args)
        planner = TransactionPlanner(snapshot.graph, snapshot.policy, options, cancel)
        txn = planner.prepare(requests, upgrade_all=upgrade_all)

        try:
            plan = txn.accept()
        except ConfirmationRequired as e:
            print_plan(e.transaction.to_plan())
            if not getattr(args, 'yes', False) and not options.simulate:
                if not confirm():
                    print("Abort.")
                    return 1
            plan = e.transaction.accept(allow_extra=True)
        else:
            print_plan(plan)

        sink = ConsoleReportSink(quiet=getattr(args, 'quiet', False))
        executor = Executor(snapshot.graph, options, sink=sink, cancel=cancel)
        result = executor.execute(plan)
    except PlanError as e:
        print_plan_error(e)
        return 1
    except KeyboardInterrupt:
        cancel.cancel()
        print(colors.warning("\nInterrupted"), file=sys.stderr)
        return 130

    if result.status == ExecutionStatus.CANCELLED:
        print(colors.warning("Cancelled"))
        return 130
    if result.status == ExecutionStatus.COMPLETED:
        print(colors.success("Done."))
    return 0
