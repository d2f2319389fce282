"""Tests for the acquire & apply executor"""

from pathlib import Path
from types import SimpleNamespace

import pytest

from pkgplan.core import executor as executor_module
from pkgplan.core.cancel import CancelToken
from pkgplan.core.config import TransactionOptions
from pkgplan.core.download import FetchResult, FetchStatus
from pkgplan.core.errors import (
    ApplyFailed, ApplyIncomplete, HardFetchFailure, InsufficientSpace,
    PreconditionFailed, TransientFetchFailure, UntrustedArtifacts,
)
from pkgplan.core.executor import (
    ExecutionStatus, Executor, check_free_space, filesystem_type, has_enough_space,
)
from pkgplan.core.install import SimulatedApplyEngine
from pkgplan.core.lock import CacheLock
from pkgplan.core.planner import Request, TransactionPlanner
from pkgplan.core.report import RecordingReportSink

MIRROR = 'https://mirror.example.org/main'


class ScriptedFetcher:
    """Fetcher double: each package follows a list of statuses, then COMPLETE."""

    def __init__(self, script=None):
        self.script = {name: list(statuses) for name, statuses in (script or {}).items()}
        self.rounds = []

    def fetch(self, items, cancel=None):
        self.rounds.append([item.package for item in items])
        results = []
        for item in items:
            queue = self.script.get(item.package)
            status = queue.pop(0) if queue else FetchStatus.COMPLETE
            if status == FetchStatus.COMPLETE:
                item.destination.parent.mkdir(parents=True, exist_ok=True)
                item.destination.write_bytes(b'x' * item.size)
                results.append(FetchResult(item, status, downloaded=item.size))
            else:
                results.append(FetchResult(item, status, 'scripted failure'))
        return results


class VanishingEngine(SimulatedApplyEngine):
    """Deletes one artifact after the first step it applies."""

    def __init__(self, victim: Path):
        super().__init__()
        self.victim = victim
        self.removed = False

    def apply_step(self, step):
        super().apply_step(step)
        if not self.removed and self.victim.exists():
            self.victim.unlink()
            self.removed = True


class FailingEngine(SimulatedApplyEngine):

    def apply_step(self, step):
        raise ApplyFailed(f"{step}: exit code 1", package=step.package)


APP_AND_LIB = {
    'app': {'versions': {'1': {'depends': ['lib']}}},
    'lib': {'versions': {'1': {}}},
}


def _plan(snap, requests, options=None):
    planner = TransactionPlanner(snap.graph, snap.policy, options)
    return planner.plan(requests, allow_extra=True)


class TestFreeSpace:

    def test_boundaries(self):
        # 7 free blocks of 100 bytes
        assert not has_enough_space(1000, 200, 100, 7)
        assert has_enough_space(700, 0, 100, 7)
        assert not has_enough_space(701, 0, 100, 7)
        assert has_enough_space(900, 200, 100, 7)

    def test_check_passes_with_room(self, tmp_path):
        check_free_space(tmp_path, 1024)

    def test_insufficient_space(self, tmp_path, monkeypatch):
        monkeypatch.setattr(executor_module.os, 'statvfs',
                            lambda path: SimpleNamespace(f_frsize=100, f_bsize=100, f_bavail=7))
        monkeypatch.setattr(executor_module, 'filesystem_type', lambda path: 'ext4')
        with pytest.raises(InsufficientSpace) as exc:
            check_free_space(tmp_path, 1000, 200)
        assert exc.value.needed == 800
        assert exc.value.available == 700

    def test_memory_filesystem_is_exempt(self, tmp_path, monkeypatch):
        monkeypatch.setattr(executor_module.os, 'statvfs',
                            lambda path: SimpleNamespace(f_frsize=100, f_bsize=100, f_bavail=0))
        monkeypatch.setattr(executor_module, 'filesystem_type', lambda path: 'tmpfs')
        check_free_space(tmp_path, 1000)

    def test_filesystem_type_picks_longest_mount(self, tmp_path):
        mounts = tmp_path / 'mounts'
        mounts.write_text("/dev/sda1 / ext4 rw 0 0\n"
                          "tmpfs /run/archives tmpfs rw 0 0\n")
        assert filesystem_type(Path('/run/archives/cache'), mounts) == 'tmpfs'
        assert filesystem_type(Path('/run/other'), mounts) == 'ext4'

    def test_filesystem_type_without_mount_table(self, tmp_path):
        assert filesystem_type(tmp_path, tmp_path / 'missing') is None


class TestGates:

    def setup_method(self):
        self.sink = RecordingReportSink()

    def test_broken_plan_is_refused(self, universe, tmp_path):
        snap = universe(APP_AND_LIB)
        plan = _plan(snap, [Request('app')])
        plan.broken_count = 1
        executor = Executor(snap.graph, TransactionOptions(cache_dir=tmp_path), sink=self.sink)
        with pytest.raises(PreconditionFailed):
            executor.execute(plan)

    def test_removal_disabled(self, universe, tmp_path):
        snap = universe({'lib': {'installed': '1', 'versions': {'1': {}}}})
        plan = _plan(snap, [Request('lib', remove=True)])
        options = TransactionOptions(cache_dir=tmp_path, allow_remove=False)
        with pytest.raises(PreconditionFailed, match='remove is disabled'):
            Executor(snap.graph, options, sink=self.sink).execute(plan)

    def test_nothing_to_do(self, universe, tmp_path):
        snap = universe({'lib': {'installed': '1', 'versions': {'1': {}}}})
        plan = _plan(snap, [Request('lib')])
        result = Executor(snap.graph, TransactionOptions(cache_dir=tmp_path),
                          sink=self.sink).execute(plan)
        assert result.status == ExecutionStatus.NOTHING_TO_DO
        assert self.sink.of_kind('message') == ["0 upgraded, 0 newly installed, 0 to remove."]

    def test_missing_engine_fails_before_fetching(self, universe, tmp_path):
        snap = universe(APP_AND_LIB)
        plan = _plan(snap, [Request('app')])
        fetcher = ScriptedFetcher()
        executor = Executor(snap.graph, TransactionOptions(cache_dir=tmp_path),
                            fetcher=fetcher, sink=self.sink)
        with pytest.raises(PreconditionFailed):
            executor.execute(plan)
        assert fetcher.rounds == []

    def test_lock_held_elsewhere(self, universe, tmp_path):
        snap = universe(APP_AND_LIB)
        plan = _plan(snap, [Request('app')])
        executor = Executor(snap.graph, TransactionOptions(cache_dir=tmp_path),
                            fetcher=ScriptedFetcher(), engine=SimulatedApplyEngine(),
                            sink=self.sink)
        with CacheLock(tmp_path):
            with pytest.raises(PreconditionFailed, match='Unable to lock'):
                executor.execute(plan)


class TestModes:

    def setup_method(self):
        self.sink = RecordingReportSink()

    def test_simulate(self, universe, tmp_path):
        snap = universe(dict(APP_AND_LIB, old={'installed': '1', 'versions': {'1': {}}}))
        plan = _plan(snap, [Request('app'), Request('old', remove=True)])
        options = TransactionOptions(cache_dir=tmp_path, simulate=True)

        result = Executor(snap.graph, options, sink=self.sink).execute(plan)

        assert result.status == ExecutionStatus.SIMULATED
        assert self.sink.of_kind('message') == ['Remv old (1)', 'Inst lib (1)', 'Inst app (1)']
        assert not (tmp_path / 'lock').exists()

    def test_print_uris(self, universe, tmp_path):
        snap = universe(APP_AND_LIB)
        plan = _plan(snap, [Request('app')])
        options = TransactionOptions(cache_dir=tmp_path / 'cache', print_uris=True)

        result = Executor(snap.graph, options, sink=self.sink).execute(plan)

        assert result.status == ExecutionStatus.PRINTED
        uris = [item.uri for item in self.sink.of_kind('fetch')]
        assert uris == [f"{MIRROR}/app-1.pkg", f"{MIRROR}/lib-1.pkg"]
        assert not (tmp_path / 'cache').exists()

    def test_download_only(self, universe, tmp_path):
        snap = universe(APP_AND_LIB)
        plan = _plan(snap, [Request('app')])
        engine = SimulatedApplyEngine()
        options = TransactionOptions(cache_dir=tmp_path, download_only=True)

        result = Executor(snap.graph, options, fetcher=ScriptedFetcher(), engine=engine,
                          sink=self.sink).execute(plan)

        assert result.status == ExecutionStatus.DOWNLOADED
        assert (tmp_path / 'app-1.pkg').exists()
        assert engine.applied == []

    def test_untrusted_origin_is_refused(self, universe, tmp_path):
        snap = universe(APP_AND_LIB, origins=[
            {'archive': 'main', 'uri': MIRROR, 'trusted': False}])
        plan = _plan(snap, [Request('app')])
        executor = Executor(snap.graph, TransactionOptions(cache_dir=tmp_path),
                            fetcher=ScriptedFetcher(), engine=SimulatedApplyEngine(),
                            sink=self.sink)
        with pytest.raises(UntrustedArtifacts) as exc:
            executor.execute(plan)
        assert exc.value.packages == ['app', 'lib']
        # The lock went away with the failure
        CacheLock(tmp_path).acquire()

    def test_untrusted_origin_allowed(self, universe, tmp_path):
        snap = universe(APP_AND_LIB, origins=[
            {'archive': 'main', 'uri': MIRROR, 'trusted': False}])
        plan = _plan(snap, [Request('app')])
        options = TransactionOptions(cache_dir=tmp_path, allow_unauthenticated=True)

        result = Executor(snap.graph, options, fetcher=ScriptedFetcher(),
                          engine=SimulatedApplyEngine(), sink=self.sink).execute(plan)

        assert result.status == ExecutionStatus.COMPLETED
        assert len(result.warnings) == 1
        assert 'cannot be authenticated' in self.sink.of_kind('warning')[0]


class TestFetchAndApply:

    def setup_method(self):
        self.sink = RecordingReportSink()
        self.engine = SimulatedApplyEngine()

    def _executor(self, snap, tmp_path, fetcher, **options):
        return Executor(snap.graph, TransactionOptions(cache_dir=tmp_path, **options),
                        fetcher=fetcher, engine=self.engine, sink=self.sink)

    def test_complete_run(self, universe, tmp_path):
        snap = universe(APP_AND_LIB)
        plan = _plan(snap, [Request('app')])

        result = self._executor(snap, tmp_path, ScriptedFetcher()).execute(plan)

        assert result.status == ExecutionStatus.COMPLETED
        assert [str(step) for step in self.engine.applied] == ['install lib 1', 'install app 1']
        assert self.engine.applied[1].path == tmp_path / 'app-1.pkg'
        # Lock released
        with CacheLock(tmp_path) as lock:
            assert lock.locked

    def test_cached_archives_are_not_fetched(self, universe, tmp_path):
        snap = universe(APP_AND_LIB)
        plan = _plan(snap, [Request('app')])
        (tmp_path / 'lib-1.pkg').write_bytes(b'x' * 100)
        fetcher = ScriptedFetcher()

        self._executor(snap, tmp_path, fetcher).execute(plan)

        assert fetcher.rounds == [['app']]

    def test_transient_failure_is_retried(self, universe, tmp_path):
        snap = universe(APP_AND_LIB)
        plan = _plan(snap, [Request('app')])
        fetcher = ScriptedFetcher({'app': [FetchStatus.IDLE]})

        result = self._executor(snap, tmp_path, fetcher).execute(plan)

        assert result.status == ExecutionStatus.COMPLETED
        assert fetcher.rounds == [['app', 'lib'], ['app']]
        assert any('Retrying' in w for w in self.sink.of_kind('warning'))

    def test_no_progress_gives_up(self, universe, tmp_path):
        snap = universe(APP_AND_LIB)
        plan = _plan(snap, [Request('app')])
        fetcher = ScriptedFetcher({'app': [FetchStatus.IDLE], 'lib': [FetchStatus.IDLE]})

        with pytest.raises(HardFetchFailure, match='still unavailable') as exc:
            self._executor(snap, tmp_path, fetcher).execute(plan)
        assert isinstance(exc.value.__cause__, TransientFetchFailure)

    def test_failure_without_fix_missing(self, universe, tmp_path):
        snap = universe(APP_AND_LIB)
        plan = _plan(snap, [Request('app')])
        fetcher = ScriptedFetcher({'lib': [FetchStatus.FAILED]})

        with pytest.raises(HardFetchFailure) as exc:
            self._executor(snap, tmp_path, fetcher).execute(plan)
        assert exc.value.package == 'lib'
        assert self.engine.applied == []

    def test_fix_missing_keeps_back_dependents(self, universe, tmp_path):
        snap = universe(dict(APP_AND_LIB, tool={'versions': {'1': {}}}))
        plan = _plan(snap, [Request('app'), Request('tool')])
        fetcher = ScriptedFetcher({'lib': [FetchStatus.FAILED]})

        result = self._executor(snap, tmp_path, fetcher, fix_missing=True).execute(plan)

        assert result.status == ExecutionStatus.COMPLETED
        assert [e.name for e in result.plan.install] == ['tool']
        assert [str(step) for step in self.engine.applied] == ['install tool 1']

    def test_fix_missing_with_media_swap(self, universe, tmp_path):
        snap = universe(APP_AND_LIB)
        plan = _plan(snap, [Request('app')])
        fetcher = ScriptedFetcher({'app': [FetchStatus.IDLE], 'lib': [FetchStatus.FAILED]})

        with pytest.raises(HardFetchFailure, match='can not be combined'):
            self._executor(snap, tmp_path, fetcher, fix_missing=True).execute(plan)

    def test_no_download_mode(self, universe, tmp_path):
        snap = universe(APP_AND_LIB)
        plan = _plan(snap, [Request('app')])
        fetcher = ScriptedFetcher()

        with pytest.raises(HardFetchFailure):
            self._executor(snap, tmp_path, fetcher, download=False).execute(plan)
        assert fetcher.rounds == []

    def test_cancelled_before_fetching(self, universe, tmp_path):
        snap = universe(APP_AND_LIB)
        plan = _plan(snap, [Request('app')])
        cancel = CancelToken()
        cancel.cancel()
        executor = self._executor(snap, tmp_path, ScriptedFetcher())
        executor.cancel = cancel

        result = executor.execute(plan)

        assert result.status == ExecutionStatus.CANCELLED
        assert not result.success
        CacheLock(tmp_path).acquire()

    def test_apply_failure(self, universe, tmp_path):
        snap = universe(APP_AND_LIB)
        plan = _plan(snap, [Request('app')])
        self.engine = FailingEngine()

        with pytest.raises(ApplyFailed) as exc:
            self._executor(snap, tmp_path, ScriptedFetcher()).execute(plan)
        assert exc.value.package == 'lib'

    def test_vanished_artifact_is_fetched_again(self, universe, tmp_path):
        snap = universe(APP_AND_LIB)
        plan = _plan(snap, [Request('app')])
        self.engine = VanishingEngine(tmp_path / 'app-1.pkg')
        fetcher = ScriptedFetcher()

        result = self._executor(snap, tmp_path, fetcher).execute(plan)

        assert result.status == ExecutionStatus.COMPLETED
        assert fetcher.rounds == [['app', 'lib'], ['app']]
        assert [step.package for step in result.applied] == ['lib', 'app']

    def test_vanished_artifact_cannot_be_recovered(self, universe, tmp_path):
        snap = universe(APP_AND_LIB)
        plan = _plan(snap, [Request('app')])
        self.engine = VanishingEngine(tmp_path / 'app-1.pkg')
        fetcher = ScriptedFetcher({'app': [FetchStatus.COMPLETE, FetchStatus.IDLE]})

        with pytest.raises(ApplyIncomplete) as exc:
            self._executor(snap, tmp_path, fetcher).execute(plan)
        assert exc.value.remaining == ['app']
