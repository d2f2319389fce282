"""Tests for apply ordering and engines"""

from pathlib import Path
from unittest import mock

import pytest

from pkgplan.core.cancel import CancelToken
from pkgplan.core.errors import ApplyFailed, OrderingError
from pkgplan.core.install import (
    ApplyStatus, ApplyStep, CommandApplyEngine, SimulatedApplyEngine, StepAction,
    find_sccs, order_plan,
)
from pkgplan.core.planner import Plan, PlanEntry
from pkgplan.core.state import Mode


def _plan(graph, install=(), delete=(), purge=()):
    plan = Plan()
    for name in install:
        pkg = graph.find(name)
        plan.install.append(PlanEntry(pkg, pkg.versions[0], Mode.INSTALL))
    for name in delete:
        pkg = graph.find(name)
        plan.delete.append(PlanEntry(pkg, pkg.current, Mode.DELETE))
    for name in purge:
        pkg = graph.find(name)
        plan.delete.append(PlanEntry(pkg, pkg.current, Mode.PURGE))
    return plan


class TestFindSccs:

    def test_chain_dependencies_first(self):
        graph = {'app': {'lib'}, 'lib': {'base'}, 'base': set()}
        assert find_sccs(graph) == [['base'], ['lib'], ['app']]

    def test_cycle_stays_together(self):
        graph = {'a': {'b'}, 'b': {'a', 'c'}, 'c': set()}
        assert find_sccs(graph) == [['c'], ['a', 'b']]

    def test_edges_to_unknown_nodes(self):
        assert find_sccs({'a': {'x'}}) == [['x'], ['a']]


class TestOrderPlan:

    def test_installs_dependencies_first(self, universe):
        snap = universe({
            'app': {'versions': {'1': {'depends': ['lib (>= 1)']}}},
            'lib': {'versions': {'1': {'depends': ['base']}}},
            'base': {'versions': {'1': {}}},
        })
        plan = _plan(snap.graph, install=['app', 'lib', 'base'])
        paths = {'app': Path('/cache/app-1.pkg')}

        steps = order_plan(plan, paths)

        assert [str(s) for s in steps] == ['install base 1', 'install lib 1', 'install app 1']
        assert steps[2].path == Path('/cache/app-1.pkg')
        assert steps[0].path is None

    def test_removals_come_first_dependents_before_dependencies(self, universe):
        snap = universe({
            'app': {'installed': '1', 'versions': {'1': {'depends': ['lib']}}},
            'lib': {'installed': '1', 'versions': {'1': {}}},
            'new': {'versions': {'1': {}}},
        })
        plan = _plan(snap.graph, install=['new'], delete=['lib'], purge=['app'])

        steps = order_plan(plan)

        assert [(s.action, s.package) for s in steps] == [
            (StepAction.PURGE, 'app'),
            (StepAction.REMOVE, 'lib'),
            (StepAction.INSTALL, 'new'),
        ]

    def test_dependency_through_provides(self, universe):
        snap = universe({
            'mailer': {'versions': {'1': {'depends': ['mta']}}},
            'postfix': {'versions': {'1': {'provides': ['mta']}}},
        })
        steps = order_plan(_plan(snap.graph, install=['mailer', 'postfix']))
        assert [s.package for s in steps] == ['postfix', 'mailer']

    def test_entry_without_version(self, universe):
        snap = universe({'app': {'versions': {'1': {}}}})
        plan = _plan(snap.graph, install=['app'])
        plan.install[0].version = None
        with pytest.raises(OrderingError):
            order_plan(plan)


class TestApplyEngine:

    def test_simulated_engine_records_steps(self):
        engine = SimulatedApplyEngine()
        steps = [ApplyStep(StepAction.REMOVE, 'old', '1'), ApplyStep(StepAction.INSTALL, 'new', '2')]

        outcome = engine.apply(steps)

        assert outcome.status == ApplyStatus.COMPLETED
        assert engine.applied == steps

    def test_missing_artifact_stops_early(self, tmp_path):
        engine = SimulatedApplyEngine()
        steps = [ApplyStep(StepAction.REMOVE, 'old', '1'),
                 ApplyStep(StepAction.INSTALL, 'new', '2', tmp_path / 'new-2.pkg')]

        outcome = engine.apply(steps)

        assert outcome.status == ApplyStatus.INCOMPLETE
        assert [s.package for s in outcome.applied] == ['old']
        assert [s.package for s in outcome.remaining] == ['new']

    def test_cancel_stops_before_next_step(self):
        cancel = CancelToken()
        cancel.cancel()
        outcome = SimulatedApplyEngine().apply([ApplyStep(StepAction.INSTALL, 'a', '1')], cancel)
        assert outcome.status == ApplyStatus.INCOMPLETE
        assert outcome.error == 'Cancelled'


class TestCommandApplyEngine:

    def setup_method(self):
        self.engine = CommandApplyEngine('rpm -U --replacepkgs {path}', 'rpm -e {name}')

    def test_build_command(self):
        step = ApplyStep(StepAction.INSTALL, 'vim', '9.1-1', Path('/cache/vim-9.1-1.rpm'))
        assert self.engine.build_command(step) == ['rpm', '-U', '--replacepkgs',
                                                   '/cache/vim-9.1-1.rpm']
        # Purge falls back to the remove command
        assert self.engine.build_command(ApplyStep(StepAction.PURGE, 'vim')) == ['rpm', '-e', 'vim']

    def test_missing_command(self):
        engine = CommandApplyEngine('', 'rpm -e {name}')
        with pytest.raises(ApplyFailed):
            engine.build_command(ApplyStep(StepAction.INSTALL, 'vim'))

    @mock.patch('pkgplan.core.install.subprocess.run')
    def test_apply_step_success(self, mock_run):
        mock_run.return_value = mock.Mock(returncode=0, stderr='')
        outcome = self.engine.apply([ApplyStep(StepAction.REMOVE, 'vim', '9.1-1')])
        assert outcome.status == ApplyStatus.COMPLETED
        mock_run.assert_called_once()
        assert mock_run.call_args[0][0] == ['rpm', '-e', 'vim']

    @mock.patch('pkgplan.core.install.subprocess.run')
    def test_nonzero_exit_fails(self, mock_run):
        mock_run.return_value = mock.Mock(returncode=1, stderr='error: vim is needed by gvim')
        steps = [ApplyStep(StepAction.REMOVE, 'vim', '9.1-1'), ApplyStep(StepAction.REMOVE, 'nano')]

        outcome = self.engine.apply(steps)

        assert outcome.status == ApplyStatus.FAILED
        assert [s.package for s in outcome.remaining] == ['vim', 'nano']
        assert 'exit code 1' in outcome.error
