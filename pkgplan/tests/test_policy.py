"""Tests for version priorities, pins and holds"""

from pkgplan.core.policy import DEFAULT_PRIORITY, INSTALLED_PRIORITY, Pin, Policy


class TestPolicy:

    def test_default_priorities(self, universe):
        snap = universe({'a': {'installed': '1', 'versions': {'2': {}}}})
        a = snap.graph.find('a')
        policy = Policy()
        assert policy.priority(a.versions[0]) == DEFAULT_PRIORITY
        assert policy.priority(a.current) == INSTALLED_PRIORITY
        assert policy.preferred_version(a).version == '2'

    def test_pin_by_archive(self, universe):
        snap = universe({'a': {'versions': {'1': {'archive': 'stable'}, '2': {'archive': 'testing'}}}},
                        origins=[{'archive': 'stable', 'uri': 'https://m/stable'},
                                 {'archive': 'testing', 'uri': 'https://m/testing'}])
        a = snap.graph.find('a')
        policy = Policy(pins=[Pin(archive='testing', priority=100)])
        assert policy.preferred_version(a).version == '1'

    def test_first_matching_pin_wins(self, universe):
        snap = universe({'kernel-core': {'versions': {'6.1.5': {}, '6.2.0': {}}}})
        pkg = snap.graph.find('kernel-core')
        policy = Policy(pins=[Pin('kernel*', 1001, '6.1*'), Pin('*', 1)])
        assert policy.priority(pkg.versions[1]) == 1001
        assert policy.priority(pkg.versions[0]) == 1
        assert policy.preferred_version(pkg).version == '6.1.5'

    def test_no_eligible_version(self, universe):
        snap = universe({'a': {'versions': {'1': {'archive': None}}}})
        assert Policy().preferred_version(snap.graph.find('a')) is None

    def test_holds_need_an_installed_package(self, universe):
        snap = universe({'a': {'versions': {'1': {}}}, 'b': {'installed': '1'}})
        policy = Policy(holds=['a', 'b'])
        assert not policy.is_held(snap.graph.find('a'))
        assert policy.is_held(snap.graph.find('b'))
