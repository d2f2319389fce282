"""Tests for CLI"""

import json

import pytest

from pkgplan.cli import colors
from pkgplan.cli.helpers import parse_request, parse_requests, print_plan
from pkgplan.cli.main import create_parser, main
from pkgplan.core import config
from pkgplan.core.planner import Request, TransactionPlanner


class TestParser:
    """Tests for argument parser."""

    def test_version_flag(self):
        parser = create_parser()
        with pytest.raises(SystemExit):
            parser.parse_args(['--version'])

    def test_install_command(self):
        parser = create_parser()
        args = parser.parse_args(['install', 'firefox', 'vim'])
        assert args.command == 'install'
        assert args.packages == ['firefox', 'vim']

    def test_install_alias(self):
        parser = create_parser()
        args = parser.parse_args(['i', 'firefox'])
        assert args.command == 'i'
        assert args.packages == ['firefox']

    def test_install_with_flags(self):
        parser = create_parser()
        args = parser.parse_args(['install', '-y', '-s', '--no-upgrade', 'firefox'])
        assert args.yes is True
        assert args.simulate is True
        assert args.no_upgrade is True

    def test_remove_aliases(self):
        parser = create_parser()
        for alias in ('e', 'erase'):
            args = parser.parse_args([alias, '--purge', 'vim'])
            assert args.command == alias
            assert args.purge is True

    def test_upgrade_without_packages(self):
        parser = create_parser()
        args = parser.parse_args(['u', '--fix-missing'])
        assert args.packages == []
        assert args.fix_missing is True

    def test_rdepends(self):
        parser = create_parser()
        args = parser.parse_args(['rdepends', '-r', 'glibc'])
        assert args.package == 'glibc'
        assert args.recursive is True


class TestParseRequest:

    def test_forms(self):
        assert parse_request('vim').name == 'vim'
        request = parse_request('vim=9.1-1')
        assert (request.name, request.version) == ('vim', '9.1-1')
        request = parse_request('mta/postfix')
        assert (request.name, request.provider) == ('mta', 'postfix')
        request = parse_request('vim;9.1-1;x86_64;main', remove=True)
        assert (request.name, request.version, request.remove) == ('vim', '9.1-1', True)

    def test_empty_name(self):
        with pytest.raises(ValueError):
            parse_request('=1.0')


class TestParseRequests:

    def test_package_id_list(self):
        requests = parse_requests(['vim', 'a;1;x86_64;main&b;2;noarch;installed'], remove=True)
        assert [(r.name, r.version, r.remove) for r in requests] == [
            ('vim', None, True), ('a', '1', True), ('b', '2', True)]

    def test_malformed_id_list(self):
        with pytest.raises(ValueError, match='Invalid package id list'):
            parse_requests(['a;1;x86_64;main&broken'])


class TestPrintPlan:

    def test_or_groups_are_shown_whole(self, universe, capsys):
        colors.init(nocolor=True)
        snap = universe({
            'app': {'versions': {'1': {'recommends': ['doc | doc-html'],
                                       'suggests': ['plugin']}}},
            'doc': {'versions': {'1': {}}},
            'doc-html': {'versions': {'1': {}}},
            'plugin': {'versions': {'1': {}}},
        })
        plan = TransactionPlanner(snap.graph, snap.policy).plan([Request('app')])

        print_plan(plan)

        out = capsys.readouterr().out
        assert 'Recommended packages:\n  doc | doc-html\n' in out
        assert 'Suggested packages:\n  plugin\n' in out


class TestMain:

    @pytest.fixture(autouse=True)
    def isolate(self, tmp_path, monkeypatch):
        monkeypatch.setenv(config.CONFIG_ENV, str(tmp_path / 'none.conf'))
        monkeypatch.delenv('PKGPLAN_SNAPSHOT', raising=False)
        self.repo = tmp_path / 'repo'
        self.repo.mkdir()
        for name in ('app', 'lib'):
            (self.repo / f"{name}-1.pkg").write_bytes(b'x' * 100)
        self.snapshot = tmp_path / 'snapshot.json'
        self.snapshot.write_text(json.dumps({
            'origins': [{'archive': 'main', 'uri': f"file://{self.repo}"}],
            'packages': [
                {'name': 'app', 'versions': [
                    {'version': '1', 'archive': 'main', 'filename': 'app-1.pkg',
                     'size': 100, 'depends': ['lib']}]},
                {'name': 'lib', 'versions': [
                    {'version': '1', 'archive': 'main', 'filename': 'lib-1.pkg', 'size': 100}]},
                {'name': 'old', 'installed': '0.9'},
            ],
        }))
        self.cache = tmp_path / 'cache'

    def _run(self, *argv):
        return main(['--nocolor', '--snapshot', str(self.snapshot)] + list(argv))

    def test_no_command(self, capsys):
        assert main([]) == 1

    def test_simulated_install(self, capsys):
        assert self._run('install', '--simulate', 'app') == 0
        out = capsys.readouterr().out
        assert 'The following extra packages will be installed:' in out
        assert 'Inst lib (1)' in out
        assert out.index('Inst lib (1)') < out.index('Inst app (1)')

    def test_confirmation_declined(self, capsys, monkeypatch):
        monkeypatch.setattr('builtins.input', lambda prompt: 'n')
        assert self._run('install', '--cache-dir', str(self.cache), 'app') == 1
        assert 'Abort.' in capsys.readouterr().out

    def test_download_only_from_local_origin(self, capsys):
        assert self._run('install', '-y', '-d', '--cache-dir', str(self.cache), 'app') == 0
        assert 'Download complete' in capsys.readouterr().out
        assert (self.cache / 'lock').exists()

    def test_strict_remove_of_missing_package(self, capsys):
        assert self._run('remove', '--strict', 'lib') == 1
        assert 'E: Package lib is not installed' in capsys.readouterr().out

    def test_remove_simulated(self, capsys):
        assert self._run('remove', '-s', 'old') == 0
        out = capsys.readouterr().out
        assert 'The following packages will be REMOVED:' in out
        assert 'Remv old (0.9)' in out

    def test_unknown_package(self, capsys):
        assert self._run('install', '-s', 'nope') == 1
        assert 'has no installation candidate' in capsys.readouterr().out

    def test_missing_snapshot(self, capsys):
        assert main(['--nocolor', 'install', 'app']) == 1
        assert 'No package snapshot given' in capsys.readouterr().out

    def test_unreadable_snapshot(self, tmp_path, capsys):
        bad = tmp_path / 'bad.json'
        bad.write_text('{')
        assert main(['--nocolor', '--snapshot', str(bad), 'depends', 'app']) == 1
        assert 'invalid JSON' in capsys.readouterr().out

    def test_depends(self, capsys):
        assert self._run('depends', 'app') == 0
        out = capsys.readouterr().out
        assert 'lib' in out

    def test_rdepends(self, capsys):
        assert self._run('rdepends', 'lib') == 0
        assert 'app' in capsys.readouterr().out
