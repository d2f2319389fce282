"""Main CLI entry point for pkgplan."""

import argparse
import sys

from .. import __version__
from ..core.snapshot import SnapshotError
from .commands import cmd_depends, cmd_install, cmd_rdepends, cmd_remove, cmd_upgrade


class AliasedSubParsersAction(argparse._SubParsersAction):
    """Custom action to support command aliases in argparse."""

    def add_parser(self, name, **kwargs):
        aliases = kwargs.pop('aliases', [])
        parser = super().add_parser(name, **kwargs)
        for alias in aliases:
            self._name_parser_map[alias] = parser
        return parser


def _transaction_parent() -> argparse.ArgumentParser:
    """Options shared by every command that changes packages."""
    parent = argparse.ArgumentParser(add_help=False)
    parent.add_argument('--simulate', '-s', action='store_true',
                        help='Show what would be done without doing it')
    parent.add_argument('--yes', '-y', action='store_true',
                        help='Accept extra changes without asking')
    parent.add_argument('--print-uris', action='store_true',
                        help='Print the URIs of the archives to fetch and stop')
    parent.add_argument('--download-only', '-d', action='store_true',
                        help='Fetch archives but do not apply anything')
    parent.add_argument('--no-download', action='store_true',
                        help='Only use archives already in the cache')
    parent.add_argument('--fix-missing', '-m', action='store_true',
                        help='Keep back packages whose archives cannot be fetched')
    parent.add_argument('--allow-unauthenticated', action='store_true',
                        help='Accept archives from untrusted origins')
    parent.add_argument('--purge', action='store_true',
                        help='Purge instead of remove')
    parent.add_argument('--auto-remove', action='store_true',
                        help='Also remove auto-installed packages no longer needed')
    parent.add_argument('--no-remove', action='store_true',
                        help='Fail if any package would be removed')
    parent.add_argument('--no-lock', action='store_true',
                        help='Do not lock the archive cache')
    parent.add_argument('--cache-dir', metavar='DIR',
                        help='Archive cache directory')
    return parent


def create_parser() -> argparse.ArgumentParser:
    """Create the main argument parser with all commands and aliases."""
    parser = argparse.ArgumentParser(
        prog='pkgplan',
        description='Package transaction planner',
        epilog='Use "pkgplan <command> --help" for command-specific help.'
    )
    parser.add_argument('--version', '-V', action='version', version=f'pkgplan {__version__}')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose output')
    parser.add_argument('--quiet', '-q', action='store_true', help='Quiet output')
    parser.add_argument('--nocolor', action='store_true', help='Disable colored output')
    parser.add_argument('--snapshot', metavar='FILE',
                        help='Package snapshot (JSON, optionally compressed)')
    parser.add_argument('--config', metavar='FILE', help='Configuration file')

    parser.register('action', 'parsers', AliasedSubParsersAction)
    subparsers = parser.add_subparsers(dest='command', title='commands', metavar='<command>')
    transaction = _transaction_parent()

    install = subparsers.add_parser('install', aliases=['i'], parents=[transaction],
                                    help='Install packages')
    install.add_argument('packages', nargs='*', metavar='PACKAGE',
                         help='name, name=version, virtual/provider or package id')
    install.add_argument('--no-upgrade', action='store_true',
                         help='Skip packages that are already installed')
    install.add_argument('--reinstall', action='store_true',
                         help='Reinstall packages that are up to date')

    remove = subparsers.add_parser('remove', aliases=['e', 'erase'], parents=[transaction],
                                   help='Remove packages')
    remove.add_argument('packages', nargs='*', metavar='PACKAGE')
    remove.add_argument('--strict', action='store_true',
                        help='Fail when a package is not installed')

    upgrade = subparsers.add_parser('upgrade', aliases=['u'], parents=[transaction],
                                    help='Upgrade packages (all upgradable ones by default)')
    upgrade.add_argument('packages', nargs='*', metavar='PACKAGE')

    for name, help_text in (('depends', 'Show package dependencies'),
                            ('rdepends', 'Show reverse dependencies')):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument('package', metavar='PACKAGE')
        sub.add_argument('--recursive', '-r', action='store_true', help='Follow dependencies')

    return parser


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    # Configure logging based on verbose flag
    if getattr(args, 'verbose', False):
        import logging
        logging.basicConfig(
            level=logging.DEBUG,
            format='%(name)s - %(levelname)s - %(message)s',
            stream=sys.stderr
        )

    from . import colors
    colors.init(nocolor=getattr(args, 'nocolor', False))

    if not args.command:
        parser.print_help()
        return 1

    try:
        if args.command in ('install', 'i'):
            return cmd_install(args)
        elif args.command in ('remove', 'e', 'erase'):
            return cmd_remove(args)
        elif args.command in ('upgrade', 'u'):
            return cmd_upgrade(args)
        elif args.command == 'depends':
            return cmd_depends(args)
        elif args.command == 'rdepends':
            return cmd_rdepends(args)
        parser.print_help()
        return 1
    except (SnapshotError, OSError) as e:
        print(colors.error(f"E: {e}"))
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted")
        return 130


if __name__ == '__main__':
    sys.exit(main())
