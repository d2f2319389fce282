"""Upgrade command: named packages, or everything upgradable."""

from ..helpers.package import parse_requests
from ..helpers.transaction import run_transaction


def cmd_upgrade(args) -> int:
    """Handle upgrade command.

    Without package arguments every installed, non-held package with a
    newer preferred version is upgraded; packages that can't be upgraded
    cleanly are kept back.
    """
    from .. import colors

    try:
        requests = parse_requests(args.packages)
    except ValueError as e:
        print(colors.error(f"Error: {e}"))
        return 1
    return run_transaction(args, requests, upgrade_all=not requests)
