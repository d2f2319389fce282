"""Package removal command."""

from ..helpers.package import parse_requests
from ..helpers.transaction import run_transaction


def cmd_remove(args) -> int:
    """Handle remove command."""
    from .. import colors

    if not args.packages:
        print(colors.error("Error: no packages specified"))
        return 1

    try:
        requests = parse_requests(args.packages, remove=True)
    except ValueError as e:
        print(colors.error(f"Error: {e}"))
        return 1
    return run_transaction(args, requests)
