"""Package installation command."""

from ..helpers.package import parse_requests
from ..helpers.transaction import run_transaction


def cmd_install(args) -> int:
    """Handle install command."""
    from .. import colors

    if not args.packages:
        print(colors.error("Error: no packages specified"))
        return 1

    try:
        requests = parse_requests(args.packages)
    except ValueError as e:
        print(colors.error(f"Error: {e}"))
        return 1
    return run_transaction(args, requests)
