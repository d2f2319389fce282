"""CLI helper functions shared by the command modules."""

from .package import parse_request, parse_requests
from .transaction import (
    ConsoleReportSink,
    build_options,
    confirm,
    load_context,
    print_plan,
    print_plan_error,
    run_transaction,
)

__all__ = [
    'parse_request', 'parse_requests',
    'ConsoleReportSink', 'build_options', 'confirm', 'load_context',
    'print_plan', 'print_plan_error', 'run_transaction',
]
