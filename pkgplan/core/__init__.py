"""Core modules for pkgplan"""

from .executor import Executor, ExecutionResult, ExecutionStatus
from .graph import PackageGraph, Relation, RelationKind, Version
from .planner import Plan, Request, Transaction, TransactionPlanner
from .policy import Pin, Policy
from .snapshot import load_snapshot

__all__ = [
    'Executor', 'ExecutionResult', 'ExecutionStatus',
    'PackageGraph', 'Relation', 'RelationKind', 'Version',
    'Plan', 'Request', 'Transaction', 'TransactionPlanner',
    'Pin', 'Policy', 'load_snapshot',
]
