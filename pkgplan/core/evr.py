"""
Version utilities for pkgplan.

Provides version comparison and relation operator evaluation.
"""

import re
from functools import cmp_to_key
from typing import Any, List, Optional, Tuple


# Relation operators, both Debian and RPM spellings
OPERATORS = {
    '<<': lambda c: c < 0,
    '<': lambda c: c < 0,
    '<=': lambda c: c <= 0,
    '=': lambda c: c == 0,
    '==': lambda c: c == 0,
    '>=': lambda c: c >= 0,
    '>': lambda c: c > 0,
    '>>': lambda c: c > 0,
}


def split_version(v: str) -> List[Tuple[int, Any]]:
    """Break the version or release part of an EVR into digit and letter runs.

    Digit runs compare numerically and sort before letter runs, so
    "1.10" > "1.9"; when one list is a prefix of the other the longer one
    is newer. Separators such as '.' and '+' only delimit runs.
    """
    runs = re.findall(r'(\d+|[a-zA-Z]+)', v or '0')
    return [(0, int(run)) if run.isdigit() else (1, run) for run in runs]


def parse_evr(evr: str) -> Tuple[int, str, str]:
    """Split "epoch:version-release" into its three parts.

    Missing epoch is 0, missing release is the empty string.
    """
    epoch = 0
    if ':' in evr:
        head, evr = evr.split(':', 1)
        if head.isdigit():
            epoch = int(head)
    if '-' in evr:
        version, release = evr.rsplit('-', 1)
    else:
        version, release = evr, ''
    return epoch, version, release


def evr_key(evr: str) -> Tuple:
    """Return a sortable key for epoch-version-release comparison.

    This implements a simplified rpmvercmp/dpkg ordering.

    Example:
        versions.sort(key=evr_key, reverse=True)  # newest first
    """
    epoch, version, release = parse_evr(evr)
    return (epoch, split_version(version), split_version(release))


def compare_versions(a: str, b: str) -> int:
    """Compare two version strings.

    Returns:
        -1 if a < b, 0 if equal, 1 if a > b
    """
    ka, kb = evr_key(a), evr_key(b)
    if ka < kb:
        return -1
    if ka > kb:
        return 1
    return 0


version_sort_key = cmp_to_key(compare_versions)


def check_relation(version: str, op: Optional[str], target: Optional[str]) -> bool:
    """Check whether `version` satisfies "op target".

    An unversioned relation (no op) is satisfied by any version.

    Raises:
        ValueError: If the operator is unknown
    """
    if not op:
        return True
    test = OPERATORS.get(op)
    if test is None:
        raise ValueError(f"Unknown relation operator: {op}")
    return test(compare_versions(version, target or '0'))
