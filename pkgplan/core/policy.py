"""
Install policy: version priorities, pins and holds.

Priorities follow the usual convention: a version from a configured archive
gets DEFAULT_PRIORITY, a version only known from the installed state gets
INSTALLED_PRIORITY, and the first matching pin overrides both.
"""

import fnmatch
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from .evr import version_sort_key
from .graph import Package, Selection, Version

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY = 500
INSTALLED_PRIORITY = 100


@dataclass(frozen=True)
class Pin:
    """A priority override for matching versions.

    `package` and `version` are fnmatch globs; `archive` must match exactly
    when given.
    """
    package: str = "*"
    priority: int = DEFAULT_PRIORITY
    version: Optional[str] = None
    archive: Optional[str] = None

    def matches(self, ver: Version) -> bool:
        name = ver.package.name if ver.package else ""
        if not fnmatch.fnmatchcase(name, self.package):
            return False
        if self.version is not None and not fnmatch.fnmatchcase(ver.version, self.version):
            return False
        if self.archive is not None and ver.archive != self.archive:
            return False
        return True


class Policy:
    """Per-version priority and hold rules used for candidate selection."""

    def __init__(self, pins: Iterable[Pin] = (), holds: Iterable[str] = ()):
        self.pins: List[Pin] = list(pins)
        self.holds = set(holds)

    def priority(self, ver: Version) -> int:
        for pin in self.pins:
            if pin.matches(ver):
                return pin.priority
        if ver.downloadable:
            return DEFAULT_PRIORITY
        return INSTALLED_PRIORITY

    def preferred_version(self, pkg: Package) -> Optional[Version]:
        """Highest-priority version, ties broken by highest version.

        Only downloadable versions and the installed one are eligible.
        Returns None when nothing is eligible.
        """
        eligible = [v for v in pkg.versions if v.downloadable or v is pkg.current]
        if not eligible:
            return None
        return max(eligible, key=lambda v: (self.priority(v), version_sort_key(v.version)))

    def is_held(self, pkg: Package) -> bool:
        """A held package keeps its installed version."""
        if not pkg.installed:
            return False
        return pkg.selection == Selection.HOLD or pkg.name in self.holds
