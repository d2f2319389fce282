"""
Package identifiers.

A package id is "name;version;arch;data" where data is the origin archive
(or "installed"). Lists of ids travel as a single string joined with '&'.

Delimiter choice:
    '%' breaks printf, '|' is used as the filename separator,
    '~' and '@' are valid in some version schemes.
"""

from typing import List, NamedTuple, Optional

PACKAGE_ID_DELIM = ';'
PACKAGE_IDS_DELIM = '&'


class PackageId(NamedTuple):
    """Split form of a package id."""
    name: str
    version: str
    arch: str
    data: str

    def __str__(self) -> str:
        return package_id_build(self.name, self.version, self.arch, self.data)


def package_id_build(name: str, version: str = '', arch: str = '', data: str = '') -> str:
    """Build a package id from its parts."""
    return PACKAGE_ID_DELIM.join([name, version or '', arch or '', data or ''])


def package_id_split(package_id: str) -> Optional[PackageId]:
    """Split a package id.

    Returns:
        PackageId, or None if the id is malformed (wrong field count or
        empty name)
    """
    parts = package_id.split(PACKAGE_ID_DELIM)
    if len(parts) != 4 or not parts[0]:
        return None
    return PackageId(*parts)


def package_id_check(package_id: str) -> bool:
    """Return True if package_id is well formed."""
    return package_id_split(package_id) is not None


def package_ids_from_text(text: str) -> List[str]:
    """Split an '&'-joined list of package ids, dropping empty entries."""
    return [pid for pid in text.split(PACKAGE_IDS_DELIM) if pid]


def package_ids_check(package_ids: List[str]) -> bool:
    """Return True if the list is non-empty and every id is well formed."""
    if not package_ids:
        return False
    return all(package_id_check(pid) for pid in package_ids)
