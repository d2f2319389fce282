"""Request parsing helpers."""

from typing import List

from ...core.package_ids import (
    PACKAGE_IDS_DELIM, package_id_check, package_ids_check, package_ids_from_text,
)
from ...core.planner import Request


def parse_request(text: str, remove: bool = False) -> Request:
    """Turn a command line argument into a Request.

    Accepted forms:
        vim                 install (or remove) vim
        vim=9.1-1           a given version
        mta/postfix         virtual name mta, provided by postfix
        vim;9.1-1;x86_64;main   a package id

    Raises:
        ValueError: no package name in text
    """
    if package_id_check(text):
        return Request.from_package_id(text, remove=remove)

    provider = None
    if '/' in text:
        text, provider = text.split('/', 1)

    version = None
    if '=' in text:
        text, version = text.split('=', 1)

    if not text:
        raise ValueError("Empty package name")

    return Request(name=text, remove=remove, version=version or None, provider=provider or None)


def parse_requests(args: List[str], remove: bool = False) -> List[Request]:
    """Parse every argument; an argument may be an '&'-joined list of package ids.

    Raises:
        ValueError: empty name or malformed id list
    """
    requests = []
    for arg in args:
        if PACKAGE_IDS_DELIM in arg:
            ids = package_ids_from_text(arg)
            if not package_ids_check(ids):
                raise ValueError(f"Invalid package id list: {arg}")
            requests.extend(Request.from_package_id(pid, remove=remove) for pid in ids)
        else:
            requests.append(parse_request(arg, remove=remove))
    return requests
