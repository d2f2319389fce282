"""
Artifact fetching

Resolves the install set of a Plan to FetchItems and downloads them with a
thread pool. One fetch() call is one round: it returns once every item has
a result. Local (file://) origins are used in place and only verified; a
missing local artifact is reported as IDLE so the caller can ask for the
medium and retry.
"""

import hashlib
import logging
import socket
import time
import urllib.error
import urllib.request
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional
from urllib.parse import urlparse
from urllib.request import url2pathname

from .cancel import is_cancelled
from .errors import HardFetchFailure

logger = logging.getLogger(__name__)

USER_AGENT = 'pkgplan/0.3'
CHUNK_SIZE = 65536
PARTIAL_SUFFIX = '.partial'

# HTTP codes worth retrying later
TRANSIENT_HTTP_CODES = (408, 429, 500, 502, 503, 504)


class FetchStatus(Enum):
    COMPLETE = "complete"
    IDLE = "idle"            # not fetched this round, retry may help
    FAILED = "failed"


@dataclass
class FetchItem:
    """One artifact to bring into the cache."""
    package: str
    uri: str
    destination: Path
    size: int = 0
    checksum: str = ""
    trusted: bool = True
    local: bool = False

    @property
    def partial_path(self) -> Path:
        return self.destination.with_name(self.destination.name + PARTIAL_SUFFIX)

    def partial_size(self) -> int:
        """Bytes already downloaded by an interrupted fetch."""
        try:
            return self.partial_path.stat().st_size
        except OSError:
            return 0

    def is_valid(self) -> bool:
        """True if destination exists with the expected size and checksum."""
        try:
            actual_size = self.destination.stat().st_size
        except OSError:
            return False
        if self.size and actual_size != self.size:
            return False
        if self.checksum and file_sha256(self.destination) != self.checksum.lower():
            return False
        return True


@dataclass
class FetchResult:
    item: FetchItem
    status: FetchStatus
    error: Optional[str] = None
    downloaded: int = 0

    @property
    def ok(self) -> bool:
        return self.status == FetchStatus.COMPLETE


@dataclass
class ArchiveSet:
    """FetchItems still needed for a plan, and what is already cached."""
    items: List[FetchItem] = field(default_factory=list)
    cached: List[str] = field(default_factory=list)
    paths: Dict[str, Path] = field(default_factory=dict)    # package -> artifact
    needed_bytes: int = 0
    partial_bytes: int = 0


def file_sha256(path: Path) -> str:
    sha = hashlib.sha256()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b''):
            sha.update(chunk)
    return sha.hexdigest()


def _local_path(uri: str) -> Optional[Path]:
    parsed = urlparse(uri)
    if parsed.scheme == 'file':
        return Path(url2pathname(parsed.path))
    if not parsed.scheme:
        return Path(uri)
    return None


def build_fetch_items(plan, graph, cache_dir: Path) -> ArchiveSet:
    """Resolve every install-set entry to a FetchItem.

    Entries already present and checksum-valid are skipped. Sizes of local
    artifacts never count as needed bytes.

    Raises:
        HardFetchFailure: an entry has no download source
    """
    result = ArchiveSet()
    for entry in plan.install:
        ver = entry.version
        origin = graph.origin_of(ver) if ver is not None else None
        if origin is None:
            version = ver.version if ver is not None else '?'
            raise HardFetchFailure(
                f"Unable to find a source to download version '{version}' of '{entry.name}'",
                package=entry.name)

        uri = f"{origin.uri.rstrip('/')}/{ver.filename}"
        local = _local_path(uri)
        destination = local if local is not None else Path(cache_dir) / Path(ver.filename).name
        item = FetchItem(package=entry.name, uri=uri, destination=destination,
                         size=ver.size, checksum=ver.checksum,
                         trusted=origin.trusted, local=local is not None)
        result.paths[entry.name] = destination

        if item.is_valid():
            logger.debug(f"{entry.name}: {destination} already present")
            result.cached.append(entry.name)
            continue

        result.items.append(item)
        if not item.local:
            result.needed_bytes += item.size
            result.partial_bytes += item.partial_size()

    return result


class Fetcher:
    """Thread-pool fetch transport over urllib."""

    def __init__(self, max_workers: int = 4, timeout: int = 30,
                 max_retries: int = 3, retry_delay: float = 1.0, sink=None):
        """Initialize fetcher.

        Args:
            max_workers: Max parallel downloads
            timeout: Connection timeout in seconds
            max_retries: Attempts per item for transient errors
            retry_delay: Base backoff delay in seconds (multiplied by attempt)
            sink: Optional ReportSink receiving progress
        """
        self.max_workers = max_workers
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.sink = sink

    def fetch(self, items: List[FetchItem], cancel=None) -> List[FetchResult]:
        """Fetch all items; results come back in item order.

        Items not started because of cancellation are reported IDLE.
        """
        results: Dict[int, FetchResult] = {}
        with ThreadPoolExecutor(max_workers=max(1, self.max_workers)) as executor:
            futures = {}
            for index, item in enumerate(items):
                if is_cancelled(cancel):
                    results[index] = FetchResult(item, FetchStatus.IDLE, "Cancelled")
                    continue
                futures[executor.submit(self.fetch_one, item)] = index

            done = 0
            for future in as_completed(futures):
                index = futures[future]
                results[index] = future.result()
                done += 1
                if self.sink is not None:
                    self.sink.progress(items[index].package, done, len(futures))

        return [results[i] for i in range(len(items))]

    def fetch_one(self, item: FetchItem) -> FetchResult:
        """Fetch a single item with retry on transient errors."""
        if item.local:
            if item.is_valid():
                return FetchResult(item, FetchStatus.COMPLETE)
            if item.destination.exists():
                return FetchResult(item, FetchStatus.FAILED,
                                   f"Size or hash mismatch for {item.destination}")
            return FetchResult(item, FetchStatus.IDLE,
                               f"{item.destination} is not available, insert the right medium")

        if item.is_valid():
            return FetchResult(item, FetchStatus.COMPLETE)

        last_error = None
        for attempt in range(self.max_retries):
            try:
                downloaded = self._download(item)
            except urllib.error.HTTPError as e:
                if e.code == 416:
                    # Partial file is larger than the artifact, start over
                    item.partial_path.unlink(missing_ok=True)
                    last_error = f"HTTP {e.code}: {e.reason}"
                elif e.code in TRANSIENT_HTTP_CODES:
                    last_error = f"HTTP {e.code}: {e.reason}"
                else:
                    return FetchResult(item, FetchStatus.FAILED, f"HTTP {e.code}: {e.reason}")
            except (urllib.error.URLError, socket.timeout, OSError) as e:
                last_error = str(e.reason) if hasattr(e, 'reason') else str(e)
            else:
                return self._verify(item, downloaded)

            if attempt < self.max_retries - 1:
                time.sleep(self.retry_delay * (attempt + 1))

        return FetchResult(item, FetchStatus.IDLE,
                           f"After {self.max_retries} attempts: {last_error}")

    def _download(self, item: FetchItem) -> int:
        """Download into the .partial file, resuming when possible."""
        item.destination.parent.mkdir(parents=True, exist_ok=True)
        offset = item.partial_size()

        req = urllib.request.Request(item.uri)
        req.add_header('User-Agent', USER_AGENT)
        if offset:
            req.add_header('Range', f"bytes={offset}-")

        with urllib.request.urlopen(req, timeout=self.timeout) as response:
            status = getattr(response, 'status', None)
            mode = 'ab' if offset and status == 206 else 'wb'
            downloaded = 0
            with open(item.partial_path, mode) as f:
                while True:
                    chunk = response.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    f.write(chunk)
                    downloaded += len(chunk)
        return downloaded

    def _verify(self, item: FetchItem, downloaded: int) -> FetchResult:
        partial = item.partial_path
        if item.size and partial.stat().st_size < item.size:
            return FetchResult(item, FetchStatus.IDLE, "Short read, will resume", downloaded)
        if item.checksum and file_sha256(partial) != item.checksum.lower():
            partial.unlink(missing_ok=True)
            return FetchResult(item, FetchStatus.FAILED, "Hash Sum mismatch", downloaded)
        partial.replace(item.destination)
        logger.debug(f"Fetched {item.uri} ({downloaded} bytes)")
        return FetchResult(item, FetchStatus.COMPLETE, downloaded=downloaded)
