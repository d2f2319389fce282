"""
Compression helpers for snapshot files

The format is sniffed from magic bytes, never from the file extension:
- zstd
- gzip
- xz/lzma
- bzip2
Anything else is read as plain text.
"""

import bz2
import gzip
import lzma
from pathlib import Path
from typing import Union

import zstandard

MAGIC_ZSTD = b'\x28\xb5\x2f\xfd'
MAGIC_GZIP = b'\x1f\x8b'
MAGIC_XZ = b'\xfd7zXZ\x00'
MAGIC_BZ2 = b'BZh'


def detect_format(data: bytes) -> str:
    """Detect compression format from magic bytes.

    Args:
        data: First 8+ bytes of the file

    Returns:
        Format name: 'zstd', 'gzip', 'xz', 'bzip2', or 'plain'
    """
    if data[:4] == MAGIC_ZSTD:
        return 'zstd'
    if data[:2] == MAGIC_GZIP:
        return 'gzip'
    if data[:6] == MAGIC_XZ:
        return 'xz'
    if data[:3] == MAGIC_BZ2:
        return 'bzip2'
    return 'plain'


def decompress_bytes(data: bytes) -> bytes:
    """Decompress bytes, auto-detecting format.

    Raises:
        ValueError: If decompression fails
    """
    fmt = detect_format(data)
    try:
        if fmt == 'zstd':
            with zstandard.ZstdDecompressor().stream_reader(data) as reader:
                return reader.read()
        if fmt == 'gzip':
            return gzip.decompress(data)
        if fmt == 'xz':
            return lzma.decompress(data)
        if fmt == 'bzip2':
            return bz2.decompress(data)
    except (zstandard.ZstdError, OSError, EOFError, lzma.LZMAError) as e:
        raise ValueError(f"Corrupt {fmt} data: {e}") from e
    return data


def decompress(filename: Union[str, Path], encoding: str = 'utf-8') -> str:
    """Read a possibly compressed file and return its text.

    Args:
        filename: Path to the file
        encoding: Text encoding (default: utf-8)
    """
    data = Path(filename).read_bytes()
    return decompress_bytes(data).decode(encoding, errors='replace')
