"""Content hashing used as the deduplication key for provider reports."""

from __future__ import annotations

import asyncio
import hashlib
from pathlib import Path
from typing import BinaryIO, Union

CHUNK_SIZE = 64 * 1024


def hash_stream(fileobj: BinaryIO, chunk_size: int = CHUNK_SIZE) -> str:
    """Return the SHA-256 hex digest of everything left in *fileobj*.

    The stream is consumed in *chunk_size* pieces so large files are never
    held in memory.  Read errors propagate.
    """
    digest = hashlib.sha256()
    for chunk in iter(lambda: fileobj.read(chunk_size), b""):
        digest.update(chunk)
    return digest.hexdigest()


def hash_file(file_path: Union[str, Path], chunk_size: int = CHUNK_SIZE) -> str:
    """Return the SHA-256 hex digest of the file at *file_path*."""
    with open(file_path, "rb") as fh:
        return hash_stream(fh, chunk_size)


async def hash_file_async(file_path: Union[str, Path], chunk_size: int = CHUNK_SIZE) -> str:
    """Hash *file_path* in a worker thread so the event loop keeps running."""
    return await asyncio.to_thread(hash_file, file_path, chunk_size)
