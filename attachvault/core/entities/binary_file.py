"""
Entity: Binary File

Content sources and the content hasher.

The hash is the MD5 of the bytes (usable as an object storage Content-MD5),
the challenge is the MD5 of a fixed prefix followed by the bytes. A client
can only produce the challenge if it holds the full content.
"""

import hashlib
import mimetypes
import os
import re
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass

import aiofiles

from attachvault.core.entities.file_descriptor import DEFAULT_MIMETYPE, FileDescriptor

DEFAULT_CHALLENGE_PREFIX = b"ATTACHVAULT"
CHUNK_SIZE = 65536

_DIGEST_RE = re.compile(r"[0-9a-f]{32}")


def is_valid_digest(value) -> bool:
    """True if value looks like a hex MD5 digest."""
    return isinstance(value, str) and _DIGEST_RE.fullmatch(value) is not None


@dataclass(frozen=True)
class ContentHashes:
    hash: str
    challenge: str
    size: int


class HashAccumulator:
    """Incremental hash + challenge computation over chunks."""

    def __init__(self, prefix: bytes):
        self._hash = hashlib.md5()
        self._challenge = hashlib.md5()
        self._challenge.update(prefix)
        self._size = 0

    def update(self, chunk: bytes) -> None:
        self._hash.update(chunk)
        self._challenge.update(chunk)
        self._size += len(chunk)

    def result(self) -> ContentHashes:
        return ContentHashes(
            hash=self._hash.hexdigest(),
            challenge=self._challenge.hexdigest(),
            size=self._size,
        )


class ContentHasher:
    """Computes content hash and challenge values."""

    def __init__(self, prefix: bytes = DEFAULT_CHALLENGE_PREFIX):
        self.prefix = prefix

    def accumulator(self) -> HashAccumulator:
        return HashAccumulator(self.prefix)

    def digest_bytes(self, data: bytes) -> ContentHashes:
        acc = self.accumulator()
        acc.update(data)
        return acc.result()

    async def digest_stream(self, chunks: AsyncIterator[bytes]) -> ContentHashes:
        acc = self.accumulator()
        async for chunk in chunks:
            acc.update(chunk)
        return acc.result()


class BinaryFile(ABC):
    """
    A file to store: its descriptor plus a way to read the bytes.

    The descriptor is hashed lazily by get_hashes().
    """

    def __init__(self, descriptor: FileDescriptor):
        self.descriptor = descriptor

    @abstractmethod
    def chunks(self) -> AsyncIterator[bytes]:
        """Iterate over the content."""
        ...

    async def get_hashes(self, hasher: ContentHasher) -> FileDescriptor:
        if not self.descriptor.is_hashed:
            hashes = await hasher.digest_stream(self.chunks())
            self.descriptor = self.descriptor.with_hashes(hashes.hash, hashes.challenge, hashes.size)
        return self.descriptor


class MemoryBinaryFile(BinaryFile):
    """Content already held in memory."""

    def __init__(self, data: bytes, name: str = "", mimetype: str = DEFAULT_MIMETYPE, metadata: dict | None = None):
        super().__init__(FileDescriptor(size=len(data), name=name, mimetype=mimetype, metadata=metadata or {}))
        self._data = data

    async def chunks(self) -> AsyncIterator[bytes]:
        for start in range(0, len(self._data), CHUNK_SIZE):
            yield self._data[start:start + CHUNK_SIZE]


class LocalBinaryFile(BinaryFile):
    """Content read from a path; name, size and mime type come from the file."""

    def __init__(self, path: str | os.PathLike, metadata: dict | None = None):
        self.path = os.fspath(path)
        mimetype = mimetypes.guess_type(self.path)[0] or DEFAULT_MIMETYPE
        super().__init__(FileDescriptor(
            size=os.path.getsize(self.path),
            name=os.path.basename(self.path),
            mimetype=mimetype,
            metadata=metadata or {},
        ))

    async def chunks(self) -> AsyncIterator[bytes]:
        async with aiofiles.open(self.path, "rb") as f:
            while chunk := await f.read(CHUNK_SIZE):
                yield chunk
