"""
Multipart uploads as binary files.
"""

from collections.abc import AsyncIterator

from fastapi import UploadFile

from attachvault.core.entities.binary_file import CHUNK_SIZE, BinaryFile
from attachvault.core.entities.file_descriptor import DEFAULT_MIMETYPE, FileDescriptor


class UploadedBinaryFile(BinaryFile):
    """A spooled multipart file; it can be read several times (hash, then write)."""

    def __init__(self, upload: UploadFile, metadata: dict | None = None):
        super().__init__(FileDescriptor(
            size=upload.size or 0,
            name=upload.filename or "",
            mimetype=upload.content_type or DEFAULT_MIMETYPE,
            metadata=metadata or {},
        ))
        self._upload = upload

    async def chunks(self) -> AsyncIterator[bytes]:
        await self._upload.seek(0)
        while chunk := await self._upload.read(CHUNK_SIZE):
            yield chunk
