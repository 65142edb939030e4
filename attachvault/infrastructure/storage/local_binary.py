"""
Adapter: Local filesystem binary storage.

Layout under the root folder:

    {hash}/data                  the bytes
    {hash}/_{challenge}          challenge verified for these bytes
    {hash}/{modelType}_{uid}     one usage marker per owner
    .staging/                    uploads in progress

Bytes are written to staging first and hard-linked into place, so a hash
directory never exposes partial content.
"""

import asyncio
import contextlib
import logging
import os
import shutil
import uuid
from collections.abc import AsyncIterator

import aiofiles
import aiofiles.os

from attachvault.core.entities.binary_file import CHUNK_SIZE, BinaryFile, ContentHashes, is_valid_digest
from attachvault.core.entities.context import RequestContext
from attachvault.core.entities.file_descriptor import FileDescriptor, OwnerRef
from attachvault.core.entities.upload_ticket import TicketPurpose, UploadTarget, UploadTicket
from attachvault.core.errors import (
    BadRequestError,
    BinaryNotFoundError,
    ForbiddenError,
    IOFailureError,
    PreconditionFailedError,
)
from attachvault.infrastructure.storage.base_binary import BINARY_CREATE, BaseBinary

logger = logging.getLogger(__name__)

DATA_FILE = "data"
STAGING_DIR = ".staging"


class LocalFileBinary(BaseBinary):
    """Binary storage in a local folder, served by this service."""

    redirect_downloads = False

    def __init__(self, folder: str, expose_url: str = "/binary", **kwargs):
        super().__init__("local", **kwargs)
        self.folder = os.path.abspath(folder)
        self.staging = os.path.join(self.folder, STAGING_DIR)
        self.expose_url = "/" + expose_url.strip("/")
        os.makedirs(self.staging, exist_ok=True)
        logger.info(f"Local binary storage in {self.folder}")

    # ── Paths ──

    def _hash_dir(self, hash: str) -> str:
        if not is_valid_digest(hash):
            raise BadRequestError(f"Invalid hash {hash!r}")
        return os.path.join(self.folder, hash)

    def _data_path(self, hash: str) -> str:
        return os.path.join(self._hash_dir(hash), DATA_FILE)

    def _challenge_path(self, hash: str, challenge: str) -> str:
        return os.path.join(self._hash_dir(hash), f"_{challenge}")

    def _marker_path(self, hash: str, owner: OwnerRef) -> str:
        return os.path.join(self._hash_dir(hash), owner.marker)

    # ── Content ──

    async def challenge_verified(self, hash: str, challenge: str | None) -> bool:
        if not is_valid_digest(hash) or not is_valid_digest(challenge):
            return False
        return (
            await aiofiles.os.path.isfile(self._data_path(hash))
            and await aiofiles.os.path.isfile(self._challenge_path(hash, challenge))
        )

    async def _write_content(self, file: BinaryFile, descriptor: FileDescriptor) -> None:
        await aiofiles.os.makedirs(self._hash_dir(descriptor.hash), exist_ok=True)
        if await aiofiles.os.path.isfile(self._data_path(descriptor.hash)):
            await _touch(self._challenge_path(descriptor.hash, descriptor.challenge))
            return

        staged, hashes = await self._stage(file.chunks())
        try:
            if hashes.hash != descriptor.hash:
                raise IOFailureError(f"Content changed while storing {descriptor.hash}")
            await self._commit(staged, descriptor.hash, hashes.challenge)
        finally:
            await _remove(staged)

    async def _stage(self, chunks: AsyncIterator[bytes]) -> tuple[str, ContentHashes]:
        """Copy chunks to a staging file, hashing on the way."""
        path = os.path.join(self.staging, uuid.uuid4().hex)
        acc = self.hasher.accumulator()
        try:
            async with aiofiles.open(path, "wb") as f:
                async for chunk in chunks:
                    acc.update(chunk)
                    await f.write(chunk)
        except BaseException:
            await _remove(path)
            raise
        return path, acc.result()

    async def _commit(self, staged: str, hash: str, challenge: str) -> None:
        """Move verified staged bytes into place and mark the challenge."""
        await aiofiles.os.makedirs(self._hash_dir(hash), exist_ok=True)
        try:
            await aiofiles.os.link(staged, self._data_path(hash))
        except FileExistsError:
            logger.debug(f"Content {hash} was written concurrently")
        await _touch(self._challenge_path(hash, challenge))

    async def _open(self, hash: str) -> AsyncIterator[bytes]:
        path = self._data_path(hash)
        if not await aiofiles.os.path.isfile(path):
            raise BinaryNotFoundError(f"No content for {hash}")
        return _read_chunks(path)

    # ── Usage ──

    async def _add_usage(self, hash: str, owner: OwnerRef) -> None:
        await aiofiles.os.makedirs(self._hash_dir(hash), exist_ok=True)
        await _touch(self._marker_path(hash, owner))

    async def _remove_usage(self, hash: str, owner: OwnerRef) -> int:
        await _remove(self._marker_path(hash, owner))
        return await self.get_usage_count(hash)

    async def list_usages(self, hash: str) -> list[str]:
        if not is_valid_digest(hash):
            return []
        try:
            names = await aiofiles.os.listdir(self._hash_dir(hash))
        except FileNotFoundError:
            return []
        return sorted(name for name in names if name != DATA_FILE and not name.startswith("_"))

    async def get_usage_count(self, hash: str) -> int:
        return len(await self.list_usages(hash))

    async def _clean_hash(self, hash: str) -> None:
        with contextlib.suppress(FileNotFoundError):
            await asyncio.to_thread(shutil.rmtree, self._hash_dir(hash))

    async def clean_data(self) -> None:
        with contextlib.suppress(FileNotFoundError):
            await asyncio.to_thread(shutil.rmtree, self.folder)
        await aiofiles.os.makedirs(self.staging, exist_ok=True)

    # ── Transfers ──

    async def _upload_target(self, context: RequestContext, descriptor: FileDescriptor) -> UploadTarget:
        token = self.sign_ticket(descriptor)
        return UploadTarget(url=context.absolute_url(f"{self.expose_url}/upload/data/{descriptor.hash}?token={token}"))

    async def _sign_download_url(self, context: RequestContext, descriptor: FileDescriptor, ttl_seconds: int) -> str:
        token = self.sign_ticket(descriptor, TicketPurpose.DOWNLOAD, "GET", ttl_seconds)
        return context.absolute_url(f"{self.expose_url}/download/data/{descriptor.hash}?token={token}")

    async def finalize_upload(self, hash: str, ticket: UploadTicket,
                              chunks: AsyncIterator[bytes] | None = None) -> None:
        """
        Accept the bytes of an announced upload.

        Raises:
            ForbiddenError: ticket for another hash, or challenge mismatch.
            PreconditionFailedError: nothing was announced for this hash.
            BadRequestError: the bytes do not hash to the announced hash.
        """
        if ticket.hash != hash:
            raise ForbiddenError("Ticket is not valid for this content")
        if not await aiofiles.os.path.isdir(self._hash_dir(hash)):
            raise PreconditionFailedError(f"No upload announced for {hash}")
        if chunks is None:
            raise BadRequestError("Upload has no content")

        staged, hashes = await self._stage(chunks)
        try:
            if hashes.hash != hash:
                raise BadRequestError(f"Uploaded content does not match {hash}")
            if ticket.challenge is None or hashes.challenge != ticket.challenge:
                logger.warning(f"Challenge mismatch on upload of {hash}")
                raise ForbiddenError("Challenge mismatch")
            async with self.locks.hold(hash):
                if not await aiofiles.os.path.isdir(self._hash_dir(hash)):
                    raise PreconditionFailedError(f"Upload of {hash} was cancelled")
                await self._commit(staged, hash, hashes.challenge)
        finally:
            await _remove(staged)
        logger.info(f"Upload of {hash} finalized ({hashes.size} bytes)")
        await self.emit(BINARY_CREATE, owner=None, attribute=None, hash=hash)


async def _touch(path: str) -> None:
    async with aiofiles.open(path, "a"):
        pass


async def _remove(path: str) -> None:
    with contextlib.suppress(FileNotFoundError):
        await aiofiles.os.remove(path)


async def _read_chunks(path: str) -> AsyncIterator[bytes]:
    try:
        async with aiofiles.open(path, "rb") as f:
            while chunk := await f.read(CHUNK_SIZE):
                yield chunk
    except OSError as e:
        raise IOFailureError(f"Cannot read {path}: {e}") from e
