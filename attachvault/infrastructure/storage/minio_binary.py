"""
Adapter: MinIO Binary Storage

Binary storage in an S3-compatible bucket (MinIO API). Clients transfer
bytes directly with presigned URLs; the service only verifies and promotes
uploaded objects.

Object layout mirrors the local backend:

    {hash}/data                       the bytes
    {hash}/_{challenge}               challenge verified
    {hash}/{modelType}_{uid}          usage marker
    _staging/{hash}/{challenge}       presigned upload target
"""

import asyncio
import io
import logging
import tempfile
from collections.abc import AsyncIterator
from datetime import timedelta

from minio import Minio
from minio.commonconfig import CopySource
from minio.error import S3Error

from attachvault.core.entities.binary_file import CHUNK_SIZE, BinaryFile, is_valid_digest
from attachvault.core.entities.context import RequestContext
from attachvault.core.entities.file_descriptor import FileDescriptor, OwnerRef
from attachvault.core.entities.upload_ticket import UploadTarget, UploadTicket
from attachvault.core.errors import (
    BadRequestError,
    BinaryNotFoundError,
    ForbiddenError,
    IOFailureError,
    PreconditionFailedError,
)
from attachvault.infrastructure.storage.base_binary import BINARY_CREATE, BaseBinary

logger = logging.getLogger(__name__)

STAGING_PREFIX = "_staging"
MISSING_CODES = ("NoSuchKey", "NoSuchObject", "NoSuchBucket")
SPOOL_MAX_MEMORY = 8 * 1024 * 1024


class MinIOBinary(BaseBinary):
    """
    Binary storage on MinIO.

    To move to AWS S3 nothing else changes, only the connection
    credentials.
    """

    redirect_downloads = True

    def __init__(
        self,
        endpoint: str = "localhost:9000",
        access_key: str = "",
        secret_key: str = "",
        bucket: str = "attachments",
        secure: bool = False,
        client: Minio | None = None,
        expose_url: str = "/binary",
        **kwargs,
    ):
        super().__init__("minio", **kwargs)
        self._bucket = bucket
        self._client = client or Minio(endpoint, access_key=access_key, secret_key=secret_key, secure=secure)
        self.expose_url = "/" + expose_url.strip("/")

    async def ensure_bucket(self) -> None:
        if not await asyncio.to_thread(self._client.bucket_exists, bucket_name=self._bucket):
            await asyncio.to_thread(self._client.make_bucket, bucket_name=self._bucket)
            logger.info(f"Created bucket {self._bucket}")

    # ── Object helpers ──

    @staticmethod
    def _key(hash: str, name: str) -> str:
        if not is_valid_digest(hash):
            raise BadRequestError(f"Invalid hash {hash!r}")
        return f"{hash}/{name}"

    @staticmethod
    def _staging_key(hash: str, challenge: str) -> str:
        return f"{STAGING_PREFIX}/{hash}/{challenge}"

    async def _exists(self, key: str) -> bool:
        try:
            await asyncio.to_thread(self._client.stat_object, bucket_name=self._bucket, object_name=key)
        except S3Error as e:
            if e.code in MISSING_CODES:
                return False
            raise IOFailureError(f"Cannot stat {key}: {e.code}") from e
        return True

    async def _put_empty(self, key: str) -> None:
        await asyncio.to_thread(
            self._client.put_object,
            bucket_name=self._bucket,
            object_name=key,
            data=io.BytesIO(b""),
            length=0,
        )

    async def _remove(self, key: str) -> None:
        await asyncio.to_thread(self._client.remove_object, bucket_name=self._bucket, object_name=key)

    async def _list(self, prefix: str) -> list[str]:
        objects = await asyncio.to_thread(
            lambda: list(self._client.list_objects(bucket_name=self._bucket, prefix=prefix, recursive=True))
        )
        return [obj.object_name for obj in objects]

    async def _read_object(self, key: str) -> AsyncIterator[bytes]:
        try:
            response = await asyncio.to_thread(self._client.get_object, bucket_name=self._bucket, object_name=key)
        except S3Error as e:
            raise IOFailureError(f"Cannot read {key}: {e.code}") from e
        try:
            while chunk := await asyncio.to_thread(response.read, CHUNK_SIZE):
                yield chunk
        finally:
            response.close()
            response.release_conn()

    # ── Content ──

    async def challenge_verified(self, hash: str, challenge: str | None) -> bool:
        if not is_valid_digest(hash) or not is_valid_digest(challenge):
            return False
        return await self._exists(self._key(hash, "data")) and await self._exists(self._key(hash, f"_{challenge}"))

    async def _write_content(self, file: BinaryFile, descriptor: FileDescriptor) -> None:
        data_key = self._key(descriptor.hash, "data")
        if not await self._exists(data_key):
            acc = self.hasher.accumulator()
            with tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_MEMORY) as spool:
                async for chunk in file.chunks():
                    acc.update(chunk)
                    await asyncio.to_thread(spool.write, chunk)
                hashes = acc.result()
                if hashes.hash != descriptor.hash:
                    raise IOFailureError(f"Content changed while storing {descriptor.hash}")
                spool.seek(0)
                await asyncio.to_thread(
                    self._client.put_object,
                    bucket_name=self._bucket,
                    object_name=data_key,
                    data=spool,
                    length=hashes.size,
                    content_type=descriptor.mimetype,
                )
        await self._put_empty(self._key(descriptor.hash, f"_{descriptor.challenge}"))

    async def _open(self, hash: str) -> AsyncIterator[bytes]:
        key = self._key(hash, "data")
        if not await self._exists(key):
            raise BinaryNotFoundError(f"No content for {hash}")
        return self._read_object(key)

    # ── Usage ──

    async def _add_usage(self, hash: str, owner: OwnerRef) -> None:
        await self._put_empty(self._key(hash, owner.marker))

    async def _remove_usage(self, hash: str, owner: OwnerRef) -> int:
        await self._remove(self._key(hash, owner.marker))
        return await self.get_usage_count(hash)

    async def list_usages(self, hash: str) -> list[str]:
        if not is_valid_digest(hash):
            return []
        prefix = self._key(hash, "")
        names = [key[len(prefix):] for key in await self._list(prefix)]
        return sorted(name for name in names if name and name != "data" and not name.startswith("_"))

    async def get_usage_count(self, hash: str) -> int:
        return len(await self.list_usages(hash))

    async def _clean_hash(self, hash: str) -> None:
        for key in await self._list(self._key(hash, "")):
            await self._remove(key)

    async def clean_data(self) -> None:
        for key in await self._list(""):
            await self._remove(key)

    # ── Transfers ──

    async def _upload_target(self, context: RequestContext, descriptor: FileDescriptor) -> UploadTarget:
        url = await asyncio.to_thread(
            self._client.presigned_put_object,
            bucket_name=self._bucket,
            object_name=self._staging_key(descriptor.hash, descriptor.challenge),
            expires=timedelta(seconds=self.ticket_ttl_seconds),
        )
        token = self.sign_ticket(descriptor)
        finalize_url = context.absolute_url(f"{self.expose_url}/upload/finalize/{descriptor.hash}?token={token}")
        return UploadTarget(url=url, method="PUT", finalize_url=finalize_url)

    async def _sign_download_url(self, context: RequestContext, descriptor: FileDescriptor, ttl_seconds: int) -> str:
        headers = {"response-content-type": descriptor.mimetype}
        if descriptor.name:
            headers["response-content-disposition"] = f'attachment; filename="{descriptor.name}"'
        return await asyncio.to_thread(
            self._client.presigned_get_object,
            bucket_name=self._bucket,
            object_name=self._key(descriptor.hash, "data"),
            expires=timedelta(seconds=ttl_seconds),
            response_headers=headers,
        )

    async def finalize_upload(self, hash: str, ticket: UploadTicket,
                              chunks: AsyncIterator[bytes] | None = None) -> None:
        """
        Verify the object uploaded to the presigned staging key and promote it.

        Raises:
            ForbiddenError: ticket for another hash, or challenge mismatch.
            PreconditionFailedError: nothing announced, or nothing uploaded.
            BadRequestError: the bytes do not hash to the announced hash.
        """
        if ticket.hash != hash:
            raise ForbiddenError("Ticket is not valid for this content")
        if ticket.challenge is None:
            raise ForbiddenError("Ticket carries no challenge")
        if not await self.list_usages(hash):
            raise PreconditionFailedError(f"No upload announced for {hash}")
        staging_key = self._staging_key(hash, ticket.challenge)
        if not await self._exists(staging_key):
            raise PreconditionFailedError(f"Nothing uploaded for {hash}")

        try:
            hashes = await self.hasher.digest_stream(self._read_object(staging_key))
            if hashes.hash != hash:
                raise BadRequestError(f"Uploaded content does not match {hash}")
            if hashes.challenge != ticket.challenge:
                logger.warning(f"Challenge mismatch on upload of {hash}")
                raise ForbiddenError("Challenge mismatch")
            async with self.locks.hold(hash):
                if not await self.list_usages(hash):
                    raise PreconditionFailedError(f"Upload of {hash} was cancelled")
                data_key = self._key(hash, "data")
                if not await self._exists(data_key):
                    await asyncio.to_thread(
                        self._client.copy_object,
                        bucket_name=self._bucket,
                        object_name=data_key,
                        source=CopySource(self._bucket, staging_key),
                    )
                await self._put_empty(self._key(hash, f"_{hashes.challenge}"))
        finally:
            await self._remove(staging_key)
        logger.info(f"Upload of {hash} finalized ({hashes.size} bytes)")
        await self.emit(BINARY_CREATE, owner=None, attribute=None, hash=hash)
