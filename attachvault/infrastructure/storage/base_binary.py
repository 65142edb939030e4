"""
Adapter base: Binary storage.

Everything that does not depend on where the bytes live: attribute mapping,
binding of descriptors to owner records, usage release, tickets, events.
Concrete backends implement the content primitives (write, open, usage
markers, cleanup) and the upload/download transfer endpoints.

Mutations run in two phases: content and usage marker first, owner record
second. A failure in the second phase leaves a usage marker without a live
binding; find_dangling_usages() reports those.
"""

import contextlib
import logging
import os
from abc import abstractmethod
from collections import defaultdict
from collections.abc import AsyncIterator, Awaitable, Callable

import aiofiles
import aiofiles.os

from attachvault.core.entities.attachment import (
    AttachmentMutation,
    BinaryAttribute,
    attachment_view,
    mutation_hash,
    references_hash,
    released_hash,
)
from attachvault.core.entities.binary_file import BinaryFile, ContentHasher, is_valid_digest
from attachvault.core.entities.context import RequestContext
from attachvault.core.entities.file_descriptor import FileDescriptor, OwnerRef, check_metadata_size
from attachvault.core.entities.upload_ticket import TicketPurpose, UploadTarget, UploadTicket
from attachvault.core.errors import (
    BadRequestError,
    BinaryError,
    BinaryNotFoundError,
    ForbiddenError,
    IOFailureError,
    UnmanagedMappingError,
)
from attachvault.core.interfaces.binary_service import BinaryMapping, IBinaryService
from attachvault.core.interfaces.model_store import IModelStore
from attachvault.core.interfaces.token_service import ITokenService
from attachvault.infrastructure.storage.hash_locks import HashLocks
from attachvault.infrastructure.storage.redirect import DownloadRedirector

logger = logging.getLogger(__name__)

EventListener = Callable[[str, dict], Awaitable[None]]

BINARY_CREATE = "Binary.Create"
BINARY_UPDATE = "Binary.Update"
BINARY_DELETE = "Binary.Delete"
BINARY_GET = "Binary.Get"
BINARY_RESERVE = "Binary.Reserve"


class BaseBinary(IBinaryService):
    """Shared behaviour of the binary backends."""

    def __init__(
        self,
        name: str,
        model_store: IModelStore,
        tokens: ITokenService,
        binary_map: dict[str, list[str]] | None = None,
        hasher: ContentHasher | None = None,
        ticket_ttl_seconds: int = 60,
        download_ttl_seconds: int = 300,
        metadata_max_bytes: int = 4096,
    ):
        self.name = name
        self.model_store = model_store
        self.tokens = tokens
        self.binary_map = {
            model.lower(): list(attributes)
            for model, attributes in (binary_map if binary_map is not None else {"*": ["*"]}).items()
        }
        self.hasher = hasher or ContentHasher()
        self.ticket_ttl_seconds = ticket_ttl_seconds
        self.metadata_max_bytes = metadata_max_bytes
        self.locks = HashLocks()
        self.redirector = DownloadRedirector(self._sign_download_url, download_ttl_seconds)
        self._listeners: dict[str, list[EventListener]] = defaultdict(list)

    # ── Mapping ──

    def handle_binary(self, model_type: str, attribute: str) -> BinaryMapping:
        model_type = model_type.lower()
        best = BinaryMapping.UNMANAGED
        for mapped_model, attributes in self.binary_map.items():
            for mapped_attribute in attributes:
                score = self._score(model_type, attribute, mapped_model, mapped_attribute)
                if score == BinaryMapping.EXPLICIT:
                    return score
                best = max(best, score)
        return best

    @staticmethod
    def _score(model_type: str, attribute: str, mapped_model: str, mapped_attribute: str) -> BinaryMapping:
        same_model = mapped_model == model_type
        same_attribute = mapped_attribute == attribute
        any_model = mapped_model == "*"
        any_attribute = mapped_attribute == "*"

        if same_model and same_attribute:
            return BinaryMapping.EXPLICIT
        if (same_model and any_attribute) or (any_model and same_attribute):
            return BinaryMapping.WILDCARD_MODEL
        if any_model and any_attribute:
            return BinaryMapping.DEFAULT_WILDCARD
        return BinaryMapping.UNMANAGED

    def check_map(self, model_type: str, attribute: str) -> None:
        if self.handle_binary(model_type, attribute) == BinaryMapping.UNMANAGED:
            raise UnmanagedMappingError(model_type, attribute)

    # ── Events ──

    def on(self, event: str, listener: EventListener) -> None:
        self._listeners[event].append(listener)

    async def emit(self, event: str, **payload) -> None:
        for listener in self._listeners.get(event, []):
            try:
                await listener(event, payload)
            except Exception as e:
                logger.warning(f"Listener for {event} failed: {e}")

    # ── Store / update / delete ──

    async def store(self, owner: OwnerRef, attribute: str, file: BinaryFile, metadata: dict | None = None) -> dict:
        self.check_map(owner.model_type, attribute)
        if metadata is not None:
            file.descriptor = file.descriptor.with_metadata(metadata)
        file.descriptor.check_metadata(self.metadata_max_bytes)
        view = await self._owner_view(owner, attribute)

        descriptor = await file.get_hashes(self.hasher)
        mutation = view.add(descriptor)
        async with self.locks.hold(descriptor.hash):
            await self._store_content(file, descriptor, owner)
            record = await self._bind(owner, mutation)
        return await self.upload_success(owner, mutation, record)

    async def update(self, owner: OwnerRef, attribute: str, index: int, file: BinaryFile,
                     metadata: dict | None = None) -> dict:
        self.check_map(owner.model_type, attribute)
        if metadata is not None:
            file.descriptor = file.descriptor.with_metadata(metadata)
        file.descriptor.check_metadata(self.metadata_max_bytes)
        view = await self._owner_view(owner, attribute)
        current = view.at(index)

        descriptor = await file.get_hashes(self.hasher)
        mutation = view.replace(index, descriptor, current.hash)
        async with self.locks.hold(descriptor.hash):
            await self._store_content(file, descriptor, owner)
            record = await self._bind(owner, mutation)
        return await self.upload_success(owner, mutation, record, event=BINARY_UPDATE)

    async def update_metadata(self, owner: OwnerRef, attribute: str, index: int, expected_hash: str,
                              metadata: dict) -> dict:
        self.check_map(owner.model_type, attribute)
        check_metadata_size(metadata, self.metadata_max_bytes)
        view = await self._owner_view(owner, attribute)
        current = view.at(index)

        record = await self.model_store.apply(owner, view.replace(index, current.with_metadata(metadata), expected_hash))
        await self.emit(BINARY_UPDATE, owner=owner, attribute=attribute, hash=current.hash)
        return record

    async def delete(self, owner: OwnerRef, attribute: str, index: int = 0, expected_hash: str | None = None) -> dict:
        self.check_map(owner.model_type, attribute)
        view = await self._owner_view(owner, attribute)
        return await self.delete_success(owner, view.delete(index, expected_hash))

    async def _bind(self, owner: OwnerRef, mutation: AttachmentMutation) -> dict:
        """
        Second phase of an upload: bind the stored content on the owner record.

        Runs under the lock of the bound hash, so a concurrent release of that
        hash sees either the new binding or no usage marker at all.
        """
        try:
            return await self.model_store.apply(owner, mutation)
        except Exception as e:
            logger.warning(
                f"Binding {mutation_hash(mutation)} on {owner.marker}.{mutation.attribute} failed, "
                f"usage left unbound: {e}"
            )
            raise

    async def upload_success(self, owner: OwnerRef, mutation: AttachmentMutation, record: dict,
                             event: str = BINARY_CREATE) -> dict:
        """After binding: release the replaced content and notify listeners."""
        released = released_hash(mutation)
        if released:
            await self._release_usage(released, owner)
        await self.emit(event, owner=owner, attribute=mutation.attribute, hash=mutation_hash(mutation))
        return record

    async def delete_success(self, owner: OwnerRef, mutation: AttachmentMutation) -> dict:
        """Unbind first, then release the usage of the removed hash."""
        record = await self.model_store.apply(owner, mutation)
        await self._release_usage(mutation.expected_hash, owner)
        await self.emit(BINARY_DELETE, owner=owner, attribute=mutation.attribute, hash=mutation.expected_hash)
        return record

    async def cascade_delete(self, descriptor: FileDescriptor, owner: OwnerRef) -> None:
        if not descriptor.hash:
            return
        try:
            async with self.locks.hold(descriptor.hash):
                remaining = await self._remove_usage(descriptor.hash, owner)
                if remaining == 0:
                    await self._clean_hash(descriptor.hash)
            await self.emit(BINARY_DELETE, owner=owner, attribute=None, hash=descriptor.hash)
        except Exception as e:
            logger.warning(f"Cascade delete of {descriptor.hash} for {owner.marker} failed: {e}")

    async def _store_content(self, file: BinaryFile, descriptor: FileDescriptor, owner: OwnerRef) -> None:
        """First phase: content (unless already verified) and usage marker. Caller holds the hash lock."""
        if await self.challenge_verified(descriptor.hash, descriptor.challenge):
            logger.debug(f"Content {descriptor.hash} already stored, adding usage only")
        else:
            await self._write_content(file, descriptor)
        await self._add_usage(descriptor.hash, owner)

    async def _release_usage(self, hash: str, owner: OwnerRef) -> None:
        """Drop the owner's marker unless the owner still references the hash elsewhere."""
        async with self.locks.hold(hash):
            record = await self.model_store.get(owner) or {}
            if references_hash(record, hash):
                logger.debug(f"{owner.marker} still references {hash}, keeping usage")
                return
            remaining = await self._remove_usage(hash, owner)
            if remaining == 0:
                await self._clean_hash(hash)
                logger.info(f"Removed content {hash}, no usage left")

    async def _owner_view(self, owner: OwnerRef, attribute: str) -> BinaryAttribute:
        record = await self.model_store.get(owner)
        if record is None:
            raise BinaryNotFoundError(f"No {owner.model_type} record {owner.uid}")
        return attachment_view(record, attribute, self.model_store.cardinality(owner.model_type, attribute))

    # ── Read ──

    async def get(self, descriptor: FileDescriptor) -> AsyncIterator[bytes]:
        await self._check_readable(descriptor)
        stream = await self._open(descriptor.hash)
        await self.emit(BINARY_GET, hash=descriptor.hash)
        return stream

    async def get_redirect_url(self, context: RequestContext, descriptor: FileDescriptor) -> str:
        await self._check_readable(descriptor)
        await self.emit(BINARY_GET, hash=descriptor.hash)
        return await self.redirector.location(context, descriptor)

    async def download_to(self, descriptor: FileDescriptor, path: str | os.PathLike) -> None:
        """Write the content to a local file; a failed copy leaves no file behind."""
        stream = await self.get(descriptor)
        try:
            async with aiofiles.open(path, "wb") as f:
                async for chunk in stream:
                    await f.write(chunk)
        except Exception as e:
            with contextlib.suppress(FileNotFoundError):
                await aiofiles.os.remove(path)
            if isinstance(e, BinaryError):
                raise
            raise IOFailureError(f"Download of {descriptor.hash} failed: {e}") from e

    async def _check_readable(self, descriptor: FileDescriptor) -> None:
        if not descriptor.hash or not await self.challenge_verified(descriptor.hash, descriptor.challenge):
            raise BinaryNotFoundError(f"No content for {descriptor.hash}")

    # ── Challenge protocol ──

    async def put_redirect_url(self, context: RequestContext, owner: OwnerRef, attribute: str,
                               descriptor: FileDescriptor) -> UploadTarget | None:
        self.check_map(owner.model_type, attribute)
        if not (is_valid_digest(descriptor.hash) and is_valid_digest(descriptor.challenge)):
            raise BadRequestError("Announce requires a hex md5 hash and challenge")
        descriptor.check_metadata(self.metadata_max_bytes)
        view = await self._owner_view(owner, attribute)
        bound = any(item.hash == descriptor.hash for item in view.items())

        mutation = view.add(descriptor)
        async with self.locks.hold(descriptor.hash):
            verified = await self.challenge_verified(descriptor.hash, descriptor.challenge)
            if not bound:
                await self._add_usage(descriptor.hash, owner)
                record = await self._bind(owner, mutation)
        if not bound:
            # Content still to come is only a reservation; Binary.Create follows on finalize
            await self.upload_success(owner, mutation, record, event=BINARY_CREATE if verified else BINARY_RESERVE)

        if verified:
            logger.info(f"Content {descriptor.hash} already known, no upload needed for {owner.marker}")
            return None
        return await self._upload_target(context, descriptor)

    def sign_ticket(self, descriptor: FileDescriptor, purpose: TicketPurpose = TicketPurpose.UPLOAD,
                    method: str = "PUT", ttl_seconds: int | None = None) -> str:
        ticket = UploadTicket(hash=descriptor.hash, challenge=descriptor.challenge, method=method, purpose=purpose)
        ttl = ttl_seconds if ttl_seconds is not None else self.ticket_ttl_seconds
        return self.tokens.sign(ticket.to_payload(), ttl)

    def read_ticket(self, token: str, hash: str, purpose: TicketPurpose = TicketPurpose.UPLOAD) -> UploadTicket:
        """
        Verify a signed ticket for one hash and purpose.

        Raises:
            ForbiddenError: bad signature, expired, other purpose or other hash.
        """
        claims = self.tokens.verify(token)
        try:
            ticket = UploadTicket.from_payload(claims)
        except ValueError as e:
            raise ForbiddenError("Invalid ticket") from e
        if ticket.purpose != purpose:
            raise ForbiddenError(f"Ticket is not valid for {purpose.value}")
        if ticket.hash != hash:
            raise ForbiddenError("Ticket is not valid for this content")
        return ticket

    async def get_ticketed(self, hash: str, token: str) -> AsyncIterator[bytes]:
        """Open content for a signed download ticket (raw download endpoint)."""
        ticket = self.read_ticket(token, hash, TicketPurpose.DOWNLOAD)
        return await self.get(FileDescriptor(hash=hash, challenge=ticket.challenge))

    # ── Usage inspection ──

    async def find_dangling_usages(self, hash: str) -> list[str]:
        """Usage markers whose owner no longer references the hash."""
        dangling = []
        for marker in await self.list_usages(hash):
            model_type, _, uid = marker.rpartition("_")
            record = await self.model_store.get(OwnerRef(model_type, uid))
            if record is None or not references_hash(record, hash):
                dangling.append(marker)
        return dangling

    # ── Backend primitives ──

    @abstractmethod
    async def _write_content(self, file: BinaryFile, descriptor: FileDescriptor) -> None:
        """Persist bytes and challenge marker; existing content is not rewritten."""
        ...

    @abstractmethod
    async def _add_usage(self, hash: str, owner: OwnerRef) -> None:
        ...

    @abstractmethod
    async def _remove_usage(self, hash: str, owner: OwnerRef) -> int:
        """Remove the owner's marker, returning the markers left."""
        ...

    @abstractmethod
    async def _clean_hash(self, hash: str) -> None:
        """Remove content, challenge and markers of a hash."""
        ...

    @abstractmethod
    async def _open(self, hash: str) -> AsyncIterator[bytes]:
        ...

    @abstractmethod
    async def _upload_target(self, context: RequestContext, descriptor: FileDescriptor) -> UploadTarget:
        ...

    @abstractmethod
    async def _sign_download_url(self, context: RequestContext, descriptor: FileDescriptor, ttl_seconds: int) -> str:
        ...

    @abstractmethod
    async def clean_data(self) -> None:
        """Remove every stored hash. Test and maintenance helper."""
        ...
