"""
Use Case: Attachment Binding

Server-side handle on one attribute of one owner. A single-valued
attribute offers upload / delete / is_empty; a collection additionally
addresses items by index, with removal confirmed by the expected hash.

No permission check happens here: this is the API for trusted code.
"""

import os
from collections.abc import AsyncIterator

from attachvault.core.entities.attachment import BinaryAttribute, Cardinality, attachment_view
from attachvault.core.entities.binary_file import BinaryFile
from attachvault.core.entities.file_descriptor import FileDescriptor, OwnerRef
from attachvault.core.errors import BinaryNotFoundError
from attachvault.core.interfaces.binary_service import IBinaryService
from attachvault.core.interfaces.model_store import IModelStore
from attachvault.core.use_cases.binary_registry import BinaryRegistry


class AttachmentBinding:

    def __init__(self, registry: BinaryRegistry, store: IModelStore, owner: OwnerRef, attribute: str):
        self.owner = owner
        self.attribute = attribute
        self._store = store
        self.service: IBinaryService = registry.resolve(owner.model_type, attribute)

    @property
    def cardinality(self) -> Cardinality:
        return self._store.cardinality(self.owner.model_type, self.attribute)

    async def view(self) -> BinaryAttribute:
        record = await self._store.get(self.owner)
        if record is None:
            raise BinaryNotFoundError(f"No {self.owner.model_type} record {self.owner.uid}")
        return attachment_view(record, self.attribute, self.cardinality)

    async def is_empty(self) -> bool:
        return (await self.view()).is_empty()

    async def items(self) -> list[FileDescriptor]:
        return (await self.view()).items()

    async def at(self, index: int = 0) -> FileDescriptor:
        return (await self.view()).at(index)

    async def get(self, index: int = 0) -> AsyncIterator[bytes]:
        return await self.service.get(await self.at(index))

    async def read(self, index: int = 0) -> bytes:
        return b"".join([chunk async for chunk in await self.get(index)])

    async def download_to(self, path: str | os.PathLike, index: int = 0) -> None:
        await self.service.download_to(await self.at(index), path)

    async def upload(self, file: BinaryFile, metadata: dict | None = None) -> dict:
        """Set the single value, or append to the collection."""
        return await self.service.store(self.owner, self.attribute, file, metadata)

    async def update(self, index: int, file: BinaryFile, metadata: dict | None = None) -> dict:
        return await self.service.update(self.owner, self.attribute, index, file, metadata)

    async def delete(self, index: int = 0, expected_hash: str | None = None) -> dict:
        return await self.service.delete(self.owner, self.attribute, index, expected_hash)

    async def remove(self, index: int, expected_hash: str) -> dict:
        return await self.delete(index, expected_hash)
