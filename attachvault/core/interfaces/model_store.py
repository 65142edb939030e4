"""
Contract: Model Store

The persistence layer of the models that own attachments. The binary
services only read owner records, apply attachment mutations and listen
for owner deletion.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable

from attachvault.core.entities.attachment import AttachmentMutation, Cardinality
from attachvault.core.entities.file_descriptor import OwnerRef

logger = logging.getLogger(__name__)

DeleteListener = Callable[[OwnerRef, dict], Awaitable[None]]


class IModelStore(ABC):
    """
    Port: Model Store

    Records are plain dicts keyed by attribute name; attachments are stored
    as descriptor dicts (single) or lists of them (collection).
    """

    def __init__(self):
        self._delete_listeners: list[DeleteListener] = []

    @abstractmethod
    async def get(self, owner: OwnerRef) -> dict | None:
        """Return the owner record or None."""
        ...

    @abstractmethod
    async def exists(self, owner: OwnerRef) -> bool:
        ...

    @abstractmethod
    async def save(self, model_type: str, data: dict) -> dict:
        """Create a record; returns it with its generated "uuid"."""
        ...

    @abstractmethod
    async def apply(self, owner: OwnerRef, mutation: AttachmentMutation) -> dict:
        """
        Apply an attachment mutation to the owner record.

        Raises:
            BinaryNotFoundError: owner or index missing.
            PreconditionFailedError: the item no longer has the expected hash.

        Returns:
            The updated record.
        """
        ...

    @abstractmethod
    async def _delete(self, owner: OwnerRef) -> dict | None:
        """Remove the record, returning what was deleted."""
        ...

    @abstractmethod
    def cardinality(self, model_type: str, attribute: str) -> Cardinality:
        """Declared cardinality of an attribute."""
        ...

    def on_delete(self, listener: DeleteListener) -> None:
        """Subscribe to owner deletions."""
        self._delete_listeners.append(listener)

    async def delete(self, owner: OwnerRef) -> None:
        """Delete the record then notify listeners with its last content."""
        record = await self._delete(owner)
        if record is None:
            return
        for listener in self._delete_listeners:
            try:
                await listener(owner, record)
            except Exception as e:
                logger.warning(f"Delete listener failed for {owner.marker}: {e}")
