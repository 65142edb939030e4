"""
Use Case: Binary Operations

Caller-facing attachment operations: every call resolves the backend,
loads the owner and checks the caller's permission before touching
anything.
"""

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass

from attachvault.core.entities.attachment import attachment_view
from attachvault.core.entities.binary_file import BinaryFile
from attachvault.core.entities.context import RequestContext
from attachvault.core.entities.file_descriptor import FileDescriptor, OwnerRef
from attachvault.core.errors import BinaryNotFoundError, ForbiddenError
from attachvault.core.interfaces.authorizer import BinaryAction, IAuthorizer
from attachvault.core.interfaces.binary_service import IBinaryService
from attachvault.core.interfaces.model_store import IModelStore
from attachvault.core.use_cases.binary_registry import BinaryRegistry

logger = logging.getLogger(__name__)


@dataclass
class Download:
    """Either a stream to serve or a URL to redirect to."""
    descriptor: FileDescriptor
    stream: AsyncIterator[bytes] | None = None
    redirect_url: str | None = None


async def load_authorized(
    store: IModelStore,
    authorizer: IAuthorizer,
    context: RequestContext,
    owner: OwnerRef,
    action: BinaryAction,
) -> dict:
    """
    Load the owner record and check the action on it.

    Raises:
        BinaryNotFoundError: owner does not exist.
        ForbiddenError: caller may not act.
    """
    record = await store.get(owner)
    if record is None:
        raise BinaryNotFoundError(f"No {owner.model_type} record {owner.uid}")
    if not await authorizer.can_act(context, owner, record, action):
        raise ForbiddenError(f"Not allowed to {action.value} on {owner.model_type}")
    return record


class BinaryOperationsUseCase:
    """
    Use Case: download / upload / delete / metadata on owner attachments.

    Dependency Injection: registry, store and authorizer come through
    the constructor.
    """

    def __init__(self, registry: BinaryRegistry, store: IModelStore, authorizer: IAuthorizer):
        self._registry = registry
        self._store = store
        self._authorizer = authorizer

    async def _prepare(self, context: RequestContext, owner: OwnerRef, attribute: str,
                       action: BinaryAction) -> tuple[IBinaryService, dict]:
        service = self._registry.resolve(owner.model_type, attribute)
        record = await load_authorized(self._store, self._authorizer, context, owner, action)
        return service, record

    def _descriptor(self, record: dict, owner: OwnerRef, attribute: str, index: int) -> FileDescriptor:
        view = attachment_view(record, attribute, self._store.cardinality(owner.model_type, attribute))
        return view.at(index)

    async def download(self, context: RequestContext, owner: OwnerRef, attribute: str, index: int) -> Download:
        """Stream from the service, or redirect when the backend serves bytes itself."""
        service, record = await self._prepare(context, owner, attribute, BinaryAction.GET)
        descriptor = self._descriptor(record, owner, attribute, index)
        if service.redirect_downloads:
            return Download(descriptor, redirect_url=await service.get_redirect_url(context, descriptor))
        return Download(descriptor, stream=await service.get(descriptor))

    async def redirect_info(self, context: RequestContext, owner: OwnerRef, attribute: str, index: int) -> dict:
        service, record = await self._prepare(context, owner, attribute, BinaryAction.GET)
        descriptor = self._descriptor(record, owner, attribute, index)
        return {"Location": await service.get_redirect_url(context, descriptor)}

    async def upload(self, context: RequestContext, owner: OwnerRef, attribute: str, file: BinaryFile,
                     metadata: dict | None = None) -> dict:
        service, _ = await self._prepare(context, owner, attribute, BinaryAction.ATTACH)
        return await service.store(owner, attribute, file, metadata)

    async def delete(self, context: RequestContext, owner: OwnerRef, attribute: str, index: int,
                     expected_hash: str) -> dict:
        service, _ = await self._prepare(context, owner, attribute, BinaryAction.DETACH)
        return await service.delete(owner, attribute, index, expected_hash)

    async def update_metadata(self, context: RequestContext, owner: OwnerRef, attribute: str, index: int,
                              expected_hash: str, metadata: dict) -> dict:
        service, _ = await self._prepare(context, owner, attribute, BinaryAction.UPDATE_METADATA)
        return await service.update_metadata(owner, attribute, index, expected_hash, metadata)
