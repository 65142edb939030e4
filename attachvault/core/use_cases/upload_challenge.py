"""
Use Case: Upload Challenge

Two-step upload without sending bytes first:

1. announce: the client sends hash + challenge of its file. Known and
   verified content is bound at once ("done"); otherwise the attachment is
   bound, a usage reserved and a signed ticket returned.
2. finalize: the bytes are received (or read back from object storage),
   hashed again and compared with the ticket before they become content.

The challenge proves the client has the bytes; without it anyone knowing a
hash could attach somebody else's file.
"""

import base64
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass

from attachvault.core.entities.context import RequestContext
from attachvault.core.entities.file_descriptor import FileDescriptor, OwnerRef
from attachvault.core.entities.upload_ticket import TicketPurpose
from attachvault.core.interfaces.authorizer import BinaryAction, IAuthorizer
from attachvault.core.interfaces.binary_service import IBinaryService
from attachvault.core.interfaces.model_store import IModelStore
from attachvault.core.use_cases.binary_operations import load_authorized
from attachvault.core.use_cases.binary_registry import BinaryRegistry

logger = logging.getLogger(__name__)


@dataclass
class ChallengeResult:
    """Answer to an announce."""
    done: bool
    md5: str
    url: str | None = None
    method: str | None = None
    finalize_url: str | None = None

    def to_dict(self) -> dict:
        result = {"done": self.done, "md5": self.md5}
        if not self.done:
            result["url"] = self.url
            result["method"] = self.method
            if self.finalize_url:
                result["finalize_url"] = self.finalize_url
        return result


def content_md5(hash: str) -> str:
    """Base64 form of a hex md5, as expected in a Content-MD5 header."""
    return base64.b64encode(bytes.fromhex(hash)).decode("ascii")


class UploadChallengeUseCase:
    """
    Use Case: announce → (upload) → finalize.

    Authorization happens once, on announce, before any binding is
    created. Finalize only needs a valid ticket.
    """

    def __init__(self, registry: BinaryRegistry, store: IModelStore, authorizer: IAuthorizer):
        self._registry = registry
        self._store = store
        self._authorizer = authorizer

    async def announce(self, context: RequestContext, owner: OwnerRef, attribute: str,
                       descriptor: FileDescriptor) -> ChallengeResult:
        service = self._registry.resolve(owner.model_type, attribute)
        await load_authorized(self._store, self._authorizer, context, owner, BinaryAction.ATTACH)

        target = await service.put_redirect_url(context, owner, attribute, descriptor)
        md5 = content_md5(descriptor.hash)
        if target is None:
            return ChallengeResult(done=True, md5=md5)
        logger.info(f"Upload ticket issued for {descriptor.hash} on {owner.marker}.{attribute}")
        return ChallengeResult(done=False, md5=md5, url=target.url, method=target.method,
                               finalize_url=target.finalize_url)

    async def finalize(self, service: IBinaryService, hash: str, token: str,
                       chunks: AsyncIterator[bytes] | None = None) -> None:
        """
        Raises:
            ForbiddenError: bad ticket or challenge mismatch.
            PreconditionFailedError: nothing announced for the hash.
            BadRequestError: content does not match the hash.
        """
        ticket = service.read_ticket(token, hash, TicketPurpose.UPLOAD)
        await service.finalize_upload(hash, ticket, chunks)
