"""
Contract: Binary Service

Stores attachment content once per content hash and keeps track of every
owner referencing it. Implementations: local filesystem, MinIO/S3.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from enum import IntEnum

from attachvault.core.entities.binary_file import BinaryFile
from attachvault.core.entities.context import RequestContext
from attachvault.core.entities.file_descriptor import FileDescriptor, OwnerRef
from attachvault.core.entities.upload_ticket import TicketPurpose, UploadTarget, UploadTicket


class BinaryMapping(IntEnum):
    """How specifically a service is configured for a (model, attribute) pair."""
    UNMANAGED = -1
    DEFAULT_WILDCARD = 0
    WILDCARD_MODEL = 1
    EXPLICIT = 2


class IBinaryService(ABC):
    """
    Port: Binary Service

    Content bytes live under their hash; owners hold descriptors. Content
    is physically removed only when no owner references it anymore.
    """

    name: str
    redirect_downloads: bool = False

    @abstractmethod
    def handle_binary(self, model_type: str, attribute: str) -> BinaryMapping:
        """Resolve whether this service is responsible for the pair."""
        ...

    @abstractmethod
    async def store(self, owner: OwnerRef, attribute: str, file: BinaryFile, metadata: dict | None = None) -> dict:
        """
        Store content and bind it to the owner attribute.

        Raises:
            UnmanagedMappingError: attribute not configured.
            BadRequestError: metadata too big.

        Returns:
            Updated owner record.
        """
        ...

    @abstractmethod
    async def get(self, descriptor: FileDescriptor) -> AsyncIterator[bytes]:
        """
        Open the content of a descriptor.

        Raises:
            BinaryNotFoundError: no content for the hash.
        """
        ...

    @abstractmethod
    async def delete(self, owner: OwnerRef, attribute: str, index: int = 0, expected_hash: str | None = None) -> dict:
        """Unbind an attachment and release its usage."""
        ...

    @abstractmethod
    async def update(self, owner: OwnerRef, attribute: str, index: int, file: BinaryFile,
                     metadata: dict | None = None) -> dict:
        """Replace the content at an index."""
        ...

    @abstractmethod
    async def update_metadata(self, owner: OwnerRef, attribute: str, index: int, expected_hash: str,
                              metadata: dict) -> dict:
        """Replace the metadata of an attachment, content untouched."""
        ...

    @abstractmethod
    async def get_usage_count(self, hash: str) -> int:
        ...

    @abstractmethod
    async def list_usages(self, hash: str) -> list[str]:
        """Usage marker names recorded for a hash."""
        ...

    @abstractmethod
    async def cascade_delete(self, descriptor: FileDescriptor, owner: OwnerRef) -> None:
        """Release usage after the owner itself was deleted. Never raises."""
        ...

    @abstractmethod
    async def challenge_verified(self, hash: str, challenge: str | None) -> bool:
        """True if content exists and its challenge matches."""
        ...

    @abstractmethod
    async def put_redirect_url(self, context: RequestContext, owner: OwnerRef, attribute: str,
                               descriptor: FileDescriptor) -> UploadTarget | None:
        """Announce step: bind and return where to upload, or None when nothing to upload."""
        ...

    @abstractmethod
    async def finalize_upload(self, hash: str, ticket: UploadTicket,
                              chunks: AsyncIterator[bytes] | None = None) -> None:
        """Verify uploaded bytes against the ticket and make them valid content."""
        ...

    @abstractmethod
    def read_ticket(self, token: str, hash: str, purpose: TicketPurpose = TicketPurpose.UPLOAD) -> UploadTicket:
        """
        Verify a signed ticket for one hash and purpose.

        Raises:
            ForbiddenError: invalid, expired or issued for something else.
        """
        ...

    @abstractmethod
    async def get_ticketed(self, hash: str, token: str) -> AsyncIterator[bytes]:
        """Open content with a download ticket instead of owner access."""
        ...

    @abstractmethod
    async def download_to(self, descriptor: FileDescriptor, path: str) -> None:
        """Copy content to a local file; nothing is left behind on failure."""
        ...

    @abstractmethod
    async def get_redirect_url(self, context: RequestContext, descriptor: FileDescriptor) -> str:
        """Temporary URL to download the content directly."""
        ...
