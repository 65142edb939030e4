"""
Download redirects.

Both backends can hand out a temporary URL instead of streaming the bytes
themselves. The URL source differs (signed local endpoint, presigned object
URL); the validity period is shared here.
"""

from collections.abc import Awaitable, Callable

from attachvault.core.entities.context import RequestContext
from attachvault.core.entities.file_descriptor import FileDescriptor

UrlSigner = Callable[[RequestContext, FileDescriptor, int], Awaitable[str]]


class DownloadRedirector:
    """Builds redirect locations from a URL signer and a validity period."""

    def __init__(self, signer: UrlSigner, expires_seconds: int = 300):
        self._signer = signer
        self.expires_seconds = expires_seconds

    async def location(self, context: RequestContext, descriptor: FileDescriptor) -> str:
        return await self._signer(context, descriptor, self.expires_seconds)
