"""
Contract: Token Service

Mints and verifies signed, expiring tokens (upload/download tickets and
session tokens).
"""

from abc import ABC, abstractmethod


class ITokenService(ABC):
    """Port: Token Service"""

    @abstractmethod
    def sign(self, payload: dict, ttl_seconds: int) -> str:
        """
        Sign a payload.

        Args:
            payload: Claims to embed.
            ttl_seconds: Validity of the token.

        Returns:
            Opaque token string.
        """
        ...

    @abstractmethod
    def verify(self, token: str) -> dict:
        """
        Verify a token.

        Raises:
            ForbiddenError: invalid signature or expired.

        Returns:
            The embedded claims.
        """
        ...
