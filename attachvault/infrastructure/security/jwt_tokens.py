"""
Adapter: JWT Token Service (python-jose).

Signs upload/download tickets and session tokens with a shared secret.
"""

import logging
from datetime import datetime, timedelta, timezone

from jose import jwt, JWTError

from attachvault.core.entities.upload_ticket import TicketPurpose
from attachvault.core.errors import ForbiddenError
from attachvault.core.interfaces.token_service import ITokenService

logger = logging.getLogger(__name__)


class JoseTokenService(ITokenService):
    """HS256 (by default) JWT tokens with an "exp" claim."""

    def __init__(self, secret_key: str, algorithm: str = "HS256", session_ttl_seconds: int = 3600):
        self._secret = secret_key
        self._algorithm = algorithm
        self.session_ttl_seconds = session_ttl_seconds

    def sign(self, payload: dict, ttl_seconds: int) -> str:
        now = datetime.now(timezone.utc)
        claims = dict(payload)
        claims["iat"] = int(now.timestamp())
        claims["exp"] = int((now + timedelta(seconds=ttl_seconds)).timestamp())
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def verify(self, token: str) -> dict:
        if not token:
            raise ForbiddenError("Missing token")
        try:
            return jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except JWTError as e:
            logger.info(f"Rejected token: {e}")
            raise ForbiddenError("Invalid or expired token") from e

    def create_session_token(self, user_id: str, ttl_seconds: int | None = None) -> str:
        """Token identifying a caller, sent as "Authorization: Bearer <token>"."""
        return self.sign({"sub": user_id, "purpose": TicketPurpose.SESSION.value}, ttl_seconds or self.session_ttl_seconds)

    def session_user(self, token: str) -> str:
        """
        Resolve the user id of a session token.

        Raises:
            ForbiddenError: invalid token, or a ticket used as a session.
        """
        claims = self.verify(token)
        if claims.get("purpose") != TicketPurpose.SESSION.value or not claims.get("sub"):
            raise ForbiddenError("Not a session token")
        return str(claims["sub"])
