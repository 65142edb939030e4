"""
Entity: Upload Ticket

Signed, single-purpose, expiring capability for one content transfer.
The signed form is opaque to clients.
"""

from dataclasses import dataclass
from enum import Enum


class TicketPurpose(str, Enum):
    UPLOAD = "upload"
    DOWNLOAD = "download"
    SESSION = "session"


@dataclass(frozen=True)
class UploadTicket:
    """Capability to upload the content of one hash."""
    hash: str
    challenge: str | None = None
    method: str = "PUT"
    purpose: TicketPurpose = TicketPurpose.UPLOAD
    expires_at: int | None = None

    def to_payload(self) -> dict:
        return {
            "hash": self.hash,
            "challenge": self.challenge,
            "method": self.method,
            "purpose": self.purpose.value,
        }

    @classmethod
    def from_payload(cls, payload: dict) -> "UploadTicket":
        return cls(
            hash=payload.get("hash", ""),
            challenge=payload.get("challenge"),
            method=payload.get("method", "PUT"),
            purpose=TicketPurpose(payload.get("purpose", TicketPurpose.UPLOAD.value)),
            expires_at=payload.get("exp"),
        )


@dataclass(frozen=True)
class UploadTarget:
    """Where the client must send the bytes after an announce."""
    url: str
    method: str = "PUT"
    finalize_url: str | None = None
