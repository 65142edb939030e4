"""
Entity: File Descriptor

Describes a file to store or already stored. This is the exact value
persisted on the owning model's attribute.
"""

import json
from dataclasses import dataclass, field, replace

from attachvault.core.errors import BadRequestError

DEFAULT_MIMETYPE = "application/octet-stream"


@dataclass(frozen=True)
class OwnerRef:
    """A model instance that can hold attachments."""
    model_type: str
    uid: str

    @property
    def marker(self) -> str:
        """Name of the usage marker recorded for this owner."""
        return f"{self.model_type}_{self.uid}"


@dataclass(frozen=True)
class FileDescriptor:
    """Name, size, type and content identity of a file."""
    size: int = 0
    name: str = ""
    mimetype: str = DEFAULT_MIMETYPE
    metadata: dict = field(default_factory=dict)
    hash: str | None = None
    challenge: str | None = None

    @property
    def is_hashed(self) -> bool:
        return self.hash is not None and self.challenge is not None

    def with_hashes(self, hash: str, challenge: str, size: int | None = None) -> "FileDescriptor":
        """Return a copy carrying the computed hashes; they cannot change once set."""
        if self.hash is not None and self.hash != hash:
            raise BadRequestError(f"Descriptor hash {self.hash} cannot become {hash}")
        if self.challenge is not None and self.challenge != challenge:
            raise BadRequestError("Descriptor challenge cannot change once computed")
        return replace(self, hash=hash, challenge=challenge, size=self.size if size is None else size)

    def with_metadata(self, metadata: dict) -> "FileDescriptor":
        return replace(self, metadata=dict(metadata))

    def check_metadata(self, max_bytes: int) -> None:
        check_metadata_size(self.metadata, max_bytes)

    def to_dict(self) -> dict:
        return {
            "hash": self.hash,
            "challenge": self.challenge,
            "size": self.size,
            "name": self.name,
            "mimetype": self.mimetype,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FileDescriptor":
        """Build a descriptor from its stored form, rejecting malformed input."""
        if not isinstance(data, dict):
            raise BadRequestError("File descriptor must be an object")
        size = data.get("size", 0)
        metadata = data.get("metadata") or {}
        if isinstance(size, bool) or not isinstance(size, int) or size < 0:
            raise BadRequestError("File size must be a positive integer")
        if not isinstance(metadata, dict):
            raise BadRequestError("File metadata must be an object")
        return cls(
            size=size,
            name=str(data.get("name") or ""),
            mimetype=str(data.get("mimetype") or DEFAULT_MIMETYPE),
            metadata=metadata,
            hash=data.get("hash"),
            challenge=data.get("challenge"),
        )


def check_metadata_size(metadata: dict, max_bytes: int) -> None:
    """Reject metadata whose JSON encoding exceeds max_bytes."""
    try:
        encoded = json.dumps(metadata, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise BadRequestError(f"Metadata is not serializable: {e}") from e
    if len(encoded) > max_bytes:
        raise BadRequestError(f"Metadata too big: {len(encoded)} bytes (max {max_bytes})")
