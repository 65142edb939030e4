"""
Pydantic schemas — request and response models of the API.
"""

from pydantic import BaseModel, Field

from attachvault.core.entities.file_descriptor import DEFAULT_MIMETYPE, FileDescriptor


class AnnounceRequest(BaseModel):
    """Hash and challenge computed by the client, plus what to record."""
    hash: str
    challenge: str
    size: int = Field(default=0, ge=0)
    name: str = ""
    mimetype: str = DEFAULT_MIMETYPE
    metadata: dict = Field(default_factory=dict)

    def to_descriptor(self) -> FileDescriptor:
        return FileDescriptor(
            size=self.size,
            name=self.name,
            mimetype=self.mimetype,
            metadata=self.metadata,
            hash=self.hash,
            challenge=self.challenge,
        )


class ChallengeResponse(BaseModel):
    done: bool
    md5: str
    url: str | None = None
    method: str | None = None
    finalize_url: str | None = None


class RedirectInfoResponse(BaseModel):
    location: str = Field(serialization_alias="Location")


class HealthResponse(BaseModel):
    status: str
    version: str
    binary_backend: str
    database: str
