"""
API wiring: concrete adapters built from settings, and the caller context.
"""

import logging

from fastapi import Request

from attachvault.config.settings import Settings
from attachvault.core.entities.binary_file import ContentHasher
from attachvault.core.entities.context import RequestContext
from attachvault.core.use_cases.binary_operations import BinaryOperationsUseCase
from attachvault.core.use_cases.binary_registry import BinaryRegistry
from attachvault.core.use_cases.upload_challenge import UploadChallengeUseCase
from attachvault.infrastructure.db.repository import SqlModelStore
from attachvault.infrastructure.security.jwt_tokens import JoseTokenService
from attachvault.infrastructure.security.owner_policy import OwnerPolicy
from attachvault.infrastructure.storage.base_binary import BaseBinary
from attachvault.infrastructure.storage.local_binary import LocalFileBinary
from attachvault.infrastructure.storage.minio_binary import MinIOBinary

logger = logging.getLogger(__name__)


def build_binary_service(settings: Settings, store: SqlModelStore, tokens: JoseTokenService,
                         minio_client=None) -> BaseBinary:
    """Build the configured backend with its shared options."""
    common = dict(
        model_store=store,
        tokens=tokens,
        binary_map=settings.binary_map,
        hasher=ContentHasher(settings.binary_challenge_prefix.encode("utf-8")),
        ticket_ttl_seconds=settings.binary_ticket_ttl_seconds,
        download_ttl_seconds=settings.binary_download_ttl_seconds,
        metadata_max_bytes=settings.binary_metadata_max_bytes,
    )
    if settings.binary_backend == "minio":
        return MinIOBinary(
            endpoint=settings.minio_endpoint,
            access_key=settings.minio_access_key,
            secret_key=settings.minio_secret_key,
            bucket=settings.minio_bucket,
            secure=settings.minio_secure,
            client=minio_client,
            expose_url=settings.binary_expose_url,
            **common,
        )
    if settings.binary_backend == "local":
        return LocalFileBinary(settings.binary_folder, expose_url=settings.binary_expose_url, **common)
    raise ValueError(f"Unknown binary backend: {settings.binary_backend}")


class ServiceContainer:
    """Adapters and use cases of one application instance."""

    def __init__(self, settings: Settings, minio_client=None):
        self.settings = settings
        self.tokens = JoseTokenService(settings.secret_key, settings.token_algorithm, settings.session_ttl_seconds)
        self.store = SqlModelStore(settings.binary_single_attributes)
        self.authorizer = OwnerPolicy()
        self.binary = build_binary_service(settings, self.store, self.tokens, minio_client)
        self.registry = BinaryRegistry(self.store, [self.binary])
        self.operations = BinaryOperationsUseCase(self.registry, self.store, self.authorizer)
        self.challenge = UploadChallengeUseCase(self.registry, self.store, self.authorizer)


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


async def get_request_context(request: Request) -> RequestContext:
    """Caller identity from "Authorization: Bearer <session token>", anonymous without."""
    base_url = str(request.base_url)
    header = request.headers.get("Authorization", "")
    if not header.lower().startswith("bearer "):
        return RequestContext(base_url=base_url)
    user_id = get_container(request).tokens.session_user(header[7:].strip())
    return RequestContext(user_id=user_id, base_url=base_url)
