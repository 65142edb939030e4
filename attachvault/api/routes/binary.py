"""
Routes: /binary — attachment download, upload, challenge and raw transfer.

Raw transfer routes are keyed by hash and authorized by a signed ticket
only; they are registered first so that /upload/... never reaches the
owner routes.
"""

import json
import logging

from fastapi import APIRouter, Body, Depends, File, Form, Query, Request, UploadFile
from fastapi.responses import RedirectResponse, StreamingResponse

from attachvault.api.dependencies import ServiceContainer, get_container, get_request_context
from attachvault.api.schemas.responses import AnnounceRequest, ChallengeResponse, RedirectInfoResponse
from attachvault.api.uploads import UploadedBinaryFile
from attachvault.config.settings import Settings
from attachvault.core.entities.context import RequestContext
from attachvault.core.entities.file_descriptor import DEFAULT_MIMETYPE, OwnerRef
from attachvault.core.errors import BadRequestError

logger = logging.getLogger(__name__)


def _owner(model: str, uid: str) -> OwnerRef:
    return OwnerRef(model.lower(), uid)


def _parse_metadata(raw: str | None) -> dict | None:
    if raw is None or raw == "":
        return None
    try:
        metadata = json.loads(raw)
    except json.JSONDecodeError as e:
        raise BadRequestError(f"Metadata is not valid JSON: {e}") from e
    if not isinstance(metadata, dict):
        raise BadRequestError("Metadata must be a JSON object")
    return metadata


def _content_disposition(name: str) -> dict:
    return {"Content-Disposition": f'attachment; filename="{name}"'} if name else {}


def create_binary_router(settings: Settings) -> APIRouter:
    """Build the router; restricted route groups are left out."""
    router = APIRouter()

    # ── Raw transfers (ticket only) ──

    @router.put("/upload/data/{hash}", status_code=204)
    async def raw_upload(hash: str, request: Request, token: str = Query(...),
                         container: ServiceContainer = Depends(get_container)):
        """Target of an upload ticket: the bytes of an announced file."""
        await container.challenge.finalize(container.binary, hash, token, request.stream())

    @router.post("/upload/finalize/{hash}", status_code=204)
    async def finalize_upload(hash: str, token: str = Query(...),
                              container: ServiceContainer = Depends(get_container)):
        """Confirm an upload sent to object storage through a presigned URL."""
        await container.challenge.finalize(container.binary, hash, token)

    @router.get("/download/data/{hash}")
    async def raw_download(hash: str, token: str = Query(...),
                           container: ServiceContainer = Depends(get_container)):
        stream = await container.binary.get_ticketed(hash, token)
        return StreamingResponse(stream, media_type=DEFAULT_MIMETYPE)

    # ── Owner attachments ──

    if not settings.binary_restrict_get:

        @router.get("/{model}/{uid}/{attribute}/{index}")
        async def download(model: str, uid: str, attribute: str, index: int,
                           context: RequestContext = Depends(get_request_context),
                           container: ServiceContainer = Depends(get_container)):
            result = await container.operations.download(context, _owner(model, uid), attribute, index)
            if result.redirect_url:
                return RedirectResponse(result.redirect_url, status_code=302)
            return StreamingResponse(
                result.stream,
                media_type=result.descriptor.mimetype,
                headers=_content_disposition(result.descriptor.name),
            )

        @router.get("/{model}/{uid}/{attribute}/{index}/url", response_model=RedirectInfoResponse)
        async def download_url(model: str, uid: str, attribute: str, index: int,
                               context: RequestContext = Depends(get_request_context),
                               container: ServiceContainer = Depends(get_container)):
            info = await container.operations.redirect_info(context, _owner(model, uid), attribute, index)
            return RedirectInfoResponse(location=info["Location"])

    if not settings.binary_restrict_create:

        @router.post("/{model}/{uid}/{attribute}")
        async def upload(model: str, uid: str, attribute: str,
                         file: UploadFile = File(...),
                         metadata: str | None = Form(None),
                         context: RequestContext = Depends(get_request_context),
                         container: ServiceContainer = Depends(get_container)):
            """Direct multipart upload: bytes go through this service."""
            binary = UploadedBinaryFile(file, _parse_metadata(metadata))
            return await container.operations.upload(context, _owner(model, uid), attribute, binary)

        @router.put("/{model}/{uid}/{attribute}", response_model=ChallengeResponse,
                    response_model_exclude_none=True)
        async def announce(model: str, uid: str, attribute: str, body: AnnounceRequest,
                           context: RequestContext = Depends(get_request_context),
                           container: ServiceContainer = Depends(get_container)):
            """Challenge announce: bind by hash, upload only if the content is unknown."""
            result = await container.challenge.announce(context, _owner(model, uid), attribute, body.to_descriptor())
            return ChallengeResponse(**result.to_dict())

        @router.put("/{model}/{uid}/{attribute}/{index}/{hash}")
        async def update_metadata(model: str, uid: str, attribute: str, index: int, hash: str,
                                  metadata: dict = Body(...),
                                  context: RequestContext = Depends(get_request_context),
                                  container: ServiceContainer = Depends(get_container)):
            return await container.operations.update_metadata(
                context, _owner(model, uid), attribute, index, hash, metadata
            )

    if not settings.binary_restrict_delete:

        @router.delete("/{model}/{uid}/{attribute}/{index}/{hash}")
        async def delete(model: str, uid: str, attribute: str, index: int, hash: str,
                         context: RequestContext = Depends(get_request_context),
                         container: ServiceContainer = Depends(get_container)):
            return await container.operations.delete(context, _owner(model, uid), attribute, index, hash)

    return router
