"""IPFS upload and retrieval endpoints.

  POST /api/ipfs/upload   multipart file, JSON object body, or text body
  GET  /api/ipfs/{cid}    sniffed content; ?format=raw streams the bytes back,
                          ?download=true adds Content-Disposition

All three upload shapes end in the same ``ContentStore.put(bytes,
content_type)`` call; the request's content type only decides how the
bytes are pulled out of the body.
"""

from __future__ import annotations

import json
import logging
from typing import Annotated, Any, Literal

from fastapi import APIRouter, Depends, Query, Request, Response
from starlette.datastructures import UploadFile

from app.api.dependencies import require_user
from app.api.envelopes import Envelope
from app.api.ratelimit import UPLOAD_LIMIT, require_rate_limit
from app.core.clock import utcnow
from app.core.errors import TooLargeError, ValidationError
from app.gateways.content_store import (
    ContentStore,
    detect_content_type,
    is_plausible_cid,
    load_json,
)
from app.models.principal import Principal
from app.services.wiring import get_content_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ipfs", tags=["ipfs"])

MAX_UPLOAD_BYTES = 10 * 1024 * 1024

ALLOWED_UPLOAD_TYPES = frozenset(
    {
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/webp",
        "application/pdf",
        "application/json",
        "text/plain",
        "application/octet-stream",
    }
)


def _check_size(size: int) -> None:
    if size > MAX_UPLOAD_BYTES:
        raise TooLargeError(
            f"Upload exceeds {MAX_UPLOAD_BYTES} bytes", limit=MAX_UPLOAD_BYTES
        )


async def _read_upload(request: Request) -> tuple[str, bytes, str, dict[str, Any]]:
    """Pull (upload type, bytes, content type, extra response fields) from the body."""
    declared = request.headers.get("content-length")
    if declared and declared.isdigit():
        _check_size(int(declared))

    media_type = request.headers.get("content-type", "").split(";")[0].strip().lower()

    if media_type == "multipart/form-data":
        form = await request.form()
        upload = form.get("file")
        if not isinstance(upload, UploadFile):
            raise ValidationError("Multipart uploads must carry a 'file' field")
        data = await upload.read()
        _check_size(len(data))
        mimetype = (upload.content_type or "application/octet-stream").lower()
        if mimetype not in ALLOWED_UPLOAD_TYPES:
            raise ValidationError("File type not allowed")
        extra: dict[str, Any] = {"fileName": upload.filename}
        if mimetype == "application/json":
            try:
                extra["content"] = load_json(data)
            except ValueError:
                raise ValidationError("Invalid JSON file format") from None
            return "json_file", data, mimetype, extra
        return "file", data, mimetype, extra

    data = await request.body()
    _check_size(len(data))

    if media_type == "application/json":
        try:
            payload = load_json(data)
        except ValueError:
            raise ValidationError("Invalid JSON body") from None
        if not isinstance(payload, dict) or not payload:
            raise ValidationError(
                "Invalid payload. Expected non-empty JSON object or string data."
            )
        return "json_payload", data, "application/json", {"content": payload}

    if media_type.startswith("text/"):
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError:
            raise ValidationError("Text uploads must be UTF-8") from None
        if not text:
            raise ValidationError(
                "Invalid payload. Expected non-empty JSON object or string data."
            )
        return "text_data", data, "text/plain", {"content": text}

    raise ValidationError(
        "No file or JSON payload provided. Send either a file via "
        "multipart/form-data or JSON data in request body."
    )


@router.post(
    "/upload",
    response_model=Envelope[dict[str, Any]],
    dependencies=[Depends(require_rate_limit(UPLOAD_LIMIT))],
)
async def upload(
    request: Request,
    principal: Annotated[Principal, Depends(require_user)],
    store: Annotated[ContentStore, Depends(get_content_store)],
) -> Envelope[dict[str, Any]]:
    upload_type, data, mimetype, extra = await _read_upload(request)
    stored = await store.put(data, mimetype, pin=True)
    logger.info(
        "Upload by user=%s type=%s size=%d",
        principal.user_id,
        upload_type,
        stored.size,
        extra={"cid": stored.cid},
    )
    return Envelope[dict[str, Any]](
        data={
            "type": upload_type,
            "cid": stored.cid,
            "url": stored.url,
            "size": stored.size,
            "mimetype": mimetype,
            "uploadedAt": utcnow().isoformat(),
            **extra,
        },
        message="Content uploaded to IPFS successfully",
    )


def _disposition(filename: str) -> dict[str, str]:
    return {"Content-Disposition": f'attachment; filename="{filename}"'}


@router.get("/{cid}", response_model=None)
async def retrieve(
    cid: str,
    store: Annotated[ContentStore, Depends(get_content_store)],
    output: Annotated[Literal["auto", "raw"], Query(alias="format")] = "auto",
    download: Annotated[bool, Query()] = False,
) -> Response | Envelope[dict[str, Any]]:
    if not is_plausible_cid(cid):
        raise ValidationError("Invalid CID format")

    data = await store.get(cid)
    content_type = detect_content_type(data)
    retrieved_at = utcnow().isoformat()

    if content_type == "application/json":
        parsed = load_json(data)
        if output == "raw" or download:
            return Response(
                content=json.dumps(parsed, indent=2),
                media_type="application/json",
                headers=_disposition(f"{cid}.json") if download else None,
            )
        return Envelope[dict[str, Any]](
            data={
                "cid": cid,
                "type": "json",
                "content": parsed,
                "size": len(data),
                "retrievedAt": retrieved_at,
            }
        )

    if output == "raw" or download:
        return Response(
            content=data,
            media_type=content_type,
            headers=_disposition(cid) if download else None,
        )

    is_text = content_type == "text/plain"
    return Envelope[dict[str, Any]](
        data={
            "cid": cid,
            "type": "text" if is_text else "binary",
            "contentType": content_type,
            "size": len(data),
            "content": data.decode("utf-8") if is_text else f"<Binary data: {len(data)} bytes>",
            "retrievedAt": retrieved_at,
        }
    )
