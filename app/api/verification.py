"""Public verification endpoints.

  GET  /api/verify/status            collaborator availability, 503 if any is down
  GET  /api/verify/{id}              verdict for an anchored credential id
  POST /api/verify/credential        {verifiableCredential}: proof + chain cross-check
  POST /api/verify/presentation      {verifiablePresentation}
  POST /api/verify/qr                {qrData}: the payload printed on a certificate

A bearer token is optional everywhere here.  When a valid one is sent,
the verifier's identity is attached to the verdict.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from app.api.dependencies import optional_user
from app.api.envelopes import (
    DocumentVerdictOut,
    Envelope,
    PresentationVerdictOut,
    VerdictOut,
)
from app.api.ratelimit import VERIFY_LIMIT, require_rate_limit
from app.core.clock import utcnow
from app.core.config import SETTINGS
from app.core.errors import ValidationError
from app.gateways.blockchain import BlockchainGateway
from app.gateways.content_store import ContentStore
from app.models.principal import Principal
from app.services.verification import VerificationOrchestrator
from app.services.wiring import get_blockchain, get_content_store, get_verifier

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/verify",
    tags=["verification"],
    dependencies=[Depends(require_rate_limit(VERIFY_LIMIT))],
)

Verifier = Annotated[VerificationOrchestrator, Depends(get_verifier)]
Requester = Annotated[Principal | None, Depends(optional_user)]


class _In(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CredentialVerifyIn(_In):
    verifiable_credential: Any = None


class PresentationVerifyIn(_In):
    verifiable_presentation: Any = None


class QrVerifyIn(_In):
    qr_data: Any = None


@router.get("/status")
async def verification_status(
    chain: Annotated[BlockchainGateway | None, Depends(get_blockchain)],
    store: Annotated[ContentStore, Depends(get_content_store)],
) -> JSONResponse:
    chain_status: dict[str, Any] = {
        "configured": chain is not None,
        "connected": False,
        "network": chain.network if chain is not None else SETTINGS.chain_network,
    }
    if chain is not None:
        chain_status["connected"] = await chain.ping()
    ipfs_connected = await store.ping()

    healthy = chain_status["connected"] and ipfs_connected
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "success": healthy,
            "healthy": healthy,
            "data": {
                "service": "CredVerse Verification Service",
                "timestamp": utcnow().isoformat(),
                "blockchain": chain_status,
                "ipfs": {"connected": ipfs_connected},
                "proofs": {"available": True},
            },
        },
    )


@router.get("/{credential_id}", response_model=Envelope[VerdictOut])
async def verify_by_id(
    credential_id: str,
    verifier: Verifier,
    requester: Requester,
    include_metadata: Annotated[bool, Query(alias="includeMetadata")] = True,
) -> Envelope[VerdictOut]:
    verdict = await verifier.verify(credential_id, include_metadata, requester)
    logger.info(
        "%s verification: %s",
        "Authenticated" if requester else "Public",
        "VALID" if verdict.overall_valid else "INVALID",
        extra={"credential_id": credential_id},
    )
    return Envelope[VerdictOut](data=VerdictOut.model_validate(verdict))


@router.post("/credential", response_model=Envelope[DocumentVerdictOut])
async def verify_credential_document(
    body: CredentialVerifyIn,
    verifier: Verifier,
    requester: Requester,
) -> Envelope[DocumentVerdictOut]:
    if not body.verifiable_credential:
        raise ValidationError("Verifiable credential is required")
    verdict = await verifier.verify_document(body.verifiable_credential, requester)
    return Envelope[DocumentVerdictOut](data=DocumentVerdictOut.model_validate(verdict))


@router.post("/presentation", response_model=Envelope[PresentationVerdictOut])
async def verify_presentation(
    body: PresentationVerifyIn,
    verifier: Verifier,
    requester: Requester,
) -> Envelope[PresentationVerdictOut]:
    if not body.verifiable_presentation:
        raise ValidationError("Verifiable presentation is required")
    verdict = await verifier.verify_presentation(body.verifiable_presentation, requester)
    return Envelope[PresentationVerdictOut](
        data=PresentationVerdictOut.model_validate(verdict)
    )


@router.post("/qr", response_model=Envelope[VerdictOut])
async def verify_qr(
    body: QrVerifyIn,
    verifier: Verifier,
    requester: Requester,
) -> Envelope[VerdictOut]:
    if not body.qr_data:
        raise ValidationError("QR code data is required")
    verdict = await verifier.verify_qr(body.qr_data, requester)
    return Envelope[VerdictOut](data=VerdictOut.model_validate(verdict))
