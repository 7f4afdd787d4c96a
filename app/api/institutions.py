from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from app.api.dependencies import require_institution
from app.api.envelopes import Envelope, InstitutionOut, TxReceiptOut
from app.core.errors import ValidationError
from app.gateways.blockchain import BlockchainGateway
from app.gateways.identity import DidSigner
from app.models.principal import Principal
from app.services.wiring import get_issuer, require_blockchain

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/institutions", tags=["institutions"])


class InstitutionRegisterIn(BaseModel):
    name: str | None = None
    did: str | None = None


@router.get("/{address}", response_model=Envelope[InstitutionOut])
async def get_institution(
    address: str,
    chain: Annotated[BlockchainGateway, Depends(require_blockchain)],
) -> Envelope[InstitutionOut]:
    institution = await chain.get_institution(address)
    return Envelope[InstitutionOut](data=InstitutionOut.model_validate(institution))


@router.post(
    "/register",
    response_model=Envelope[TxReceiptOut],
    status_code=status.HTTP_201_CREATED,
)
async def register_institution(
    body: InstitutionRegisterIn,
    principal: Annotated[Principal, Depends(require_institution)],
    chain: Annotated[BlockchainGateway, Depends(require_blockchain)],
    issuer: Annotated[DidSigner, Depends(get_issuer)],
) -> Envelope[TxReceiptOut]:
    """Register the service's signing wallet as an institution.

    Name and DID default to the configured issuer identity.  The new
    registration is unverified until an admin verifies it.
    """
    name = (body.name or issuer.name).strip()
    did = (body.did or issuer.did).strip()
    if not name:
        raise ValidationError("Institution name is required")
    if not did.startswith("did:"):
        raise ValidationError(f"Invalid DID: {did!r}")

    tx = await chain.register_institution(name, did)
    logger.info(
        "Institution registered by user=%s address=%s",
        principal.user_id,
        chain.signer_address,
        extra={"tx_hash": tx.transaction_hash},
    )
    return Envelope[TxReceiptOut](
        data=TxReceiptOut.model_validate(tx),
        message="Institution registered; awaiting admin verification",
    )
