from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.api.dependencies import require_role
from app.api.envelopes import Envelope, RegistryStatsOut, TxReceiptOut
from app.gateways.blockchain import BlockchainGateway, normalize_address
from app.models.principal import Principal
from app.services.wiring import require_blockchain

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])

Admin = Annotated[Principal, Depends(require_role("admin"))]
Chain = Annotated[BlockchainGateway, Depends(require_blockchain)]


class InstitutionVerifyIn(BaseModel):
    verified: bool = True


@router.post("/institutions/{address}/verify", response_model=Envelope[TxReceiptOut])
async def verify_institution(
    address: str,
    body: InstitutionVerifyIn,
    principal: Admin,
    chain: Chain,
) -> Envelope[TxReceiptOut]:
    address = normalize_address(address)
    tx = await chain.verify_institution(address, body.verified)
    logger.info(
        "Institution %s verified=%s by admin=%s",
        address,
        body.verified,
        principal.user_id,
        extra={"tx_hash": tx.transaction_hash},
    )
    return Envelope[TxReceiptOut](data=TxReceiptOut.model_validate(tx))


@router.post("/institutions/{address}/deactivate", response_model=Envelope[TxReceiptOut])
async def deactivate_institution(
    address: str,
    principal: Admin,
    chain: Chain,
) -> Envelope[TxReceiptOut]:
    address = normalize_address(address)
    tx = await chain.deactivate_institution(address)
    logger.info(
        "Institution %s deactivated by admin=%s",
        address,
        principal.user_id,
        extra={"tx_hash": tx.transaction_hash},
    )
    return Envelope[TxReceiptOut](data=TxReceiptOut.model_validate(tx))


@router.get("/stats", response_model=Envelope[RegistryStatsOut])
async def registry_stats(principal: Admin, chain: Chain) -> Envelope[RegistryStatsOut]:
    logger.info("Registry stats requested by admin=%s", principal.user_id)
    stats = await chain.get_stats()
    return Envelope[RegistryStatsOut](data=RegistryStatsOut.model_validate(stats))
