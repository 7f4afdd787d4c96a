"""Credential issuance and registry read endpoints.

  POST /api/credentials/issue              institution  201 + issuance receipt
  POST /api/credentials/batch-issue        institution  per-entry results/errors
  GET  /api/credentials/received/{wallet}  any user     on-chain hashes held by a wallet
  GET  /api/credentials/{id}               public       registry record + stored metadata
  POST /api/credentials/{id}/revoke        institution  on-chain revocation

Issuance succeeds even when the registry write fails: the receipt then
has ``anchored: false`` and ``blockchainError`` set, and the response
is still 201 because the VC exists and is retrievable from IPFS.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from app.api.dependencies import require_institution, require_user
from app.api.envelopes import (
    BatchResultOut,
    CredentialDetailOut,
    Envelope,
    IssuanceReceiptOut,
    OnChainCredentialOut,
    ReceivedCredentialsOut,
    RevocationOut,
    TxReceiptOut,
)
from app.api.ratelimit import BATCH_LIMIT, ISSUE_LIMIT, require_rate_limit
from app.core.metrics import COLLABORATOR_FAILURES
from app.gateways.blockchain import BlockchainGateway, normalize_address
from app.gateways.content_store import ContentStore, load_json
from app.models.principal import Principal
from app.services.issuance import IssuanceCoordinator, request_from_payload
from app.services.wiring import get_content_store, get_issuance, require_blockchain

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/credentials", tags=["credentials"])


class CredentialIssueIn(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    student_name: str | None = None
    student_email: str | None = None
    course_name: str | None = None
    course_description: str | None = None
    credential_type: str | None = None
    graduation_date: str | None = None
    grade: str | None = None
    expiration_date: str | None = None
    student_wallet: str | None = None
    evidence: list[dict[str, Any]] | None = None


class BatchIssueIn(BaseModel):
    students: list[Any] = []


class RevokeIn(BaseModel):
    reason: str = ""


@router.post(
    "/issue",
    response_model=Envelope[IssuanceReceiptOut],
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_rate_limit(ISSUE_LIMIT))],
)
async def issue_credential(
    body: CredentialIssueIn,
    principal: Annotated[Principal, Depends(require_institution)],
    issuance: Annotated[IssuanceCoordinator, Depends(get_issuance)],
) -> Envelope[IssuanceReceiptOut]:
    request = request_from_payload(body.model_dump(by_alias=True, exclude_none=True))
    receipt = await issuance.issue(request)
    logger.info(
        "Credential issued by user=%s anchored=%s",
        principal.user_id,
        receipt.anchored,
        extra={"credential_id": receipt.credential_id},
    )
    if receipt.anchored:
        message = "Credential issued successfully"
    elif receipt.anchor_pending:
        message = "Credential issued, anchor transaction pending confirmation"
    else:
        message = "Credential issued but not anchored on chain"
    return Envelope[IssuanceReceiptOut](
        data=IssuanceReceiptOut.model_validate(receipt), message=message
    )


@router.post(
    "/batch-issue",
    response_model=Envelope[BatchResultOut],
    dependencies=[Depends(require_rate_limit(BATCH_LIMIT))],
)
async def batch_issue_credentials(
    body: BatchIssueIn,
    principal: Annotated[Principal, Depends(require_institution)],
    issuance: Annotated[IssuanceCoordinator, Depends(get_issuance)],
) -> Envelope[BatchResultOut]:
    result = await issuance.batch_issue(body.students)
    logger.info(
        "Batch issuance by user=%s ok=%d failed=%d",
        principal.user_id,
        result.successful,
        result.failed,
    )
    return Envelope[BatchResultOut](
        data=BatchResultOut.model_validate(result),
        message=(
            f"Batch processing completed. {result.successful} successful, "
            f"{result.failed} failed."
        ),
    )


@router.get("/received/{wallet_address}", response_model=Envelope[ReceivedCredentialsOut])
async def received_credentials(
    wallet_address: str,
    _principal: Annotated[Principal, Depends(require_user)],
    chain: Annotated[BlockchainGateway, Depends(require_blockchain)],
) -> Envelope[ReceivedCredentialsOut]:
    address = normalize_address(wallet_address)
    hashes = await chain.get_subject_credentials(address)
    return Envelope[ReceivedCredentialsOut](
        data=ReceivedCredentialsOut(
            wallet_address=address, credential_hashes=hashes, total=len(hashes)
        )
    )


async def _stored_metadata(
    store: ContentStore, credential_id: str, cid: str
) -> tuple[dict[str, Any] | None, str | None]:
    """Best effort: the registry record is the answer, metadata is a bonus."""
    try:
        document = load_json(await store.get(cid))
    except Exception as exc:
        COLLABORATOR_FAILURES.labels(source="ipfs").inc()
        logger.warning(
            "Failed to fetch stored metadata: %s",
            exc,
            extra={"credential_id": credential_id, "cid": cid, "source": "ipfs"},
        )
        return None, str(exc) or exc.__class__.__name__
    if not isinstance(document, dict):
        return None, f"Content {cid} is not a JSON object"
    return document, None


@router.get("/{credential_id}", response_model=Envelope[CredentialDetailOut])
async def get_credential(
    credential_id: str,
    chain: Annotated[BlockchainGateway, Depends(require_blockchain)],
    store: Annotated[ContentStore, Depends(get_content_store)],
) -> Envelope[CredentialDetailOut]:
    record = await chain.get_credential(credential_id)
    validity = await chain.is_valid(credential_id)

    metadata: dict[str, Any] | None = None
    metadata_error: str | None = None
    if record.content_ref:
        metadata, metadata_error = await _stored_metadata(
            store, credential_id, record.content_ref
        )

    return Envelope[CredentialDetailOut](
        data=CredentialDetailOut(
            credential=OnChainCredentialOut.model_validate(record),
            is_valid=validity.is_valid,
            is_expired=validity.is_expired,
            is_revoked=validity.is_revoked,
            metadata=metadata,
            metadata_error=metadata_error,
        )
    )


@router.post(
    "/{credential_id}/revoke",
    response_model=Envelope[RevocationOut],
    dependencies=[Depends(require_rate_limit(ISSUE_LIMIT))],
)
async def revoke_credential(
    credential_id: str,
    body: RevokeIn,
    principal: Annotated[Principal, Depends(require_institution)],
    issuance: Annotated[IssuanceCoordinator, Depends(get_issuance)],
) -> Envelope[RevocationOut]:
    tx = await issuance.revoke(credential_id, body.reason)
    logger.info(
        "Credential revoked by user=%s",
        principal.user_id,
        extra={"credential_id": credential_id, "tx_hash": tx.transaction_hash},
    )
    return Envelope[RevocationOut](
        data=RevocationOut(
            credential_id=credential_id,
            reason=body.reason.strip(),
            transaction=TxReceiptOut.model_validate(tx),
        ),
        message="Credential revoked successfully",
    )
