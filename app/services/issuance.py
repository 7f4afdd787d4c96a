"""Issuance Coordinator.

Strict order, each step feeding the next:

  1. validate the request                    (no side effects yet)
  2. resolve or create the subject DID       (idempotent by email)
  3. assemble the metadata document          (pure)
  4. sign the VC                             (pure)
  5. pin metadata, then metadata + VC        (content store)
  6. anchor {id, subject, CID, type, expiry} (blockchain, best effort)
  7. build the QR payload                    (pure)
  8. return the receipt

Steps 1-5 must succeed; a failure aborts with a typed error.  Bytes
already pinned at that point stay in the store unreferenced, which is
harmless in a content-addressed store.

Step 6 is the only optional step.  A rejected or unreachable registry
leaves the credential issued but unanchored: the receipt says
``blockchain=None`` and carries the reason, so nobody mistakes it for
an anchored credential with on-chain revocation authority.  A write
that was broadcast but not confirmed in time is a third state: the
receipt keeps the pending transaction (``anchorPending``) so the hash
can be followed up instead of re-anchoring.

Batch entries run concurrently; the registry gateway serializes the
signer's nonce, so parallel entries never collide on chain.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from datetime import UTC, date, datetime
from typing import Any
from uuid import uuid4

from web3 import Web3

from app.core.clock import Clock, to_unix, utcnow
from app.core.errors import CredentialServiceError, UnavailableError, ValidationError
from app.core.metrics import COLLABORATOR_FAILURES, ISSUANCES
from app.gateways.blockchain import CHAIN_NOT_CONFIGURED, BlockchainGateway
from app.gateways.content_store import ContentStore
from app.gateways.identity import DidSigner, IdentityResolver
from app.gateways.proofs import ProofService
from app.models.credential import TxReceipt
from app.models.issuance import (
    BatchEntryError,
    BatchEntryResult,
    BatchResult,
    ContentRefs,
    IssuanceReceipt,
    IssuanceRequest,
    QrPayload,
)
from app.services import metadata, qr

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("studentName", "studentEmail", "courseName", "credentialType")


def _parse_date(value: Any, field: str) -> date | None:
    if value in (None, ""):
        return None
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO date")
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        raise ValidationError(f"{field} must be an ISO date (got {value!r})") from None


def _parse_datetime(value: Any, field: str) -> datetime | None:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, str):
        try:
            moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(f"{field} must be an ISO timestamp (got {value!r})") from None
    else:
        raise ValidationError(f"{field} must be an ISO timestamp")
    return moment if moment.tzinfo else moment.replace(tzinfo=UTC)


def _text(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    return value.strip()


def request_from_payload(payload: Mapping[str, Any]) -> IssuanceRequest:
    """Translate a camelCase request body into an IssuanceRequest.

    Missing required fields are left empty; ``IssuanceCoordinator``
    rejects them in step 1 so single and batch issuance report them the
    same way.
    """
    if not isinstance(payload, Mapping):
        raise ValidationError("Each entry must be a JSON object")
    evidence = payload.get("evidence") or []
    if not isinstance(evidence, list):
        raise ValidationError("evidence must be a list")
    wallet = _text(payload, "studentWallet") or None
    return IssuanceRequest(
        subject_name=_text(payload, "studentName"),
        subject_email=_text(payload, "studentEmail"),
        credential_type=_text(payload, "credentialType"),
        course_name=_text(payload, "courseName"),
        course_description=_text(payload, "courseDescription"),
        graduation_date=_parse_date(payload.get("graduationDate"), "graduationDate"),
        grade=_text(payload, "grade") or None,
        expiration_date=_parse_datetime(payload.get("expirationDate"), "expirationDate"),
        subject_wallet=wallet,
        evidence=list(evidence),
    )


class IssuanceCoordinator:
    def __init__(
        self,
        blockchain: BlockchainGateway | None,
        content_store: ContentStore,
        proofs: ProofService,
        identities: IdentityResolver,
        *,
        issuer: DidSigner,
        public_base_url: str,
        clock: Clock = utcnow,
        max_workers: int = 4,
    ) -> None:
        self._blockchain = blockchain
        self._content_store = content_store
        self._proofs = proofs
        self._identities = identities
        self._issuer = issuer
        self._public_base_url = public_base_url
        self._clock = clock
        self._max_workers = max_workers

    def _validate(self, request: IssuanceRequest) -> None:
        values = {
            "studentName": request.subject_name,
            "studentEmail": request.subject_email,
            "courseName": request.course_name,
            "credentialType": request.credential_type,
        }
        missing = [name for name in REQUIRED_FIELDS if not values[name].strip()]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        if "@" not in request.subject_email:
            raise ValidationError("studentEmail must be an email address")
        if request.subject_wallet and not Web3.is_address(request.subject_wallet):
            raise ValidationError(f"Invalid wallet address: {request.subject_wallet!r}")
        expiration = request.expiration_date
        if expiration is not None and to_unix(expiration) <= to_unix(self._clock()):
            raise ValidationError("Expiration date must be in the future")

    async def issue(self, request: IssuanceRequest) -> IssuanceReceipt:
        try:
            receipt = await self._issue(request)
        except CredentialServiceError:
            ISSUANCES.labels(outcome="failed").inc()
            raise
        if receipt.anchored:
            outcome = "anchored"
        elif receipt.anchor_pending:
            outcome = "pending"
        else:
            outcome = "unanchored"
        ISSUANCES.labels(outcome=outcome).inc()
        return receipt

    async def _issue(self, request: IssuanceRequest) -> IssuanceReceipt:
        self._validate(request)
        credential_id = request.credential_id or f"cred-{uuid4()}"

        if request.subject_did:
            subject_did = request.subject_did
        else:
            subject_did = (await self._identities.create_or_get_did(request.subject_email)).did

        issued_at = self._clock()
        meta = metadata.build_metadata(credential_id, request, self._issuer, subject_did)
        unsigned = metadata.build_credential(
            credential_id, request, self._issuer, subject_did, issued_at
        )
        verifiable_credential = self._proofs.issue(unsigned, self._issuer)

        meta_ref = await self._content_store.put(
            metadata.to_json_bytes(meta), "application/json", pin=True
        )
        document = metadata.build_stored_document(meta, verifiable_credential, issued_at)
        vc_ref = await self._content_store.put(
            metadata.to_json_bytes(document), "application/json", pin=True
        )
        logger.info(
            "Credential documents pinned metadata=%s",
            meta_ref.cid,
            extra={"credential_id": credential_id, "cid": vc_ref.cid},
        )

        tx, chain_error = await self._anchor(credential_id, request, vc_ref.cid)

        payload = qr.build_payload(credential_id, self._public_base_url, meta_ref.cid)
        return IssuanceReceipt(
            credential_id=credential_id,
            verifiable_credential=verifiable_credential,
            content=ContentRefs(metadata=meta_ref, verifiable_credential=vc_ref),
            qr=QrPayload(
                credential_id=payload["credentialId"],
                verify_url=payload["verifyUrl"],
                ipfs_hash=payload["ipfsHash"],
                image=qr.render_png_data_url(payload),
            ),
            blockchain=tx,
            subject_did=subject_did,
            issuer_did=self._issuer.did,
            blockchain_error=chain_error,
        )

    async def _anchor(
        self, credential_id: str, request: IssuanceRequest, cid: str
    ) -> tuple[TxReceipt | None, str | None]:
        if self._blockchain is None:
            logger.warning(
                "Issued without anchor: %s",
                CHAIN_NOT_CONFIGURED,
                extra={"credential_id": credential_id, "source": "blockchain"},
            )
            return None, CHAIN_NOT_CONFIGURED

        expires_at = to_unix(request.expiration_date) if request.expiration_date else 0
        try:
            tx = await self._blockchain.issue_credential(
                credential_id,
                request.subject_wallet,
                cid,
                request.credential_type,
                expires_at,
            )
        except Exception as exc:
            reason = exc.message if isinstance(exc, CredentialServiceError) else str(exc)
            COLLABORATOR_FAILURES.labels(source="blockchain").inc()
            logger.warning(
                "Blockchain registration failed, credential left unanchored: %s",
                reason,
                extra={"credential_id": credential_id, "cid": cid, "source": "blockchain"},
            )
            return None, reason or exc.__class__.__name__
        if tx.pending:
            reason = f"Anchor transaction {tx.transaction_hash} not yet confirmed"
            logger.warning(
                "%s, check the registry before re-anchoring",
                reason,
                extra={"credential_id": credential_id, "cid": cid, "source": "blockchain"},
            )
            return tx, reason
        return tx, None

    async def batch_issue(
        self, entries: Sequence[IssuanceRequest | Mapping[str, Any]]
    ) -> BatchResult:
        """Issue every entry independently on a bounded pool of workers.

        Each entry ends up in exactly one of results/errors.  Order of
        either list relative to the input is not guaranteed.
        """
        if not entries:
            raise ValidationError("Students array is required")

        results: list[BatchEntryResult] = []
        errors: list[BatchEntryError] = []
        gate = asyncio.Semaphore(self._max_workers)

        async def _one(index: int, entry: IssuanceRequest | Mapping[str, Any]) -> None:
            if isinstance(entry, IssuanceRequest):
                email: str | None = entry.subject_email
            elif isinstance(entry, Mapping):
                email = entry.get("studentEmail")
            else:
                email = None
            async with gate:
                try:
                    request = (
                        entry
                        if isinstance(entry, IssuanceRequest)
                        else request_from_payload(entry)
                    )
                    receipt = await self.issue(request)
                except CredentialServiceError as exc:
                    errors.append(
                        BatchEntryError(
                            index=index, subject_email=email, error=exc.message, code=exc.code
                        )
                    )
                    return
                except Exception as exc:
                    logger.exception("Batch entry %d failed unexpectedly", index)
                    errors.append(
                        BatchEntryError(
                            index=index, subject_email=email, error=str(exc), code="INTERNAL_ERROR"
                        )
                    )
                    return
            results.append(BatchEntryResult(index=index, subject_email=email or "", receipt=receipt))

        await asyncio.gather(*(_one(i, entry) for i, entry in enumerate(entries)))
        logger.info(
            "Batch issuance finished total=%d ok=%d failed=%d",
            len(entries),
            len(results),
            len(errors),
        )
        return BatchResult(results=results, errors=errors)

    async def revoke(self, credential_id: str, reason: str) -> TxReceipt:
        credential_id = (credential_id or "").strip()
        reason = (reason or "").strip()
        if not credential_id:
            raise ValidationError("Credential ID is required")
        if not reason:
            raise ValidationError("Revocation reason is required")
        if self._blockchain is None:
            raise UnavailableError(CHAIN_NOT_CONFIGURED, source="blockchain")

        tx = await self._blockchain.revoke_credential(credential_id, reason)
        logger.info(
            "Credential revoked reason=%s",
            reason,
            extra={"credential_id": credential_id, "tx_hash": tx.transaction_hash},
        )
        return tx
