"""Verification Orchestrator.

One authoritative source, N corroborating ones:

  blockchain     decides validity (existence, issuer gate, expiry,
                 revocation are all on-chain facts)
  content store  the pinned VC document; fetched for display and
                 diagnosis only
  proof          the signature on that document; informational on the
                 id-based path

An unknown credential id is the only fatal outcome of ``verify``.  Any
other collaborator failure is caught, logged, counted, and recorded in
the verdict; the caller always gets a structured result.  A chain that
could not be reached leaves every chain flag False, so "unknown" can
never read as "valid".
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from app.core.clock import Clock, utcnow
from app.core.errors import (
    CredentialServiceError,
    NotFoundError,
    UnavailableError,
    ValidationError,
)
from app.core.metrics import COLLABORATOR_FAILURES, VERIFICATIONS
from app.gateways.blockchain import CHAIN_NOT_CONFIGURED, BlockchainGateway
from app.gateways.content_store import ContentStore, load_json
from app.gateways.proofs import ProofService, issuer_id
from app.models.credential import OnChainCredential, ValidityStatus
from app.models.principal import Principal
from app.models.verdict import (
    BlockchainCheck,
    ContentStoreCheck,
    DocumentVerdict,
    PresentationVerdict,
    ProofCheck,
    VerificationVerdict,
    VerifierInfo,
)
from app.services.qr import parse_payload

logger = logging.getLogger(__name__)


def _verifier(requester: Principal | None) -> VerifierInfo | None:
    if requester is None:
        return None
    return VerifierInfo(user_id=requester.user_id, wallet_address=requester.wallet_address)


def _result_label(valid: bool) -> str:
    return "valid" if valid else "invalid"


class VerificationOrchestrator:
    def __init__(
        self,
        blockchain: BlockchainGateway | None,
        content_store: ContentStore,
        proofs: ProofService,
        *,
        network: str,
        clock: Clock = utcnow,
    ) -> None:
        self._blockchain = blockchain
        self._content_store = content_store
        self._proofs = proofs
        self._network = network
        self._clock = clock

    async def _read_chain(
        self, credential_id: str
    ) -> tuple[OnChainCredential, ValidityStatus]:
        """Both registry reads.  NotFoundError and other failures propagate."""
        if self._blockchain is None:
            raise UnavailableError(CHAIN_NOT_CONFIGURED, source="blockchain")
        record = await self._blockchain.get_credential(credential_id)
        status = await self._blockchain.is_valid(credential_id)
        return record, status

    def _degraded(self, source: str, credential_id: str | None, exc: BaseException) -> str:
        message = exc.message if isinstance(exc, CredentialServiceError) else str(exc)
        COLLABORATOR_FAILURES.labels(source=source).inc()
        logger.warning(
            "%s check degraded: %s",
            source,
            message,
            extra={"credential_id": credential_id, "source": source},
        )
        return message or exc.__class__.__name__

    async def verify(
        self,
        credential_id: str,
        include_content_metadata: bool = True,
        requester: Principal | None = None,
    ) -> VerificationVerdict:
        credential_id = (credential_id or "").strip()
        if not credential_id:
            raise ValidationError("Credential ID is required")
        if self._blockchain is None:
            # No authoritative source at all: there is no verdict to degrade to.
            raise UnavailableError(CHAIN_NOT_CONFIGURED, source="blockchain")

        record: OnChainCredential | None = None
        status: ValidityStatus | None = None
        try:
            record, status = await self._read_chain(credential_id)
            blockchain = BlockchainCheck(verified=True, network=self._network)
        except NotFoundError:
            VERIFICATIONS.labels(operation="id", result="not_found").inc()
            logger.info("Credential not found on chain", extra={"credential_id": credential_id})
            raise
        except Exception as exc:
            error = self._degraded("blockchain", credential_id, exc)
            blockchain = BlockchainCheck(verified=False, network=self._network, error=error)

        content: ContentStoreCheck | None = None
        proof: ProofCheck | None = None
        if record is not None and include_content_metadata and record.content_ref:
            content, document = await self._fetch_document(credential_id, record.content_ref)
            if document is not None:
                proof = self._check_embedded_proof(document)

        verdict = VerificationVerdict(
            credential_id=credential_id,
            blockchain=blockchain,
            content_store=content,
            proof=proof,
            verified_at=self._clock(),
            is_valid=status.is_valid if status else False,
            is_expired=status.is_expired if status else False,
            is_revoked=status.is_revoked if status else False,
            revoked_reason=(record.revoked_reason or None) if record else None,
            issuer=record.issuer if record else None,
            subject=record.subject if record else None,
            credential_type=record.credential_type if record else None,
            issued_at=record.issued_at if record else None,
            expires_at=record.expires_at if record else None,
            content_ref=record.content_ref if record else None,
            verifier=_verifier(requester),
        )
        VERIFICATIONS.labels(operation="id", result=_result_label(verdict.overall_valid)).inc()
        return verdict

    async def _fetch_document(
        self, credential_id: str, cid: str
    ) -> tuple[ContentStoreCheck, dict[str, Any] | None]:
        try:
            raw = await self._content_store.get(cid)
        except Exception as exc:
            error = self._degraded("ipfs", credential_id, exc)
            return ContentStoreCheck(verified=False, error=error), None

        try:
            document = load_json(raw)
        except ValueError:
            error = self._degraded(
                "ipfs", credential_id, ValueError(f"Content {cid} is not valid JSON")
            )
            return ContentStoreCheck(verified=False, error=error), None
        if not isinstance(document, dict):
            error = self._degraded(
                "ipfs", credential_id, ValueError(f"Content {cid} is not a JSON object")
            )
            return ContentStoreCheck(verified=False, error=error), None

        return ContentStoreCheck(verified=True, metadata=document), document

    def _check_embedded_proof(self, document: dict[str, Any]) -> ProofCheck | None:
        embedded = document.get("verifiableCredential")
        if isinstance(embedded, dict):
            target = embedded
        elif "proof" in document:
            target = document
        else:
            return None
        check = self._proofs.verify(target)
        if not check.verified:
            COLLABORATOR_FAILURES.labels(source="proof").inc()
            logger.warning(
                "Stored document proof failed: %s",
                "; ".join(check.errors),
                extra={"credential_id": document.get("credentialId"), "source": "proof"},
            )
        return check

    async def verify_document(
        self, document: Any, requester: Principal | None = None
    ) -> DocumentVerdict:
        """Check a caller-supplied VC: its own proof, then the chain if it has an id."""
        if not isinstance(document, dict):
            raise ValidationError("Verifiable credential must be a JSON object")

        proof = self._proofs.verify(document)
        raw_id = document.get("id") or document.get("credentialId")
        credential_id = raw_id.strip() if isinstance(raw_id, str) and raw_id.strip() else None

        blockchain: BlockchainCheck | None = None
        status: ValidityStatus | None = None
        found = False
        reachable = True
        # A deployment without a registry checks the proof alone.
        if credential_id is not None and self._blockchain is not None:
            try:
                _, status = await self._read_chain(credential_id)
                found = True
                blockchain = BlockchainCheck(verified=True, network=self._network)
            except NotFoundError:
                blockchain = BlockchainCheck(verified=True, network=self._network)
            except Exception as exc:
                reachable = False
                error = self._degraded("blockchain", credential_id, exc)
                blockchain = BlockchainCheck(verified=False, network=self._network, error=error)

        on_chain_valid = (
            status is not None
            and status.is_valid
            and not status.is_expired
            and not status.is_revoked
        )
        if not reachable:
            chain_ok = False
        elif found:
            chain_ok = on_chain_valid
        else:
            chain_ok = True  # no id, or no on-chain record for it
        overall = proof.verified and chain_ok

        verdict = DocumentVerdict(
            credential_id=credential_id,
            proof=proof,
            blockchain=blockchain,
            overall_valid=overall,
            verified_at=self._clock(),
            on_chain_found=found,
            is_valid=status.is_valid if status else False,
            is_expired=status.is_expired if status else False,
            is_revoked=status.is_revoked if status else False,
            credential_info={
                "issuer": issuer_id(document),
                "subject": document.get("credentialSubject"),
                "type": document.get("type"),
                "issuanceDate": document.get("issuanceDate"),
                "expirationDate": document.get("expirationDate"),
            },
            verifier=_verifier(requester),
        )
        VERIFICATIONS.labels(operation="document", result=_result_label(overall)).inc()
        return verdict

    async def verify_presentation(
        self, presentation: Any, requester: Principal | None = None
    ) -> PresentationVerdict:
        if not isinstance(presentation, dict):
            raise ValidationError("Verifiable presentation must be a JSON object")

        check = self._proofs.verify_presentation(presentation)
        results = list(
            await asyncio.gather(*(self.verify_document(vc) for vc in check.credentials))
        )
        overall = check.verified and all(r.overall_valid for r in results)
        VERIFICATIONS.labels(operation="presentation", result=_result_label(overall)).inc()
        return PresentationVerdict(
            holder=check.holder,
            proof=ProofCheck(verified=check.verified, errors=list(check.errors)),
            credentials=results,
            overall_valid=overall,
            verified_at=self._clock(),
            verifier=_verifier(requester),
        )

    async def verify_qr(
        self, qr_data: Any, requester: Principal | None = None
    ) -> VerificationVerdict:
        credential_id = parse_payload(qr_data)
        return await self.verify(
            credential_id, include_content_metadata=True, requester=requester
        )
