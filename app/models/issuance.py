from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from app.models.credential import StoredContent, TxReceipt


@dataclass(frozen=True, slots=True)
class IssuanceRequest:
    """What an institution submits to issue one credential.

    credential_id and subject_did are normally left empty: the coordinator
    generates the id and resolves the subject DID from the email.
    """

    subject_name: str
    subject_email: str
    credential_type: str
    course_name: str
    course_description: str = ""
    graduation_date: date | None = None
    grade: str | None = None
    expiration_date: datetime | None = None
    subject_wallet: str | None = None
    evidence: list[dict[str, Any]] = field(default_factory=list)
    credential_id: str | None = None
    subject_did: str | None = None


@dataclass(frozen=True, slots=True)
class ContentRefs:
    metadata: StoredContent
    verifiable_credential: StoredContent


@dataclass(frozen=True, slots=True)
class QrPayload:
    credential_id: str
    verify_url: str
    ipfs_hash: str
    image: str  # data:image/png;base64,...


@dataclass(frozen=True, slots=True)
class IssuanceReceipt:
    """Everything produced by one issuance.

    blockchain is None when the registry write failed or no registry is
    configured.  The VC document is still stored and retrievable; it just
    has no on-chain revocation or expiry authority yet.  A pending
    blockchain receipt is neither: the anchor transaction is out but
    unconfirmed, and re-anchoring would collide with it.
    """

    credential_id: str
    verifiable_credential: dict[str, Any]
    content: ContentRefs
    qr: QrPayload
    blockchain: TxReceipt | None
    subject_did: str
    issuer_did: str
    blockchain_error: str | None = None

    @property
    def anchored(self) -> bool:
        return self.blockchain is not None and not self.blockchain.pending

    @property
    def anchor_pending(self) -> bool:
        return self.blockchain is not None and self.blockchain.pending


@dataclass(frozen=True, slots=True)
class BatchEntryResult:
    index: int
    subject_email: str
    receipt: IssuanceReceipt


@dataclass(frozen=True, slots=True)
class BatchEntryError:
    index: int
    subject_email: str | None
    error: str
    code: str


@dataclass(frozen=True, slots=True)
class BatchResult:
    results: list[BatchEntryResult]
    errors: list[BatchEntryError]

    @property
    def total_processed(self) -> int:
        return len(self.results) + len(self.errors)

    @property
    def successful(self) -> int:
        return len(self.results)

    @property
    def failed(self) -> int:
        return len(self.errors)
