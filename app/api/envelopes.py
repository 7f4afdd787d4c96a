"""Response schemas.

Every JSON response is wrapped as ``{"success": true, "data": ...}``;
errors use the flat shape built in app.api.errors.  Field names go out
in camelCase (``overallValid``, ``transactionHash``) because that is the
wire format browser and mobile clients already consume.  The schemas
read straight from the domain dataclasses via ``from_attributes``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
    success: bool = True
    data: T
    message: str | None = None


class _Out(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


# --- Verification ---


class BlockchainCheckOut(_Out):
    verified: bool
    network: str
    error: str | None = None


class ContentStoreCheckOut(_Out):
    verified: bool
    metadata: dict[str, Any] | None = None
    error: str | None = None


class ProofCheckOut(_Out):
    verified: bool
    errors: list[str] = []


class VerifierOut(_Out):
    user_id: str
    wallet_address: str | None = None


class VerdictOut(_Out):
    credential_id: str
    is_valid: bool
    is_expired: bool
    is_revoked: bool
    revoked_reason: str | None = None
    issuer: str | None = None
    subject: str | None = None
    credential_type: str | None = None
    issued_at: int | None = None
    expires_at: int | None = None
    content_ref: str | None = None
    blockchain: BlockchainCheckOut
    content_store: ContentStoreCheckOut | None = Field(default=None, alias="ipfs")
    proof: ProofCheckOut | None = None
    overall_valid: bool
    verified_at: datetime
    verifier: VerifierOut | None = None


class DocumentVerdictOut(_Out):
    credential_id: str | None = None
    proof: ProofCheckOut
    blockchain: BlockchainCheckOut | None = None
    on_chain_found: bool
    is_valid: bool
    is_expired: bool
    is_revoked: bool
    credential_info: dict[str, Any] | None = None
    overall_valid: bool
    verified_at: datetime
    verifier: VerifierOut | None = None


class PresentationVerdictOut(_Out):
    holder: str | None = None
    proof: ProofCheckOut
    credentials: list[DocumentVerdictOut]
    overall_valid: bool
    verified_at: datetime
    verifier: VerifierOut | None = None


# --- Registry ---


class TxReceiptOut(_Out):
    transaction_hash: str
    block_number: int | None = None
    gas_used: int | None = None
    credential_hash: str | None = None
    pending: bool = False


class OnChainCredentialOut(_Out):
    credential_id: str
    credential_hash: str
    issuer: str
    subject: str
    content_ref: str
    credential_type: str
    issued_at: int
    expires_at: int
    revoked: bool
    revoked_reason: str


class InstitutionOut(_Out):
    address: str
    name: str
    did: str
    verified: bool
    active: bool
    registered_at: int


class RegistryStatsOut(_Out):
    total_credentials: int
    total_institutions: int
    total_revoked: int


# --- Issuance ---


class StoredContentOut(_Out):
    cid: str
    url: str
    size: int


class ContentRefsOut(_Out):
    metadata: StoredContentOut
    verifiable_credential: StoredContentOut


class QrOut(_Out):
    credential_id: str
    verify_url: str
    ipfs_hash: str
    image: str


class IssuanceReceiptOut(_Out):
    credential_id: str
    verifiable_credential: dict[str, Any]
    content: ContentRefsOut = Field(alias="ipfs")
    qr: QrOut = Field(alias="qrCode")
    blockchain: TxReceiptOut | None = None
    blockchain_error: str | None = None
    anchored: bool
    anchor_pending: bool
    subject_did: str
    issuer_did: str


class BatchEntryResultOut(_Out):
    index: int
    subject_email: str
    receipt: IssuanceReceiptOut


class BatchEntryErrorOut(_Out):
    index: int
    subject_email: str | None = None
    error: str
    code: str


class BatchResultOut(_Out):
    results: list[BatchEntryResultOut]
    errors: list[BatchEntryErrorOut]
    total_processed: int
    successful: int
    failed: int


# --- Credentials (read side) ---


class CredentialDetailOut(_Out):
    credential: OnChainCredentialOut
    is_valid: bool
    is_expired: bool
    is_revoked: bool
    metadata: dict[str, Any] | None = None
    metadata_error: str | None = None


class ReceivedCredentialsOut(_Out):
    wallet_address: str
    credential_hashes: list[str]
    total: int


class RevocationOut(_Out):
    credential_id: str
    reason: str
    transaction: TxReceiptOut
