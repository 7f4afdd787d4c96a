"""Verification results.

Verdicts are built fresh on every call and thrown away after the
response is written.  Nothing here is cached or persisted.

Each source gets its own sub-result so a caller can tell "checked and
invalid" apart from "could not check".  Only the blockchain fields feed
overall_valid on the id-based path; content store and proof results are
corroborating evidence.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True, slots=True)
class BlockchainCheck:
    verified: bool
    network: str
    error: str | None = None


@dataclass(frozen=True, slots=True)
class ContentStoreCheck:
    verified: bool
    metadata: dict[str, Any] | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class ProofCheck:
    verified: bool
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class PresentationProofCheck:
    verified: bool
    holder: str | None
    credentials: list[dict[str, Any]] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class VerifierInfo:
    user_id: str
    wallet_address: str | None = None


@dataclass(frozen=True, slots=True)
class VerificationVerdict:
    credential_id: str
    blockchain: BlockchainCheck
    content_store: ContentStoreCheck | None
    proof: ProofCheck | None
    verified_at: datetime
    is_valid: bool = False
    is_expired: bool = False
    is_revoked: bool = False
    revoked_reason: str | None = None
    issuer: str | None = None
    subject: str | None = None
    credential_type: str | None = None
    issued_at: int | None = None
    expires_at: int | None = None
    content_ref: str | None = None
    verifier: VerifierInfo | None = None

    @property
    def overall_valid(self) -> bool:
        return self.is_valid and not self.is_expired and not self.is_revoked


@dataclass(frozen=True, slots=True)
class DocumentVerdict:
    """Result of checking a caller-supplied VC.

    blockchain is None when the document carries no id, so no on-chain
    cross-check was attempted.  on_chain_found distinguishes "no record"
    from "record present" once a check did run.
    """

    credential_id: str | None
    proof: ProofCheck
    blockchain: BlockchainCheck | None
    overall_valid: bool
    verified_at: datetime
    on_chain_found: bool = False
    is_valid: bool = False
    is_expired: bool = False
    is_revoked: bool = False
    credential_info: dict[str, Any] | None = None
    verifier: VerifierInfo | None = None


@dataclass(frozen=True, slots=True)
class PresentationVerdict:
    holder: str | None
    proof: ProofCheck
    credentials: list[DocumentVerdict]
    overall_valid: bool
    verified_at: datetime
    verifier: VerifierInfo | None = None
