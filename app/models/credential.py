from __future__ import annotations

from dataclasses import dataclass

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


@dataclass(frozen=True, slots=True)
class OnChainCredential:
    """Registry record for one credential, the authoritative copy.

    Timestamps are unix seconds as the contract stores them.
    expires_at == 0 means the credential never expires.
    """

    credential_id: str
    credential_hash: str
    issuer: str
    subject: str
    content_ref: str
    credential_type: str
    issued_at: int
    expires_at: int = 0
    revoked: bool = False
    revoked_reason: str = ""

    @property
    def has_subject(self) -> bool:
        return self.subject.lower() != ZERO_ADDRESS


@dataclass(frozen=True, slots=True)
class ValidityStatus:
    """The contract's isValid() tuple.  is_valid is already the AND-reduction."""

    is_valid: bool
    is_expired: bool
    is_revoked: bool


@dataclass(frozen=True, slots=True)
class TxReceipt:
    """A registry write.

    pending=True means the transaction was broadcast but no receipt came
    back in time: it may still be mined, so block_number and gas_used are
    unknown and the hash is the only handle on it.
    """

    transaction_hash: str
    block_number: int | None = None
    gas_used: int | None = None
    credential_hash: str | None = None
    pending: bool = False


@dataclass(frozen=True, slots=True)
class StoredContent:
    """A pinned object in the content store and its public gateway URL."""

    cid: str
    url: str
    size: int


@dataclass(frozen=True, slots=True)
class Institution:
    address: str
    name: str
    did: str
    verified: bool
    active: bool
    registered_at: int


@dataclass(frozen=True, slots=True)
class RegistryStats:
    total_credentials: int
    total_institutions: int
    total_revoked: int
