"""did:key identities.

A did:key embeds its public key: multicodec 0xed01 (Ed25519) followed
by the 32 raw key bytes, base58btc encoded with the multibase 'z'
prefix.  Resolving one needs no network.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import base58
from nacl.signing import SigningKey, VerifyKey

logger = logging.getLogger(__name__)

DID_KEY_PREFIX = "did:key:"
MULTIBASE_BASE58BTC = "z"
ED25519_MULTICODEC = b"\xed\x01"


def did_key_from_verify_key(verify_key: VerifyKey) -> str:
    fingerprint = base58.b58encode(ED25519_MULTICODEC + verify_key.encode()).decode("ascii")
    return f"{DID_KEY_PREFIX}{MULTIBASE_BASE58BTC}{fingerprint}"


def verify_key_from_did(did: str) -> VerifyKey:
    """Recover the Ed25519 key from a did:key.  Raises ValueError otherwise."""
    did = did.split("#", 1)[0]
    if not did.startswith(DID_KEY_PREFIX + MULTIBASE_BASE58BTC):
        raise ValueError(f"Not an Ed25519 did:key: {did!r}")
    raw = base58.b58decode(did[len(DID_KEY_PREFIX) + 1 :])
    if not raw.startswith(ED25519_MULTICODEC) or len(raw) != 34:
        raise ValueError(f"Not an Ed25519 did:key: {did!r}")
    return VerifyKey(raw[2:])


def verification_method_for(did: str) -> str:
    return f"{did}#{did[len(DID_KEY_PREFIX):]}"


@dataclass(frozen=True, slots=True)
class DidSigner:
    """A DID together with the key that controls it."""

    did: str
    signing_key: SigningKey
    name: str = ""

    @staticmethod
    def generate(name: str = "") -> DidSigner:
        key = SigningKey.generate()
        return DidSigner(did=did_key_from_verify_key(key.verify_key), signing_key=key, name=name)

    @staticmethod
    def from_seed(seed_hex: str, name: str = "") -> DidSigner:
        try:
            key = SigningKey(bytes.fromhex(seed_hex))
        except ValueError:
            raise ValueError("ISSUER_SIGNING_SEED must be 32 bytes of hex") from None
        return DidSigner(did=did_key_from_verify_key(key.verify_key), signing_key=key, name=name)


def load_issuer(name: str, seed_hex: str | None) -> DidSigner:
    """The institution's signing identity; ephemeral when no seed is configured."""
    if seed_hex:
        return DidSigner.from_seed(seed_hex, name)
    logger.warning("No ISSUER_SIGNING_SEED configured, issuer DID is ephemeral")
    return DidSigner.generate(name)


@dataclass(frozen=True, slots=True)
class DidRecord:
    did: str
    created: bool


@runtime_checkable
class IdentityResolver(Protocol):
    async def create_or_get_did(self, subject_key: str) -> DidRecord: ...
    def get_signer(self, did: str) -> DidSigner | None: ...


class InMemoryIdentityResolver:
    """Subject DIDs keyed by normalized email.  Repeat calls reuse the DID."""

    def __init__(self) -> None:
        self._by_subject: dict[str, DidSigner] = {}
        self._by_did: dict[str, DidSigner] = {}

    async def create_or_get_did(self, subject_key: str) -> DidRecord:
        key = subject_key.strip().lower()
        existing = self._by_subject.get(key)
        if existing is not None:
            return DidRecord(did=existing.did, created=False)
        signer = DidSigner.generate()
        self._by_subject[key] = signer
        self._by_did[signer.did] = signer
        logger.debug("Created subject DID %s", signer.did)
        return DidRecord(did=signer.did, created=True)

    def get_signer(self, did: str) -> DidSigner | None:
        return self._by_did.get(did)
