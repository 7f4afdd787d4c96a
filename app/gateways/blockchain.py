"""Access to the on-chain credential registry.

The registry is the authoritative source for existence, issuer,
expiry and revocation.  Credential ids are never stored in clear on
chain: every call hashes the id with keccak256 first, exactly as the
contract's callers do.

Two implementations:

  InMemoryBlockchainGateway: a deterministic copy of the contract's
    state machine (same revert reasons, same gates).  Used in dev, in
    tests, and for fault drills via the ``unreachable`` flag.

  Web3BlockchainGateway: AsyncWeb3 over JSON-RPC against Polygon or the
    Amoy testnet.  Reverts become ContractRejection (or NotFoundError for
    an unknown id), transport failures and timeouts become
    UnavailableError.  Nothing from web3 leaks past this module.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from collections.abc import Awaitable
from dataclasses import dataclass, field, replace
from typing import Any, Protocol, TypeVar, runtime_checkable

from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import ContractLogicError, TimeExhausted

from app.core.clock import Clock, to_unix, utcnow
from app.core.errors import (
    ContractRejection,
    CredentialServiceError,
    NotFoundError,
    UnavailableError,
    ValidationError,
)
from app.core.metrics import GATEWAY_LATENCY
from app.models.credential import (
    ZERO_ADDRESS,
    Institution,
    OnChainCredential,
    RegistryStats,
    TxReceipt,
    ValidityStatus,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

CREDENTIAL_NOT_FOUND = "Credential does not exist"
CHAIN_NOT_CONFIGURED = "Blockchain registry not configured"


def hash_credential_id(credential_id: str) -> str:
    """keccak256 of the UTF-8 id, 0x-prefixed hex.  This is the registry key."""
    return Web3.to_hex(Web3.keccak(text=credential_id))


def normalize_address(address: str) -> str:
    if not Web3.is_address(address):
        raise ValidationError(f"Invalid address: {address!r}")
    return Web3.to_checksum_address(address)


@runtime_checkable
class BlockchainGateway(Protocol):
    network: str

    @property
    def signer_address(self) -> str | None: ...

    async def get_credential(self, credential_id: str) -> OnChainCredential: ...
    async def is_valid(self, credential_id: str) -> ValidityStatus: ...
    async def issue_credential(
        self,
        credential_id: str,
        subject: str | None,
        content_ref: str,
        credential_type: str,
        expires_at: int,
    ) -> TxReceipt: ...
    async def revoke_credential(self, credential_id: str, reason: str) -> TxReceipt: ...
    async def get_institution(self, address: str) -> Institution: ...
    async def register_institution(self, name: str, did: str) -> TxReceipt: ...
    async def verify_institution(self, address: str, verified: bool) -> TxReceipt: ...
    async def deactivate_institution(self, address: str) -> TxReceipt: ...
    async def get_subject_credentials(self, address: str) -> list[str]: ...
    async def get_stats(self) -> RegistryStats: ...
    async def ping(self) -> bool: ...


# ---------------------------------------------------------------------------
# In-memory registry
# ---------------------------------------------------------------------------


@dataclass
class _RegistryState:
    owner: str
    credentials: dict[str, OnChainCredential] = field(default_factory=dict)
    institutions: dict[str, Institution] = field(default_factory=dict)
    by_subject: dict[str, list[str]] = field(default_factory=dict)
    by_issuer: dict[str, list[str]] = field(default_factory=dict)
    total_revoked: int = 0
    block_number: int = 1


class InMemoryBlockchainGateway:
    """Single-process registry with the contract's rules.

    ``connect(address)`` returns a view of the same registry acting as a
    different caller, the way a contract handle is re-bound to another
    signer.  The first caller is the registry owner (admin).
    """

    def __init__(
        self,
        *,
        signer: str | None = None,
        network: str = "amoy",
        clock: Clock = utcnow,
        _state: _RegistryState | None = None,
    ) -> None:
        self._caller = normalize_address(signer or Account.create().address)
        self._state = _state or _RegistryState(owner=self._caller)
        self.network = network
        self._clock = clock
        self.unreachable = False

    @property
    def signer_address(self) -> str | None:
        return self._caller

    def connect(self, address: str) -> InMemoryBlockchainGateway:
        view = InMemoryBlockchainGateway(
            signer=address, network=self.network, clock=self._clock, _state=self._state
        )
        view.unreachable = self.unreachable
        return view

    def seed_institution(
        self, name: str, did: str, *, address: str | None = None, verified: bool = True
    ) -> Institution:
        """Register (and by default verify) an institution without a transaction."""
        addr = normalize_address(address or self._caller)
        institution = Institution(
            address=addr,
            name=name,
            did=did,
            verified=verified,
            active=True,
            registered_at=self._now(),
        )
        self._state.institutions[addr] = institution
        return institution

    def _now(self) -> int:
        return to_unix(self._clock())

    def _check_reachable(self) -> None:
        if self.unreachable:
            raise UnavailableError("blockchain RPC unreachable", source="blockchain")

    def _receipt(self, credential_hash: str | None = None) -> TxReceipt:
        self._state.block_number += 1
        return TxReceipt(
            transaction_hash="0x" + secrets.token_hex(32),
            block_number=self._state.block_number,
            gas_used=21000,
            credential_hash=credential_hash,
        )

    def _lookup(self, credential_id: str) -> OnChainCredential:
        record = self._state.credentials.get(hash_credential_id(credential_id))
        if record is None:
            raise NotFoundError(CREDENTIAL_NOT_FOUND)
        return record

    def _require_owner(self) -> None:
        if self._caller != self._state.owner:
            raise ContractRejection("Caller is not an admin")

    async def get_credential(self, credential_id: str) -> OnChainCredential:
        self._check_reachable()
        return self._lookup(credential_id)

    async def is_valid(self, credential_id: str) -> ValidityStatus:
        self._check_reachable()
        record = self._lookup(credential_id)
        expired = record.expires_at != 0 and record.expires_at <= self._now()
        issuer = self._state.institutions.get(record.issuer)
        issuer_ok = issuer is not None and issuer.verified and issuer.active
        return ValidityStatus(
            is_valid=issuer_ok and not expired and not record.revoked,
            is_expired=expired,
            is_revoked=record.revoked,
        )

    async def issue_credential(
        self,
        credential_id: str,
        subject: str | None,
        content_ref: str,
        credential_type: str,
        expires_at: int,
    ) -> TxReceipt:
        self._check_reachable()
        issuer = self._state.institutions.get(self._caller)
        if issuer is None or not issuer.verified or not issuer.active:
            raise ContractRejection("Institution not verified or inactive")
        key = hash_credential_id(credential_id)
        if key in self._state.credentials:
            raise ContractRejection("Credential already exists")
        now = self._now()
        if expires_at != 0 and expires_at <= now:
            raise ContractRejection("Expiration date must be in the future")

        subject_addr = normalize_address(subject) if subject else ZERO_ADDRESS
        self._state.credentials[key] = OnChainCredential(
            credential_id=credential_id,
            credential_hash=key,
            issuer=self._caller,
            subject=subject_addr,
            content_ref=content_ref,
            credential_type=credential_type,
            issued_at=now,
            expires_at=expires_at,
        )
        self._state.by_issuer.setdefault(self._caller, []).append(key)
        if subject_addr != ZERO_ADDRESS:
            self._state.by_subject.setdefault(subject_addr, []).append(key)
        return self._receipt(key)

    async def revoke_credential(self, credential_id: str, reason: str) -> TxReceipt:
        self._check_reachable()
        record = self._lookup(credential_id)
        if record.issuer != self._caller:
            raise ContractRejection("Only issuer can revoke")
        if record.revoked:
            raise ContractRejection("Credential already revoked")
        self._state.credentials[record.credential_hash] = replace(
            record, revoked=True, revoked_reason=reason
        )
        self._state.total_revoked += 1
        return self._receipt()

    async def get_institution(self, address: str) -> Institution:
        self._check_reachable()
        institution = self._state.institutions.get(normalize_address(address))
        if institution is None:
            raise NotFoundError("Institution not registered")
        return institution

    async def register_institution(self, name: str, did: str) -> TxReceipt:
        self._check_reachable()
        if self._caller in self._state.institutions:
            raise ContractRejection("Institution already registered")
        self._state.institutions[self._caller] = Institution(
            address=self._caller,
            name=name,
            did=did,
            verified=False,
            active=True,
            registered_at=self._now(),
        )
        return self._receipt()

    async def verify_institution(self, address: str, verified: bool) -> TxReceipt:
        self._check_reachable()
        self._require_owner()
        institution = await self.get_institution(address)
        self._state.institutions[institution.address] = replace(
            institution, verified=verified
        )
        return self._receipt()

    async def deactivate_institution(self, address: str) -> TxReceipt:
        self._check_reachable()
        self._require_owner()
        institution = await self.get_institution(address)
        self._state.institutions[institution.address] = replace(
            institution, active=False
        )
        return self._receipt()

    async def get_subject_credentials(self, address: str) -> list[str]:
        self._check_reachable()
        return list(self._state.by_subject.get(normalize_address(address), []))

    async def get_stats(self) -> RegistryStats:
        self._check_reachable()
        return RegistryStats(
            total_credentials=len(self._state.credentials),
            total_institutions=len(self._state.institutions),
            total_revoked=self._state.total_revoked,
        )

    async def ping(self) -> bool:
        return not self.unreachable


# ---------------------------------------------------------------------------
# Web3 registry client
# ---------------------------------------------------------------------------

_CREDENTIAL_TUPLE = [
    {"name": "issuer", "type": "address"},
    {"name": "subject", "type": "address"},
    {"name": "ipfsHash", "type": "string"},
    {"name": "credentialType", "type": "string"},
    {"name": "issuedAt", "type": "uint256"},
    {"name": "expiresAt", "type": "uint256"},
    {"name": "revoked", "type": "bool"},
    {"name": "revokedReason", "type": "string"},
]

_INSTITUTION_TUPLE = [
    {"name": "name", "type": "string"},
    {"name": "did", "type": "string"},
    {"name": "verified", "type": "bool"},
    {"name": "active", "type": "bool"},
    {"name": "registeredAt", "type": "uint256"},
]


def _fn(name: str, inputs: list[tuple[str, str]], outputs: list[dict], view: bool) -> dict:
    return {
        "type": "function",
        "name": name,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": outputs,
        "stateMutability": "view" if view else "nonpayable",
    }


REGISTRY_ABI: list[dict[str, Any]] = [
    _fn(
        "getCredential",
        [("credentialId", "bytes32")],
        [{"name": "", "type": "tuple", "components": _CREDENTIAL_TUPLE}],
        True,
    ),
    _fn(
        "isValid",
        [("credentialId", "bytes32")],
        [
            {"name": "valid", "type": "bool"},
            {"name": "expired", "type": "bool"},
            {"name": "revoked", "type": "bool"},
        ],
        True,
    ),
    _fn(
        "issueCredential",
        [
            ("credentialId", "bytes32"),
            ("subject", "address"),
            ("ipfsHash", "string"),
            ("credentialType", "string"),
            ("expiresAt", "uint256"),
        ],
        [],
        False,
    ),
    _fn("revokeCredential", [("credentialId", "bytes32"), ("reason", "string")], [], False),
    _fn(
        "getInstitution",
        [("institution", "address")],
        [{"name": "", "type": "tuple", "components": _INSTITUTION_TUPLE}],
        True,
    ),
    _fn("registerInstitution", [("name", "string"), ("did", "string")], [], False),
    _fn("verifyInstitution", [("institution", "address"), ("verified", "bool")], [], False),
    _fn("deactivateInstitution", [("institution", "address")], [], False),
    _fn(
        "getSubjectCredentials",
        [("subject", "address")],
        [{"name": "", "type": "bytes32[]"}],
        True,
    ),
    _fn(
        "getStats",
        [],
        [
            {"name": "totalCredentials", "type": "uint256"},
            {"name": "totalInstitutions", "type": "uint256"},
            {"name": "totalRevoked", "type": "uint256"},
        ],
        True,
    ),
]


def _revert_reason(exc: ContractLogicError) -> str:
    raw = getattr(exc, "message", None) or (exc.args[0] if exc.args else str(exc))
    reason = str(raw)
    for prefix in ("execution reverted: ", "execution reverted"):
        if reason.startswith(prefix):
            reason = reason[len(prefix):]
    return reason.strip() or "execution reverted"


class Web3BlockchainGateway:
    """Registry client over JSON-RPC.

    Reads need only rpc_url + registry_address.  Writes also need a
    signer key; without one every write raises UnavailableError.

    A write has two budgets.  ``timeout`` bounds building, signing and
    broadcasting; ``receipt_timeout`` bounds waiting for the block.  A
    transaction that was broadcast but not mined in time comes back as a
    pending TxReceipt carrying its hash, never as a failure.
    """

    def __init__(
        self,
        *,
        rpc_url: str,
        registry_address: str,
        chain_id: int,
        network: str,
        private_key: str | None = None,
        timeout: float = 20.0,
        receipt_timeout: float = 120.0,
    ) -> None:
        self.network = network
        self._chain_id = chain_id
        self._timeout = timeout
        self._receipt_timeout = receipt_timeout
        # One signer, one nonce sequence: allocation and broadcast are serialized.
        self._nonce_lock = asyncio.Lock()
        self._next_nonce: int | None = None
        self._w3 = AsyncWeb3(
            AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": timeout})
        )
        self._contract = self._w3.eth.contract(
            address=Web3.to_checksum_address(registry_address), abi=REGISTRY_ABI
        )
        self._account = Account.from_key(private_key) if private_key else None

    @property
    def signer_address(self) -> str | None:
        return self._account.address if self._account is not None else None

    async def _guard(self, operation: str, call: Awaitable[T]) -> T:
        start = time.monotonic()
        try:
            async with asyncio.timeout(self._timeout):
                return await call
        except ContractLogicError as exc:
            reason = _revert_reason(exc)
            if CREDENTIAL_NOT_FOUND in reason:
                raise NotFoundError(CREDENTIAL_NOT_FOUND) from exc
            raise ContractRejection(reason) from exc
        except CredentialServiceError:
            raise
        except TimeoutError as exc:
            raise UnavailableError(
                f"blockchain {operation} timed out after {self._timeout}s",
                source="blockchain",
            ) from exc
        except Exception as exc:
            raise UnavailableError(
                f"blockchain {operation} failed: {exc}", source="blockchain"
            ) from exc
        finally:
            GATEWAY_LATENCY.labels(source="blockchain", operation=operation).observe(
                time.monotonic() - start
            )

    async def _send(self, account: Any, fn: Any) -> bytes:
        """Sign and broadcast one transaction, returning its hash.

        Nonces come from a local counter seeded from the node's pending
        count.  Any failure between allocation and broadcast drops the
        counter so the next write resyncs from the node.
        """
        async with self._nonce_lock:
            if self._next_nonce is None:
                self._next_nonce = await self._w3.eth.get_transaction_count(
                    account.address, "pending"
                )
            nonce = self._next_nonce
            try:
                tx = await fn.build_transaction(
                    {"from": account.address, "nonce": nonce, "chainId": self._chain_id}
                )
                signed = account.sign_transaction(tx)
                tx_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
            except BaseException:
                self._next_nonce = None
                raise
            self._next_nonce = nonce + 1
        return tx_hash

    async def _transact(
        self, operation: str, fn: Any, credential_hash: str | None = None
    ) -> TxReceipt:
        account = self._account
        if account is None:
            raise UnavailableError(
                "Wallet not configured for transactions", source="blockchain"
            )
        tx_hash = await self._guard(operation, self._send(account, fn))
        tx_hex = Web3.to_hex(tx_hash)
        try:
            async with asyncio.timeout(self._receipt_timeout):
                receipt = await self._w3.eth.wait_for_transaction_receipt(
                    tx_hash, timeout=self._receipt_timeout
                )
        except Exception as exc:
            if isinstance(exc, (TimeoutError, TimeExhausted)):
                reason = f"not mined within {self._receipt_timeout}s"
            else:
                reason = f"receipt lookup failed: {exc}"
            logger.warning(
                "blockchain %s tx=%s broadcast, %s",
                operation,
                tx_hex,
                reason,
                extra={"source": "blockchain", "tx_hash": tx_hex},
            )
            return TxReceipt(
                transaction_hash=tx_hex, credential_hash=credential_hash, pending=True
            )
        if receipt["status"] != 1:
            raise ContractRejection("transaction reverted")
        return TxReceipt(
            transaction_hash=tx_hex,
            block_number=int(receipt["blockNumber"]),
            gas_used=int(receipt["gasUsed"]),
            credential_hash=credential_hash,
        )

    async def get_credential(self, credential_id: str) -> OnChainCredential:
        key = hash_credential_id(credential_id)
        raw = await self._guard(
            "get_credential", self._contract.functions.getCredential(key).call()
        )
        issuer, subject, ipfs_hash, ctype, issued_at, expires_at, revoked, reason = raw
        if int(issued_at) == 0 or issuer == ZERO_ADDRESS:
            raise NotFoundError(CREDENTIAL_NOT_FOUND)
        return OnChainCredential(
            credential_id=credential_id,
            credential_hash=key,
            issuer=issuer,
            subject=subject,
            content_ref=ipfs_hash,
            credential_type=ctype,
            issued_at=int(issued_at),
            expires_at=int(expires_at),
            revoked=bool(revoked),
            revoked_reason=reason,
        )

    async def is_valid(self, credential_id: str) -> ValidityStatus:
        key = hash_credential_id(credential_id)
        valid, expired, revoked = await self._guard(
            "is_valid", self._contract.functions.isValid(key).call()
        )
        return ValidityStatus(
            is_valid=bool(valid), is_expired=bool(expired), is_revoked=bool(revoked)
        )

    async def issue_credential(
        self,
        credential_id: str,
        subject: str | None,
        content_ref: str,
        credential_type: str,
        expires_at: int,
    ) -> TxReceipt:
        key = hash_credential_id(credential_id)
        subject_addr = normalize_address(subject) if subject else ZERO_ADDRESS
        fn = self._contract.functions.issueCredential(
            key, subject_addr, content_ref, credential_type, expires_at
        )
        receipt = await self._transact("issue_credential", fn, key)
        if not receipt.pending:
            logger.info(
                "Credential anchored block=%d",
                receipt.block_number,
                extra={"credential_id": credential_id, "tx_hash": receipt.transaction_hash},
            )
        return receipt

    async def revoke_credential(self, credential_id: str, reason: str) -> TxReceipt:
        fn = self._contract.functions.revokeCredential(
            hash_credential_id(credential_id), reason
        )
        return await self._transact("revoke_credential", fn)

    async def get_institution(self, address: str) -> Institution:
        addr = normalize_address(address)
        name, did, verified, active, registered_at = await self._guard(
            "get_institution", self._contract.functions.getInstitution(addr).call()
        )
        if int(registered_at) == 0:
            raise NotFoundError("Institution not registered")
        return Institution(
            address=addr,
            name=name,
            did=did,
            verified=bool(verified),
            active=bool(active),
            registered_at=int(registered_at),
        )

    async def register_institution(self, name: str, did: str) -> TxReceipt:
        fn = self._contract.functions.registerInstitution(name, did)
        return await self._transact("register_institution", fn)

    async def verify_institution(self, address: str, verified: bool) -> TxReceipt:
        fn = self._contract.functions.verifyInstitution(
            normalize_address(address), verified
        )
        return await self._transact("verify_institution", fn)

    async def deactivate_institution(self, address: str) -> TxReceipt:
        fn = self._contract.functions.deactivateInstitution(normalize_address(address))
        return await self._transact("deactivate_institution", fn)

    async def get_subject_credentials(self, address: str) -> list[str]:
        hashes = await self._guard(
            "get_subject_credentials",
            self._contract.functions.getSubjectCredentials(
                normalize_address(address)
            ).call(),
        )
        return [Web3.to_hex(h) for h in hashes]

    async def get_stats(self) -> RegistryStats:
        total, institutions, revoked = await self._guard(
            "get_stats", self._contract.functions.getStats().call()
        )
        return RegistryStats(
            total_credentials=int(total),
            total_institutions=int(institutions),
            total_revoked=int(revoked),
        )

    async def ping(self) -> bool:
        try:
            async with asyncio.timeout(self._timeout):
                await self._w3.eth.block_number
            return True
        except Exception:
            logger.warning("Blockchain ping failed", extra={"source": "blockchain"})
            return False
