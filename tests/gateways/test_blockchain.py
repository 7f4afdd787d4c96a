"""Registry gateway tests.

The in-memory registry must enforce the same gates and revert reasons
as the deployed contract, since dev and every service test run on it.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from eth_account import Account
from web3.exceptions import ContractLogicError

from app.core.errors import (
    ContractRejection,
    NotFoundError,
    UnavailableError,
    ValidationError,
)
from app.gateways.blockchain import (
    CREDENTIAL_NOT_FOUND,
    InMemoryBlockchainGateway,
    Web3BlockchainGateway,
    hash_credential_id,
    normalize_address,
)
from app.models.credential import ZERO_ADDRESS
from tests.conftest import FakeClock, FakeRegistryNode, web3_gateway_on


def _registry(clock: FakeClock | None = None) -> InMemoryBlockchainGateway:
    chain = InMemoryBlockchainGateway(clock=clock or FakeClock())
    chain.seed_institution("Sample University", "did:example:uni")
    return chain


def test_hash_credential_id_is_keccak_hex() -> None:
    digest = hash_credential_id("cred-1")
    assert digest.startswith("0x")
    assert len(digest) == 66
    assert digest == hash_credential_id("cred-1")
    assert digest != hash_credential_id("cred-2")


def test_normalize_address_checksums_and_rejects_garbage() -> None:
    lower = "0x" + "ab" * 20
    assert normalize_address(lower).lower() == lower
    assert normalize_address(lower) != lower
    with pytest.raises(ValidationError):
        normalize_address("0x1234")


def test_issue_and_read_back() -> None:
    chain = _registry()
    receipt = asyncio.run(chain.issue_credential("cred-1", None, "bafycid", "Diploma", 0))

    record = asyncio.run(chain.get_credential("cred-1"))
    assert receipt.credential_hash == record.credential_hash
    assert record.issuer == chain.signer_address
    assert record.subject == ZERO_ADDRESS
    assert record.has_subject is False
    assert record.content_ref == "bafycid"
    assert record.expires_at == 0

    status = asyncio.run(chain.is_valid("cred-1"))
    assert (status.is_valid, status.is_expired, status.is_revoked) == (True, False, False)


def test_unknown_credential_is_not_found() -> None:
    chain = _registry()
    with pytest.raises(NotFoundError, match=CREDENTIAL_NOT_FOUND):
        asyncio.run(chain.get_credential("nope"))
    with pytest.raises(NotFoundError):
        asyncio.run(chain.is_valid("nope"))


def test_duplicate_and_past_expiry_are_rejected() -> None:
    clock = FakeClock()
    chain = _registry(clock)
    asyncio.run(chain.issue_credential("cred-1", None, "cid", "Diploma", 0))

    with pytest.raises(ContractRejection, match="already exists"):
        asyncio.run(chain.issue_credential("cred-1", None, "cid", "Diploma", 0))

    past = int((clock() - timedelta(seconds=1)).timestamp())
    with pytest.raises(ContractRejection, match="must be in the future"):
        asyncio.run(chain.issue_credential("cred-2", None, "cid", "Diploma", past))


def test_expiry_is_computed_against_the_clock() -> None:
    clock = FakeClock()
    chain = _registry(clock)
    expires = int((clock() + timedelta(days=1)).timestamp())
    asyncio.run(chain.issue_credential("cred-1", None, "cid", "Diploma", expires))

    assert asyncio.run(chain.is_valid("cred-1")).is_valid
    clock.advance(days=2)
    status = asyncio.run(chain.is_valid("cred-1"))
    assert status.is_expired and not status.is_valid
    assert asyncio.run(chain.get_credential("cred-1")).expires_at == expires


def test_only_issuer_revokes_and_only_once() -> None:
    chain = _registry()
    asyncio.run(chain.issue_credential("cred-1", None, "cid", "Diploma", 0))
    stranger = chain.connect(Account.create().address)

    with pytest.raises(ContractRejection, match="Only issuer can revoke"):
        asyncio.run(stranger.revoke_credential("cred-1", "nope"))

    asyncio.run(chain.revoke_credential("cred-1", "typo"))
    record = asyncio.run(chain.get_credential("cred-1"))
    assert record.revoked and record.revoked_reason == "typo"

    with pytest.raises(ContractRejection, match="already revoked"):
        asyncio.run(chain.revoke_credential("cred-1", "again"))
    assert asyncio.run(chain.get_stats()).total_revoked == 1


def test_institution_lifecycle() -> None:
    chain = _registry()
    newcomer = chain.connect(Account.create().address)

    asyncio.run(newcomer.register_institution("New College", "did:example:new"))
    institution = asyncio.run(chain.get_institution(newcomer.signer_address))
    assert institution.verified is False and institution.active is True

    # Unverified institutions cannot issue.
    with pytest.raises(ContractRejection, match="not verified"):
        asyncio.run(newcomer.issue_credential("c-1", None, "cid", "Cert", 0))

    # Only the registry owner verifies.
    with pytest.raises(ContractRejection, match="not an admin"):
        asyncio.run(newcomer.verify_institution(newcomer.signer_address, True))

    asyncio.run(chain.verify_institution(newcomer.signer_address, True))
    asyncio.run(newcomer.issue_credential("c-1", None, "cid", "Cert", 0))
    assert asyncio.run(chain.is_valid("c-1")).is_valid

    # Deactivation invalidates what the institution already issued.
    asyncio.run(chain.deactivate_institution(newcomer.signer_address))
    assert not asyncio.run(chain.is_valid("c-1")).is_valid

    with pytest.raises(ContractRejection, match="already registered"):
        asyncio.run(newcomer.register_institution("Again", "did:example:new"))


def test_unknown_institution_is_not_found() -> None:
    chain = _registry()
    with pytest.raises(NotFoundError):
        asyncio.run(chain.get_institution(Account.create().address))


def test_subject_index_and_stats() -> None:
    chain = _registry()
    wallet = Account.create().address
    asyncio.run(chain.issue_credential("a", wallet, "cid", "Cert", 0))
    asyncio.run(chain.issue_credential("b", wallet.lower(), "cid", "Cert", 0))
    asyncio.run(chain.issue_credential("c", None, "cid", "Cert", 0))

    held = asyncio.run(chain.get_subject_credentials(wallet))
    assert held == [hash_credential_id("a"), hash_credential_id("b")]

    stats = asyncio.run(chain.get_stats())
    assert stats.total_credentials == 3
    assert stats.total_institutions == 1


def test_unreachable_flag_fails_every_call() -> None:
    chain = _registry()
    chain.unreachable = True
    with pytest.raises(UnavailableError):
        asyncio.run(chain.get_credential("x"))
    with pytest.raises(UnavailableError):
        asyncio.run(chain.issue_credential("x", None, "cid", "Cert", 0))
    assert asyncio.run(chain.ping()) is False


# --- Web3 error mapping (no network involved) ---


def _web3_gateway(timeout: float = 5.0) -> Web3BlockchainGateway:
    return Web3BlockchainGateway(
        rpc_url="http://127.0.0.1:9",
        registry_address="0x" + "11" * 20,
        chain_id=80002,
        network="amoy",
        timeout=timeout,
    )


async def _raise(exc: Exception) -> None:
    raise exc


def test_web3_revert_for_unknown_id_maps_to_not_found() -> None:
    gateway = _web3_gateway()
    with pytest.raises(NotFoundError):
        asyncio.run(
            gateway._guard(
                "get_credential",
                _raise(ContractLogicError("execution reverted: Credential does not exist")),
            )
        )


def test_web3_other_reverts_map_to_contract_rejection() -> None:
    gateway = _web3_gateway()
    with pytest.raises(ContractRejection) as info:
        asyncio.run(
            gateway._guard(
                "revoke_credential",
                _raise(ContractLogicError("execution reverted: Only issuer can revoke")),
            )
        )
    assert info.value.reason == "Only issuer can revoke"


def test_web3_transport_errors_and_timeouts_map_to_unavailable() -> None:
    gateway = _web3_gateway(timeout=0.05)
    with pytest.raises(UnavailableError, match="failed"):
        asyncio.run(gateway._guard("is_valid", _raise(ConnectionError("refused"))))
    with pytest.raises(UnavailableError, match="timed out"):
        asyncio.run(gateway._guard("is_valid", asyncio.sleep(1)))


def test_web3_writes_without_signer_are_unavailable() -> None:
    gateway = _web3_gateway()
    assert gateway.signer_address is None
    with pytest.raises(UnavailableError, match="Wallet not configured"):
        asyncio.run(gateway.revoke_credential("cred-1", "reason"))


# --- Web3 writes against a fake node ---


def _issue_many(gateway: Web3BlockchainGateway, count: int) -> list:
    async def _run() -> list:
        return await asyncio.gather(
            *(
                gateway.issue_credential(f"cred-{i}", None, "bafkrei-test", "Diploma", 0)
                for i in range(count)
            )
        )

    return asyncio.run(_run())


def test_concurrent_writes_get_distinct_nonces() -> None:
    node = FakeRegistryNode()
    gateway = web3_gateway_on(node)

    receipts = _issue_many(gateway, 4)

    assert sorted(node.accepted) == [0, 1, 2, 3]
    assert all(not r.pending for r in receipts)
    assert len({r.transaction_hash for r in receipts}) == 4
    assert node.count_reads == 1


def test_failed_broadcast_resyncs_nonce_from_node() -> None:
    node = FakeRegistryNode(fail_sends=1)
    gateway = web3_gateway_on(node)

    with pytest.raises(UnavailableError, match="insufficient funds"):
        asyncio.run(gateway.issue_credential("cred-a", None, "bafkrei-a", "Diploma", 0))
    receipt = asyncio.run(gateway.issue_credential("cred-b", None, "bafkrei-b", "Diploma", 0))

    assert node.accepted == [0]
    assert node.count_reads == 2
    assert receipt.block_number == 1000


def test_unmined_transaction_comes_back_pending() -> None:
    node = FakeRegistryNode(mine=False)
    gateway = web3_gateway_on(node, receipt_timeout=0.05)

    receipt = asyncio.run(
        gateway.issue_credential("cred-slow", None, "bafkrei-slow", "Diploma", 0)
    )

    assert receipt.pending is True
    assert receipt.transaction_hash == "0x" + "00" * 32
    assert receipt.block_number is None
    assert receipt.credential_hash == hash_credential_id("cred-slow")
