from __future__ import annotations

import asyncio
import sys
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from app.api.ratelimit import _rate_limiter
from app.core.clock import Clock, utcnow
from app.gateways.blockchain import InMemoryBlockchainGateway, Web3BlockchainGateway
from app.gateways.content_store import InMemoryContentStore
from app.gateways.identity import DidSigner, InMemoryIdentityResolver
from app.gateways.proofs import Ed25519ProofService
from app.main import app
from app.services import token_service, wiring
from app.services.issuance import IssuanceCoordinator
from app.services.verification import VerificationOrchestrator

# Ensure repo root is on sys.path so `import app` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@dataclass
class Gateways:
    """The collaborators one test runs against, all in memory."""

    chain: InMemoryBlockchainGateway
    store: InMemoryContentStore
    proofs: Ed25519ProofService
    identities: InMemoryIdentityResolver
    issuer: DidSigner


def make_gateways(clock: Clock = utcnow) -> Gateways:
    issuer = DidSigner.generate("Sample University")
    chain = InMemoryBlockchainGateway(network="amoy", clock=clock)
    chain.seed_institution(issuer.name, issuer.did)
    return Gateways(
        chain=chain,
        store=InMemoryContentStore(),
        proofs=Ed25519ProofService(clock=clock),
        identities=InMemoryIdentityResolver(),
        issuer=issuer,
    )


def make_services(
    gw: Gateways, clock: Clock = utcnow
) -> tuple[IssuanceCoordinator, VerificationOrchestrator]:
    issuance = IssuanceCoordinator(
        gw.chain,
        gw.store,
        gw.proofs,
        gw.identities,
        issuer=gw.issuer,
        public_base_url="https://api.example.test",
        clock=clock,
    )
    verifier = VerificationOrchestrator(
        gw.chain, gw.store, gw.proofs, network=gw.chain.network, clock=clock
    )
    return issuance, verifier


@pytest.fixture
def gateways() -> Iterator[Gateways]:
    """Fresh collaborators wired into the app for the duration of one test."""
    gw = make_gateways()
    app.dependency_overrides[wiring.get_blockchain] = lambda: gw.chain
    app.dependency_overrides[wiring.get_content_store] = lambda: gw.store
    app.dependency_overrides[wiring.get_proof_service] = lambda: gw.proofs
    app.dependency_overrides[wiring.get_identity_resolver] = lambda: gw.identities
    app.dependency_overrides[wiring.get_issuer] = lambda: gw.issuer
    yield gw
    app.dependency_overrides.clear()


@pytest.fixture
def no_chain(gateways: Gateways) -> Iterator[None]:
    """Run as a deployment with no registry configured."""
    app.dependency_overrides[wiring.get_blockchain] = lambda: None
    yield


@pytest.fixture(autouse=True)
def reset_rate_limiter() -> None:
    """Clear rate limit buckets between tests so limits don't bleed."""
    if hasattr(_rate_limiter, "_buckets"):
        _rate_limiter._buckets.clear()  # type: ignore[union-attr]


@pytest.fixture
def client(gateways: Gateways) -> TestClient:
    return TestClient(app)


def mint_token(
    username: str = "test-user",
    roles: list[str] | None = None,
    wallet_address: str | None = None,
) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(
        sub=username, roles=roles, wallet_address=wallet_address
    )


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def token() -> str:
    """Token with default role (user)."""
    return mint_token()


@pytest.fixture
def institution_token() -> str:
    return mint_token(username="test-institution", roles=["institution"])


@pytest.fixture
def admin_token() -> str:
    """Token with admin role."""
    return mint_token(username="test-admin", roles=["admin"])


ALICE = {
    "studentName": "Alice Example",
    "studentEmail": "alice@example.com",
    "courseName": "Distributed Systems",
    "courseDescription": "Consensus, replication and fault tolerance",
    "credentialType": "Certificate",
    "grade": "A",
    "graduationDate": "2026-06-30",
}


class FakeClock:
    """A settable clock; ``advance`` moves it forward."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeRegistryNode:
    """Stands in for the JSON-RPC node behind Web3BlockchainGateway.

    Like a real node it accepts a transaction only at the sender's next
    nonce and rejects anything else with "nonce too low".  Every await
    yields to the loop so concurrent writers interleave.  ``mine=False``
    leaves broadcast transactions unmined; ``fail_sends`` rejects the
    next N broadcasts outright.
    """

    def __init__(self, *, mine: bool = True, fail_sends: int = 0) -> None:
        self.mine = mine
        self.fail_sends = fail_sends
        self.accepted: list[int] = []
        self.count_reads = 0

    async def get_transaction_count(self, address: str, block: str = "latest") -> int:
        self.count_reads += 1
        await asyncio.sleep(0)
        return len(self.accepted)

    async def send_raw_transaction(self, raw: dict) -> bytes:
        await asyncio.sleep(0)
        if self.fail_sends:
            self.fail_sends -= 1
            raise ValueError({"code": -32000, "message": "insufficient funds"})
        if raw["nonce"] != len(self.accepted):
            raise ValueError({"code": -32000, "message": "nonce too low"})
        self.accepted.append(raw["nonce"])
        return bytes([raw["nonce"]]) * 32

    async def wait_for_transaction_receipt(self, tx_hash: bytes, timeout: float) -> dict:
        if not self.mine:
            await asyncio.sleep(60)
        return {"status": 1, "blockNumber": 1000 + tx_hash[0], "gasUsed": 52000}


class _FakeContractCall:
    async def build_transaction(self, params: dict) -> dict:
        await asyncio.sleep(0)
        return dict(params)


class _FakeContractFunctions:
    def __getattr__(self, name: str):
        return lambda *args: _FakeContractCall()


def web3_gateway_on(
    node: FakeRegistryNode, receipt_timeout: float = 5.0
) -> Web3BlockchainGateway:
    """A real Web3BlockchainGateway whose node, contract and signer are fakes.

    The fake signer passes the unsigned transaction through as the raw
    bytes so the node can read its nonce.
    """
    gateway = Web3BlockchainGateway(
        rpc_url="http://127.0.0.1:9",
        registry_address="0x" + "22" * 20,
        chain_id=80002,
        network="amoy",
        timeout=5.0,
        receipt_timeout=receipt_timeout,
    )
    gateway._w3 = SimpleNamespace(eth=node)  # type: ignore[assignment]
    gateway._contract = SimpleNamespace(functions=_FakeContractFunctions())  # type: ignore[assignment]
    gateway._account = SimpleNamespace(  # type: ignore[assignment]
        address="0x" + "33" * 20,
        sign_transaction=lambda tx: SimpleNamespace(raw_transaction=tx),
    )
    return gateway
