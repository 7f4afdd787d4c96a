"""Collaborator construction and the FastAPI dependencies that expose them.

Collaborators (registry client, content store, proof service, identity
resolver, issuer key) are built once per process from SETTINGS, with
the same "real backend if configured, in-memory otherwise" choice the
rate limiter makes for Redis.  Orchestrators are cheap and built per
request from those collaborators, so no request shares mutable state
with another.

Tests swap collaborators through ``app.dependency_overrides`` on the
``get_*`` functions below.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends

from app.core.config import SETTINGS, Settings
from app.core.errors import UnavailableError
from app.gateways.blockchain import (
    CHAIN_NOT_CONFIGURED,
    BlockchainGateway,
    InMemoryBlockchainGateway,
    Web3BlockchainGateway,
)
from app.gateways.content_store import (
    ContentStore,
    InMemoryContentStore,
    IpfsHttpContentStore,
)
from app.gateways.identity import (
    DidSigner,
    IdentityResolver,
    InMemoryIdentityResolver,
    load_issuer,
)
from app.gateways.proofs import Ed25519ProofService, ProofService
from app.services.issuance import IssuanceCoordinator
from app.services.verification import VerificationOrchestrator

logger = logging.getLogger(__name__)


def build_blockchain(settings: Settings, issuer: DidSigner) -> BlockchainGateway | None:
    backend = settings.chain_backend
    if backend == "web3":
        logger.info("Registry: %s via JSON-RPC", settings.chain_network)
        return Web3BlockchainGateway(
            rpc_url=settings.rpc_url or "",
            registry_address=settings.registry_address or "",
            chain_id=settings.chain_id,
            network=settings.chain_network,
            private_key=settings.signer_private_key,
            timeout=settings.chain_timeout_seconds,
            receipt_timeout=settings.chain_receipt_timeout_seconds,
        )
    if backend == "none":
        logger.warning("No registry configured, registry-backed routes answer 503")
        return None

    chain = InMemoryBlockchainGateway(network=settings.chain_network)
    # The local signer is both registry owner and a verified institution,
    # so dev issuance anchors out of the box.
    chain.seed_institution(settings.issuer_name, issuer.did)
    logger.info("Registry: in-memory (%s)", settings.chain_network)
    return chain


def build_content_store(settings: Settings) -> ContentStore:
    if settings.content_backend == "http":
        logger.info("Content store: IPFS RPC at %s", settings.ipfs_api_url)
        return IpfsHttpContentStore(
            api_url=settings.ipfs_api_url or "",
            gateway_url=settings.ipfs_gateway_url,
            timeout=settings.ipfs_timeout_seconds,
            max_bytes=settings.ipfs_max_bytes,
            project_id=settings.ipfs_project_id,
            project_secret=settings.ipfs_project_secret,
        )
    logger.info("Content store: in-memory")
    return InMemoryContentStore(
        gateway_url=settings.ipfs_gateway_url,
        timeout=settings.ipfs_timeout_seconds,
        max_bytes=settings.ipfs_max_bytes,
    )


issuer = load_issuer(SETTINGS.issuer_name, SETTINGS.issuer_signing_seed)
blockchain = build_blockchain(SETTINGS, issuer)
content_store = build_content_store(SETTINGS)
proof_service = Ed25519ProofService()
identity_resolver = InMemoryIdentityResolver()


@asynccontextmanager
async def lifespan_gateways():
    """Release the IPFS HTTP client on shutdown."""
    try:
        yield
    finally:
        if isinstance(content_store, IpfsHttpContentStore):
            await content_store.aclose()
            logger.info("IPFS client closed")


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_blockchain() -> BlockchainGateway | None:
    return blockchain


def get_content_store() -> ContentStore:
    return content_store


def get_proof_service() -> ProofService:
    return proof_service


def get_identity_resolver() -> IdentityResolver:
    return identity_resolver


def get_issuer() -> DidSigner:
    return issuer


def require_blockchain(
    chain: Annotated[BlockchainGateway | None, Depends(get_blockchain)],
) -> BlockchainGateway:
    """For routes whose only source of truth is the registry."""
    if chain is None:
        raise UnavailableError(CHAIN_NOT_CONFIGURED, source="blockchain")
    return chain


def get_verifier(
    chain: Annotated[BlockchainGateway | None, Depends(get_blockchain)],
    store: Annotated[ContentStore, Depends(get_content_store)],
    proofs: Annotated[ProofService, Depends(get_proof_service)],
) -> VerificationOrchestrator:
    return VerificationOrchestrator(
        chain, store, proofs, network=chain.network if chain else SETTINGS.chain_network
    )


def get_issuance(
    chain: Annotated[BlockchainGateway | None, Depends(get_blockchain)],
    store: Annotated[ContentStore, Depends(get_content_store)],
    proofs: Annotated[ProofService, Depends(get_proof_service)],
    identities: Annotated[IdentityResolver, Depends(get_identity_resolver)],
    signer: Annotated[DidSigner, Depends(get_issuer)],
) -> IssuanceCoordinator:
    return IssuanceCoordinator(
        chain,
        store,
        proofs,
        identities,
        issuer=signer,
        public_base_url=SETTINGS.public_api_url,
        max_workers=SETTINGS.batch_max_workers,
    )
