"""Health and readiness endpoints.

  /health (liveness): always 200 while the process can answer.  The
    body reports each collaborator so a dashboard can show "alive but
    impaired" without the orchestrator restarting a healthy process
    because the RPC provider is having a bad minute.

  /ready (readiness): 503 when the content store is unreachable.  Every
    issuance and every metadata read needs it.  The registry is not
    part of readiness: issuance degrades to unanchored credentials and
    verification reports the chain failure in its verdict.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Response

from app.db.redis import redis_pool
from app.gateways.blockchain import BlockchainGateway
from app.gateways.content_store import ContentStore
from app.services.wiring import get_blockchain, get_content_store

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(
    chain: Annotated[BlockchainGateway | None, Depends(get_blockchain)],
    store: Annotated[ContentStore, Depends(get_content_store)],
) -> dict:
    checks: dict[str, str] = {}
    overall = "ok"

    # --- Redis check ---
    if redis_pool is not None:
        try:
            await redis_pool.ping()  # type: ignore[misc]
            checks["redis"] = "ok"
        except Exception:
            checks["redis"] = "degraded"
            overall = "degraded"
    else:
        checks["redis"] = "not_configured"

    # --- Registry ---
    if chain is None:
        checks["blockchain"] = "not_configured"
    elif await chain.ping():
        checks["blockchain"] = "ok"
    else:
        checks["blockchain"] = "degraded"
        overall = "degraded"

    # --- IPFS ---
    if await store.ping():
        checks["ipfs"] = "ok"
    else:
        checks["ipfs"] = "degraded"
        overall = "degraded"

    return {
        "status": overall,
        "checks": checks,
        "network": chain.network if chain is not None else None,
    }


@router.get("/ready")
async def ready(
    store: Annotated[ContentStore, Depends(get_content_store)],
) -> Response:
    if not await store.ping():
        return Response(status_code=503)
    return Response(status_code=200)
