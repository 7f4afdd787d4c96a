"""Prometheus scrape endpoint.

Plain-text exposition format, not JSON.  Besides the HTTP metrics from
MetricsMiddleware it carries the domain counters: verifications by
outcome, issuances by anchoring outcome, collaborator failures by
source, and IPFS byte counts.

Restrict /metrics at the ingress in production; label values reveal
route templates and failure rates.
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter(tags=["observability"])


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
