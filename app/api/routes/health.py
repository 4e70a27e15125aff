from __future__ import annotations

from fastapi import APIRouter

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Liveness probe.

    Not rate limited and does not touch the rate limit store, so a Redis
    outage never makes the service look dead to a load balancer.
    """

    return {"status": "ok"}
