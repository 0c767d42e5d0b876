"""Health check endpoint for AdvisorQ API."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Request

from advisorq.config import APP_NAME, APP_VERSION, get_environment
from advisorq.observability.telemetry import health_snapshot

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request) -> dict[str, Any]:
    """
    Service status plus in-process advisor numbers.

    Reports whether provider credentials are present but never calls the
    provider.
    """
    provider = request.app.state.provider_client
    return {
        "status": "healthy",
        "service": APP_NAME,
        "version": APP_VERSION,
        "environment": get_environment(),
        "timestamp": datetime.now(UTC).isoformat(),
        "provider": {"configured": provider.configured},
        **health_snapshot(),
    }
