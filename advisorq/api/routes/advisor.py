"""
Advisor insight routes.

- GET  /advisor/insights             cached or freshly generated insight
- POST /advisor/insights/free-check  one free regeneration per UTC day
- GET  /advisor/provider-health      provider model check (not served in production)
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request

from advisorq import errors
from advisorq.advisor.service import AdvisorService
from advisorq.advisor.types import AdvisorInsight, Language
from advisorq.api.middleware.user_auth import AuthenticatedUser, require_user
from advisorq.config import is_production

router = APIRouter(prefix="/advisor", tags=["advisor"])

REQUEST_ID_HEADER = "X-Advisor-Request-Id"
MONTH_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


def get_service(request: Request) -> AdvisorService:
    return request.app.state.advisor_service


async def rate_limited_user(
    user: AuthenticatedUser = Depends(require_user),
    service: AdvisorService = Depends(get_service),
) -> AuthenticatedUser:
    """Authenticate, then count the request against the per-user window."""
    service.enforce_rate_limit(user.id)
    return user


@router.get("/insights", response_model=AdvisorInsight, response_model_by_alias=True)
async def get_advisor_insights(
    request: Request,
    month: str = Query(..., pattern=MONTH_PATTERN),
    language: Language = Query(Language.TR),
    regenerate: bool = Query(False),
    user: AuthenticatedUser = Depends(rate_limited_user),
    service: AdvisorService = Depends(get_service),
) -> AdvisorInsight:
    request_id = (request.headers.get(REQUEST_ID_HEADER) or "").strip() or None
    if regenerate and request_id is None:
        request_id = service.correlator.create_request_id()

    return await service.get_insight(
        user.id,
        month,
        language,
        regenerate=regenerate,
        request_id=request_id,
    )


@router.post("/insights/free-check")
async def check_free_usage(
    user: AuthenticatedUser = Depends(require_user),
    service: AdvisorService = Depends(get_service),
) -> dict[str, Any]:
    return service.consume_free_usage(user.id).to_dict()


@router.get("/provider-health")
async def provider_health(
    user: AuthenticatedUser = Depends(require_user),
    service: AdvisorService = Depends(get_service),
) -> dict[str, Any]:
    if is_production():
        raise errors.not_found()

    health = await service.provider_health()
    return health.to_dict()
