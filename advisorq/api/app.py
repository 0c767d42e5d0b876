"""FastAPI server for AdvisorQ advisor insights"""

from __future__ import annotations

import os
import time
from collections.abc import Callable

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from advisorq import errors
from advisorq.advisor.cache import InsightCache
from advisorq.advisor.gatekeeper import RequestGatekeeper
from advisorq.advisor.generator import InsightGenerator
from advisorq.advisor.service import AdvisorService
from advisorq.advisor.snapshot import LedgerSnapshotBuilder, LedgerStore, SnapshotBuilder
from advisorq.api.middleware.user_auth import UserResolver, resolver_from_env
from advisorq.api.routes.advisor import REQUEST_ID_HEADER
from advisorq.api.routes.advisor import router as advisor_router
from advisorq.api.routes.health import router as health_router
from advisorq.config import APP_NAME, APP_VERSION, ProviderSettings, get_environment, load_provider_settings
from advisorq.errors import ApiError
from advisorq.llm.prompts import PromptLoader
from advisorq.llm.provider import ProviderClient
from advisorq.observability.diagnostics import DiagnosticsCorrelator
from advisorq.observability.logging import get_logger
from advisorq.observability.telemetry import counter, log_event
from advisorq.utils.error_sanitizer import get_safe_error_detail
from advisorq.utils.redaction import redact

# Load environment variables from .env file
load_dotenv()

logger = get_logger(__name__)


def _allowed_origins() -> list[str]:
    origins = [origin.strip() for origin in os.getenv("ADVISORQ_ALLOWED_ORIGINS", "").split(",") if origin.strip()]
    if get_environment() == "development":
        origins.extend(["http://localhost:3000", "http://localhost:8081", "http://127.0.0.1:3000"])
    return origins


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
        counter(f"api.errors.{exc.code}")
        headers: dict[str, str] = {}
        if exc.retry_after_sec is not None:
            headers["Retry-After"] = str(exc.retry_after_sec)
        if exc.status_code == status.HTTP_401_UNAUTHORIZED:
            headers["WWW-Authenticate"] = "Bearer"
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload(), headers=headers or None)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """
        Return field names only, never the validation rules or input values.
        """
        logger.warning("Validation error on %s: %s", redact(str(request.url)), exc.errors())
        counter("api.validation_errors")
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=errors.error_payload(
                errors.VALIDATION_ERROR,
                "Invalid request. Please check your request and try again.",
                {"invalidFields": [str(err["loc"][-1]) for err in exc.errors()]},
            ),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        counter("api.errors.unhandled")
        detail = get_safe_error_detail(exc, 500, context="Internal server error")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=errors.error_payload(errors.INTERNAL_ERROR, detail),
        )


def create_app(
    provider_settings: ProviderSettings | None = None,
    snapshot_builder: SnapshotBuilder | None = None,
    user_resolver: UserResolver | None = None,
    clock: Callable[[], float] = time.time,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """
    Build the API with its own gatekeeper, cache and diagnostics stores.

    Args:
        provider_settings: defaults to ADVISORQ_PROVIDER_* environment variables
        snapshot_builder: defaults to an empty in-memory ledger
        user_resolver: defaults to the resolver configured by environment
        clock: epoch-seconds clock shared by every store
        transport: httpx transport for provider calls (tests pass MockTransport)
    """
    app = FastAPI(title=APP_NAME, version=APP_VERSION)

    settings = provider_settings or load_provider_settings()
    provider_client = ProviderClient(settings, transport=transport)
    builder = snapshot_builder or LedgerSnapshotBuilder(LedgerStore(), clock=clock)
    correlator = DiagnosticsCorrelator(clock=clock)

    app.state.provider_client = provider_client
    app.state.user_resolver = user_resolver or resolver_from_env()
    app.state.correlator = correlator
    app.state.advisor_service = AdvisorService(
        gatekeeper=RequestGatekeeper(clock=clock),
        cache=InsightCache(),
        generator=InsightGenerator(builder, provider_client, PromptLoader(), clock=clock),
        correlator=correlator,
    )

    _register_exception_handlers(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", REQUEST_ID_HEADER],
    )

    app.include_router(health_router)
    app.include_router(advisor_router)

    if not settings.configured:
        logger.warning("Advisor provider credentials not set, insights will use fallback advice")

    log_event(
        "api.startup",
        service="advisorq",
        version=APP_VERSION,
        environment=get_environment(),
        provider_configured=settings.configured,
    )
    return app


app = create_app()


def main() -> None:
    import uvicorn

    uvicorn.run(
        "advisorq.api.app:app",
        host=os.getenv("ADVISORQ_HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
    )
