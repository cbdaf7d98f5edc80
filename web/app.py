"""
FastAPI application for the bidding engine API.

Production deployment configuration via environment variables.
"""

import logging
import os
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from core.bidding import (
    ApprovalStatus,
    BiddingError,
    BiddingRepository,
    BiddingService,
    ErrorKind,
    Principal,
    Role,
)
from processor import build_processor
from utils.config import Config
from web.auth import sign_token
from web.bid_routes import router as bid_router
from web.payment_routes import router as payment_router
from web.place_routes import router as place_router
from web.student_routes import router as student_router


logger = logging.getLogger(__name__)

# =============================================================================
# Environment Configuration
# =============================================================================

# Production mode detection
IS_PRODUCTION = os.getenv("PRODUCTION", "").lower() == "true"

# CORS configuration - locked down for production
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "").split(",") if os.getenv("ALLOWED_ORIGINS") else []
if not ALLOWED_ORIGINS and not IS_PRODUCTION:
    # Development fallback only
    ALLOWED_ORIGINS = ["http://localhost:5173", "http://127.0.0.1:5173"]


# ErrorKind -> HTTP status
ERROR_STATUS_CODES = {
    ErrorKind.PLACE_UNAVAILABLE: 400,
    ErrorKind.DATE_OUT_OF_WINDOW: 400,
    ErrorKind.INVALID_DATE_RANGE: 400,
    ErrorKind.DATE_BLOCKED: 400,
    ErrorKind.INVALID_BID_AMOUNT: 400,
    ErrorKind.INVALID_PLACE: 400,
    ErrorKind.INVALID_PAYOUT: 400,
    ErrorKind.INVALID_WEBHOOK: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.DUPLICATE_BID: 409,
    ErrorKind.INVALID_STATE_TRANSITION: 409,
    ErrorKind.PAYMENT_NOT_CAPTURED: 409,
    ErrorKind.PROCESSOR_ERROR: 502,
}


class TokenRequest(BaseModel):
    """Development-only token request."""
    principal_id: str
    role: str
    email: Optional[str] = None
    name: Optional[str] = None


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_service(config: Config) -> BiddingService:
    """Wire repository, processor and config into a BiddingService."""
    repository = BiddingRepository(str(Path(config.data_dir) / "bidding.json"))
    return BiddingService(repository, config, build_processor(config))


def create_app(
    config: Optional[Config] = None,
    service: Optional[BiddingService] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        config: Configuration (loaded from environment if omitted)
        service: Pre-built service (tests pass one with a mock processor
            and fixed clock)
    """
    config = config or Config.load()
    configure_logging(config.log_level)

    app = FastAPI(
        title="Campus Bid Engine",
        description="Bid lifecycle and settlement engine for student accommodation",
        version="0.1.0",
        # Production settings: disable docs for private deployment
        docs_url=None if IS_PRODUCTION else "/docs",
        redoc_url=None if IS_PRODUCTION else "/redoc",
        openapi_url=None if IS_PRODUCTION else "/openapi.json",
        debug=config.debug and not IS_PRODUCTION,
    )
    app.state.config = config
    app.state.service = service or build_service(config)

    @app.get("/health", include_in_schema=False)
    def health():
        """Health endpoint. No dependencies, no IO."""
        return {"status": "healthy"}

    # CORS middleware - locked down for production
    if ALLOWED_ORIGINS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=ALLOWED_ORIGINS,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "PATCH"],
            allow_headers=["*"],
        )

    @app.exception_handler(BiddingError)
    async def bidding_error_handler(request: Request, exc: BiddingError):
        status_code = ERROR_STATUS_CODES.get(exc.kind, 400)
        if status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.reason)
        return JSONResponse(exc.to_dict(), status_code=status_code)

    if config.debug and not IS_PRODUCTION:
        @app.post("/auth/token", include_in_schema=False)
        async def issue_dev_token(body: TokenRequest):
            """Mint a bearer token without an identity provider. Debug only."""
            try:
                role = Role(body.role.upper())
            except ValueError:
                raise HTTPException(status_code=400, detail=f"Unknown role: {body.role}")
            principal = Principal(
                principal_id=body.principal_id,
                role=role,
                approval_status=ApprovalStatus.PENDING if role == Role.STUDENT else None,
                email=body.email,
                name=body.name,
            )
            return {"access_token": sign_token(principal, config.session_secret), "token_type": "bearer"}

    app.include_router(place_router)
    app.include_router(bid_router)
    app.include_router(payment_router)
    app.include_router(student_router)

    logger.info("Campus Bid Engine configured (processor=%s)", config.processor_type)
    return app
