"""
Withdrawal Microservice API

Subscription-tiered cash withdrawals: fee previews, withdrawal commits,
redemption tokens and the agent-side verify/redeem flow.

Caller identity and agent role checks happen at the gateway before requests
reach this service.
"""

import os
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

# Add parent directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../.."))
from core.config_manager import ConfigManager
from core.logger import setup_service_logger
from core.nats_client import get_event_bus

from .factory import create_withdrawal_service
from .models import (
    CalculateWithdrawalRequest,
    CancelTokenRequest,
    CancellationResponse,
    DetailedHealthCheckResponse,
    ErrorResponse,
    HealthCheckResponse,
    IssueTokenRequest,
    ProcessWithdrawalRequest,
    ProcessWithdrawalResponse,
    RedeemTokenRequest,
    RedemptionResponse,
    TokenListResponse,
    TokenVerificationResponse,
    TransactionListResponse,
    VerifyTokenRequest,
    WithdrawalCalculation,
    WithdrawalStatsResponse,
    WithdrawalToken,
)
from .protocols import (
    DependencyError,
    DuplicateTokenCodeError,
    LimitExceededError,
    StateConflictError,
    WithdrawalNotFoundError,
    WithdrawalServiceError,
    WithdrawalValidationError,
)
from .token_service import DEFAULT_AGENT_TOKEN_LIMIT, DEFAULT_USER_TOKEN_LIMIT, TokenService
from .withdrawal_service import DEFAULT_TRANSACTION_LIMIT, MAX_TRANSACTION_LIMIT, WithdrawalService

SERVICE_NAME = "withdrawal_service"
SERVICE_VERSION = "1.0.0"

# Initialize configuration manager
config_manager = ConfigManager(SERVICE_NAME)
config = config_manager.get_service_config()

# Configure logging
logger = setup_service_logger(SERVICE_NAME, level=config.log_level.upper())

# Print configuration info (development environment)
if config.debug:
    config_manager.print_config_summary(show_secrets=False)

# Global variables
withdrawal_service: Optional[WithdrawalService] = None
token_service: Optional[TokenService] = None
repository = None
event_bus = None  # NATS event bus
SERVICE_PORT = config.service_port or 8240


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management"""
    global withdrawal_service, token_service, repository, event_bus

    try:
        try:
            event_bus = await get_event_bus(SERVICE_NAME, config=config_manager)
            logger.info("✅ Event bus initialized successfully")
        except Exception as e:
            logger.warning(f"⚠️  Failed to initialize event bus: {e}. Continuing without event publishing.")
            event_bus = None

        withdrawal_service = create_withdrawal_service(config=config_manager, event_bus=event_bus)
        token_service = withdrawal_service.token_service

        repository = withdrawal_service.repository
        await repository.initialize()

        logger.info(f"✅ Withdrawal service started on port {SERVICE_PORT}")
        yield

    except Exception as e:
        logger.error(f"Failed to initialize withdrawal service: {e}")
        raise
    finally:
        if event_bus:
            try:
                await event_bus.close()
                logger.info("Withdrawal event bus closed")
            except Exception as e:
                logger.error(f"Error closing event bus: {e}")

        if token_service:
            for client in (token_service.notification_client, token_service.account_client):
                if client is not None and hasattr(client, "close"):
                    await client.close()

        if repository:
            await repository.close()
            logger.info("Withdrawal service database connections closed")


# Create FastAPI application
app = FastAPI(
    title="Withdrawal Service",
    description="Subscription-tiered cash withdrawals with agent-redeemed tokens",
    version=SERVICE_VERSION,
    lifespan=lifespan,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)


# ====================
# Dependency Injection
# ====================


async def get_withdrawal_service() -> WithdrawalService:
    """Get withdrawal service instance"""
    if not withdrawal_service:
        raise HTTPException(status_code=503, detail="Withdrawal service not initialized")
    return withdrawal_service


async def get_token_service() -> TokenService:
    """Get token lifecycle service instance"""
    if not token_service:
        raise HTTPException(status_code=503, detail="Withdrawal service not initialized")
    return token_service


# ====================
# Exception Handlers
# ====================


def _error_response(status_code: int, exc: WithdrawalServiceError) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error_code": exc.error_code},
    )


@app.exception_handler(WithdrawalValidationError)
async def validation_error_handler(request: Request, exc: WithdrawalValidationError):
    return _error_response(status.HTTP_400_BAD_REQUEST, exc)


@app.exception_handler(WithdrawalNotFoundError)
async def not_found_error_handler(request: Request, exc: WithdrawalNotFoundError):
    return _error_response(status.HTTP_404_NOT_FOUND, exc)


@app.exception_handler(StateConflictError)
async def state_conflict_error_handler(request: Request, exc: StateConflictError):
    return _error_response(status.HTTP_409_CONFLICT, exc)


@app.exception_handler(LimitExceededError)
async def limit_exceeded_error_handler(request: Request, exc: LimitExceededError):
    return _error_response(422, exc)


@app.exception_handler(DependencyError)
async def dependency_error_handler(request: Request, exc: DependencyError):
    return _error_response(status.HTTP_503_SERVICE_UNAVAILABLE, exc)


@app.exception_handler(DuplicateTokenCodeError)
async def duplicate_code_error_handler(request: Request, exc: DuplicateTokenCodeError):
    return _error_response(status.HTTP_503_SERVICE_UNAVAILABLE, exc)


@app.exception_handler(WithdrawalServiceError)
async def service_error_handler(request: Request, exc: WithdrawalServiceError):
    logger.error(f"Unhandled withdrawal error on {request.url.path}: {exc}")
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, exc)


# ====================
# Health Check
# ====================


@app.get("/health", response_model=HealthCheckResponse)
async def health_check():
    """Basic health check"""
    return HealthCheckResponse(
        status="healthy",
        service=SERVICE_NAME,
        port=SERVICE_PORT,
        version=SERVICE_VERSION,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@app.get("/health/detailed", response_model=DetailedHealthCheckResponse)
async def detailed_health_check():
    """Health check including store and event bus connectivity"""
    database_connected = False
    if repository is not None:
        result = await repository.db.health_check()
        database_connected = bool(result and result.get("healthy"))

    return DetailedHealthCheckResponse(
        status="operational" if database_connected else "degraded",
        port=SERVICE_PORT,
        version=SERVICE_VERSION,
        database_connected=database_connected,
        event_bus_connected=bool(event_bus and event_bus.is_connected),
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


# ====================
# Withdrawals
# ====================


@app.post("/api/v1/withdrawals/calculate", response_model=WithdrawalCalculation)
async def calculate_withdrawal(
    request: CalculateWithdrawalRequest,
    service: WithdrawalService = Depends(get_withdrawal_service),
):
    """Preview fee and eligibility; never writes"""
    return await service.calculate_withdrawal(request.user_id, request.amount)


@app.post(
    "/api/v1/withdrawals",
    response_model=ProcessWithdrawalResponse,
    status_code=status.HTTP_201_CREATED,
)
async def process_withdrawal(
    request: ProcessWithdrawalRequest,
    service: WithdrawalService = Depends(get_withdrawal_service),
):
    """Commit a withdrawal and return its redemption token"""
    return await service.process_withdrawal(
        user_id=request.user_id,
        amount=request.amount,
        agent_id=request.agent_id,
        agent_location=request.agent_location,
    )


@app.get("/api/v1/withdrawals", response_model=TransactionListResponse)
async def list_withdrawals(
    user_id: str = Query(..., min_length=1),
    limit: int = Query(DEFAULT_TRANSACTION_LIMIT, ge=1, le=MAX_TRANSACTION_LIMIT),
    service: WithdrawalService = Depends(get_withdrawal_service),
):
    """Recent withdrawals, newest first"""
    items = await service.list_transactions(user_id, limit)
    return TransactionListResponse(transactions=items, count=len(items))


@app.get("/api/v1/withdrawals/stats", response_model=WithdrawalStatsResponse)
async def get_withdrawal_stats(
    user_id: str = Query(..., min_length=1),
    service: WithdrawalService = Depends(get_withdrawal_service),
):
    return await service.get_withdrawal_stats(user_id)


# ====================
# Withdrawal Tokens (user side)
# ====================


@app.post(
    "/api/v1/withdrawal-tokens",
    response_model=WithdrawalToken,
    status_code=status.HTTP_201_CREATED,
)
async def issue_token(
    request: IssueTokenRequest,
    tokens: TokenService = Depends(get_token_service),
):
    """Replace the expired token of a PENDING withdrawal"""
    return await tokens.issue(request.user_id, request.transaction_id, request.amount)


@app.get("/api/v1/withdrawal-tokens", response_model=TokenListResponse)
async def list_user_tokens(
    user_id: str = Query(..., min_length=1),
    limit: int = Query(DEFAULT_USER_TOKEN_LIMIT, ge=1, le=100),
    tokens: TokenService = Depends(get_token_service),
):
    items = await tokens.list_for_user(user_id, limit)
    return TokenListResponse(tokens=items, count=len(items))


@app.get("/api/v1/withdrawal-tokens/{token_id}", response_model=WithdrawalToken)
async def get_token(
    token_id: str,
    tokens: TokenService = Depends(get_token_service),
):
    return await tokens.get_token(token_id)


@app.post("/api/v1/withdrawal-tokens/{token_id}/cancel", response_model=CancellationResponse)
async def cancel_token(
    token_id: str,
    request: CancelTokenRequest,
    tokens: TokenService = Depends(get_token_service),
):
    return await tokens.cancel(token_id, request.user_id)


# ====================
# Agent Endpoints
# ====================


@app.post("/api/v1/agents/tokens/verify", response_model=TokenVerificationResponse)
async def verify_token(
    request: VerifyTokenRequest,
    tokens: TokenService = Depends(get_token_service),
):
    return await tokens.verify(request.token)


@app.post("/api/v1/agents/tokens/redeem", response_model=RedemptionResponse)
async def redeem_token(
    request: RedeemTokenRequest,
    tokens: TokenService = Depends(get_token_service),
):
    return await tokens.redeem(request.token, request.agent_id, request.location)


@app.get("/api/v1/agents/{agent_id}/tokens", response_model=TokenListResponse)
async def list_agent_tokens(
    agent_id: str,
    limit: int = Query(DEFAULT_AGENT_TOKEN_LIMIT, ge=1, le=100),
    tokens: TokenService = Depends(get_token_service),
):
    items = await tokens.list_for_agent(agent_id, limit)
    return TokenListResponse(tokens=items, count=len(items))


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "microservices.withdrawal_service.main:app",
        host=config.service_host,
        port=SERVICE_PORT,
        reload=config.debug,
    )
