from fastapi import FastAPI, Request, Depends, Path, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from typing import Mapping, Optional
import logging
import structlog
import sys
import time
from contextlib import asynccontextmanager

from models import AmountRequest, AccountResponse, ErrorResponse, HealthResponse
from services import AccountService, get_account_service
from repositories import AccountRegistry, InMemoryAccountRegistry
from errors import AccountError
from config import Settings, get_settings

logger = structlog.get_logger()

ERROR_STATUS = {
    "INVALID_AMOUNT": status.HTTP_400_BAD_REQUEST,
    "INSUFFICIENT_FUNDS": status.HTTP_400_BAD_REQUEST,
    "ACCOUNT_NOT_FOUND": status.HTTP_404_NOT_FOUND,
}


def configure_logging(settings: Settings) -> None:
    """Route structlog through stdlib logging at the configured level."""
    level = settings.log_level.upper()
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    logging.getLogger().setLevel(level)

    if settings.log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


# Application lifespan
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting Bank Account API", accounts_count=app.state.registry.count())
    yield
    # Shutdown
    logger.info("Shutting down Bank Account API", accounts_count=app.state.registry.count())


# Request logging middleware
async def log_requests(request: Request, call_next):
    start_time = time.time()

    logger.info(
        "Request started",
        method=request.method,
        url=str(request.url),
        client_ip=request.client.host if request.client else None
    )

    response = await call_next(request)

    process_time = time.time() - start_time
    logger.info(
        "Request completed",
        method=request.method,
        url=str(request.url),
        status_code=response.status_code,
        process_time=round(process_time, 4)
    )

    return response

def error_response(
    status_code: int,
    detail: str,
    error_code: str,
    headers: Optional[Mapping[str, str]] = None
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(detail=detail, error_code=error_code).model_dump(mode="json"),
        headers=headers
    )


async def account_error_handler(request: Request, exc: AccountError):
    status_code = ERROR_STATUS.get(exc.error_code, status.HTTP_400_BAD_REQUEST)
    return error_response(status_code, str(exc), exc.error_code)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return error_response(
        exc.status_code,
        str(exc.detail),
        f"HTTP_{exc.status_code}",
        headers=getattr(exc, "headers", None)
    )


# slowapi's middleware calls this handler synchronously
def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning(
        "Rate limit exceeded",
        url=str(request.url),
        client_ip=request.client.host if request.client else None,
        limit=str(exc.detail)
    )
    return error_response(
        status.HTTP_429_TOO_MANY_REQUESTS,
        f"Rate limit exceeded: {exc.detail}",
        "HTTP_429"
    )


async def general_exception_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled exception",
        error=str(exc),
        url=str(request.url),
        method=request.method,
        exc_info=True
    )
    return error_response(500, "Internal server error", "INTERNAL_ERROR")


# Dependency injection
def get_registry(request: Request) -> AccountRegistry:
    return request.app.state.registry


def get_service(registry: AccountRegistry = Depends(get_registry)) -> AccountService:
    return get_account_service(registry)


AccountID = Path(..., description="Account identifier")


def register_routes(app: FastAPI) -> None:
    """Attach the endpoints to ``app`` itself so the rate limiter can see each one."""

    @app.get(
        "/health",
        response_model=HealthResponse,
        summary="Health Check",
        description="Check API health and get the number of open accounts"
    )
    def health_check(service: AccountService = Depends(get_service)):
        return HealthResponse(status="healthy", accounts_count=service.accounts_count())

    @app.post(
        "/accounts",
        response_model=AccountResponse,
        status_code=status.HTTP_201_CREATED,
        summary="Create Account",
        description="Open a new account with a zero balance",
        responses={
            201: {"description": "Account created"},
            429: {"model": ErrorResponse, "description": "Rate limit exceeded"}
        }
    )
    def create_account(service: AccountService = Depends(get_service)):
        account = service.create_account()
        return AccountResponse(id=account.id, balance=0.0)

    @app.post(
        "/accounts/{account_id}/deposit",
        response_model=AccountResponse,
        summary="Deposit",
        responses={
            400: {"model": ErrorResponse, "description": "Invalid amount"},
            404: {"model": ErrorResponse, "description": "Account not found"},
            429: {"model": ErrorResponse, "description": "Rate limit exceeded"}
        }
    )
    def deposit(
        body: AmountRequest,
        account_id: int = AccountID,
        service: AccountService = Depends(get_service)
    ):
        balance = service.deposit(account_id, body.amount)
        return AccountResponse(id=account_id, balance=balance)

    @app.post(
        "/accounts/{account_id}/withdraw",
        response_model=AccountResponse,
        summary="Withdraw",
        responses={
            400: {"model": ErrorResponse, "description": "Invalid amount or insufficient funds"},
            404: {"model": ErrorResponse, "description": "Account not found"},
            429: {"model": ErrorResponse, "description": "Rate limit exceeded"}
        }
    )
    def withdraw(
        body: AmountRequest,
        account_id: int = AccountID,
        service: AccountService = Depends(get_service)
    ):
        balance = service.withdraw(account_id, body.amount)
        return AccountResponse(id=account_id, balance=balance)

    @app.get(
        "/accounts/{account_id}/getbalance",
        response_model=AccountResponse,
        summary="Get Balance",
        responses={
            404: {"model": ErrorResponse, "description": "Account not found"},
            429: {"model": ErrorResponse, "description": "Rate limit exceeded"}
        }
    )
    def get_balance(
        account_id: int = AccountID,
        service: AccountService = Depends(get_service)
    ):
        return AccountResponse(id=account_id, balance=service.get_balance(account_id))

    @app.get("/", include_in_schema=False)
    def root():
        return {"message": "Bank Account API", "docs": "/docs"}


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        description="In-memory bank accounts with deposit, withdraw and balance operations",
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    app.state.settings = settings
    # One registry per application instance, alive for the life of the process
    app.state.registry = InMemoryAccountRegistry()

    # Rate limiting
    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[f"{settings.rate_limit_per_minute}/minute"],
        enabled=settings.rate_limit_enabled
    )
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=settings.allowed_methods,
        allow_headers=settings.allowed_headers,
    )
    app.middleware("http")(log_requests)

    app.add_exception_handler(AccountError, account_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    register_routes(app)
    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
