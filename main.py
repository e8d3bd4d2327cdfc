from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from typing import List
import structlog
import io
import time
from contextlib import asynccontextmanager

from errors import InputFormatError
from models import AccountSnapshot, ErrorResponse, HealthResponse
from readers import read_instructions
from repositories import get_account_repository, get_instruction_history
from services import get_payment_engine
from config import get_settings
from logging_config import configure_logging

settings = get_settings()

# Configure structured logging
configure_logging(settings)

logger = structlog.get_logger()

# Rate limiting
limiter = Limiter(key_func=get_remote_address)


def replay_rate_limit() -> str:
    return f"{get_settings().rate_limit_per_minute}/minute"


# Application lifespan
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting Payment Replay API")
    yield
    # Shutdown
    logger.info("Shutting down Payment Replay API")

# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Replays CSV payment instructions against fresh client accounts and returns the final balances",
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# Add rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

# Request logging middleware
@app.middleware("http")
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

# Health check endpoint
@app.get(
    "/health",
    response_model=HealthResponse,
    summary="Health Check",
    description="Check API health"
)
async def health_check():
    return HealthResponse(status="healthy", version=settings.app_version)

# Replay endpoint
@app.post(
    "/replay",
    response_model=List[AccountSnapshot],
    status_code=status.HTTP_200_OK,
    summary="Replay Instructions",
    description="Apply a CSV body of payment instructions to empty accounts and return every account touched",
    responses={
        200: {"description": "Final account balances, ascending by client id"},
        400: {"description": "Body could not be decoded or its header lacks required columns"},
        413: {"description": "Body exceeds the configured size limit"},
        429: {"description": "Rate limit exceeded"},
        500: {"description": "Internal server error"}
    }
)
@limiter.limit(replay_rate_limit)
async def replay(request: Request):
    current = get_settings()

    # Refuse oversized uploads before buffering them
    declared_size = request.headers.get("content-length")
    if declared_size and declared_size.isdigit() and int(declared_size) > current.max_request_size:
        logger.warning("Replay body too large", size=int(declared_size), limit=current.max_request_size)
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail="Request body too large"
        )

    body = await request.body()
    if len(body) > current.max_request_size:
        logger.warning("Replay body too large", size=len(body), limit=current.max_request_size)
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail="Request body too large"
        )

    try:
        text = body.decode(current.input_encoding)
    except UnicodeDecodeError as e:
        logger.warning("Replay body could not be decoded", error=str(e))
        raise HTTPException(
            status_code=400,
            detail=f"Body is not valid {current.input_encoding}"
        )

    # Each request replays into its own, fresh containers
    account_repo = get_account_repository()
    engine = get_payment_engine(account_repo, get_instruction_history())
    try:
        summary = engine.process(read_instructions(io.StringIO(text, newline="")))
    except InputFormatError as e:
        logger.warning("Replay body has an unusable header", error=str(e))
        raise HTTPException(status_code=400, detail=str(e))

    logger.info(
        "Replay request completed",
        accounts=len(account_repo),
        applied=summary.applied,
        skipped=summary.skipped,
        rejected=summary.rejected
    )
    return account_repo.snapshots(current.display_precision)

# Global exception handler
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            detail=exc.detail,
            error_code=f"HTTP_{exc.status_code}"
        ).model_dump(mode="json")
    )

@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled exception",
        error=str(exc),
        url=str(request.url),
        method=request.method,
        exc_info=True
    )

    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            detail="Internal server error",
            error_code="INTERNAL_ERROR"
        ).model_dump(mode="json")
    )

# Root endpoint
@app.get("/", include_in_schema=False)
async def root():
    return {"message": settings.app_name, "docs": "/docs"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
