import logging
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Path, Request, Response, status
from fastapi.responses import JSONResponse

from scraper_db.config import get_settings
from scraper_db.conversions import parse_h256, to_hex
from scraper_db.errors import DecodeError, QueryError
from scraper_db.logging_utils import RequestLoggingMiddleware, setup_logging
from scraper_db.message import dispatch_tx_id, highest_nonce, message_by_nonce
from scraper_db.metrics import get_metrics, get_metrics_content_type
from scraper_db.schemas import (
    U32_MAX,
    ErrorResponse,
    HealthResponse,
    MessageResponse,
    NonceResponse,
    TxIdResponse,
)
from scraper_db.storage import ScraperDb, check_db_health, init_db


# Setup structured JSON logging
setup_logging(get_settings().LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: Open the store handle and create tables
    - Shutdown: Release pooled connections
    """
    db = ScraperDb.from_settings(get_settings())
    await init_db(db)
    app.state.db = db
    try:
        yield
    finally:
        await db.dispose()


app = FastAPI(
    title="Scraper DB",
    description="Read API over scraped cross-chain dispatches and deliveries",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


def get_db(request: Request) -> ScraperDb:
    return request.app.state.db


Domain = Annotated[int, Path(ge=0, le=U32_MAX, description="Origin domain id")]
Mailbox = Annotated[str, Path(description="Mailbox address, hex, 20 or 32 bytes")]
Nonce = Annotated[int, Path(ge=0, le=U32_MAX)]


@app.exception_handler(DecodeError)
async def decode_error_handler(request: Request, exc: DecodeError) -> JSONResponse:
    logger.warning(f"Decode error: {exc}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": str(exc)},
    )


@app.exception_handler(QueryError)
async def query_error_handler(request: Request, exc: QueryError) -> JSONResponse:
    logger.error(f"Query error: {exc}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Database unavailable"},
    )


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """Liveness probe - always returns 200 once the app is running."""
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response, db: ScraperDb = Depends(get_db)) -> HealthResponse:
    """
    Readiness probe - returns 200 only if the DB is reachable and both
    tables exist, otherwise 503.
    """
    if not await check_db_health(db):
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )
    return HealthResponse(status="ready")


# =============================================================================
# Resumption Routes
# =============================================================================

@app.get(
    "/mailboxes/{origin_domain}/{mailbox}/nonce",
    response_model=NonceResponse,
    responses={422: {"model": ErrorResponse, "description": "Malformed mailbox address"}},
)
async def get_highest_nonce(
    origin_domain: Domain,
    mailbox: Mailbox,
    db: ScraperDb = Depends(get_db),
) -> NonceResponse:
    """Highest stored nonce for a mailbox; null if nothing is stored yet."""
    origin_mailbox = parse_h256(mailbox)
    nonce = await highest_nonce(db, origin_domain, origin_mailbox)
    logger.info(f"GET nonce: origin_domain={origin_domain}, nonce={nonce}")
    return NonceResponse(
        origin_domain=origin_domain,
        origin_mailbox=to_hex(origin_mailbox),
        nonce=nonce,
    )


@app.get(
    "/mailboxes/{origin_domain}/{mailbox}/messages/{nonce}",
    response_model=MessageResponse,
    responses={
        404: {"model": ErrorResponse, "description": "No message with this nonce"},
        422: {"model": ErrorResponse, "description": "Malformed mailbox address"},
    },
)
async def get_message(
    origin_domain: Domain,
    mailbox: Mailbox,
    nonce: Nonce,
    db: ScraperDb = Depends(get_db),
) -> MessageResponse:
    """Dispatched message stored under (origin_domain, mailbox, nonce)."""
    message = await message_by_nonce(db, origin_domain, parse_h256(mailbox), nonce)
    if message is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="message not found"
        )
    return MessageResponse.from_message(message)


@app.get(
    "/mailboxes/{origin_domain}/{mailbox}/messages/{nonce}/tx",
    response_model=TxIdResponse,
    responses={
        404: {"model": ErrorResponse, "description": "No message with this nonce"},
        422: {"model": ErrorResponse, "description": "Malformed mailbox address"},
    },
)
async def get_dispatch_tx(
    origin_domain: Domain,
    mailbox: Mailbox,
    nonce: Nonce,
    db: ScraperDb = Depends(get_db),
) -> TxIdResponse:
    """Transaction record id the message was dispatched in."""
    tx_id = await dispatch_tx_id(db, origin_domain, parse_h256(mailbox), nonce)
    if tx_id is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="message not found"
        )
    return TxIdResponse(tx_id=tx_id)


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus-style metrics."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
