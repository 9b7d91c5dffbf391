"""FastAPI application for the chain data gateway."""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

from app.chain import ChainClient, chain_client
from app.config import get_settings
from app.errors import InvalidInputError, ResolverError
from app.models import BlockView, ErrorResponse, HealthResponse, TransactionView
from app.resolvers import resolve_block, resolve_transaction

# Configure logging
logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Prometheus metrics
REQUEST_COUNT = Counter(
    'gateway_requests_total',
    'Total requests',
    ['method', 'endpoint', 'status']
)
REQUEST_LATENCY = Histogram(
    'gateway_request_latency_seconds',
    'Request latency',
    ['endpoint']
)
RESOLVER_FAILURES = Counter(
    'gateway_resolver_failures_total',
    'Failed block/transaction resolutions',
    ['kind']
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting chain gateway...")
    settings = get_settings()

    logger.info(f"RPC URL: {settings.rpc_url}")
    if settings.chain_id is not None:
        logger.info(f"Expected chain ID: {settings.chain_id}")

    await chain_client.connect()

    yield

    # Shutdown
    logger.info("Shutting down...")
    await chain_client.close()
    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Chain Gateway",
    description="Simplified JSON views of Ethereum blocks and transactions",
    version="1.0.0",
    lifespan=lifespan
)

# Add Gzip compression middleware (min 1KB to compress)
app.add_middleware(GZipMiddleware, minimum_size=1000)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Middleware to track request metrics."""
    start_time = time.time()
    response = await call_next(request)

    # Label by route template so each block number or hash is not its own series
    if request.url.path != "/metrics":
        route = request.scope.get("route")
        endpoint = route.path if route is not None else "unmatched"
        latency = time.time() - start_time
        REQUEST_COUNT.labels(
            method=request.method,
            endpoint=endpoint,
            status=response.status_code
        ).inc()
        REQUEST_LATENCY.labels(endpoint=endpoint).observe(latency)

    return response


@app.exception_handler(ResolverError)
async def resolver_error_handler(request: Request, exc: ResolverError):
    """Render a resolver failure; no partial view is ever returned."""
    RESOLVER_FAILURES.labels(kind=exc.kind).inc()

    if isinstance(exc, InvalidInputError):
        logger.warning(f"Rejected {request.url.path}: {exc.message} ({exc.identifier!r})")
        detail = exc.message
    else:
        logger.error(
            f"Failed {request.url.path} for {exc.identifier!r} at step {exc.step or 'unknown'}: "
            f"{exc.kind}: {exc.message}"
        )
        # Upstream details stay in the log
        detail = {
            "not_found": "Requested object not found",
            "upstream_unavailable": "Failed to reach chain node",
            "signature_recovery_error": "Failed to retrieve sender",
            "consistency_error": "Inconsistent chain data",
        }.get(exc.kind, "Internal error")

    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.kind, detail=detail).model_dump(),
    )


def get_chain_client() -> ChainClient:
    """Dependency returning the process-wide chain client."""
    return chain_client


@app.get("/", response_class=PlainTextResponse)
async def root():
    return "Hello, World!"


@app.get(
    "/block/{block_number}",
    response_model=BlockView,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def get_block(block_number: str, client: ChainClient = Depends(get_chain_client)):
    """
    Get a block by height.

    Returns:
        - blockNumber, status ("finalized" when difficulty is zero), timestamp (ISO-8601 UTC)
        - transactionCount and the ordered transaction hashes
        - withdrawals: number of withdrawals in the block
        - details: blockHash, parentHash, stateRoot, nonce
    """
    return await resolve_block(client, block_number)


@app.get(
    "/tx/{tx_hash}",
    response_model=TransactionView,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
)
async def get_transaction(tx_hash: str, client: ChainClient = Depends(get_chain_client)):
    """
    Get a mined transaction by hash.

    The sender is recovered from the signature and the fee is gasUsed * gasPrice,
    both monetary values in wei as decimal strings.
    """
    settings = get_settings()
    return await resolve_transaction(client, tx_hash, expected_chain_id=settings.chain_id)


@app.get("/health", response_model=HealthResponse)
async def health_check(client: ChainClient = Depends(get_chain_client)):
    """
    Health check endpoint for Kubernetes probes.

    Reports whether the chain node answers.
    """
    chain_id = await client.get_chain_id()
    latest_block = await client.get_latest_block_number()
    if not (chain_id.ok and latest_block.ok):
        logger.error(f"Health check failed: {chain_id.message or latest_block.message}")
        raise HTTPException(status_code=503, detail="Service unavailable")

    return HealthResponse(status="healthy", chain_id=chain_id.value, latest_block=latest_block.value)


@app.get("/metrics")
async def prometheus_metrics():
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format for scraping.
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(app, host=settings.host, port=settings.port)
