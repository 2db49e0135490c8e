import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.config import settings
from app.context import OrchestrationContext
from app.errors import (
    AllEndpointsUnavailable,
    DecryptionError,
    NoRouteAvailable,
    ValidationError,
    VaultError,
)
from app.routers import payments, psps, stats, tokens, transport

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # --- Startup ---
    logger.info("Payment Orchestrator starting up...")
    ctx = OrchestrationContext(settings)
    await ctx.startup()
    app.state.ctx = ctx

    yield

    # --- Shutdown ---
    logger.info("Payment Orchestrator shutting down.")
    snap = ctx.stats.snapshot()
    logger.info(
        f"Final stats: {snap.total_payments} payments | "
        f"{snap.total_approved} approved | "
        f"{snap.overall_approval_rate:.1%} approval rate | "
        f"{snap.retried_payments} retried | "
        f"{snap.emergency_transactions} emergency"
    )
    await ctx.shutdown()


app = FastAPI(
    title="Payment Orchestrator",
    description=(
        "Multi-PSP payment orchestration with weighted routing, rule-based failover, "
        "per-PSP circuit breaking, a provider-agnostic card vault and a resilient "
        "client transport with an emergency direct-PSP path."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(payments.router, tags=["Payments"])
app.include_router(tokens.router, tags=["Vault"])
app.include_router(psps.router, tags=["PSP Health"])
app.include_router(transport.router, tags=["Transport"])
app.include_router(stats.router, tags=["Statistics"])


@app.exception_handler(ValidationError)
@app.exception_handler(NoRouteAvailable)
async def unprocessable_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.warning(f"{request.method} {request.url.path} rejected: {type(exc).__name__}: {exc}")
    return JSONResponse(status_code=422, content={"detail": str(exc), "error": type(exc).__name__})


@app.exception_handler(DecryptionError)
async def decryption_error_handler(request: Request, exc: DecryptionError) -> JSONResponse:
    logger.error(f"{request.method} {request.url.path}: card data failed verification")
    return JSONResponse(
        status_code=422,
        content={"detail": "Token data could not be verified", "error": "DecryptionError"},
    )


@app.exception_handler(VaultError)
async def vault_error_handler(request: Request, exc: VaultError) -> JSONResponse:
    logger.error(f"{request.method} {request.url.path} vault error: {exc}")
    return JSONResponse(status_code=502, content={"detail": str(exc), "error": "VaultError"})


@app.exception_handler(AllEndpointsUnavailable)
async def endpoints_unavailable_handler(request: Request, exc: AllEndpointsUnavailable) -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content={"detail": str(exc), "error": "AllEndpointsUnavailable", "attempted": exc.attempted},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled exception on %s %s: %s",
        request.method,
        request.url.path,
        type(exc).__name__,
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "An internal error occurred. Please try again later."},
    )


@app.get("/", tags=["Health"])
async def root():
    return {
        "service": "Payment Orchestrator",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
    }
