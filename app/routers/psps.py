from fastapi import APIRouter, HTTPException, Request

from app.models.health import PSPStatusResponse, ServiceHealth

router = APIRouter()


@router.get("/psps/status", response_model=list[PSPStatusResponse])
async def get_psp_status(request: Request) -> list[PSPStatusResponse]:
    """
    Returns the current health status of all configured PSPs including:
    - Circuit breaker state (closed / open / half_open)
    - Consecutive failure count and half-open success count
    - Time remaining before a half-open probe (if circuit is open)
    - Last health-check result, when one has run
    """
    ctx = request.app.state.ctx
    snapshots = ctx.config_store.health_snapshots()

    results = []
    for psp in ctx.config_store.psps():
        snap = ctx.psp_breakers.get(psp).status_snapshot
        results.append(PSPStatusResponse(name=psp, health=snapshots.get(psp), **snap))
    return results


def _get_cb_or_404(name: str, request: Request):
    ctx = request.app.state.ctx
    if name not in ctx.config_store.psps():
        raise HTTPException(status_code=404, detail=f"PSP '{name}' not found")
    return ctx.psp_breakers.get(name)


@router.post(
    "/psps/{name}/reset",
    tags=["Testing"],
    summary="Reset a PSP's circuit breaker to CLOSED with zeroed counters",
)
async def reset_circuit_breaker(name: str, request: Request) -> dict:
    cb = _get_cb_or_404(name, request)
    cb.reset()
    return {"psp": name, "action": "reset", "state": "closed"}


@router.post(
    "/psps/{name}/inject-failures",
    tags=["Testing"],
    summary="Record synthetic failures on a PSP's circuit breaker",
)
async def inject_failures(name: str, count: int, request: Request) -> dict:
    """
    Records *count* consecutive failures on the PSP's circuit breaker.
    Reaching the failure threshold opens the circuit immediately.

    Use this endpoint (together with /psps/{name}/reset) to
    deterministically demonstrate circuit-breaker behaviour in demos
    and integration tests.
    """
    if count < 1 or count > 200:
        raise HTTPException(status_code=422, detail="count must be between 1 and 200")
    cb = _get_cb_or_404(name, request)
    cb.inject_failures(count)
    snap = cb.status_snapshot
    return {
        "psp": name,
        "injected_failures": count,
        "state": snap["state"],
        "failures": snap["failures"],
    }


@router.post("/psps/health-check", response_model=dict[str, ServiceHealth])
async def run_health_check(request: Request) -> dict[str, ServiceHealth]:
    """Ping every configured PSP now and feed the results into its breaker."""
    return await request.app.state.ctx.engine.check_all_health()
