from fastapi import APIRouter, Request
from app.models.stats import StatsResponse

router = APIRouter()


@router.get("/stats", response_model=StatsResponse)
async def get_stats(request: Request) -> StatsResponse:
    """
    Returns aggregated statistics since service startup:
    - Total payments, approval rate, retried payments
    - Total approved volume and emergency-path transactions
    - Per-PSP attempt breakdown by failure category
    """
    return request.app.state.ctx.stats.snapshot()
