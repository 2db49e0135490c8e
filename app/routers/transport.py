from fastapi import APIRouter, Request

from app.models.transport import SyncResult, TransportStatusResponse

router = APIRouter()


@router.get("/transport/status", response_model=TransportStatusResponse)
async def get_transport_status(request: Request) -> TransportStatusResponse:
    """Endpoint breakers and health, the emergency PSP and the pending-sync backlog."""
    return request.app.state.ctx.transport.status()


@router.post("/transport/sync", response_model=SyncResult)
async def sync_pending(request: Request) -> SyncResult:
    """Replay emergency-path transactions to the backend."""
    return await request.app.state.ctx.transport.sync_pending_transactions()
