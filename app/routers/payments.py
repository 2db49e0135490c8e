from fastapi import APIRouter, Request

from app.models.payment import OrchestrationResult, PaymentRequest

router = APIRouter()


@router.post("/payments", response_model=OrchestrationResult)
async def create_payment(body: PaymentRequest, request: Request) -> OrchestrationResult:
    """
    Orchestrate a card payment across the configured PSPs.

    - The initial PSP is a weighted draw over the active traffic rules.
    - Retryable failures fail over along the retry rules.
    - Terminal declines (insufficient funds, expired card, ...) stop immediately.
    - PSPs whose circuit breaker is open are never selected.
    """
    engine = request.app.state.ctx.engine
    return await engine.execute_payment(body.to_charge(), body.to_context())
