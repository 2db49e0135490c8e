from fastapi import APIRouter, HTTPException, Request, Response

from app.models.vault import CreateTokenOptions, CreateTokenRequest, PublicConfig, Token

router = APIRouter()


@router.post("/tokens", response_model=Token, status_code=201)
async def create_token(body: CreateTokenRequest, request: Request) -> Token:
    """Vault a card. Only available with the direct vault provider."""
    vault = request.app.state.ctx.vault
    options = CreateTokenOptions(
        tenant_id=body.tenant_id,
        session_id=body.session_id,
        expires_in=body.expires_in,
    )
    return await vault.create_token(body.card, options)


@router.get("/tokens/{token_id}", response_model=Token)
async def get_token(token_id: str, request: Request) -> Token:
    token = await request.app.state.ctx.vault.get_token(token_id)
    if token is None:
        raise HTTPException(status_code=404, detail=f"Token '{token_id}' not found")
    return token


@router.delete("/tokens/{token_id}", status_code=204)
async def delete_token(token_id: str, request: Request) -> Response:
    await request.app.state.ctx.vault.delete_token(token_id)
    return Response(status_code=204)


@router.get("/tokens/{token_id}/valid")
async def validate_token(token_id: str, request: Request) -> dict:
    valid = await request.app.state.ctx.vault.validate_token(token_id)
    return {"token_id": token_id, "valid": valid}


@router.get("/vault/config", response_model=PublicConfig)
async def vault_config(request: Request) -> PublicConfig:
    """Configuration for the browser card-capture SDK."""
    return request.app.state.ctx.vault.public_config()
