import os
from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from fieldclock.services.auth_service import DEFAULT_ROLE, TokenError, issue_token

router = APIRouter(prefix="/auth", tags=["auth"])

DEV_ENVIRONMENTS = {"dev", "local", "test"}


class TokenRequest(BaseModel):
    user_id: str
    company_id: int
    role: str = DEFAULT_ROLE


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    company_id: int
    role: str


@router.post("/token", response_model=TokenResponse)
def mint_dev_token(payload: TokenRequest):
    """Mint a token for local testing; deployed environments use the identity provider."""
    if os.getenv("ENV", "dev").lower() not in DEV_ENVIRONMENTS:
        raise HTTPException(status_code=404, detail="Not Found")

    now = datetime.now(timezone.utc)
    try:
        token, claims = issue_token(payload.user_id, payload.company_id, payload.role, now=now)
    except TokenError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return TokenResponse(
        access_token=token,
        expires_in=int((claims.expires_at - now).total_seconds()),
        company_id=claims.company_id,
        role=claims.role,
    )
