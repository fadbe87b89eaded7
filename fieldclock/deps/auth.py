from dataclasses import dataclass

from fastapi import HTTPException, Request

from fieldclock.services.auth_service import TokenError, decode_token


@dataclass(frozen=True)
class AuthContext:
    user_id: str
    company_id: int
    role: str


def _parse_bearer_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        raise HTTPException(status_code=401, detail="Missing Authorization header")

    parts = auth_header.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        raise HTTPException(status_code=401, detail="Invalid Authorization header")

    return parts[1].strip()


def require_auth(request: Request) -> AuthContext:
    token = _parse_bearer_token(request)

    try:
        claims = decode_token(token)
    except TokenError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    token_company_id = claims.company_id

    header_company_id = request.headers.get("X-Company-Id")
    if header_company_id is None:
        raise HTTPException(status_code=403, detail="Missing X-Company-Id header")

    try:
        header_company_id_int = int(header_company_id)
    except ValueError as exc:
        raise HTTPException(status_code=403, detail="Invalid X-Company-Id header") from exc

    if header_company_id_int != token_company_id:
        raise HTTPException(status_code=403, detail="Company mismatch")

    user_id = claims.user_id
    role = claims.role

    request.state.user_id = user_id
    request.state.company_id = token_company_id
    request.state.role = role

    return AuthContext(user_id=user_id, company_id=token_company_id, role=role)
