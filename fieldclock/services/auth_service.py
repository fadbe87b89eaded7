"""
Bearer tokens for the clock API.

Tokens are HS256 JWTs naming the caller, their company and their role. The
dev-only /auth/token route mints them; deployed environments receive them from
the identity provider signed with the same JWT_SECRET, issuer and audience.
"""
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

import jwt

from fieldclock.core.settings import get_settings

ALGORITHM = "HS256"
ISSUER = "fieldclock"
AUDIENCE = "fieldclock-api"
MIN_SECRET_LENGTH = 32

# Lowest to highest; core.authorization ranks them the same way.
ROLES = ("EMPLOYEE", "MANAGER", "ADMIN")
DEFAULT_ROLE = "EMPLOYEE"


class TokenError(ValueError):
    pass


@dataclass(frozen=True)
class TokenClaims:
    user_id: str
    company_id: int
    role: str
    expires_at: datetime


def _signing_key() -> str:
    key = os.getenv("JWT_SECRET") or ""
    if len(key) < MIN_SECRET_LENGTH:
        raise TokenError(f"JWT_SECRET must be set to at least {MIN_SECRET_LENGTH} characters")
    return key


def normalize_role(role: Optional[str]) -> str:
    # Tokens minted before roles existed carry none.
    value = str(role or DEFAULT_ROLE).strip().upper()
    if value not in ROLES:
        raise TokenError(f"Unknown role: {value}")
    return value


def issue_token(
    user_id: str,
    company_id: int,
    role: str = DEFAULT_ROLE,
    *,
    now: Optional[datetime] = None,
) -> Tuple[str, TokenClaims]:
    now = now or datetime.now(timezone.utc)
    claims = TokenClaims(
        user_id=str(user_id),
        company_id=int(company_id),
        role=normalize_role(role),
        expires_at=now + timedelta(minutes=get_settings().access_token_ttl_minutes),
    )
    payload = {
        "iss": ISSUER,
        "aud": AUDIENCE,
        "sub": claims.user_id,
        "company_id": claims.company_id,
        "role": claims.role,
        "iat": now,
        "exp": claims.expires_at,
    }
    return jwt.encode(payload, _signing_key(), algorithm=ALGORITHM), claims


def decode_token(token: str) -> TokenClaims:
    key = _signing_key()
    try:
        payload = jwt.decode(
            token,
            key,
            algorithms=[ALGORITHM],
            audience=AUDIENCE,
            issuer=ISSUER,
            options={"require": ["exp", "sub", "iss", "aud"]},
        )
    except jwt.PyJWTError as exc:
        raise TokenError("Invalid or expired token") from exc

    try:
        company_id = int(payload["company_id"])
    except (KeyError, TypeError, ValueError) as exc:
        raise TokenError("Invalid token claims") from exc

    return TokenClaims(
        user_id=str(payload["sub"]),
        company_id=company_id,
        role=normalize_role(payload.get("role")),
        expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    )
