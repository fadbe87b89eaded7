from enum import Enum

from fastapi import Depends, HTTPException

from fieldclock.deps.auth import AuthContext, require_auth


class Role(Enum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    EMPLOYEE = "EMPLOYEE"


ROLE_RANK = {
    Role.EMPLOYEE: 1,
    Role.MANAGER: 2,
    Role.ADMIN: 3,
}


def parse_role(value: str) -> Role:
    return Role(str(value).upper())


def has_role(auth: AuthContext, role: Role) -> bool:
    try:
        user_role = parse_role(auth.role)
    except ValueError:
        return False
    return ROLE_RANK[user_role] >= ROLE_RANK[role]


def require_role(role: Role):
    def dependency(auth: AuthContext = Depends(require_auth)) -> AuthContext:
        try:
            parse_role(auth.role)
        except ValueError as exc:
            raise HTTPException(status_code=403, detail="Invalid role claim") from exc

        if not has_role(auth, role):
            raise HTTPException(status_code=403, detail="Insufficient role")

        return auth

    return dependency
