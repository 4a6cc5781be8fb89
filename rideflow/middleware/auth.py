from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt

from rideflow.config import get_settings
from rideflow.schemas.schemas import RoleEnum

settings = get_settings()
bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Principal:
    """Authenticated caller, passed explicitly into every route."""
    id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == RoleEnum.admin.value


def create_access_token(data: dict, expires_minutes: int | None = None) -> str:
    """Sign a JWT with the configured secret (HS256)."""
    payload = dict(data)
    minutes = expires_minutes or settings.access_token_expire_minutes
    payload.setdefault("exp", datetime.now(timezone.utc) + timedelta(minutes=minutes))
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Principal:
    """Decode and validate the JWT Bearer token."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        payload = jwt.decode(
            credentials.credentials,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    subject = payload.get("sub")
    role = payload.get("role", RoleEnum.rider.value)
    if not subject or role not in {r.value for r in RoleEnum}:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")
    return Principal(id=str(subject), role=role)


def require_roles(*roles: RoleEnum):
    """Dependency factory: only let the given roles through."""
    allowed = {r.value for r in roles}

    async def _dependency(principal: Principal = Depends(get_current_user)) -> Principal:
        if principal.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires role: {', '.join(sorted(allowed))}",
            )
        return principal

    return _dependency


get_current_rider = require_roles(RoleEnum.rider)
get_current_driver = require_roles(RoleEnum.driver)
get_current_admin = require_roles(RoleEnum.admin)
