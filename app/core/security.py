"""Security utilities: JWT principals and role-based access."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from app.config import settings

# HTTPBearer for simple token authentication in Swagger (just paste the access token)
security = HTTPBearer()


class Role(str, Enum):
    """Actor roles."""

    STUDENT = "student"
    MENTOR = "mentor"
    COMPANY = "company"
    ADMIN = "admin"
    SYSTEM = "system"  # background workers


@dataclass(frozen=True)
class Principal:
    """Authenticated actor resolved from a verified token."""

    identity: str
    role: Role
    email: Optional[str] = None


SYSTEM_PRINCIPAL = Principal(identity="system", role=Role.SYSTEM)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire, "type": "access"})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and verify JWT token."""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )


def principal_from_token(token: str) -> Principal:
    """Resolve a token into a Principal, rejecting unknown roles."""
    payload = decode_token(token)
    identity = payload.get("sub")
    try:
        role = Role(payload.get("role"))
    except ValueError:
        role = None

    if identity is None or role is None or role == Role.SYSTEM:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )
    return Principal(identity=str(identity), role=role, email=payload.get("email"))


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Principal:
    """Get current authenticated principal from Bearer token."""
    return principal_from_token(credentials.credentials)


def require_role(*allowed_roles: Role):
    """Dependency to check if the principal has one of the required roles."""

    async def role_checker(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role in allowed_roles:
            return principal

        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Insufficient permissions. Required: {[r.value for r in allowed_roles]}",
        )

    return role_checker
