"""
Bearer-token identity.

Sign-in is handled by the managed identity provider; this service only
verifies the JWT it issues and reads the caller's id, role and contact
details from the claims.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from config import get_settings
from errors import PermissionDeniedError
from schemas import Role

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")


class CurrentUser(BaseModel):
    id: str
    name: str
    role: Role
    phone: Optional[str] = None
    email: Optional[str] = None


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    settings = get_settings()
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(hours=24))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def get_current_user(token: str = Depends(oauth2_scheme)) -> CurrentUser:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        raise credentials_exception
    user_id = payload.get("sub")
    role = payload.get("role")
    if user_id is None or role not in {r.value for r in Role}:
        raise credentials_exception
    return CurrentUser(
        id=user_id,
        name=payload.get("name") or user_id,
        role=Role(role),
        phone=payload.get("phone"),
        email=payload.get("email"),
    )


def require_role(user: CurrentUser, *roles: Role) -> None:
    if user.role not in roles:
        raise PermissionDeniedError(f"Role '{user.role.value}' may not perform this action")


def admin_user(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    require_role(user, Role.admin)
    return user


def staff_user(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    require_role(user, Role.admin, Role.technician)
    return user
