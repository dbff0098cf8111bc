# backend/schooldb/security.py

"""
Session security helpers for schooldb.

Responsibilities:
- JWT access token creation and decoding
- FastAPI dependencies for the current user and role checks
- School isolation: which tenant a request acts on

External API keys are handled separately in `schooldb.apps.apikeys`.
"""

from __future__ import annotations

import os
from datetime import timedelta
from typing import Callable, Optional, Set, Union

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from .clock import utcnow
from .database import get_db
from .errors import AuthorizationError
from schooldb.apps.schools import models as school_models
from schooldb.apps.schools.models import UserRole

# ---------------------------------------------------------------------------
# CONFIG
# ---------------------------------------------------------------------------

# In production, ALWAYS override these via environment variables.
SECRET_KEY = os.getenv("SECRET_KEY", "CHANGE_ME_IN_PRODUCTION")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

try:
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
except ValueError:
    ACCESS_TOKEN_EXPIRE_MINUTES = 60

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


# ---------------------------------------------------------------------------
# JWT TOKENS
# ---------------------------------------------------------------------------


def create_access_token(
    *,
    data: dict,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a signed JWT.

    `data` should already include the subject, e.g. {"sub": user.id}.
    """
    to_encode = data.copy()
    expire = utcnow() + (
        expires_delta
        if expires_delta is not None
        else timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=JWT_ALGORITHM)


def get_user_by_id(db: Session, user_id: Union[str, int, None]) -> Optional[school_models.User]:
    if user_id is None:
        return None
    return (
        db.query(school_models.User)
        .filter(school_models.User.id == str(user_id).strip())
        .first()
    )


# ---------------------------------------------------------------------------
# FASTAPI DEPENDENCIES
# ---------------------------------------------------------------------------


def _credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> school_models.User:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[JWT_ALGORITHM])
        user_id = payload.get("sub")
        if user_id is None:
            raise _credentials_exception()
    except JWTError:
        raise _credentials_exception()

    user = get_user_by_id(db, user_id)
    if user is None:
        raise _credentials_exception()
    return user


def get_current_active_user(
    current_user: school_models.User = Depends(get_current_user),
) -> school_models.User:
    if not getattr(current_user, "is_active", False):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Inactive user account",
        )
    return current_user


def is_platform_operator(user) -> bool:
    role = getattr(user, "role", None)
    return role == UserRole.SUPER_ADMIN or role == UserRole.SUPER_ADMIN.value


def require_roles(
    *allowed_roles: Union[UserRole, str],
) -> Callable[[school_models.User], school_models.User]:
    """
    Dependency factory enforcing that the current user has one of the roles.

    SUPER_ADMIN always passes, even if not listed.
    """
    normalised_roles: Set[UserRole] = set()
    for r in allowed_roles:
        if isinstance(r, UserRole):
            normalised_roles.add(r)
        else:
            try:
                normalised_roles.add(UserRole(r))
            except ValueError:
                raise ValueError(f"Unknown role {r!r} passed to require_roles()")

    def dependency(
        current_user: school_models.User = Depends(get_current_active_user),
    ) -> school_models.User:
        if is_platform_operator(current_user):
            return current_user
        if current_user.role not in normalised_roles:
            raise AuthorizationError(
                "Insufficient permissions for this operation",
                code="INSUFFICIENT_PERMISSIONS",
            )
        return current_user

    return dependency


def resolve_school_id(current_user, requested_school_id: Optional[str] = None) -> str:
    """
    Tenant a request acts on.

    Platform operators may name any school; everyone else is pinned to the
    school on their account and client-supplied ids are ignored.
    """
    if is_platform_operator(current_user):
        school_id = requested_school_id or getattr(current_user, "school_id", None)
    else:
        school_id = getattr(current_user, "school_id", None)
    if not school_id:
        raise AuthorizationError("No school associated with your account.", code="NO_SCHOOL")
    return school_id
