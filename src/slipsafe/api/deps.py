from __future__ import annotations

import uuid
from collections.abc import Callable

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from slipsafe.core.db import db_session
from slipsafe.core.logging import set_user_context
from slipsafe.core.security import decode_access_token
from slipsafe.modules.identity.models import User, UserRole

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token", auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    token: str | None = Depends(oauth2_scheme),
    session: Session = Depends(db_session),
) -> User:
    if not token:
        raise _unauthorized("Not authenticated")

    subject = decode_access_token(token)
    try:
        user_id = uuid.UUID(subject or "")
    except ValueError as e:
        raise _unauthorized("Invalid token") from e

    user = session.get(User, user_id)
    if user is None or not user.is_active:
        raise _unauthorized("Invalid user")
    set_user_context(str(user.id), user.role.value)
    return user


def require_role(*roles: UserRole) -> Callable[..., User]:
    allowed = frozenset(roles)

    def _checker(user: User = Depends(get_current_user)) -> User:
        if user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions"
            )
        return user

    return _checker


# Admins may act at any merchant desk.
require_merchant_staff = require_role(UserRole.MERCHANT_STAFF, UserRole.ADMIN)
