from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from slipsafe.api.deps import get_current_user, require_role
from slipsafe.core.config import settings
from slipsafe.core.db import db_session
from slipsafe.core.security import create_access_token
from slipsafe.modules.identity.models import User, UserRole
from slipsafe.modules.identity.schemas import TokenOut, UserCreate, UserOut
from slipsafe.modules.identity.service import authenticate_user, create_user, list_users

router = APIRouter(tags=["identity"])

require_admin = require_role(UserRole.ADMIN)


@router.post("/auth/token", response_model=TokenOut)
def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    session: Session = Depends(db_session),
) -> TokenOut:
    user = authenticate_user(session, email=form_data.username, password=form_data.password)
    return TokenOut(
        access_token=create_access_token(subject=str(user.id)),
        expires_in=settings.access_token_exp_minutes * 60,
    )


@router.get("/auth/me", response_model=UserOut)
def me(user: User = Depends(get_current_user)) -> UserOut:
    return UserOut.model_validate(user, from_attributes=True)


@router.get("/users", response_model=list[UserOut])
def list_users_endpoint(
    role: UserRole | None = None,
    session: Session = Depends(db_session),
    _: User = Depends(require_admin),
) -> list[UserOut]:
    return [
        UserOut.model_validate(u, from_attributes=True) for u in list_users(session, role=role)
    ]


@router.post("/users", response_model=UserOut, status_code=201)
def create_user_endpoint(
    payload: UserCreate,
    session: Session = Depends(db_session),
    _: User = Depends(require_admin),
) -> UserOut:
    user = create_user(
        session,
        email=str(payload.email),
        password=payload.password,
        role=payload.role,
        full_name=payload.full_name,
        store_name=payload.store_name,
    )
    return UserOut.model_validate(user, from_attributes=True)
