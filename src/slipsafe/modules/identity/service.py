from __future__ import annotations

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from slipsafe.core.logging import get_logger, log_event
from slipsafe.core.models import utcnow
from slipsafe.core.security import hash_password, verify_password
from slipsafe.modules.identity.models import User, UserRole

logger = get_logger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def get_user_by_email(session: Session, *, email: str) -> User | None:
    return session.scalar(select(User).where(func.lower(User.email) == normalize_email(email)))


def create_user(
    session: Session,
    *,
    email: str,
    password: str,
    role: UserRole,
    full_name: str | None = None,
    store_name: str | None = None,
) -> User:
    if get_user_by_email(session, email=email):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already exists")

    user = User(
        email=normalize_email(email),
        full_name=full_name,
        password_hash=hash_password(password),
        role=role,
        store_name=(store_name or "").strip() or None,
        is_active=True,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    log_event(logger, "user.created", new_user_id=str(user.id), role=role.value)
    return user


def ensure_admin(session: Session, *, email: str, password: str) -> bool:
    """Create or promote an admin account. Returns True when a user was created."""
    user = get_user_by_email(session, email=email)
    if user is None:
        create_user(session, email=email, password=password, role=UserRole.ADMIN, full_name="Admin")
        return True
    if user.role != UserRole.ADMIN:
        user.role = UserRole.ADMIN
        session.commit()
        log_event(logger, "user.promoted", promoted_user_id=str(user.id))
    return False


def list_users(session: Session, *, role: UserRole | None = None) -> list[User]:
    stmt = select(User)
    if role is not None:
        stmt = stmt.where(User.role == role)
    return list(session.scalars(stmt.order_by(User.email.asc())))


def authenticate_user(session: Session, *, email: str, password: str) -> User:
    user = get_user_by_email(session, email=email)
    if not user or not user.is_active or not verify_password(password, user.password_hash):
        log_event(logger, "auth.login.failure")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    user.last_login_at = utcnow()
    session.commit()
    log_event(logger, "auth.login.success", login_user_id=str(user.id))
    return user
