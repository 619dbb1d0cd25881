from __future__ import annotations

import slipsafe.models  # noqa: F401
from slipsafe.core.config import settings
from slipsafe.core.db import SessionLocal, engine
from slipsafe.core.logging import get_logger, log_event
from slipsafe.core.models import Base
from slipsafe.modules.identity.service import ensure_admin

logger = get_logger(__name__)


def _admin_emails() -> list[str]:
    # INIT_ADMIN_EMAIL may list several addresses separated by commas.
    raw = settings.init_admin_email or ""
    return [e.strip().lower() for e in raw.split(",") if e.strip()]


def bootstrap() -> None:
    """Prepare a dev database and seed admin accounts from the environment."""
    if settings.environment == "dev" and settings.database_url.startswith("sqlite"):
        Base.metadata.create_all(engine)
        log_event(logger, "bootstrap.schema_created")

    emails = _admin_emails()
    if not emails or not settings.init_admin_password:
        return
    with SessionLocal() as session:
        for email in emails:
            if ensure_admin(session, email=email, password=settings.init_admin_password):
                log_event(logger, "bootstrap.admin_created", email=email)
