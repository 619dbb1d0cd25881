from __future__ import annotations

import os
import shutil
from pathlib import Path

import pytest

# Set env before any slipsafe imports (settings/engine are created at import time).
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite:///./.slipsafe_test.db")
os.environ.setdefault("STORAGE_BACKEND", "local")
os.environ.setdefault("LOCAL_STORAGE_PATH", ".tmp_storage_test")
os.environ.setdefault("ATTEMPT_COUNTER_BACKEND", "memory")
os.environ.setdefault("SECRET_KEY", "test-secret")


@pytest.fixture(autouse=True)
def _reset_db_and_storage() -> None:
    import slipsafe.models  # noqa: F401
    import slipsafe.core.storage as storage_mod
    from slipsafe.core.db import engine
    from slipsafe.core.models import Base
    from slipsafe.modules.extraction.ocr import set_ocr_engine
    from slipsafe.modules.verification.attempts import set_attempt_counter

    storage_mod._storage = None
    set_ocr_engine(None)
    set_attempt_counter(None)

    storage_path = Path(os.environ["LOCAL_STORAGE_PATH"])
    if storage_path.exists():
        shutil.rmtree(storage_path)

    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)

    yield


@pytest.fixture()
def consumer():
    from slipsafe.core.db import SessionLocal
    from slipsafe.modules.identity.models import UserRole
    from slipsafe.modules.identity.service import create_user

    with SessionLocal() as session:
        user = create_user(
            session,
            email="shopper@example.com",
            password="pw",
            role=UserRole.CONSUMER,
            full_name="Shopper",
        )
        session.expunge(user)
    return user


@pytest.fixture()
def staff():
    from slipsafe.core.db import SessionLocal
    from slipsafe.modules.identity.models import UserRole
    from slipsafe.modules.identity.service import create_user

    with SessionLocal() as session:
        user = create_user(
            session,
            email="desk@store.example.com",
            password="pw",
            role=UserRole.MERCHANT_STAFF,
            full_name="Returns Desk",
            store_name="Best Buy #112",
        )
        session.expunge(user)
    return user


@pytest.fixture()
def receipt(consumer):
    import datetime as dt
    from decimal import Decimal

    from slipsafe.core.db import SessionLocal
    from slipsafe.modules.receipts.models import ReceiptCategory
    from slipsafe.modules.receipts.service import confirm_receipt

    with SessionLocal() as session:
        receipt, _ = confirm_receipt(
            session,
            user=consumer,
            merchant="Best Buy",
            purchase_date=dt.date(2026, 3, 14),
            total=Decimal("245.99"),
            currency="USD",
            category=ReceiptCategory.ELECTRONICS,
        )
        session.expunge(receipt)
    return receipt
