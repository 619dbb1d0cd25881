from __future__ import annotations

import hashlib
import re
import uuid
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from pathlib import PurePosixPath

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from slipsafe.core.config import settings
from slipsafe.core.currencies import normalize_currency, quantize_amount
from slipsafe.core.errors import ClaimConflict, InvalidToken, NotFound, ValidationError
from slipsafe.core.logging import get_logger, log_event
from slipsafe.core.models import utcnow
from slipsafe.core.security import PREVIEW_TOKEN_TYPE, get_token_signer
from slipsafe.core.storage import ObjectNotFound, get_storage
from slipsafe.modules.audit.service import record_event
from slipsafe.modules.claims.models import Claim
from slipsafe.modules.extraction.ocr import get_ocr_engine
from slipsafe.modules.extraction.service import StatedPolicy, extract_fields
from slipsafe.modules.identity.models import User, UserRole
from slipsafe.modules.policy.service import (
    PolicyDates,
    find_rule,
    normalize_merchant_name,
    resolve_policy,
)
from slipsafe.modules.receipts.models import Confidence, Receipt, ReceiptCategory, RefundType

logger = get_logger(__name__)


@dataclass(frozen=True)
class ReceiptPreview:
    merchant: str | None
    date: date | None
    total: Decimal | None
    currency: str | None
    confidence: Confidence
    refund_type: RefundType
    return_by: date | None
    warranty_ends: date | None
    policy_source: str
    return_policy_days: int | None
    return_policy_terms: str | None
    exchange_policy_days: int | None
    exchange_policy_terms: str | None
    raw_text: str
    preview_token: str


def compute_content_hash(
    *, merchant: str, purchase_date: date, total: Decimal, currency: str | None = None
) -> str:
    """Fingerprint of the fields that identify a purchase.

    Merchant case/whitespace and amount formatting are normalized away, so the
    same slip re-typed or re-scanned hashes the same. Currency only decides the
    rounding precision.
    """
    amount = quantize_amount(total, currency or settings.default_currency)
    material = f"{normalize_merchant_name(merchant)}|{purchase_date.isoformat()}|{amount}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def submit_receipt(
    session: Session,
    *,
    user: User,
    filename: str,
    content_type: str | None,
    body: bytes,
) -> ReceiptPreview:
    """OCR an upload and propose receipt fields without persisting a receipt."""
    if not body:
        raise ValidationError("Uploaded file is empty")
    if len(body) > settings.max_upload_bytes:
        raise ValidationError(
            "Uploaded file is too large", max_upload_bytes=settings.max_upload_bytes
        )

    sha256 = hashlib.sha256(body).hexdigest()
    storage_key = _upload_storage_key(owner_id=user.id, sha256=sha256, filename=filename)
    stored = get_storage().put(key=storage_key, body=body, content_type=content_type)

    text = get_ocr_engine().extract_text(body=body, filename=filename, content_type=content_type)
    extracted = extract_fields(text)
    rule = find_rule(session, owner_id=user.id, merchant=extracted.merchant)
    policy = resolve_policy(
        purchase_date=extracted.date, refund_type=extracted.refund_type, rule=rule
    )

    token = get_token_signer().sign(
        {
            "sub": str(user.id),
            "key": storage_key,
            "sha": sha256,
            "conf": extracted.confidence.value,
        },
        token_type=PREVIEW_TOKEN_TYPE,
        expires_at=utcnow() + timedelta(minutes=settings.preview_token_ttl_minutes),
    )
    log_event(
        logger,
        "receipt.preview",
        storage_key=storage_key,
        byte_size=len(body),
        stored=stored.written,
        confidence=extracted.confidence.value,
        policy_source=policy.source,
    )
    return ReceiptPreview(
        merchant=extracted.merchant,
        date=extracted.date,
        total=extracted.total,
        currency=extracted.currency or settings.default_currency,
        confidence=extracted.confidence,
        refund_type=extracted.refund_type,
        return_by=policy.return_by,
        warranty_ends=policy.warranty_ends,
        policy_source=policy.source,
        return_policy_days=extracted.stated_policy.return_days,
        return_policy_terms=extracted.stated_policy.return_terms,
        exchange_policy_days=extracted.stated_policy.exchange_days,
        exchange_policy_terms=extracted.stated_policy.exchange_terms,
        raw_text=extracted.raw_text,
        preview_token=token,
    )


def confirm_receipt(
    session: Session,
    *,
    user: User,
    merchant: str,
    purchase_date: date,
    total: Decimal,
    currency: str | None = None,
    category: ReceiptCategory = ReceiptCategory.OTHER,
    refund_type: RefundType = RefundType.NOT_SPECIFIED,
    preview_token: str | None = None,
    raw_text: str | None = None,
    stated_policy: StatedPolicy | None = None,
) -> tuple[Receipt, bool]:
    """Persist a receipt, or return the caller's existing copy of it.

    Returns ``(receipt, duplicate)``.
    """
    merchant = re.sub(r"\s+", " ", (merchant or "").strip())
    if not merchant:
        raise ValidationError("Merchant is required")
    currency_code = _resolve_currency(currency)
    try:
        amount = quantize_amount(total, currency_code)
    except ValueError as e:
        raise ValidationError("Total is not a number") from e
    if amount <= 0:
        raise ValidationError("Total must be greater than zero")

    image_key = None
    confidence = Confidence.LOW
    if preview_token:
        image_key, confidence = _read_preview_token(preview_token, user=user)

    content_hash = compute_content_hash(
        merchant=merchant, purchase_date=purchase_date, total=amount, currency=currency_code
    )
    existing = _get_by_hash(session, owner_id=user.id, content_hash=content_hash)
    if existing:
        log_event(logger, "receipt.duplicate", receipt_id=str(existing.id))
        return existing, True

    stated = stated_policy or StatedPolicy()
    rule = find_rule(session, owner_id=user.id, merchant=merchant)
    policy: PolicyDates = resolve_policy(
        purchase_date=purchase_date, refund_type=refund_type, rule=rule
    )
    receipt = Receipt(
        owner_id=user.id,
        merchant=merchant,
        date=purchase_date,
        total=amount,
        currency=currency_code,
        category=category,
        return_by=policy.return_by,
        warranty_ends=policy.warranty_ends,
        refund_type=refund_type,
        policy_source=policy.source,
        return_policy_days=stated.return_days,
        return_policy_terms=stated.return_terms,
        exchange_policy_days=stated.exchange_days,
        exchange_policy_terms=stated.exchange_terms,
        confidence=confidence,
        content_hash=content_hash,
        image_key=image_key,
        raw_text=raw_text or None,
    )
    try:
        with session.begin_nested():
            session.add(receipt)
            session.flush()
    except IntegrityError:
        # A concurrent confirm of the same slip won the unique constraint.
        winner = _get_by_hash(session, owner_id=user.id, content_hash=content_hash)
        if winner is None:
            raise
        log_event(logger, "receipt.duplicate", receipt_id=str(winner.id), raced=True)
        return winner, True

    record_event(
        session,
        event_type="receipt.confirmed",
        actor_user_id=user.id,
        receipt_id=receipt.id,
        payload={
            "merchant": merchant,
            "date": purchase_date.isoformat(),
            "total": str(amount),
            "currency": currency_code,
            "confidence": confidence.value,
            "policy_source": policy.source,
        },
    )
    session.commit()
    session.refresh(receipt)
    log_event(
        logger,
        "receipt.confirmed",
        receipt_id=str(receipt.id),
        confidence=confidence.value,
        policy_source=policy.source,
    )
    return receipt, False


def list_receipts(
    session: Session,
    *,
    user: User,
    category: ReceiptCategory | None = None,
    search: str | None = None,
) -> list[Receipt]:
    stmt = select(Receipt).where(Receipt.owner_id == user.id)
    if category is not None:
        stmt = stmt.where(Receipt.category == category)
    if search:
        stmt = stmt.where(func.lower(Receipt.merchant).contains(search.strip().lower()))
    return list(session.scalars(stmt.order_by(Receipt.date.desc(), Receipt.created_at.desc())))


def get_receipt_for_user(session: Session, *, receipt_id: uuid.UUID, user: User) -> Receipt:
    receipt = session.get(Receipt, receipt_id)
    if not receipt:
        raise NotFound("Receipt not found")
    if user.role == UserRole.ADMIN or receipt.owner_id == user.id:
        return receipt
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed")


def update_receipt_category(
    session: Session, *, receipt: Receipt, user: User, category: ReceiptCategory
) -> Receipt:
    if receipt.owner_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed")
    previous = receipt.category
    receipt.category = category
    session.add(receipt)
    record_event(
        session,
        event_type="receipt.category_changed",
        actor_user_id=user.id,
        receipt_id=receipt.id,
        payload={"from": previous.value, "to": category.value},
    )
    session.commit()
    session.refresh(receipt)
    return receipt


def delete_receipt(session: Session, *, receipt: Receipt, user: User) -> None:
    if receipt.owner_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed")

    claim_count = session.scalar(
        select(func.count()).select_from(Claim).where(Claim.receipt_id == receipt.id)
    )
    if claim_count:
        raise ClaimConflict("Receipt has claims and cannot be deleted")

    receipt_id = receipt.id
    image_key = receipt.image_key
    record_event(
        session,
        event_type="receipt.deleted",
        actor_user_id=user.id,
        payload={"receipt_id": str(receipt_id), "merchant": receipt.merchant},
    )
    session.delete(receipt)
    session.commit()

    if image_key and not _image_key_in_use(session, image_key=image_key):
        get_storage().delete(key=image_key)
    log_event(logger, "receipt.deleted", receipt_id=str(receipt_id))


def get_receipt_image(receipt: Receipt) -> bytes:
    if not receipt.image_key:
        raise NotFound("Receipt has no stored image")
    try:
        return get_storage().get(key=receipt.image_key)
    except ObjectNotFound as e:
        raise NotFound("Receipt image is missing") from e


def _resolve_currency(currency: str | None) -> str:
    if not currency:
        return settings.default_currency
    code = normalize_currency(currency)
    if not code:
        raise ValidationError("Unknown currency", currency=currency)
    return code


def _read_preview_token(token: str, *, user: User) -> tuple[str | None, Confidence]:
    payload = get_token_signer().verify(token, token_type=PREVIEW_TOKEN_TYPE)
    if payload.get("sub") != str(user.id):
        raise InvalidToken("Preview token belongs to another account")
    try:
        confidence = Confidence(payload.get("conf"))
    except ValueError as e:
        raise InvalidToken() from e
    key = payload.get("key")
    return (key if isinstance(key, str) and key else None), confidence


def _get_by_hash(session: Session, *, owner_id: uuid.UUID, content_hash: str) -> Receipt | None:
    return session.scalar(
        select(Receipt).where(Receipt.owner_id == owner_id, Receipt.content_hash == content_hash)
    )


def _image_key_in_use(session: Session, *, image_key: str) -> bool:
    # Content-addressed keys are shared when the same slip backs two receipts.
    return bool(session.scalar(select(Receipt.id).where(Receipt.image_key == image_key).limit(1)))


def _upload_storage_key(*, owner_id: uuid.UUID, sha256: str, filename: str) -> str:
    suffix = PurePosixPath(filename or "").suffix.lower()
    if not re.fullmatch(r"\.[a-z0-9]{1,5}", suffix):
        suffix = ""
    return f"uploads/{owner_id}/{sha256}{suffix}"
