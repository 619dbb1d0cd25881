from __future__ import annotations

import mimetypes
import uuid

from fastapi import APIRouter, Depends, File, Query, UploadFile, status
from fastapi.responses import Response
from sqlalchemy.orm import Session

from slipsafe.api.deps import get_current_user
from slipsafe.core.db import db_session
from slipsafe.core.logging import get_logger, log_event
from slipsafe.modules.extraction.service import StatedPolicy
from slipsafe.modules.identity.models import User
from slipsafe.modules.receipts.models import Receipt, ReceiptCategory
from slipsafe.modules.receipts.schemas import (
    ReceiptConfirmIn,
    ReceiptConfirmOut,
    ReceiptOut,
    ReceiptPreviewOut,
    ReceiptUpdate,
)
from slipsafe.modules.receipts.service import (
    confirm_receipt,
    delete_receipt,
    get_receipt_for_user,
    get_receipt_image,
    list_receipts,
    submit_receipt,
    update_receipt_category,
)

router = APIRouter(tags=["receipts"])
logger = get_logger(__name__)


def _out(receipt: Receipt) -> ReceiptOut:
    return ReceiptOut.model_validate(receipt, from_attributes=True)


@router.post("/receipts/preview", response_model=ReceiptPreviewOut)
async def preview_receipt(
    upload: UploadFile = File(...),
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> ReceiptPreviewOut:
    body = await upload.read()
    log_event(
        logger,
        "upload.received",
        filename=upload.filename or "upload.bin",
        content_type=upload.content_type,
        byte_size=len(body),
    )
    preview = submit_receipt(
        session,
        user=user,
        filename=upload.filename or "upload.bin",
        content_type=upload.content_type,
        body=body,
    )
    return ReceiptPreviewOut.model_validate(preview, from_attributes=True)


@router.post("/receipts/confirm", response_model=ReceiptConfirmOut)
def confirm_receipt_endpoint(
    payload: ReceiptConfirmIn,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> ReceiptConfirmOut:
    receipt, duplicate = confirm_receipt(
        session,
        user=user,
        merchant=payload.merchant,
        purchase_date=payload.date,
        total=payload.total,
        currency=payload.currency,
        category=payload.category,
        refund_type=payload.refund_type,
        preview_token=payload.preview_token,
        raw_text=payload.raw_text,
        stated_policy=StatedPolicy(
            return_days=payload.return_policy_days,
            return_terms=payload.return_policy_terms,
            exchange_days=payload.exchange_policy_days,
            exchange_terms=payload.exchange_policy_terms,
        ),
    )
    return ReceiptConfirmOut(receipt=_out(receipt), duplicate=duplicate)


@router.get("/receipts", response_model=list[ReceiptOut])
def list_receipts_endpoint(
    category: ReceiptCategory | None = None,
    q: str | None = Query(default=None, max_length=100),
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> list[ReceiptOut]:
    receipts = list_receipts(session, user=user, category=category, search=q)
    return [_out(r) for r in receipts]


@router.get("/receipts/{receipt_id}", response_model=ReceiptOut)
def get_receipt_endpoint(
    receipt_id: uuid.UUID,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> ReceiptOut:
    return _out(get_receipt_for_user(session, receipt_id=receipt_id, user=user))


@router.patch("/receipts/{receipt_id}", response_model=ReceiptOut)
def update_receipt_endpoint(
    receipt_id: uuid.UUID,
    payload: ReceiptUpdate,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> ReceiptOut:
    receipt = get_receipt_for_user(session, receipt_id=receipt_id, user=user)
    receipt = update_receipt_category(session, receipt=receipt, user=user, category=payload.category)
    return _out(receipt)


@router.delete("/receipts/{receipt_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_receipt_endpoint(
    receipt_id: uuid.UUID,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> None:
    receipt = get_receipt_for_user(session, receipt_id=receipt_id, user=user)
    delete_receipt(session, receipt=receipt, user=user)


@router.get("/receipts/{receipt_id}/image")
def download_receipt_image(
    receipt_id: uuid.UUID,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> Response:
    receipt = get_receipt_for_user(session, receipt_id=receipt_id, user=user)
    body = get_receipt_image(receipt)
    media_type = mimetypes.guess_type(receipt.image_key or "")[0] or "application/octet-stream"
    return Response(content=body, media_type=media_type)
