from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from nollyai.core.database import get_db
from nollyai.core.security import CurrentUser, get_current_user
from nollyai.schemas.credits import CreditPackage, PaystackInitializeRequest, PaystackVerifyRequest, PurchaseResponse
from nollyai.services.billing import (
    TOKEN_PACKAGES,
    PaymentError,
    apply_transaction,
    fetch_transaction,
    initialize_transaction,
    verify_webhook_signature,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/billing/packages", response_model=list[CreditPackage])
async def list_packages():
    return [pkg.to_dict() for pkg in TOKEN_PACKAGES.values()]


@router.post("/billing/paystack/initialize")
async def paystack_initialize(
    body: PaystackInitializeRequest,
    current_user: CurrentUser = Depends(get_current_user),
) -> dict:
    try:
        return initialize_transaction(current_user.id, current_user.email, body.package_id, body.callback_url)
    except PaymentError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc))


@router.post("/billing/paystack/verify", response_model=PurchaseResponse)
async def paystack_verify(
    body: PaystackVerifyRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    reference = (body.reference or "").strip()
    if not reference:
        raise HTTPException(status_code=400, detail="reference is required")
    try:
        transaction = fetch_transaction(reference)
        return apply_transaction(db, transaction, expected_user_id=current_user.id)
    except PaymentError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc))


@router.post("/billing/paystack/webhook")
async def paystack_webhook(request: Request, db: Session = Depends(get_db)) -> dict:
    raw = await request.body()
    try:
        verify_webhook_signature(raw, request.headers.get("x-paystack-signature"))
    except PaymentError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc))

    try:
        event = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON")
    if not isinstance(event, dict):
        raise HTTPException(status_code=400, detail="Invalid payload")

    if event.get("event") != "charge.success":
        return {"ok": True, "ignored": True}

    try:
        result = apply_transaction(db, event.get("data") or {})
    except PaymentError as exc:
        # Acknowledge so Paystack stops retrying a payload we can never apply
        logger.warning("paystack webhook not applied: %s", exc)
        return {"ok": True, "applied": False, "reason": str(exc)}
    return {"ok": True, "applied": not result["already_applied"]}
