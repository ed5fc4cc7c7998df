from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Any

import requests
from sqlalchemy.orm import Session

from nollyai.core.settings import settings
from nollyai.services.credits_engine import get_credit_status, grant_credits

logger = logging.getLogger(__name__)

PAYSTACK_API = "https://api.paystack.co"


@dataclass(frozen=True)
class TokenPackage:
    id: str
    name: str
    tokens: int
    amount_naira: int

    @property
    def amount_kobo(self) -> int:
        return self.amount_naira * 100

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "tokens": self.tokens,
            "amount_kobo": self.amount_kobo,
            "currency": "NGN",
        }


TOKEN_PACKAGES: dict[str, TokenPackage] = {
    "starter": TokenPackage("starter", "Starter Pack", 50, 500),
    "standard": TokenPackage("standard", "Standard Pack", 150, 1000),
    "premium": TokenPackage("premium", "Premium Pack", 500, 3000),
    "pro": TokenPackage("pro", "Pro Pack", 1500, 8000),
}


class PaymentError(RuntimeError):
    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.status_code = status_code


def _require_paystack() -> str:
    if not settings.paystack_secret_key:
        raise PaymentError("Paystack is not configured", status_code=500)
    return settings.paystack_secret_key


def verify_webhook_signature(raw_body: bytes, signature: str | None) -> None:
    secret = _require_paystack()
    sig = (signature or "").strip()
    if not sig:
        raise PaymentError("Missing x-paystack-signature")
    digest = hmac.new(key=secret.encode("utf-8"), msg=raw_body, digestmod=hashlib.sha512).hexdigest()
    if not hmac.compare_digest(digest, sig):
        raise PaymentError("Invalid signature")


def initialize_transaction(user_id: str, email: str, package_id: str, callback_url: str | None = None) -> dict[str, Any]:
    secret = _require_paystack()
    pkg = TOKEN_PACKAGES.get((package_id or "").strip().lower())
    if pkg is None:
        raise PaymentError(f"Invalid package; choose one of: {', '.join(TOKEN_PACKAGES)}")
    if not email:
        raise PaymentError("An email address is required for payment")

    resp = requests.post(
        f"{PAYSTACK_API}/transaction/initialize",
        headers={"Authorization": f"Bearer {secret}", "Content-Type": "application/json"},
        json={
            "email": email,
            "amount": pkg.amount_kobo,
            "callback_url": callback_url or f"{settings.frontend_url}/payment/verify",
            "metadata": {"user_id": user_id, "package_id": pkg.id, "tokens": pkg.tokens},
        },
        timeout=30,
    )
    body = resp.json() if resp.content else {}
    if resp.status_code >= 400 or not body.get("status"):
        logger.warning("paystack initialize failed status=%s message=%s", resp.status_code, body.get("message"))
        raise PaymentError(body.get("message") or "Payment initialization failed", status_code=502)
    data = body.get("data") or {}
    return {
        "authorization_url": data.get("authorization_url"),
        "access_code": data.get("access_code"),
        "reference": data.get("reference"),
        "package": pkg.to_dict(),
    }


def fetch_transaction(reference: str) -> dict[str, Any]:
    secret = _require_paystack()
    resp = requests.get(
        f"{PAYSTACK_API}/transaction/verify/{reference}",
        headers={"Authorization": f"Bearer {secret}"},
        timeout=30,
    )
    if resp.status_code >= 500:
        raise PaymentError(f"Paystack error ({resp.status_code})", status_code=502)
    body = resp.json() if resp.content else {}
    if not body.get("status"):
        raise PaymentError(body.get("message") or "Payment verification failed")
    return body.get("data") or {}


def apply_transaction(db: Session, transaction: dict[str, Any], expected_user_id: str | None = None) -> dict[str, Any]:
    """Credit a successful Paystack transaction once per reference."""
    reference = str(transaction.get("reference") or "").strip()
    if not reference:
        raise PaymentError("Transaction has no reference")
    if transaction.get("status") != "success":
        raise PaymentError(f"Payment not successful (status: {transaction.get('status')})")

    metadata = transaction.get("metadata") if isinstance(transaction.get("metadata"), dict) else {}
    user_id = str(metadata.get("user_id") or "").strip()
    if not user_id:
        raise PaymentError("Transaction is not linked to a user")
    if expected_user_id is not None and user_id != expected_user_id:
        raise PaymentError("Transaction belongs to another account", status_code=403)

    pkg = TOKEN_PACKAGES.get(str(metadata.get("package_id") or "").strip().lower())
    if pkg is None:
        raise PaymentError("Transaction does not reference a known package")
    if int(transaction.get("amount") or 0) < pkg.amount_kobo:
        raise PaymentError("Amount paid does not cover the package")

    applied = grant_credits(
        db,
        user_id,
        pkg.tokens,
        event_type="purchase",
        source=f"paystack:{reference}",
        metadata={"package_id": pkg.id, "amount_kobo": int(transaction.get("amount") or 0)},
    )
    if applied:
        logger.info("paystack purchase applied user=%s package=%s reference=%s", user_id, pkg.id, reference)
    status = get_credit_status(db, user_id)
    return {
        "reference": reference,
        "package_id": pkg.id,
        "tokens_added": pkg.tokens if applied else 0,
        "already_applied": not applied,
        "current_balance": status["current_balance"],
    }
