from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from nollyai.core.errors import AlreadyClaimed, InsufficientCredits
from nollyai.core.settings import settings
from nollyai.models.credit_account import CreditAccount
from nollyai.models.credit_ledger import CreditLedger

logger = logging.getLogger(__name__)


ADMIN_ADJUST_MAX = 100_000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything stored is UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _cooldown() -> timedelta:
    return timedelta(hours=max(0, int(settings.free_claim_cooldown_hours)))


def get_or_create_credit_account(db: Session, user_id: str) -> CreditAccount:
    acct = db.query(CreditAccount).filter(CreditAccount.user_id == user_id).first()
    if acct is not None:
        return acct

    grant = max(0, int(settings.credits_signup_grant or 0))
    acct = CreditAccount(user_id=user_id, current_balance=grant, credits_used=0)
    db.add(acct)
    if grant:
        db.add(CreditLedger(user_id=user_id, event_type="signup_grant", delta=grant, source="signup"))
    try:
        db.commit()
    except IntegrityError:
        # Lost a creation race; the other insert wins.
        db.rollback()
        return db.query(CreditAccount).filter(CreditAccount.user_id == user_id).one()
    db.refresh(acct)
    return acct


def seconds_until_free_claim(last_claim_at: datetime | None, now: datetime | None = None) -> int:
    last = as_utc(last_claim_at)
    if last is None:
        return 0
    now = now or utcnow()
    remaining = (last + _cooldown() - now).total_seconds()
    if remaining <= 0:
        return 0
    return int(math.ceil(remaining))


def get_credit_status(db: Session, user_id: str, now: datetime | None = None) -> dict[str, Any]:
    now = now or utcnow()
    acct = get_or_create_credit_account(db, user_id)
    wait = seconds_until_free_claim(acct.last_free_claim_at, now=now)
    last = as_utc(acct.last_free_claim_at)
    return {
        "current_balance": int(acct.current_balance or 0),
        "credits_used": int(acct.credits_used or 0),
        "can_claim_free": wait == 0,
        "seconds_until_reset": wait,
        "daily_free_tokens": int(settings.daily_free_tokens),
        "last_claim": last.isoformat() if last else None,
    }


def _current_balance(db: Session, user_id: str) -> int:
    value = (
        db.query(CreditAccount.current_balance)
        .filter(CreditAccount.user_id == user_id)
        .scalar()
    )
    return int(value or 0)


def claim_daily_free(db: Session, user_id: str, now: datetime | None = None) -> int:
    now = now or utcnow()
    amount = int(settings.daily_free_tokens)
    get_or_create_credit_account(db, user_id)

    cutoff = now - _cooldown()
    updated = (
        db.query(CreditAccount)
        .filter(CreditAccount.user_id == user_id)
        .filter(or_(CreditAccount.last_free_claim_at.is_(None), CreditAccount.last_free_claim_at <= cutoff))
        .update(
            {
                CreditAccount.current_balance: CreditAccount.current_balance + amount,
                CreditAccount.last_free_claim_at: now,
                CreditAccount.updated_at: now,
            },
            synchronize_session=False,
        )
    )
    if updated != 1:
        db.rollback()
        last = db.query(CreditAccount.last_free_claim_at).filter(CreditAccount.user_id == user_id).scalar()
        raise AlreadyClaimed(seconds_until_free_claim(last, now=now))

    db.add(
        CreditLedger(
            user_id=user_id,
            event_type="daily_free",
            delta=amount,
            source=f"daily:{now.isoformat()}",
        )
    )
    db.commit()
    balance = _current_balance(db, user_id)
    logger.info("daily free tokens claimed user=%s amount=%s balance=%s", user_id, amount, balance)
    return balance


def debit_credits(
    db: Session,
    user_id: str,
    amount: int,
    job_id: str | None = None,
    source: str = "job",
    commit: bool = True,
    event_type: str = "spend",
) -> None:
    amount = int(amount)
    if amount <= 0:
        return

    updated = (
        db.query(CreditAccount)
        .filter(CreditAccount.user_id == user_id, CreditAccount.current_balance >= amount)
        .update(
            {
                CreditAccount.current_balance: CreditAccount.current_balance - amount,
                CreditAccount.credits_used: CreditAccount.credits_used + amount,
                CreditAccount.updated_at: utcnow(),
            },
            synchronize_session=False,
        )
    )
    if updated != 1:
        db.rollback()
        raise InsufficientCredits(f"Insufficient credits: {amount} required")

    db.add(
        CreditLedger(
            user_id=user_id,
            event_type=event_type,
            delta=-amount,
            source=source,
            job_id=job_id,
        )
    )
    if commit:
        db.commit()


def _already_granted(db: Session, user_id: str, source: str) -> bool:
    existing = (
        db.query(CreditLedger.id)
        .filter(CreditLedger.user_id == user_id, CreditLedger.source == source, CreditLedger.delta > 0)
        .first()
    )
    return existing is not None


def grant_credits(
    db: Session,
    user_id: str,
    amount: int,
    event_type: str = "purchase",
    source: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> bool:
    """Add credits unconditionally.

    With a ``source`` the grant is applied at most once per user, so replayed
    payment confirmations do not double-credit. Returns False for a replay.
    """
    amount = int(amount)
    if amount <= 0:
        return False

    get_or_create_credit_account(db, user_id)
    if source and _already_granted(db, user_id, source):
        return False

    # The ledger row goes first: the unique (user_id, source) index on credits
    # makes a concurrent replay fail here, before the balance moves
    db.add(
        CreditLedger(
            user_id=user_id,
            event_type=event_type,
            delta=amount,
            source=source,
            event_metadata=(metadata or None),
        )
    )
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        logger.info("credit grant replay ignored user=%s source=%s", user_id, source)
        return False

    db.query(CreditAccount).filter(CreditAccount.user_id == user_id).update(
        {
            CreditAccount.current_balance: CreditAccount.current_balance + amount,
            CreditAccount.updated_at: utcnow(),
        },
        synchronize_session=False,
    )
    db.commit()
    logger.info("credits granted user=%s amount=%s event=%s source=%s", user_id, amount, event_type, source)
    return True


def admin_adjust_credits(db: Session, user_id: str, action: str, amount: int, admin_id: str) -> dict[str, int]:
    action = (action or "").strip().lower()
    amount = int(amount)
    if action not in {"add", "deduct"}:
        raise ValueError("action must be 'add' or 'deduct'")
    if amount < 1 or amount > ADMIN_ADJUST_MAX:
        raise ValueError(f"amount must be an integer between 1 and {ADMIN_ADJUST_MAX}")

    get_or_create_credit_account(db, user_id)
    if action == "add":
        grant_credits(db, user_id, amount, event_type="admin_add", metadata={"admin_id": admin_id})
    else:
        debit_credits(db, user_id, amount, source=f"admin:{admin_id}", event_type="admin_deduct")

    acct = db.query(CreditAccount).filter(CreditAccount.user_id == user_id).one()
    db.refresh(acct)
    return {
        "current_balance": int(acct.current_balance or 0),
        "credits_used": int(acct.credits_used or 0),
    }
