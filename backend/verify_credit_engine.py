from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from nollyai.core.database import Base
from nollyai.core.errors import AlreadyClaimed, InsufficientCredits
from nollyai.core.settings import settings
from nollyai.models.credit_ledger import CreditLedger
from nollyai.services.credits_engine import (
    admin_adjust_credits,
    claim_daily_free,
    debit_credits,
    get_credit_status,
    grant_credits,
)


def main() -> None:
    settings.credits_signup_grant = 0
    settings.daily_free_tokens = 10
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        user_id = "user-1"
        bal = claim_daily_free(db, user_id)
        assert bal == 10, bal
        try:
            claim_daily_free(db, user_id)
            raise AssertionError("second claim should fail")
        except AlreadyClaimed as e:
            assert e.seconds_until_reset > 0, e.seconds_until_reset

        assert grant_credits(db, user_id, 150, source="paystack:ref-1")
        assert not grant_credits(db, user_id, 150, source="paystack:ref-1")

        debit_credits(db, user_id, 15, job_id="job-1", source="job:script-breakdown")
        status = get_credit_status(db, user_id)
        assert status["current_balance"] == 145, status
        assert status["credits_used"] == 15, status

        try:
            debit_credits(db, user_id, 1000, job_id="job-2")
            raise AssertionError("debit beyond balance should fail")
        except InsufficientCredits:
            pass
        assert get_credit_status(db, user_id)["current_balance"] == 145

        out = admin_adjust_credits(db, user_id, "deduct", 45, admin_id="admin-1")
        assert out["current_balance"] == 100, out

        rows = db.query(CreditLedger).filter(CreditLedger.user_id == user_id).all()
        assert sum(r.delta for r in rows) == 100, [r.delta for r in rows]
        assert any(r.job_id == "job-1" and r.delta == -15 for r in rows)
    finally:
        db.close()


if __name__ == "__main__":
    main()
    print("OK")
