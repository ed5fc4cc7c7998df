from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from nollyai.core.database import get_db
from nollyai.core.errors import StudioError, http_error
from nollyai.core.security import CurrentUser, get_current_user
from nollyai.core.settings import settings
from nollyai.schemas.credits import ClaimResponse, CreditStatus
from nollyai.services.credits_engine import claim_daily_free, get_credit_status

router = APIRouter()


@router.get("/credits", response_model=CreditStatus)
async def get_credits(db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    return get_credit_status(db, current_user.id)


@router.post("/credits/claim", response_model=ClaimResponse)
async def claim_free_tokens(db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    try:
        balance = claim_daily_free(db, current_user.id)
    except StudioError as exc:
        raise http_error(exc)
    return {"new_balance": balance, "tokens_added": int(settings.daily_free_tokens)}
