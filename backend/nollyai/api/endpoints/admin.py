from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from nollyai.core.database import get_db
from nollyai.core.errors import StudioError, http_error
from nollyai.core.security import CurrentUser, require_admin
from nollyai.schemas.credits import AdminCreditRequest, AdminCreditResponse
from nollyai.services.credits_engine import admin_adjust_credits

router = APIRouter()


@router.post("/admin/credits", response_model=AdminCreditResponse)
async def manage_credits(
    body: AdminCreditRequest,
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    user_id = (body.user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=400, detail="Invalid user_id")
    try:
        balance = admin_adjust_credits(db, user_id, body.action, body.amount, admin_id=admin.id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except StudioError as exc:
        raise http_error(exc)
    return {"user_id": user_id, "action": body.action.strip().lower(), "amount": body.amount, **balance}
