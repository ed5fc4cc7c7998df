from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List

from nollyai.core.database import get_db
from nollyai.core.security import CurrentUser, get_current_user
from nollyai.schemas.notification import NotificationResponse
from nollyai.services.notifications import list_notifications, mark_read

router = APIRouter()


@router.get("/notifications", response_model=List[NotificationResponse])
async def get_notifications(
    limit: int = 50,
    unread_only: bool = False,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    return list_notifications(db, current_user.id, limit=max(1, min(int(limit), 200)), unread_only=unread_only)


@router.post("/notifications/{notification_id}/read")
async def read_notification(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> dict:
    if not mark_read(db, current_user.id, notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"ok": True}
