from pydantic import BaseModel
from typing import Optional
from datetime import datetime


class NotificationResponse(BaseModel):
    id: int
    type: Optional[str] = None
    title: str
    message: str
    job_id: Optional[str] = None
    read: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
