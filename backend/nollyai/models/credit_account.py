from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.sql import func

from nollyai.core.database import Base


class CreditAccount(Base):
    __tablename__ = "credit_accounts"

    user_id = Column(String, primary_key=True, index=True)
    current_balance = Column(Integer, default=0, nullable=False)
    credits_used = Column(Integer, default=0, nullable=False)
    last_free_claim_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
