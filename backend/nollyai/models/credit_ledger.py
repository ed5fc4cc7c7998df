from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, text
from sqlalchemy.sql import func

from nollyai.core.database import Base

# A credit with a source (e.g. "paystack:<reference>") lands at most once per user
CREDIT_SOURCE_PREDICATE = "delta > 0 AND source IS NOT NULL"


class CreditLedger(Base):
    __tablename__ = "credit_ledger"
    __table_args__ = (
        Index(
            "ux_credit_ledger_user_source_credit",
            "user_id",
            "source",
            unique=True,
            sqlite_where=text(CREDIT_SOURCE_PREDICATE),
            postgresql_where=text(CREDIT_SOURCE_PREDICATE),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True)
    event_type = Column(String, index=True)
    delta = Column(Integer)
    source = Column(String, index=True, nullable=True)
    job_id = Column(String, index=True, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    event_metadata = Column("metadata", JSON, nullable=True)
