# stockrelay/models/idempotency.py
from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from stockrelay.database import Base


class IdempotencyRecord(Base):
    """
    A webhook event that was handled successfully.

    Rows are written only after the handler returns, so a failed delivery
    leaves nothing behind and the platform's retry is processed again.
    """
    __tablename__ = "idempotency_records"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(512), unique=True, nullable=False, index=True)
    result = Column(JSONB, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)

    def __repr__(self):
        return f"<IdempotencyRecord(key='{self.key}', expires_at={self.expires_at})>"
