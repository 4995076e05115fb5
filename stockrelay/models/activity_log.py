# stockrelay/models/activity_log.py
from sqlalchemy import Column, Integer, String, DateTime, Boolean
from sqlalchemy.sql import func
from sqlalchemy.dialects.postgresql import JSONB
from stockrelay.database import Base

class SyncActivity(Base):
    """
    Append-only audit trail of sync outcomes.

    This includes:
    - Downstream writes (success and failure, with item counts)
    - Drift between tracked and reported upstream quantities
    - Skipped adjustments (catalog-only connections, location mismatches)
    - Rate limit events
    """
    __tablename__ = "sync_activity"

    id = Column(Integer, primary_key=True)
    action = Column(String(50), nullable=False, index=True)  # 'sync', 'drift', 'skip', 'rate_limit'
    store_id = Column(String(255), nullable=False, index=True)
    connection_id = Column(String(255), nullable=True, index=True)
    success = Column(Boolean, nullable=True)
    item_count = Column(Integer, nullable=False, default=0)

    details = Column(JSONB, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<SyncActivity {self.action} {self.store_id} success={self.success}>"
