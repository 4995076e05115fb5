# stockrelay/services/activity_logger.py
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

from stockrelay.models.activity_log import SyncActivity

logger = logging.getLogger(__name__)

RECENT_ACTIVITY_LIMIT = 200


class ActivityLogger:
    """
    Audit sink for sync outcomes.

    Every entry is logged and kept in a short in-memory window for the admin
    routes. When a session factory is configured it is also written to the
    sync_activity table. Auditing must never interrupt a sync, so failures
    here are logged and swallowed.
    """

    def __init__(self, session_factory=None):
        self.session_factory = session_factory
        self.recent: Deque[Dict[str, Any]] = deque(maxlen=RECENT_ACTIVITY_LIMIT)

    async def log_activity(
        self,
        action: str,
        store_id: str,
        connection_id: Optional[str] = None,
        success: Optional[bool] = None,
        item_count: int = 0,
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Record one audit entry.

        Args:
            action: 'sync', 'drift', 'skip' or 'rate_limit'
            store_id: Store the entry is about
            connection_id: Connection, when the entry concerns one
            success: Outcome for sync entries
            item_count: Number of items written
            details: Extra JSON-serialisable context

        Returns:
            The recorded entry, or None if it could not be built
        """
        entry = {
            "action": action,
            "store_id": store_id,
            "connection_id": connection_id,
            "success": success,
            "item_count": item_count,
            "details": details or {},
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        self.recent.append(entry)
        logger.debug(f"Activity logged: {action} {store_id} (connection: {connection_id or 'N/A'})")

        if self.session_factory is None:
            return entry

        try:
            async with self.session_factory() as session:
                session.add(SyncActivity(
                    action=action,
                    store_id=store_id,
                    connection_id=connection_id,
                    success=success,
                    item_count=item_count,
                    details=details,
                    created_at=datetime.now(timezone.utc),
                ))
                await session.commit()
        except Exception as e:
            logger.error(f"Error logging activity: {str(e)}")
            # Don't raise, as logging should not interrupt the main flow
        return entry

    async def log_sync(
        self,
        store_id: str,
        success: bool,
        item_count: int = 0,
        connection_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        if success:
            logger.info(f"Synced {item_count} inventory items to store {store_id}")
        else:
            logger.warning(f"Inventory sync to store {store_id} incomplete: {details}")
        return await self.log_activity(
            action="sync",
            store_id=store_id,
            connection_id=connection_id,
            success=success,
            item_count=item_count,
            details=details,
        )

    async def log_drift(
        self,
        store_id: str,
        variant_id: str,
        tracked_quantity: int,
        reported_quantity: int,
    ):
        logger.warning(
            f"Inventory drift for variant {variant_id} in store {store_id}: "
            f"tracked {tracked_quantity}, reported {reported_quantity}"
        )
        return await self.log_activity(
            action="drift",
            store_id=store_id,
            details={
                "variant_id": variant_id,
                "tracked_quantity": tracked_quantity,
                "reported_quantity": reported_quantity,
                "drift": reported_quantity - tracked_quantity,
            },
        )

    async def log_skip(self, store_id: str, connection_id: str, reason: str, details: Optional[Dict[str, Any]] = None):
        logger.info(f"Skipping connection {connection_id}: {reason}")
        return await self.log_activity(
            action="skip",
            store_id=store_id,
            connection_id=connection_id,
            success=True,
            details={"reason": reason, **(details or {})},
        )

    def recent_entries(self, action: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
        entries = [e for e in self.recent if action is None or e["action"] == action]
        return entries[-limit:]
