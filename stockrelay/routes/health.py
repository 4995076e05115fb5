from fastapi import APIRouter
from sqlalchemy import text

from stockrelay.core.config import get_settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic health check"""
    return {"status": "healthy", "service": "stockrelay"}


@router.get("/health/db")
async def database_health():
    """Check database connectivity"""
    if get_settings().STORAGE_BACKEND != "database":
        return {"status": "healthy", "database": "not configured"}
    try:
        from stockrelay.database import get_session

        async with get_session() as session:
            await session.execute(text("SELECT 1"))
        return {"status": "healthy", "database": "connected"}
    except Exception as e:
        return {
            "status": "unhealthy",
            "database": "error",
            "error": str(e)
        }
