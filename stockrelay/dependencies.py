from fastapi import HTTPException, Request

from stockrelay.integrations.setup import SyncEngine


def get_sync_engine(request: Request) -> SyncEngine:
    """Dependency for the engine built in the app lifespan."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Sync engine not started")
    return engine
