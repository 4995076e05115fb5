# stockrelay/main.py

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI

from stockrelay.core.config import get_settings
from stockrelay.core.logging_config import configure_logging
from stockrelay.core.security import get_current_username
from stockrelay.database import dispose_engine
from stockrelay.integrations.setup import build_engine
from stockrelay.routes import admin, health, webhooks
from stockrelay.scheduler import get_scheduler_status, start_scheduler, stop_scheduler

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    app.state.engine = build_engine(settings)
    await start_scheduler(app.state.engine)
    try:
        yield  # This is where the app runs
    finally:
        await stop_scheduler()
        await app.state.engine.shutdown()
        if settings.STORAGE_BACKEND == "database":
            await dispose_engine()


app = FastAPI(
    title="stockrelay",
    lifespan=lifespan
)

app.include_router(webhooks.router)  # Webhooks are verified by HMAC, not basic auth
app.include_router(admin.router)
app.include_router(health.router)


@app.get("/admin/scheduler")
async def scheduler_status(current_user: str = Depends(get_current_username)):
    return get_scheduler_status()
