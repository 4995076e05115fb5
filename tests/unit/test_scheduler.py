# tests/unit/test_scheduler.py
import pytest
from unittest.mock import AsyncMock, MagicMock

from stockrelay import scheduler as scheduler_module
from stockrelay.scheduler import (
    create_scheduler,
    get_scheduler_status,
    purge_idempotency_records_task,
    restart_queue_task,
)


@pytest.fixture
def engine():
    engine = MagicMock()
    engine.events.purge_expired = AsyncMock(return_value=3)
    engine.queue.start_if_idle.return_value = True
    engine.queue.__len__.return_value = 2
    return engine


@pytest.fixture(autouse=True)
def reset_scheduler():
    scheduler_module.scheduler = None
    yield
    scheduler_module.scheduler = None


def test_scheduler_registers_jobs(engine):
    scheduler = create_scheduler(engine)
    assert {job.id for job in scheduler.get_jobs()} == {"purge_idempotency_records", "restart_propagation_queue"}
    assert create_scheduler(engine) is scheduler


def test_status_before_start():
    assert get_scheduler_status() == {"status": "not_initialized", "jobs": []}


@pytest.mark.asyncio
async def test_purge_task(engine):
    await purge_idempotency_records_task(engine)
    engine.events.purge_expired.assert_awaited_once()


@pytest.mark.asyncio
async def test_purge_task_swallows_errors(engine):
    engine.events.purge_expired.side_effect = RuntimeError("database down")
    await purge_idempotency_records_task(engine)


@pytest.mark.asyncio
async def test_restart_queue_task(engine):
    await restart_queue_task(engine)
    engine.queue.start_if_idle.assert_called_once()
