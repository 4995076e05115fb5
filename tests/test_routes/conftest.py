# tests/test_routes/conftest.py
import pytest
from fastapi.testclient import TestClient

from stockrelay.core.config import clear_settings_cache, get_settings
from stockrelay.integrations.setup import build_engine
from stockrelay.main import app

from tests.test_routes.helpers import WEBHOOK_SECRET


@pytest.fixture
def engine(monkeypatch, mapping_provider, mock_platform):
    """Engine wired to the in-memory stores and the mock downstream platform"""
    monkeypatch.setenv("WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setenv("STORAGE_BACKEND", "memory")
    monkeypatch.setenv("ENVIRONMENT", "development")
    monkeypatch.delenv("BASIC_AUTH_PASSWORD", raising=False)
    clear_settings_cache()

    engine = build_engine(get_settings(), mappings=mapping_provider, platform_factory=lambda credentials: mock_platform)
    mock_platform.rate_limiter = engine.rate_limiter
    return engine


@pytest.fixture
def client(engine):
    app.state.engine = engine
    yield TestClient(app)
    del app.state.engine
