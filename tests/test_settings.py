import importlib

import pytest

import database
import settings


def _production_env(monkeypatch):
    monkeypatch.setenv("APP_ENV", "production")
    monkeypatch.setenv("ACCESS_TOKEN_SECRET", "prod-access")
    monkeypatch.setenv("REFRESH_TOKEN_SECRET", "prod-refresh")
    monkeypatch.setenv("CORS_ALLOWLIST", "https://chefbook.example.com")


def test_production_requires_database_url(monkeypatch):
    _production_env(monkeypatch)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    try:
        with pytest.raises(RuntimeError, match="DATABASE_URL is required in production"):
            importlib.reload(settings)
    finally:
        monkeypatch.undo()
        importlib.reload(settings)
    assert settings.IS_PRODUCTION is False


def test_production_settings_load_with_database_url(monkeypatch):
    _production_env(monkeypatch)
    monkeypatch.setenv("DATABASE_URL", "mongodb://db.internal:27017")
    try:
        importlib.reload(settings)
        assert settings.IS_PRODUCTION is True
        assert settings.DATABASE_URL == "mongodb://db.internal:27017"
    finally:
        monkeypatch.undo()
        importlib.reload(settings)


def test_build_store_refuses_memory_in_production(monkeypatch):
    monkeypatch.setattr(settings, "IS_PRODUCTION", True)
    monkeypatch.setattr(settings, "DATABASE_URL", None)
    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        database.build_store()


def test_build_store_uses_memory_outside_production(monkeypatch):
    monkeypatch.setattr(settings, "IS_PRODUCTION", False)
    monkeypatch.setattr(settings, "DATABASE_URL", None)
    assert isinstance(database.build_store(), database.MemoryStore)
