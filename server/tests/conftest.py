from __future__ import annotations

from typing import Any, Dict

import pytest

from server.src.config import Settings
from server.src.database import configure_database
from server.tests.fakes import MAINCHAIN_URL, SIDECHAIN_URL


@pytest.fixture(autouse=True)
def isolated_database(tmp_path, monkeypatch):
    """Ensure each test uses an isolated SQLite database file."""
    db_file = tmp_path / "test.db"
    database_url = f"sqlite+aiosqlite:///{db_file}"

    monkeypatch.setenv("DASHBOARD_DATABASE_URL", database_url)

    test_settings = Settings(database_url=database_url)
    configure_database(test_settings)

    yield test_settings

    monkeypatch.delenv("DASHBOARD_DATABASE_URL", raising=False)
    configure_database(Settings())


@pytest.fixture
def make_settings():
    def factory(**overrides: Any) -> Settings:
        values: Dict[str, Any] = {
            "mainchain_node_url": MAINCHAIN_URL,
            "sidechain_node_url": SIDECHAIN_URL,
            "cache_backend": "memory",
        }
        values.update(overrides)
        return Settings(**values)

    return factory
