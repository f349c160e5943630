"""Shared pytest fixtures."""

import pytest

from common.config import Config
from common.csv_store import CsvStore

ENV_KEYS = (
    "DISCORD_TOKEN",
    "GUILD_ID",
    "DATA_DIR",
    "CSV_DIR",
    "IGNORE_DIR",
    "CONFIG_DIR",
    "INACTIVE_EXCLUDED_CATEGORIES",
    "COMMAND_USERS",
    "INCLUDE_THREADS",
    "ZERO_PREVIEW_LIMIT",
    "INACTIVE_PREVIEW_LIMIT",
    "HTTP_PORT",
    "HTTP_HOST",
    "LOG_LEVEL",
    "LOG_FORMAT",
)


@pytest.fixture
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


@pytest.fixture
def config(tmp_path, clean_env):
    clean_env.setenv("DATA_DIR", str(tmp_path / "data"))
    return Config()


@pytest.fixture
def store(tmp_path):
    return CsvStore(tmp_path / "csv")
