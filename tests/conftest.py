"""Shared fixtures for the quote sync test suite.

Provides:
- clock: a fake monotonic clock whose sleep advances time and records waits
- monday / simpro: in-memory client doubles from tests.fakes
- sync_env: environment for a fully configured service, with the settings
  cache cleared before and after each test
"""

from __future__ import annotations

import pytest

from src.quotesync.config import get_settings
from tests.fakes import ACCOUNTS, CONTACTS, DEALS, FakeMonday, FakeSimpro, make_quote_json


class FakeClock:
    """Deterministic clock; ``sleep`` advances ``now`` and records the wait."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def monday() -> FakeMonday:
    return FakeMonday()


@pytest.fixture
def simpro() -> FakeSimpro:
    return FakeSimpro([make_quote_json()])


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Settings are cached process-wide; every test starts from the environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def sync_env(monkeypatch):
    """Environment for a fully configured sync service."""
    values = {
        "ENVIRONMENT": "development",
        "SIMPRO_BASE_URL": "https://acme.simprosuite.com",
        "SIMPRO_ACCESS_TOKEN": "simpro-token",
        "SIMPRO_COMPANY_ID": "2",
        "SIMPRO_WEBHOOK_SECRET": "hook-secret",
        "MONDAY_API_TOKEN": "monday-token",
        "MONDAY_ACCOUNTS_BOARD_ID": ACCOUNTS,
        "MONDAY_CONTACTS_BOARD_ID": CONTACTS,
        "MONDAY_DEALS_BOARD_ID": DEALS,
        "CRON_SECRET": "cron-secret",
        "SENTRY_DSN": "",
    }
    for key, value in values.items():
        monkeypatch.setenv(key, value)
    return values
