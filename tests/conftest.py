# tests/conftest.py
from __future__ import annotations

from collections.abc import Iterator
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from qr_notify.core.config import Settings
from qr_notify.core.state import NotifyState
from qr_notify.main import create_app
from qr_notify.services.notifications import MockNotificationService

SITE_ORIGIN = "http://testserver"
NOTIFY_URL = "/api/notify"
TEST_SIGNING_SECRET = "test-signing-secret"
START_MS = 1_700_000_000_000


class FakeClock:
    """Epoch-milliseconds clock the tests move by hand."""

    def __init__(self, now: int = START_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


def make_settings(**overrides: Any) -> Settings:
    """Settings isolated from the developer's environment and .env file."""
    values: dict[str, Any] = {
        "env_mode": "development",
        "notify_signing_secret": TEST_SIGNING_SECRET,
        "notify_location_tokens": "table-1,table-2,bar_3",
        "allowed_origins": "",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def browser_headers(**extra: str) -> dict[str, str]:
    headers = {"Origin": SITE_ORIGIN}
    headers.update(extra)
    return headers


def order_body(auth_token: str, location_token: str = "table-1", **overrides: Any) -> dict[str, Any]:
    body: dict[str, Any] = {
        "title": "New order: Table 1",
        "message": "2x Espresso\n1x Croissant",
        "locationToken": location_token,
        "authToken": auth_token,
    }
    body.update(overrides)
    return body


def issue_token(client: TestClient, location_token: str = "table-1") -> str:
    response = client.get(NOTIFY_URL, params={"locationToken": location_token}, headers=browser_headers())
    assert response.status_code == 200, response.text
    return response.json()["authToken"]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def notifier() -> MockNotificationService:
    return MockNotificationService()


@pytest.fixture
def state(settings: Settings, clock: FakeClock, notifier: MockNotificationService) -> NotifyState:
    return NotifyState.build(settings, clock=clock, notifier=notifier)


@pytest.fixture
def app(settings: Settings, state: NotifyState) -> FastAPI:
    return create_app(settings=settings, state=state)


@pytest.fixture
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url=SITE_ORIGIN) as test_client:
        yield test_client
