from __future__ import annotations

import random

import pytest
from fastapi.testclient import TestClient

from plexus.app import create_app
from plexus.config import Settings
from plexus.services.container import Services, build_services

TEST_SECRET = "test-razorpay-secret"


class FakeClock:
    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def clear_env(monkeypatch):
    for key in ("GEMINI_API_KEY", "RAZORPAY_KEY_ID", "RAZORPAY_KEY_SECRET", "THROTTLE_BACKEND", "CATALOG_PATH"):
        monkeypatch.delenv(key, raising=False)
    yield


@pytest.fixture()
def settings() -> Settings:
    return Settings(_env_file=None, razorpay_key_secret=TEST_SECRET)


@pytest.fixture()
def services(settings: Settings) -> Services:
    built = build_services(settings)
    built.rng = random.Random(7)
    return built


@pytest.fixture()
def client(settings: Settings, services: Services) -> TestClient:
    return TestClient(create_app(settings, services))


@pytest.fixture()
def user_id(services: Services) -> str:
    services.store.register("user-1", email="student@example.com", display_name="Test Student")
    return "user-1"


@pytest.fixture()
def auth_headers(services: Services, user_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {services.store.issue_session_token(user_id)}"}
