"""
Test Configuration and Fixtures.

Provides shared fixtures for all tests. The clock is frozen on
Sunday 2025-06-01 12:00 UTC so the June 2025 dates used throughout
are in the future.
"""

from datetime import datetime, timezone
from typing import Generator

import pytest
from flask import Flask
from flask.testing import FlaskClient
from freezegun import freeze_time

from followup_engine.app import create_app
from followup_engine.config import (
    BusinessHoursSettings,
    NotificationSettings,
    RateLimitSettings,
    SchedulingSettings,
    Settings,
    StoreSettings,
)
from followup_engine.core.models import BusinessHours, ClientImportance
from followup_engine.infrastructure.store import Client, FollowUp, InMemoryStore
from followup_engine.services import FollowUpOrchestrator


FROZEN_NOW = "2025-06-01 12:00:00"


@pytest.fixture(autouse=True)
def frozen_clock() -> Generator:
    """Freeze the clock for every test."""
    with freeze_time(FROZEN_NOW) as frozen:
        yield frozen


@pytest.fixture
def test_settings() -> Settings:
    """Settings independent of the environment."""
    return Settings(
        store=StoreSettings(
            backend="memory",
            retry_attempts=3,
            retry_backoff_seconds=0.0,
            lock_timeout_seconds=1.0,
        ),
        scheduling=SchedulingSettings(
            default_timezone="America/Toronto",
            max_duration_minutes=480,
            reminder_days=(7, 1),
            max_recurrence_occurrences=10,
        ),
        business_hours=BusinessHoursSettings(hours=BusinessHours.standard()),
        notifications=NotificationSettings(
            email_enabled=True,
            sms_enabled=True,
            fallback_recipient=None,
        ),
        rate_limit=RateLimitSettings(enabled=False),
    )


@pytest.fixture
def sample_client() -> Client:
    """Client reachable by email and SMS."""
    return Client(
        id="C1",
        name="Acme Landscaping",
        email="owner@acme.example",
        phone="+1 416 555 0100",
        importance=ClientImportance.MEDIUM,
    )


@pytest.fixture
def email_only_client() -> Client:
    return Client(id="C2", name="Birch Lane", email="birch@example.com")


@pytest.fixture
def unreachable_client() -> Client:
    return Client(id="C3", name="No Contact Inc")


@pytest.fixture
def store(sample_client, email_only_client, unreachable_client) -> InMemoryStore:
    """In-memory store seeded with three clients."""
    memory_store = InMemoryStore()
    memory_store.add_client(sample_client)
    memory_store.add_client(email_only_client)
    memory_store.add_client(unreachable_client)
    return memory_store


@pytest.fixture
def orchestrator(store, test_settings) -> FollowUpOrchestrator:
    """Orchestrator over the in-memory store, without retry delays."""
    return FollowUpOrchestrator(store, test_settings, sleep=lambda seconds: None)


@pytest.fixture
def app(store, test_settings) -> Flask:
    """Create test Flask application."""
    test_config = {
        "TESTING": True,
    }
    return create_app(test_config, store=store, app_settings=test_settings)


@pytest.fixture
def client(app: Flask) -> FlaskClient:
    """Create test client."""
    return app.test_client()


@pytest.fixture
def utc_now() -> datetime:
    return datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_follow_up(store):
    """Factory persisting a follow-up for client C1 unless told otherwise."""
    def _make(scheduled_date: datetime, **fields) -> FollowUp:
        values = {
            "id": "",
            "client_id": "C1",
            "scheduled_date": scheduled_date.astimezone(timezone.utc),
            "timezone": "America/Toronto",
            "duration": 60,
            "title": "Existing follow-up",
        }
        values.update(fields)
        return store.create_follow_up(FollowUp(**values))
    return _make
