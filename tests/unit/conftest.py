"""Fixtures communes des tests unitaires (aucun service externe)."""

from datetime import UTC, datetime

import pytest

from app.services.audit_service import AuditTrail
from tests.fakes import FakeClock, FakeStore, RecordingDelivery

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(T0)


@pytest.fixture
def audit(store) -> AuditTrail:
    return AuditTrail(store)


@pytest.fixture
def delivery() -> RecordingDelivery:
    return RecordingDelivery()
