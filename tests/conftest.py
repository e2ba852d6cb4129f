"""Shared fixtures: a fresh in-memory SQLite database per test, seeded user
profiles, and a recording notifier standing in for the push transport."""

import math
import os

os.environ["DATABASE_DSN"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENV"] = "local"
os.environ["NOTIFIER_PROVIDER"] = "noop"
os.environ["STORE_CONFLICT_BACKOFF_SECONDS"] = "0"

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from carenet.core.base import Base
from carenet.core.db import _import_models
from carenet.modules.alerts.service import AlertDispatcher
from carenet.modules.geofence.service import GeofenceEvaluator
from carenet.modules.profiles.models import UserProfile
from carenet.modules.relationships.service import RelationshipService

WARD = "ward-alice"
GUARDIAN = "guardian-bob"
OTHER_GUARDIAN = "guardian-carol"
STRANGER = "stranger-dave"

METERS_PER_DEGREE_LAT = 2 * math.pi * 6371.0 * 1000 / 360


def north_of(lat: float, meters: float) -> float:
    return lat + meters / METERS_PER_DEGREE_LAT


class RecordingNotifier:
    """Accepts every notification unless the target is listed in ``refuse``/``explode``."""

    def __init__(self, refuse=(), explode=()):
        self.sent = []
        self.refuse = set(refuse)
        self.explode = set(explode)

    async def send(self, target_user_id: str, payload: dict) -> bool:
        if target_user_id in self.explode:
            raise ConnectionError("push gateway unreachable")
        if target_user_id in self.refuse:
            return False
        self.sent.append((target_user_id, payload))
        return True

    def targets(self):
        return [t for t, _ in self.sent]


class RecordingEscalation:
    def __init__(self):
        self.calls = []

    async def on_unacknowledged(self, alert, elapsed):
        self.calls.append((alert.id, elapsed))


@pytest.fixture
async def engine():
    _import_models()
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
async def profiles(session):
    session.add_all([
        UserProfile(user_id=WARD, display_name="Alice", email="alice@example.com", role="ward"),
        UserProfile(user_id=GUARDIAN, display_name="Bob", email="bob@example.com", role="guardian"),
        UserProfile(user_id=OTHER_GUARDIAN, display_name="Carol", email="carol@example.com", role="guardian"),
    ])
    await session.commit()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def escalation():
    return RecordingEscalation()


@pytest.fixture
def relationships(session, profiles):
    return RelationshipService(session)


@pytest.fixture
def dispatcher(session, relationships, notifier, escalation):
    return AlertDispatcher(session, relationships=relationships, notifier=notifier, escalation=escalation)


@pytest.fixture
def evaluator(session, dispatcher):
    return GeofenceEvaluator(session, dispatcher=dispatcher)


async def connect(relationships: RelationshipService, ward_id: str = WARD, guardian_id: str = GUARDIAN):
    """Ward invites guardian, guardian accepts; returns the active relationship."""
    rel = await relationships.request_connection(ward_id, "ward", guardian_id)
    return await relationships.accept(rel.id, guardian_id)


@pytest.fixture
async def active_pair(relationships):
    return await connect(relationships)
