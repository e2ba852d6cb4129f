import uuid
from datetime import timedelta
import pytest
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from carenet.core.base import utcnow, as_utc
from carenet.core.config import settings
from carenet.core.errors import AlertNotFound, NotAuthorized
from carenet.modules.alerts.repository import DeliveryRepository
from carenet.modules.consent.types import ConsentType
from conftest import WARD, GUARDIAN, OTHER_GUARDIAN, STRANGER, connect

LOCATION = {"lat": 40.7128, "lon": -74.006}


async def make_due(session, alert_id, guardian_id):
    row = await DeliveryRepository(session).get(alert_id, guardian_id)
    row.next_attempt_at = utcnow() - timedelta(seconds=1)
    await session.commit()
    return row


# ---- SOS ----
async def test_sos_reaches_guardian_without_any_consent(dispatcher, relationships, active_pair, notifier):
    for ctype in ConsentType:
        await relationships.revoke_consent(WARD, WARD, GUARDIAN, ctype)
    result = await dispatcher.raise_sos(WARD, "Alice", LOCATION)
    assert result.recipients == [GUARDIAN]
    assert result.delivered == [GUARDIAN]
    assert not result.degraded
    alert = result.alert
    assert alert.type == "sos"
    assert alert.severity == "critical"
    assert alert.message == "Alice has triggered an SOS alert: Emergency"
    assert alert.location == LOCATION
    assert notifier.sent[0][1]["alert_id"] == str(alert.id)


async def test_sos_without_guardians_is_recorded_but_degraded(dispatcher, relationships, notifier, caplog):
    result = await dispatcher.raise_sos(WARD, "Alice", reason="Fell down")
    assert result.degraded
    assert result.recipients == []
    assert notifier.sent == []
    stored = await dispatcher.alerts.get(result.alert.id)
    assert stored.reason == "Fell down"
    assert "no recipients" in caplog.text


async def test_sos_skips_revoked_relationships(dispatcher, relationships, active_pair, notifier):
    await relationships.revoke(active_pair.id, WARD)
    result = await dispatcher.raise_sos(WARD, "Alice")
    assert result.degraded
    assert notifier.sent == []


# ---- Delivery ----
async def test_one_failing_guardian_does_not_block_others(dispatcher, relationships, active_pair, notifier, session):
    await connect(relationships, guardian_id=OTHER_GUARDIAN)
    notifier.explode.add(GUARDIAN)
    result = await dispatcher.raise_sos(WARD, "Alice")
    assert result.delivered == [OTHER_GUARDIAN]
    assert result.failed == [GUARDIAN]

    failed = await DeliveryRepository(session).get(result.alert.id, GUARDIAN)
    assert failed.status == "pending"
    assert failed.attempts == 1
    assert "ConnectionError" in failed.last_error
    assert as_utc(failed.next_attempt_at) > utcnow()

    sent = await DeliveryRepository(session).get(result.alert.id, OTHER_GUARDIAN)
    assert sent.status == "sent"
    assert sent.sent_at is not None


async def test_relay_retries_due_delivery(dispatcher, active_pair, notifier, session):
    notifier.refuse.add(GUARDIAN)
    result = await dispatcher.raise_sos(WARD, "Alice")
    assert result.failed == [GUARDIAN]
    # backoff not elapsed yet
    assert await dispatcher.deliver_due() == 0

    notifier.refuse.clear()
    await make_due(session, result.alert.id, GUARDIAN)
    assert await dispatcher.deliver_due() == 1
    row = await DeliveryRepository(session).get(result.alert.id, GUARDIAN)
    assert row.status == "sent"
    assert row.attempts == 2
    assert notifier.targets() == [GUARDIAN]


async def test_delivery_gives_up_after_max_attempts(dispatcher, active_pair, notifier, session, monkeypatch):
    monkeypatch.setattr(settings, "DELIVERY_MAX_ATTEMPTS", 2)
    notifier.refuse.add(GUARDIAN)
    result = await dispatcher.raise_sos(WARD, "Alice")
    await make_due(session, result.alert.id, GUARDIAN)
    assert await dispatcher.deliver_due() == 1
    row = await DeliveryRepository(session).get(result.alert.id, GUARDIAN)
    assert row.status == "failed"
    assert row.attempts == 2
    assert await dispatcher.deliver_due() == 0


# ---- Acknowledgement ----
async def test_acknowledge_is_monotonic_and_idempotent(dispatcher, relationships, active_pair):
    await connect(relationships, guardian_id=OTHER_GUARDIAN)
    result = await dispatcher.raise_sos(WARD, "Alice")
    alert = await dispatcher.acknowledge(result.alert.id, GUARDIAN)
    assert alert.acknowledged
    assert [r["guardian_id"] for r in alert.responders] == [GUARDIAN]

    alert = await dispatcher.acknowledge(result.alert.id, GUARDIAN)
    assert len(alert.responders) == 1

    alert = await dispatcher.acknowledge(result.alert.id, OTHER_GUARDIAN)
    assert [r["guardian_id"] for r in alert.responders] == [GUARDIAN, OTHER_GUARDIAN]
    assert alert.acknowledged


async def test_ward_and_strangers_cannot_acknowledge(dispatcher, active_pair):
    result = await dispatcher.raise_sos(WARD, "Alice")
    with pytest.raises(NotAuthorized):
        await dispatcher.acknowledge(result.alert.id, WARD)
    with pytest.raises(NotAuthorized):
        await dispatcher.acknowledge(result.alert.id, STRANGER)
    with pytest.raises(AlertNotFound):
        await dispatcher.acknowledge(uuid.uuid4(), GUARDIAN)


async def test_former_recipient_can_still_acknowledge(dispatcher, relationships, active_pair):
    result = await dispatcher.raise_sos(WARD, "Alice")
    await relationships.revoke(active_pair.id, GUARDIAN)
    alert = await dispatcher.acknowledge(result.alert.id, GUARDIAN)
    assert alert.acknowledged


# ---- Reads ----
async def test_get_requires_a_connection(dispatcher, active_pair):
    result = await dispatcher.raise_sos(WARD, "Alice")
    assert (await dispatcher.get(result.alert.id, WARD)).id == result.alert.id
    assert (await dispatcher.get(result.alert.id, GUARDIAN)).id == result.alert.id
    with pytest.raises(NotAuthorized):
        await dispatcher.get(result.alert.id, STRANGER)


async def test_list_recent_spans_wards_newest_first(dispatcher, relationships, active_pair):
    await connect(relationships, ward_id="ward-eve")
    first = await dispatcher.raise_sos(WARD, "Alice")
    second = await dispatcher.raise_sos("ward-eve", "Eve")
    third = await dispatcher.raise_sos(WARD, "Alice", reason="Again")

    recent = await dispatcher.list_recent(GUARDIAN)
    assert [a.id for a in recent] == [third.alert.id, second.alert.id, first.alert.id]
    assert [a.id for a in await dispatcher.list_recent(GUARDIAN, limit=2)] == [third.alert.id, second.alert.id]
    assert await dispatcher.list_recent(OTHER_GUARDIAN) == []


async def test_list_recent_drops_revoked_wards(dispatcher, relationships, active_pair):
    await dispatcher.raise_sos(WARD, "Alice")
    await relationships.revoke(active_pair.id, WARD)
    assert await dispatcher.list_recent(GUARDIAN) == []


# ---- Escalation ----
async def test_unacknowledged_sos_escalates_once(dispatcher, active_pair, escalation):
    result = await dispatcher.raise_sos(WARD, "Alice")
    created = as_utc(result.alert.created_at)

    assert await dispatcher.sweep_unacknowledged(created + timedelta(seconds=30)) == 0
    later = created + timedelta(seconds=settings.SOS_ESCALATION_AFTER_SECONDS + 1)
    assert await dispatcher.sweep_unacknowledged(later) == 1
    assert escalation.calls[0][0] == result.alert.id
    assert await dispatcher.sweep_unacknowledged(later + timedelta(minutes=5)) == 0
    assert len(escalation.calls) == 1


async def test_acknowledged_alert_does_not_escalate(dispatcher, active_pair, escalation):
    result = await dispatcher.raise_sos(WARD, "Alice")
    await dispatcher.acknowledge(result.alert.id, GUARDIAN)
    later = as_utc(result.alert.created_at) + timedelta(hours=1)
    assert await dispatcher.sweep_unacknowledged(later) == 0
    assert escalation.calls == []


async def test_sos_persistence_failure_propagates_loudly(dispatcher, active_pair, notifier, monkeypatch, caplog):
    async def store_down(**data):
        raise OperationalError("INSERT INTO alert", {}, Exception("disk I/O error"))

    monkeypatch.setattr(dispatcher.alerts, "create", store_down)
    with pytest.raises(SQLAlchemyError):
        await dispatcher.raise_sos(WARD, "Alice", LOCATION)
    critical = [r for r in caplog.records if r.levelname == "CRITICAL"]
    assert critical and "could not be persisted" in critical[0].getMessage()
    assert notifier.sent == []
    assert await DeliveryRepository(dispatcher.session).due() == []
