import uuid
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.ext.asyncio import AsyncSession
from carenet.core.base import utcnow, as_utc
from carenet.core.config import settings
from carenet.core.errors import AlertNotFound, NotAuthorized, NotificationDeliveryFailed
from carenet.core.retry import retry_on_conflict
from carenet.modules.alerts.escalation import EscalationPolicy, LoggingEscalationPolicy
from carenet.modules.alerts.models import Alert
from carenet.modules.alerts.repository import AlertRepository, DeliveryRepository
from carenet.modules.consent.types import ConsentType
from carenet.modules.relationships.service import RelationshipService
from carenet.platform.ports.notifier import NotifierPort
from carenet.platform.provider_registry import registry

log = logging.getLogger(__name__)

SOS = "sos"
GEOFENCE = "geofence"
CRITICAL = "critical"
WARNING = "warning"

# the dispatching request owns a fresh delivery this long before the relay may retry it
INITIAL_ATTEMPT_LEASE = timedelta(seconds=30)

@dataclass
class DispatchResult:
    alert: Alert
    recipients: list[str] = field(default_factory=list)
    delivered: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return not self.recipients

def _payload(alert: Alert) -> dict:
    return {
        "type": alert.type,
        "ward_id": alert.ward_id,
        "alert_id": str(alert.id),
        "severity": alert.severity,
        "message": alert.message,
    }

class AlertDispatcher:
    """Records SOS and geofence alerts and fans them out to guardians.

    The alert row is committed before any notification is attempted; each
    recipient then gets its own ``AlertDelivery`` row so one failing device
    never blocks, or rolls back, the others. Failed rows are picked up again
    by the delivery relay.
    """

    def __init__(self, session: AsyncSession, relationships: RelationshipService | None = None,
                 notifier: NotifierPort | None = None, escalation: EscalationPolicy | None = None):
        self.session = session
        self.alerts = AlertRepository(session)
        self.deliveries = DeliveryRepository(session)
        self.relationships = relationships or RelationshipService(session)
        self.notifier = notifier or registry.notifier()
        self.escalation = escalation or LoggingEscalationPolicy()

    # ---- Raising ----
    async def raise_sos(self, ward_id: str, ward_name: str, location: dict | None = None,
                        reason: str | None = None) -> DispatchResult:
        reason = reason or "Emergency"
        try:
            alert = await self.alerts.create(
                ward_id=ward_id,
                type=SOS,
                severity=CRITICAL,
                message=f"{ward_name} has triggered an SOS alert: {reason}",
                location=location,
                reason=reason,
                acknowledged=False,
                responders=[],
            )
            await self.session.commit()
        except SQLAlchemyError:
            log.critical("SOS alert for ward %s could not be persisted", ward_id, exc_info=True)
            await self.session.rollback()
            raise
        log.info("SOS alert %s raised for ward %s", alert.id, ward_id)
        # SOS reaches every active guardian, consent notwithstanding
        recipients = await self._active_guardians(ward_id)
        return await self._fan_out(alert, recipients)

    async def raise_geofence_alert(self, ward_id: str, ward_name: str, location: dict,
                                   zone_context: dict | None = None) -> DispatchResult:
        zone_name = (zone_context or {}).get("zone_name")
        message = f"{ward_name} has left {zone_name}" if zone_name else f"{ward_name} has left their safe zone"
        alert = await self.alerts.create(
            ward_id=ward_id,
            type=GEOFENCE,
            severity=WARNING,
            message=message,
            location=location,
            context=zone_context,
            acknowledged=False,
            responders=[],
        )
        await self.session.commit()
        log.info("Geofence alert %s raised for ward %s", alert.id, ward_id)
        guardians = await self._active_guardians(ward_id)
        holding = await self.relationships.consents.guardians_holding(ward_id, guardians, ConsentType.LOCATION_TRACKING)
        recipients = [g for g in guardians if g in holding]
        return await self._fan_out(alert, recipients)

    async def _active_guardians(self, ward_id: str) -> list[str]:
        views = await self.relationships.list_active(ward_id, "ward")
        return list(dict.fromkeys(v.counterpart.id for v in views))

    async def _fan_out(self, alert: Alert, recipients: list[str]) -> DispatchResult:
        result = DispatchResult(alert=alert, recipients=list(recipients))
        if not recipients:
            log.warning("Alert %s (%s) for ward %s has no recipients; recorded without delivery",
                        alert.id, alert.type, alert.ward_id)
            return result

        rows = await self.deliveries.enqueue(alert.id, recipients)
        lease_until = utcnow() + INITIAL_ATTEMPT_LEASE
        for row in rows:
            if row.status == "pending":
                row.next_attempt_at = lease_until
        plan = [(row.guardian_id, row.status) for row in rows]
        await self.session.commit()

        alert_id = alert.id
        payload = _payload(alert)
        for guardian_id, status in plan:
            if status == "pending":
                ok = await self._attempt(alert_id, guardian_id, payload)
            else:
                ok = status == "sent"
            (result.delivered if ok else result.failed).append(guardian_id)
        await self.session.refresh(alert)
        return result

    async def _attempt(self, alert_id: uuid.UUID, guardian_id: str, payload: dict) -> bool:
        try:
            ok = await self.notifier.send(guardian_id, payload)
            error = None if ok else "transport refused notification"
        except Exception as e:
            log.warning("Notification to %s for alert %s failed", guardian_id, alert_id, exc_info=True)
            ok, error = False, f"{e.__class__.__name__}: {e}"
        try:
            delivery = await self.deliveries.get(alert_id, guardian_id)
            if delivery is None or delivery.status != "pending":
                return ok
            if ok:
                await self.deliveries.mark_sent(delivery)
            else:
                gave_up = await self.deliveries.mark_failed(delivery, error, settings.DELIVERY_MAX_ATTEMPTS)
                if gave_up:
                    err = NotificationDeliveryFailed(alert_id=str(alert_id), guardian_id=guardian_id)
                    log.error("%s: alert=%s guardian=%s after %s attempts (%s)",
                              err.code, alert_id, guardian_id, delivery.attempts, error)
            await self.session.commit()
        except StaleDataError:
            # another worker recorded an outcome for this delivery first
            await self.session.rollback()
            log.debug("Delivery %s/%s updated concurrently", alert_id, guardian_id)
        return ok

    # ---- Relay ----
    async def _claim(self, alert_id: uuid.UUID, guardian_id: str) -> bool:
        delivery = await self.deliveries.get(alert_id, guardian_id)
        if delivery is None or delivery.status != "pending" or as_utc(delivery.next_attempt_at) > utcnow():
            return False
        delivery.next_attempt_at = utcnow() + INITIAL_ATTEMPT_LEASE
        try:
            await self.session.commit()
        except StaleDataError:
            await self.session.rollback()
            return False
        return True

    async def deliver_due(self, limit: int = 50) -> int:
        """Retry pending deliveries whose backoff has elapsed; returns how many were attempted."""
        due = [(row.alert_id, row.guardian_id) for row in await self.deliveries.due(limit)]
        attempted = 0
        for alert_id, guardian_id in due:
            if not await self._claim(alert_id, guardian_id):
                continue
            alert = await self.alerts.get(alert_id)
            if alert is None:
                log.error("Delivery %s/%s references a missing alert", alert_id, guardian_id)
                continue
            await self._attempt(alert_id, guardian_id, _payload(alert))
            attempted += 1
        return attempted

    async def sweep_unacknowledged(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        thresholds = {
            SOS: settings.SOS_ESCALATION_AFTER_SECONDS,
            GEOFENCE: settings.GEOFENCE_ESCALATION_AFTER_SECONDS,
        }
        due = [a.id for a in await self.alerts.unacknowledged_due(thresholds, now)]
        escalated = 0
        for alert_id in due:
            alert = await self.alerts.get(alert_id)
            if alert is None or alert.acknowledged or alert.escalated_at is not None:
                continue
            alert.escalated_at = now
            try:
                await self.session.commit()
            except StaleDataError:
                # acknowledged or escalated meanwhile
                await self.session.rollback()
                continue
            await self.escalation.on_unacknowledged(alert, now - as_utc(alert.created_at))
            escalated += 1
        return escalated

    # ---- Acknowledgement & reads ----
    async def _may_view(self, alert: Alert, user_id: str) -> bool:
        if user_id == alert.ward_id:
            return True
        if await self.relationships.is_active_pair(alert.ward_id, user_id):
            return True
        return await self.deliveries.get(alert.id, user_id) is not None

    async def get(self, alert_id: uuid.UUID, viewer_id: str) -> Alert:
        alert = await self.alerts.get(alert_id)
        if not alert:
            raise AlertNotFound(alert_id=str(alert_id))
        if not await self._may_view(alert, viewer_id):
            raise NotAuthorized()
        return alert

    async def acknowledge(self, alert_id: uuid.UUID, guardian_id: str) -> Alert:
        async def work():
            alert = await self.alerts.get(alert_id)
            if not alert:
                raise AlertNotFound(alert_id=str(alert_id))
            if guardian_id == alert.ward_id or not await self._may_view(alert, guardian_id):
                raise NotAuthorized()
            if any(r.get("guardian_id") == guardian_id for r in alert.responders or []):
                return alert
            alert.responders = [
                *(alert.responders or []),
                {"guardian_id": guardian_id, "responded_at": utcnow().isoformat()},
            ]
            alert.acknowledged = True
            await self.session.commit()
            log.info("Alert %s acknowledged by %s", alert.id, guardian_id)
            return alert

        return await retry_on_conflict(self.session, work)

    async def list_recent(self, guardian_id: str, limit: int = 10) -> list[Alert]:
        views = await self.relationships.list_active(guardian_id, "guardian")
        ward_ids = list(dict.fromkeys(v.ward_id for v in views))
        rows = await self.alerts.recent_for_wards(ward_ids, limit)
        seen, out = set(), []
        for alert in rows:
            if alert.id in seen:
                continue
            seen.add(alert.id)
            out.append(alert)
        return out
