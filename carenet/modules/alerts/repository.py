import uuid
from datetime import datetime, timedelta
from typing import Sequence
from sqlalchemy import select, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession
from carenet.core.base import utcnow
from carenet.modules.alerts.models import Alert, AlertDelivery

class AlertRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **data) -> Alert:
        obj = Alert(**data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get(self, alert_id: uuid.UUID) -> Alert | None:
        res = await self.session.execute(select(Alert).where(Alert.id == alert_id))
        return res.scalar_one_or_none()

    async def recent_for_wards(self, ward_ids: list[str], limit: int) -> Sequence[Alert]:
        if not ward_ids:
            return []
        q = select(Alert).where(
            Alert.ward_id.in_(ward_ids),
        ).order_by(Alert.created_at.desc(), Alert.id).limit(limit)
        res = await self.session.execute(q)
        return res.scalars().all()

    async def unacknowledged_due(self, thresholds: dict[str, int], now: datetime, limit: int = 100) -> Sequence[Alert]:
        # thresholds: alert type -> seconds without acknowledgement before escalation
        clauses = [
            and_(Alert.type == alert_type, Alert.created_at <= now - timedelta(seconds=seconds))
            for alert_type, seconds in thresholds.items()
        ]
        q = select(Alert).where(
            Alert.acknowledged.is_(False),
            Alert.escalated_at.is_(None),
            or_(*clauses),
        ).order_by(Alert.created_at.asc()).limit(limit)
        res = await self.session.execute(q)
        return res.scalars().all()

class DeliveryRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def for_alert(self, alert_id: uuid.UUID) -> Sequence[AlertDelivery]:
        q = select(AlertDelivery).where(AlertDelivery.alert_id == alert_id).order_by(AlertDelivery.created_at)
        res = await self.session.execute(q)
        return res.scalars().all()

    async def get(self, alert_id: uuid.UUID, guardian_id: str) -> AlertDelivery | None:
        q = select(AlertDelivery).where(
            AlertDelivery.alert_id == alert_id,
            AlertDelivery.guardian_id == guardian_id,
        )
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def enqueue(self, alert_id: uuid.UUID, guardian_ids: list[str]) -> list[AlertDelivery]:
        existing = {d.guardian_id: d for d in await self.for_alert(alert_id)}
        rows = []
        for gid in guardian_ids:
            row = existing.get(gid)
            if row is None:
                row = AlertDelivery(alert_id=alert_id, guardian_id=gid, status="pending", attempts=0, next_attempt_at=utcnow())
                self.session.add(row)
            rows.append(row)
        await self.session.flush()
        return rows

    async def due(self, limit: int = 50) -> Sequence[AlertDelivery]:
        q = select(AlertDelivery).where(
            AlertDelivery.status == "pending",
            AlertDelivery.next_attempt_at <= utcnow(),
        ).order_by(AlertDelivery.next_attempt_at.asc()).limit(limit)
        res = await self.session.execute(q)
        return res.scalars().all()

    async def mark_sent(self, obj: AlertDelivery):
        obj.status = "sent"
        obj.attempts = (obj.attempts or 0) + 1
        obj.sent_at = utcnow()
        obj.last_error = None
        await self.session.flush()

    async def mark_failed(self, obj: AlertDelivery, error: str, max_attempts: int) -> bool:
        """Record a failed attempt; returns True when the delivery is given up on."""
        obj.attempts = (obj.attempts or 0) + 1
        obj.last_error = error[:2000]  # truncate
        if obj.attempts >= max_attempts:
            obj.status = "failed"
            await self.session.flush()
            return True
        obj.status = "pending"  # retry
        backoff = min(60, 2 ** min(obj.attempts, 6))  # 2,4,8,16,32,60s
        obj.next_attempt_at = utcnow() + timedelta(seconds=backoff)
        await self.session.flush()
        return False
