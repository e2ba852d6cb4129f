import uuid
from typing import Sequence
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from carenet.core.errors import StoreConflict
from carenet.core.retry import is_unique_violation
from carenet.modules.geofence.models import SafeZone, LocationSample, WardGeofenceState

class SafeZoneRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **data) -> SafeZone:
        obj = SafeZone(**data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get(self, ward_id: str, zone_id: uuid.UUID) -> SafeZone | None:
        q = select(SafeZone).where(SafeZone.id == zone_id, SafeZone.ward_id == ward_id)
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def list_active(self, ward_id: str) -> Sequence[SafeZone]:
        q = select(SafeZone).where(
            SafeZone.ward_id == ward_id,
            SafeZone.active.is_(True),
        ).order_by(SafeZone.created_at.asc())
        res = await self.session.execute(q)
        return res.scalars().all()

    async def update(self, ward_id: str, zone_id: uuid.UUID, **data) -> SafeZone | None:
        obj = await self.get(ward_id, zone_id)
        if not obj:
            return None
        for k, v in data.items():
            if v is not None:
                setattr(obj, k, v)
        await self.session.flush()
        return obj

class LocationRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def record(self, **data) -> LocationSample:
        obj = LocationSample(**data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def latest(self, ward_id: str) -> LocationSample | None:
        q = select(LocationSample).where(
            LocationSample.ward_id == ward_id,
        ).order_by(LocationSample.captured_at.desc()).limit(1)
        res = await self.session.execute(q)
        return res.scalars().first()

    async def history(self, ward_id: str, limit: int = 10) -> Sequence[LocationSample]:
        q = select(LocationSample).where(
            LocationSample.ward_id == ward_id,
        ).order_by(LocationSample.captured_at.desc()).limit(limit)
        res = await self.session.execute(q)
        return res.scalars().all()

class GeofenceStateRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, ward_id: str) -> WardGeofenceState | None:
        res = await self.session.execute(select(WardGeofenceState).where(WardGeofenceState.ward_id == ward_id))
        return res.scalar_one_or_none()

    async def get_or_create(self, ward_id: str) -> WardGeofenceState:
        state = await self.get(ward_id)
        if state:
            return state
        state = WardGeofenceState(ward_id=ward_id, currently_inside=True)
        self.session.add(state)
        try:
            await self.session.flush()
        except IntegrityError as e:
            if is_unique_violation(e):
                raise StoreConflict() from e
            raise
        return state
