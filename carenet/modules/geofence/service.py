import uuid
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from carenet.core.base import utcnow, as_utc
from carenet.core.config import settings
from carenet.core.errors import SafeZoneNotFound
from carenet.core.retry import retry_on_conflict
from carenet.modules.alerts.service import AlertDispatcher, DispatchResult
from carenet.modules.consent.types import ConsentType
from carenet.modules.geofence.geo import within_circle
from carenet.modules.geofence.models import SafeZone, LocationSample, WardGeofenceState
from carenet.modules.geofence.repository import SafeZoneRepository, LocationRepository, GeofenceStateRepository
from carenet.modules.geofence.schemas import SafeZoneCreate, SafeZoneUpdate, LocationSampleIn
from carenet.modules.profiles.service import display_name_for
from carenet.modules.relationships.service import RelationshipService

log = logging.getLogger(__name__)

# a breach alert claimed by one observer but never recorded may be retried after this
ALERT_CLAIM_TIMEOUT = timedelta(seconds=60)

@dataclass
class GeofenceEvaluation:
    inside: bool
    zone: SafeZone | None = None
    distance_meters: float | None = None

@dataclass
class Observation:
    evaluation: GeofenceEvaluation
    stale: bool = False
    breach: bool = False
    dispatch: DispatchResult | None = None

    @property
    def alert_id(self) -> uuid.UUID | None:
        return self.dispatch.alert.id if self.dispatch else None

def _location(sample: LocationSampleIn) -> dict:
    loc = {"lat": sample.lat, "lon": sample.lon}
    if sample.accuracy_meters is not None:
        loc["accuracy_meters"] = sample.accuracy_meters
    if sample.address:
        loc["address"] = sample.address
    return loc

class SafeZoneService:
    def __init__(self, session: AsyncSession, relationships: RelationshipService | None = None):
        self.session = session
        self.repo = SafeZoneRepository(session)
        self.relationships = relationships or RelationshipService(session)

    async def create(self, ward_id: str, actor_id: str, payload: SafeZoneCreate) -> SafeZone:
        await self.relationships.ensure_access(ward_id, actor_id, ConsentType.MANAGE_SAFE_ZONES)
        obj = await self.repo.create(
            ward_id=ward_id,
            name=payload.name,
            center_lat=payload.center_lat,
            center_lon=payload.center_lon,
            radius_meters=payload.radius_meters or settings.DEFAULT_SAFE_ZONE_RADIUS_METERS,
            active=True,
            created_by=actor_id,
        )
        await self.session.commit()
        log.info("Safe zone %s (%s) created for ward %s by %s", obj.id, obj.name, ward_id, actor_id)
        return obj

    async def list_active(self, ward_id: str, actor_id: str) -> Sequence[SafeZone]:
        await self.relationships.ensure_access(ward_id, actor_id, ConsentType.LOCATION_TRACKING, ConsentType.MANAGE_SAFE_ZONES)
        return await self.repo.list_active(ward_id)

    async def update(self, ward_id: str, zone_id: uuid.UUID, actor_id: str, payload: SafeZoneUpdate) -> SafeZone:
        await self.relationships.ensure_access(ward_id, actor_id, ConsentType.MANAGE_SAFE_ZONES)

        async def work():
            obj = await self.repo.update(ward_id, zone_id, **payload.model_dump(exclude_unset=True))
            if not obj:
                raise SafeZoneNotFound(zone_id=str(zone_id))
            await self.session.commit()
            return obj

        return await retry_on_conflict(self.session, work)

    async def deactivate(self, ward_id: str, zone_id: uuid.UUID, actor_id: str) -> SafeZone:
        await self.relationships.ensure_access(ward_id, actor_id, ConsentType.MANAGE_SAFE_ZONES)

        async def work():
            obj = await self.repo.get(ward_id, zone_id)
            if not obj:
                raise SafeZoneNotFound(zone_id=str(zone_id))
            if obj.active:
                obj.active = False
                await self.session.commit()
                log.info("Safe zone %s deactivated by %s", zone_id, actor_id)
            return obj

        return await retry_on_conflict(self.session, work)

class LocationHistoryService:
    def __init__(self, session: AsyncSession, relationships: RelationshipService | None = None):
        self.repo = LocationRepository(session)
        self.states = GeofenceStateRepository(session)
        self.relationships = relationships or RelationshipService(session)

    async def latest(self, ward_id: str, actor_id: str) -> LocationSample | None:
        await self.relationships.ensure_access(ward_id, actor_id, ConsentType.LOCATION_TRACKING)
        return await self.repo.latest(ward_id)

    async def history(self, ward_id: str, actor_id: str, limit: int = 10) -> Sequence[LocationSample]:
        await self.relationships.ensure_access(ward_id, actor_id, ConsentType.LOCATION_TRACKING)
        return await self.repo.history(ward_id, limit)

    async def state(self, ward_id: str, actor_id: str) -> WardGeofenceState | None:
        await self.relationships.ensure_access(ward_id, actor_id, ConsentType.LOCATION_TRACKING)
        return await self.states.get(ward_id)

class GeofenceEvaluator:
    """Decides whether a ward is inside any active safe zone and raises an
    alert on the inside -> outside transition only.

    Containment is persisted per ward (``WardGeofenceState``); samples older
    than, or as old as, the last one applied are recorded to history but never
    move the state, so duplicated or reordered deliveries cannot produce a
    second alert for the same excursion. A ward without any active zone is
    outside by definition.
    """

    def __init__(self, session: AsyncSession, dispatcher: AlertDispatcher | None = None):
        self.session = session
        self.zones = SafeZoneRepository(session)
        self.locations = LocationRepository(session)
        self.states = GeofenceStateRepository(session)
        self.dispatcher = dispatcher or AlertDispatcher(session)

    async def evaluate(self, ward_id: str, sample: LocationSampleIn) -> GeofenceEvaluation:
        for zone in await self.zones.list_active(ward_id):
            inside, distance = within_circle(sample.lat, sample.lon, zone.center_lat, zone.center_lon, zone.radius_meters)
            if inside:
                return GeofenceEvaluation(inside=True, zone=zone, distance_meters=distance)
        return GeofenceEvaluation(inside=False)

    async def observe(self, ward_id: str, sample: LocationSampleIn) -> Observation:
        captured_at = as_utc(sample.captured_at) or utcnow()
        await self.locations.record(
            ward_id=ward_id,
            lat=sample.lat,
            lon=sample.lon,
            accuracy_meters=sample.accuracy_meters,
            address=sample.address,
            captured_at=captured_at,
        )
        await self.session.commit()

        evaluation = await self.evaluate(ward_id, sample)
        obs = await self._apply(ward_id, sample, captured_at, evaluation)
        # a conflict retry rolls the session back and expires loaded rows
        if evaluation.zone is not None:
            await self.session.refresh(evaluation.zone)
        if obs.dispatch is not None:
            await self.session.refresh(obs.dispatch.alert)
        return obs

    async def _apply(self, ward_id: str, sample: LocationSampleIn, captured_at, evaluation: GeofenceEvaluation) -> Observation:
        zone_id = evaluation.zone.id if evaluation.zone else None

        async def work():
            state = await self.states.get_or_create(ward_id)
            if state.last_sample_at is not None and captured_at <= as_utc(state.last_sample_at):
                return None
            was_inside = state.currently_inside
            state.last_sample_at = captured_at
            state.currently_inside = evaluation.inside
            if evaluation.inside:
                state.since_zone_id = zone_id
            elif was_inside:
                state.last_alert_id = None
                state.alert_claimed_at = None
            claimed = False
            if not evaluation.inside and state.last_alert_id is None:
                # also re-claims an excursion whose alert never got recorded
                prior_claim = as_utc(state.alert_claimed_at)
                if prior_claim is None or utcnow() - prior_claim > ALERT_CLAIM_TIMEOUT:
                    state.alert_claimed_at = utcnow()
                    claimed = True
            last_zone_id = state.since_zone_id
            await self.session.commit()
            return was_inside, claimed, last_zone_id

        applied = await retry_on_conflict(self.session, work)
        if applied is None:
            log.debug("Stale location sample for ward %s at %s ignored for containment", ward_id, captured_at)
            return Observation(evaluation=evaluation, stale=True)

        was_inside, claimed, last_zone_id = applied
        obs = Observation(evaluation=evaluation, breach=was_inside and not evaluation.inside)
        if not claimed:
            return obs

        obs.dispatch = await self._raise_breach(ward_id, sample, last_zone_id)
        alert_id = obs.dispatch.alert.id

        async def record_alert():
            state = await self.states.get(ward_id)
            if state is not None and state.last_alert_id is None and not state.currently_inside:
                state.last_alert_id = alert_id
                await self.session.commit()

        await retry_on_conflict(self.session, record_alert)
        return obs

    async def _raise_breach(self, ward_id: str, sample: LocationSampleIn, last_zone_id: uuid.UUID | None) -> DispatchResult:
        zone_context = None
        if last_zone_id is not None:
            zone = await self.zones.get(ward_id, last_zone_id)
            if zone is not None:
                zone_context = {"zone_id": str(zone.id), "zone_name": zone.name}
        ward_name = await display_name_for(self.dispatcher.relationships.profiles, ward_id)
        log.info("Ward %s left all safe zones; raising geofence alert", ward_id)
        return await self.dispatcher.raise_geofence_alert(ward_id, ward_name, _location(sample), zone_context)
