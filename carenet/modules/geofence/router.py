import uuid
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from carenet.core.db import get_session
from carenet.core.errors import NotAuthorized
from carenet.core.security import get_principal, Principal
from carenet.modules.geofence.schemas import (
    SafeZoneCreate, SafeZoneUpdate, SafeZoneOut,
    LocationSampleIn, LocationOut, EvaluationOut, ObservationOut, GeofenceStateOut,
)
from carenet.modules.geofence.service import SafeZoneService, LocationHistoryService, GeofenceEvaluator

router = APIRouter()

def zones_svc(session: AsyncSession = Depends(get_session)) -> SafeZoneService:
    return SafeZoneService(session)

def history_svc(session: AsyncSession = Depends(get_session)) -> LocationHistoryService:
    return LocationHistoryService(session)

def evaluator(session: AsyncSession = Depends(get_session)) -> GeofenceEvaluator:
    return GeofenceEvaluator(session)

# ---- Safe zones ----
@router.post("/wards/{ward_id}/safe-zones", response_model=SafeZoneOut, status_code=201)
async def create_safe_zone(
    ward_id: str,
    payload: SafeZoneCreate,
    principal: Principal = Depends(get_principal),
    service: SafeZoneService = Depends(zones_svc),
):
    return await service.create(ward_id, principal.user_id, payload)

@router.get("/wards/{ward_id}/safe-zones", response_model=list[SafeZoneOut])
async def list_safe_zones(
    ward_id: str,
    principal: Principal = Depends(get_principal),
    service: SafeZoneService = Depends(zones_svc),
):
    return await service.list_active(ward_id, principal.user_id)

@router.patch("/wards/{ward_id}/safe-zones/{zone_id}", response_model=SafeZoneOut)
async def update_safe_zone(
    ward_id: str,
    zone_id: uuid.UUID,
    payload: SafeZoneUpdate,
    principal: Principal = Depends(get_principal),
    service: SafeZoneService = Depends(zones_svc),
):
    return await service.update(ward_id, zone_id, principal.user_id, payload)

@router.delete("/wards/{ward_id}/safe-zones/{zone_id}", response_model=SafeZoneOut)
async def deactivate_safe_zone(
    ward_id: str,
    zone_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    service: SafeZoneService = Depends(zones_svc),
):
    return await service.deactivate(ward_id, zone_id, principal.user_id)

# ---- Location ----
@router.post("/wards/{ward_id}/locations", response_model=ObservationOut)
async def observe_location(
    ward_id: str,
    payload: LocationSampleIn,
    principal: Principal = Depends(get_principal),
    geofence: GeofenceEvaluator = Depends(evaluator),
):
    # only the ward's own device reports its position
    if principal.user_id != ward_id:
        raise NotAuthorized()
    obs = await geofence.observe(ward_id, payload)
    ev = obs.evaluation
    return ObservationOut(
        evaluation=EvaluationOut(
            inside=ev.inside,
            zone=SafeZoneOut.model_validate(ev.zone) if ev.zone else None,
            distance_meters=ev.distance_meters,
        ),
        stale=obs.stale,
        breach=obs.breach,
        alert_id=obs.alert_id,
    )

@router.get("/wards/{ward_id}/locations/latest", response_model=LocationOut)
async def latest_location(
    ward_id: str,
    principal: Principal = Depends(get_principal),
    service: LocationHistoryService = Depends(history_svc),
):
    obj = await service.latest(ward_id, principal.user_id)
    if not obj:
        raise HTTPException(status_code=404, detail="No location recorded")
    return obj

@router.get("/wards/{ward_id}/locations", response_model=list[LocationOut])
async def location_history(
    ward_id: str,
    limit: int = Query(default=10, ge=1, le=500),
    principal: Principal = Depends(get_principal),
    service: LocationHistoryService = Depends(history_svc),
):
    return await service.history(ward_id, principal.user_id, limit)

@router.get("/wards/{ward_id}/geofence-state", response_model=GeofenceStateOut)
async def geofence_state(
    ward_id: str,
    principal: Principal = Depends(get_principal),
    service: LocationHistoryService = Depends(history_svc),
):
    obj = await service.state(ward_id, principal.user_id)
    if not obj:
        raise HTTPException(status_code=404, detail="No location evaluated yet")
    return obj
