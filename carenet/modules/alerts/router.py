import uuid
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from carenet.core.db import get_session
from carenet.core.security import get_principal, require_role, Principal
from carenet.modules.alerts.schemas import SOSRequest, AlertOut, DispatchOut
from carenet.modules.alerts.service import AlertDispatcher, DispatchResult
from carenet.modules.profiles.service import display_name_for

router = APIRouter()

def svc(session: AsyncSession = Depends(get_session)) -> AlertDispatcher:
    return AlertDispatcher(session)

def _dispatch_out(result: DispatchResult) -> DispatchOut:
    return DispatchOut(
        alert=AlertOut.model_validate(result.alert),
        recipients=result.recipients,
        delivered=result.delivered,
        failed=result.failed,
        degraded=result.degraded,
    )

@router.post("/alerts/sos", response_model=DispatchOut, status_code=201)
async def raise_sos(
    payload: SOSRequest,
    principal: Principal = Depends(require_role("ward")),
    dispatcher: AlertDispatcher = Depends(svc),
):
    ward_name = await display_name_for(dispatcher.relationships.profiles, principal.user_id)
    location = payload.location.model_dump(exclude_none=True) if payload.location else None
    result = await dispatcher.raise_sos(principal.user_id, ward_name, location, payload.reason)
    return _dispatch_out(result)

@router.get("/alerts/recent", response_model=list[AlertOut])
async def list_recent(
    limit: int = Query(default=10, ge=1, le=100),
    principal: Principal = Depends(require_role("guardian")),
    dispatcher: AlertDispatcher = Depends(svc),
):
    return await dispatcher.list_recent(principal.user_id, limit)

@router.get("/alerts/{alert_id}", response_model=AlertOut)
async def get_alert(
    alert_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    dispatcher: AlertDispatcher = Depends(svc),
):
    return await dispatcher.get(alert_id, principal.user_id)

@router.post("/alerts/{alert_id}/acknowledge", response_model=AlertOut)
async def acknowledge_alert(
    alert_id: uuid.UUID,
    principal: Principal = Depends(require_role("guardian")),
    dispatcher: AlertDispatcher = Depends(svc),
):
    return await dispatcher.acknowledge(alert_id, principal.user_id)
