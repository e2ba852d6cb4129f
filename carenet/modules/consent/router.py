from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from carenet.core.db import get_session
from carenet.core.errors import NotAuthorized
from carenet.core.security import get_principal, require_role, Principal
from carenet.modules.consent.schemas import ConsentChange, ConsentOut, GrantedOut
from carenet.modules.relationships.service import RelationshipService

router = APIRouter()

def svc(session: AsyncSession = Depends(get_session)) -> RelationshipService:
    return RelationshipService(session)

def _ensure_party(principal: Principal, ward_id: str, guardian_id: str):
    if principal.user_id not in (ward_id, guardian_id):
        raise NotAuthorized()

@router.get("/consents/{ward_id}/{guardian_id}", response_model=list[ConsentOut])
async def list_consents(
    ward_id: str,
    guardian_id: str,
    principal: Principal = Depends(get_principal),
    service: RelationshipService = Depends(svc),
):
    _ensure_party(principal, ward_id, guardian_id)
    return await service.consents.list_records(ward_id, guardian_id)

@router.get("/consents/{ward_id}/{guardian_id}/granted", response_model=GrantedOut)
async def list_granted(
    ward_id: str,
    guardian_id: str,
    principal: Principal = Depends(get_principal),
    service: RelationshipService = Depends(svc),
):
    _ensure_party(principal, ward_id, guardian_id)
    granted = await service.consents.list_granted(ward_id, guardian_id)
    return GrantedOut(ward_id=ward_id, guardian_id=guardian_id, granted=sorted(granted))

@router.post("/consents/{guardian_id}/grant", response_model=ConsentOut)
async def grant_consent(
    guardian_id: str,
    payload: ConsentChange,
    principal: Principal = Depends(require_role("ward")),
    service: RelationshipService = Depends(svc),
):
    return await service.grant_consent(principal.user_id, principal.user_id, guardian_id, payload.consent_type)

@router.post("/consents/{guardian_id}/revoke", response_model=ConsentOut | None)
async def revoke_consent(
    guardian_id: str,
    payload: ConsentChange,
    principal: Principal = Depends(require_role("ward")),
    service: RelationshipService = Depends(svc),
):
    return await service.revoke_consent(principal.user_id, principal.user_id, guardian_id, payload.consent_type)
