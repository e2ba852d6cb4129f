import uuid
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from carenet.core.db import get_session
from carenet.core.security import get_principal, Principal
from carenet.modules.relationships.schemas import ConnectionRequest, RevokeRequest, RelationshipOut, RelationshipView
from carenet.modules.relationships.service import RelationshipService

router = APIRouter()

def svc(session: AsyncSession = Depends(get_session)) -> RelationshipService:
    return RelationshipService(session)

@router.post("/relationships", response_model=RelationshipOut, status_code=201)
async def request_connection(
    payload: ConnectionRequest,
    principal: Principal = Depends(get_principal),
    service: RelationshipService = Depends(svc),
):
    return await service.request_connection(
        principal.user_id, principal.role, payload.target_id,
        payload.relationship_type, payload.relationship_detail, payload.primary_guardian,
    )

@router.post("/relationships/{relationship_id}/accept", response_model=RelationshipOut)
async def accept_connection(
    relationship_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    service: RelationshipService = Depends(svc),
):
    return await service.accept(relationship_id, principal.user_id)

@router.post("/relationships/{relationship_id}/reject", response_model=RelationshipOut)
async def reject_connection(
    relationship_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    service: RelationshipService = Depends(svc),
):
    return await service.reject(relationship_id, principal.user_id)

@router.post("/relationships/{relationship_id}/revoke", response_model=RelationshipOut)
async def revoke_connection(
    relationship_id: uuid.UUID,
    payload: RevokeRequest | None = None,
    principal: Principal = Depends(get_principal),
    service: RelationshipService = Depends(svc),
):
    reason = payload.reason if payload else RevokeRequest().reason
    return await service.revoke(relationship_id, principal.user_id, reason)

@router.get("/relationships/active", response_model=list[RelationshipView])
async def list_active(
    principal: Principal = Depends(get_principal),
    service: RelationshipService = Depends(svc),
):
    return await service.list_active(principal.user_id, principal.role)

@router.get("/relationships/pending", response_model=list[RelationshipView])
async def list_pending(
    principal: Principal = Depends(get_principal),
    service: RelationshipService = Depends(svc),
):
    return await service.list_pending(principal.user_id, principal.role)
