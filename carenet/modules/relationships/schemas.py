import uuid
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field

class ConnectionRequest(BaseModel):
    target_id: str = Field(..., min_length=1, max_length=128)
    relationship_type: str = Field(default="family", max_length=32)
    relationship_detail: str = Field(default="", max_length=64)
    primary_guardian: bool = False

class RevokeRequest(BaseModel):
    reason: str = Field(default="Revoked by user", max_length=200)

class CounterpartOut(BaseModel):
    id: str
    display_name: str
    email: str = ""

class RelationshipOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    ward_id: str
    guardian_id: str
    initiator_id: str
    relationship_type: str
    relationship_detail: str
    primary_guardian: bool
    status: str
    created_at: datetime
    activated_at: datetime | None
    revoked_at: datetime | None
    revoke_reason: str | None
    permissions: list[str]

class RelationshipView(RelationshipOut):
    counterpart: CounterpartOut
