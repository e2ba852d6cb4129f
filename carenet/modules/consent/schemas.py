import uuid
from datetime import datetime
from pydantic import BaseModel, ConfigDict
from carenet.modules.consent.types import ConsentType

class ConsentChange(BaseModel):
    consent_type: ConsentType

class ConsentHistoryEntry(BaseModel):
    status: str
    at: str
    note: str = ""
    relationship_id: str | None = None

class ConsentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    ward_id: str
    guardian_id: str
    consent_type: str
    is_granted: bool
    granted_at: datetime | None
    revoked_at: datetime | None
    history: list[ConsentHistoryEntry]

class GrantedOut(BaseModel):
    ward_id: str
    guardian_id: str
    granted: list[str]
