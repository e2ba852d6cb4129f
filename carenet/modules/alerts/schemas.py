import uuid
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field

class LocationIn(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)
    accuracy_meters: float | None = Field(default=None, ge=0)
    address: str | None = None

class SOSRequest(BaseModel):
    location: LocationIn | None = None
    reason: str = Field(default="Emergency", max_length=200)

class Responder(BaseModel):
    guardian_id: str
    responded_at: str

class AlertOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    ward_id: str
    type: str
    severity: str
    message: str
    location: dict | None
    reason: str | None
    context: dict | None
    created_at: datetime
    acknowledged: bool
    responders: list[Responder]

class DispatchOut(BaseModel):
    alert: AlertOut
    recipients: list[str]
    delivered: list[str]
    failed: list[str]
    degraded: bool
