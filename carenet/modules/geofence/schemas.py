import uuid
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field

class SafeZoneCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    center_lat: float = Field(..., ge=-90, le=90)
    center_lon: float = Field(..., ge=-180, le=180)
    radius_meters: float | None = Field(default=None, gt=0)

class SafeZoneUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=120)
    center_lat: float | None = Field(default=None, ge=-90, le=90)
    center_lon: float | None = Field(default=None, ge=-180, le=180)
    radius_meters: float | None = Field(default=None, gt=0)

class SafeZoneOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    ward_id: str
    name: str
    center_lat: float
    center_lon: float
    radius_meters: float
    active: bool

class LocationSampleIn(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)
    accuracy_meters: float | None = Field(default=None, ge=0)
    captured_at: datetime | None = None
    address: str | None = Field(default=None, max_length=255)

class LocationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    ward_id: str
    lat: float
    lon: float
    accuracy_meters: float | None
    address: str | None
    captured_at: datetime

class EvaluationOut(BaseModel):
    inside: bool
    zone: SafeZoneOut | None = None
    distance_meters: float | None = None

class ObservationOut(BaseModel):
    evaluation: EvaluationOut
    stale: bool
    breach: bool
    alert_id: uuid.UUID | None = None

class GeofenceStateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    ward_id: str
    currently_inside: bool
    since_zone_id: uuid.UUID | None
    last_sample_at: datetime | None
    last_alert_id: uuid.UUID | None
