import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Float, TIMESTAMP, Boolean, Index
from carenet.core.base import Base, TimestampedMixin

class SafeZone(Base, TimestampedMixin):
    ward_id: Mapped[str] = mapped_column(String(128), index=True)
    name: Mapped[str] = mapped_column(String(120))
    center_lat: Mapped[float] = mapped_column(Float)
    center_lon: Mapped[float] = mapped_column(Float)
    radius_meters: Mapped[float] = mapped_column(Float)
    # soft deactivation keeps old alerts' zone context resolvable
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_by: Mapped[str] = mapped_column(String(128))

class LocationSample(Base, TimestampedMixin):
    __table_args__ = (
        Index("ix_location_ward_captured", "ward_id", "captured_at"),
    )

    ward_id: Mapped[str] = mapped_column(String(128))
    lat: Mapped[float] = mapped_column(Float)
    lon: Mapped[float] = mapped_column(Float)
    accuracy_meters: Mapped[float | None] = mapped_column(Float, nullable=True)
    address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    captured_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))

class WardGeofenceState(Base, TimestampedMixin):
    ward_id: Mapped[str] = mapped_column(String(128), unique=True)
    currently_inside: Mapped[bool] = mapped_column(Boolean, default=True)
    since_zone_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)  # zone last seen inside
    last_sample_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    # breach bookkeeping: alert raised for the current excursion, and who claimed raising it
    last_alert_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    alert_claimed_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
