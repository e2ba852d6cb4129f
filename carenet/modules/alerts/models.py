import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, TIMESTAMP, Boolean, Integer, JSON, ForeignKey, Index, UniqueConstraint
from carenet.core.base import Base, TimestampedMixin, utcnow

class Alert(Base, TimestampedMixin):
    __table_args__ = (
        Index("ix_alert_ward_created", "ward_id", "created_at"),
    )

    ward_id: Mapped[str] = mapped_column(String(128))
    type: Mapped[str] = mapped_column(String(16))  # sos | geofence
    severity: Mapped[str] = mapped_column(String(16))  # warning | critical
    message: Mapped[str] = mapped_column(Text)
    location: Mapped[dict | None] = mapped_column(JSON, nullable=True)  # {lat, lon, accuracy_meters?, address?}
    reason: Mapped[str | None] = mapped_column(String(200), nullable=True)
    context: Mapped[dict | None] = mapped_column(JSON, nullable=True)  # e.g. {zone_id, zone_name} for geofence

    # acknowledged == bool(responders); responders only ever grows
    acknowledged: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    responders: Mapped[list] = mapped_column(JSON, default=list)  # [{guardian_id, responded_at}]
    escalated_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

class AlertDelivery(Base, TimestampedMixin):
    __table_args__ = (
        UniqueConstraint("alert_id", "guardian_id", name="uq_delivery_alert_guardian"),
    )

    alert_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("alert.id"), index=True)
    guardian_id: Mapped[str] = mapped_column(String(128), index=True)
    status: Mapped[str] = mapped_column(String(16), default="pending")  # pending | sent | failed
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    next_attempt_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), default=utcnow)
    sent_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
