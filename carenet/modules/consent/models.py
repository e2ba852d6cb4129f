from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, TIMESTAMP, Boolean, JSON, UniqueConstraint
from carenet.core.base import Base, TimestampedMixin

class ConsentRecord(Base, TimestampedMixin):
    __table_args__ = (
        UniqueConstraint("ward_id", "guardian_id", "consent_type", name="uq_consent_pair_type"),
    )

    ward_id: Mapped[str] = mapped_column(String(128), index=True)
    guardian_id: Mapped[str] = mapped_column(String(128), index=True)
    consent_type: Mapped[str] = mapped_column(String(32))  # location_tracking | activity_monitoring | reminder_management | manage_safe_zones

    is_granted: Mapped[bool] = mapped_column(Boolean, default=False)
    granted_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    # append-only audit trail: [{status, at, note, relationship_id?}]
    history: Mapped[list] = mapped_column(JSON, default=list)
