from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, TIMESTAMP, Boolean, JSON, Index, text
from carenet.core.base import Base, TimestampedMixin

class Relationship(Base, TimestampedMixin):
    __table_args__ = (
        # at most one non-revoked row per (ward, guardian); revoked rows are history
        Index(
            "uq_relationship_open_pair", "ward_id", "guardian_id",
            unique=True,
            postgresql_where=text("status != 'revoked'"),
            sqlite_where=text("status != 'revoked'"),
        ),
    )

    ward_id: Mapped[str] = mapped_column(String(128), index=True)
    guardian_id: Mapped[str] = mapped_column(String(128), index=True)
    initiator_id: Mapped[str] = mapped_column(String(128))
    relationship_type: Mapped[str] = mapped_column(String(32), default="family")  # family | professional | friend | ...
    relationship_detail: Mapped[str] = mapped_column(String(64), default="")  # daughter, nurse, ...
    primary_guardian: Mapped[bool] = mapped_column(Boolean, default=False)

    status: Mapped[str] = mapped_column(String(16), default="pending", index=True)  # pending | active | revoked
    activated_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    revoke_reason: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # denormalized copy of the pair's granted consent types
    permissions: Mapped[list] = mapped_column(JSON, default=list)
