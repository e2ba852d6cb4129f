from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String
from carenet.core.base import Base, TimestampedMixin

class UserProfile(Base, TimestampedMixin):
    # read-side mirror of the identity provider's user record
    user_id: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    display_name: Mapped[str] = mapped_column(String(200))
    email: Mapped[str] = mapped_column(String(320), index=True)
    role: Mapped[str] = mapped_column(String(16))  # ward | guardian
