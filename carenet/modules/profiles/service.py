from sqlalchemy.ext.asyncio import AsyncSession
from carenet.modules.profiles.repository import ProfileRepository
from carenet.modules.profiles.models import UserProfile
from carenet.platform.ports.profiles import Profile, ProfileDirectoryPort

UNKNOWN_USER = "Unknown User"

def _to_profile(row: UserProfile) -> Profile:
    return Profile(user_id=row.user_id, display_name=row.display_name or UNKNOWN_USER, email=row.email or "", role=row.role)

class ProfileDirectory(ProfileDirectoryPort):
    """Profile lookups backed by the ``userprofile`` table."""

    def __init__(self, session: AsyncSession):
        self.repo = ProfileRepository(session)

    async def get_profile(self, user_id: str) -> Profile | None:
        row = await self.repo.get(user_id)
        return _to_profile(row) if row else None

    async def find_by_email(self, email: str) -> Profile | None:
        row = await self.repo.get_by_email(email.lower().strip())
        return _to_profile(row) if row else None

async def display_name_for(profiles: ProfileDirectoryPort, user_id: str) -> str:
    profile = await profiles.get_profile(user_id)
    return profile.display_name if profile else UNKNOWN_USER
