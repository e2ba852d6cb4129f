from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from carenet.modules.profiles.models import UserProfile

class ProfileRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, user_id: str) -> UserProfile | None:
        res = await self.session.execute(select(UserProfile).where(UserProfile.user_id == user_id))
        return res.scalar_one_or_none()

    async def get_by_email(self, email: str) -> UserProfile | None:
        q = select(UserProfile).where(UserProfile.email == email).limit(1)
        res = await self.session.execute(q)
        return res.scalars().first()
