import uuid
from typing import Sequence
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from carenet.modules.relationships.models import Relationship

PENDING = "pending"
ACTIVE = "active"
REVOKED = "revoked"

class RelationshipRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **data) -> Relationship:
        obj = Relationship(**data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get(self, relationship_id: uuid.UUID) -> Relationship | None:
        res = await self.session.execute(select(Relationship).where(Relationship.id == relationship_id))
        return res.scalar_one_or_none()

    async def open_for_pair(self, ward_id: str, guardian_id: str) -> Relationship | None:
        q = select(Relationship).where(
            Relationship.ward_id == ward_id,
            Relationship.guardian_id == guardian_id,
            Relationship.status != REVOKED,
        ).order_by(Relationship.created_at.desc())
        res = await self.session.execute(q)
        return res.scalars().first()

    async def list_for_user(self, user_id: str, role: str, status: str) -> Sequence[Relationship]:
        field = Relationship.ward_id if role == "ward" else Relationship.guardian_id
        q = select(Relationship).where(
            field == user_id,
            Relationship.status == status,
        ).order_by(Relationship.created_at.desc())
        res = await self.session.execute(q)
        return res.scalars().all()
