from typing import Sequence
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from carenet.core.errors import StoreConflict
from carenet.core.retry import is_unique_violation
from carenet.modules.consent.models import ConsentRecord

class ConsentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **data) -> ConsentRecord:
        obj = ConsentRecord(**data)
        self.session.add(obj)
        try:
            await self.session.flush()
        except IntegrityError as e:
            # another writer created the same (ward, guardian, type) row first
            if is_unique_violation(e):
                raise StoreConflict() from e
            raise
        return obj

    async def get(self, ward_id: str, guardian_id: str, consent_type: str) -> ConsentRecord | None:
        q = select(ConsentRecord).where(
            ConsentRecord.ward_id == ward_id,
            ConsentRecord.guardian_id == guardian_id,
            ConsentRecord.consent_type == consent_type,
        )
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def list_for_pair(self, ward_id: str, guardian_id: str) -> Sequence[ConsentRecord]:
        q = select(ConsentRecord).where(
            ConsentRecord.ward_id == ward_id,
            ConsentRecord.guardian_id == guardian_id,
        ).order_by(ConsentRecord.consent_type)
        res = await self.session.execute(q)
        return res.scalars().all()

    async def granted_types(self, ward_id: str, guardian_id: str) -> set[str]:
        q = select(ConsentRecord.consent_type).where(
            ConsentRecord.ward_id == ward_id,
            ConsentRecord.guardian_id == guardian_id,
            ConsentRecord.is_granted.is_(True),
        )
        res = await self.session.execute(q)
        return set(res.scalars().all())

    async def guardians_holding(self, ward_id: str, guardian_ids: list[str], consent_type: str) -> set[str]:
        if not guardian_ids:
            return set()
        q = select(ConsentRecord.guardian_id).where(
            ConsentRecord.ward_id == ward_id,
            ConsentRecord.guardian_id.in_(guardian_ids),
            ConsentRecord.consent_type == consent_type,
            ConsentRecord.is_granted.is_(True),
        )
        res = await self.session.execute(q)
        return set(res.scalars().all())
