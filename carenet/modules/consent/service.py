import logging
from typing import Iterable, Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from carenet.core.base import utcnow
from carenet.core.config import settings
from carenet.core.errors import ConsentNotFound
from carenet.core.retry import retry_on_conflict
from carenet.modules.consent.models import ConsentRecord
from carenet.modules.consent.repository import ConsentRepository
from carenet.modules.consent.types import ConsentType

log = logging.getLogger(__name__)

GRANTED = "granted"
REVOKED = "revoked"

def default_consent_types() -> list[str]:
    return list(settings.DEFAULT_CONSENT_TYPES)

def _entry(status: str, note: str | None, relationship_id: str | None = None) -> dict:
    entry = {"status": status, "at": utcnow().isoformat(), "note": note or ""}
    if relationship_id:
        entry["relationship_id"] = relationship_id
    return entry

def _normalize(consent_type: str | ConsentType) -> str:
    return consent_type.value if isinstance(consent_type, ConsentType) else ConsentType(consent_type).value

class ConsentLedger:
    """Per (ward, guardian, consent type) grants with an append-only history.

    Every mutation is idempotent so a caller that fails halfway through a
    multi-record change can simply run it again.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.repo = ConsentRepository(session)

    async def _apply_grant(self, ward_id: str, guardian_id: str, consent_type: str,
                           note: str | None, relationship_id: str | None) -> ConsentRecord:
        rec = await self.repo.get(ward_id, guardian_id, consent_type)
        now = utcnow()
        if rec is None:
            return await self.repo.create(
                ward_id=ward_id,
                guardian_id=guardian_id,
                consent_type=consent_type,
                is_granted=True,
                granted_at=now,
                history=[_entry(GRANTED, note or "Initial consent granted", relationship_id)],
            )
        if rec.is_granted:
            return rec
        rec.is_granted = True
        rec.granted_at = now
        rec.history = [*(rec.history or []), _entry(GRANTED, note, relationship_id)]
        await self.session.flush()
        return rec

    async def _apply_revoke(self, rec: ConsentRecord, note: str | None, relationship_id: str | None) -> bool:
        if not rec.is_granted:
            return False
        rec.is_granted = False
        rec.revoked_at = utcnow()
        rec.history = [*(rec.history or []), _entry(REVOKED, note, relationship_id)]
        await self.session.flush()
        return True

    async def grant(self, ward_id: str, guardian_id: str, consent_type: str | ConsentType,
                    note: str | None = None) -> ConsentRecord:
        ctype = _normalize(consent_type)

        async def work():
            rec = await self._apply_grant(ward_id, guardian_id, ctype, note, None)
            await self.session.commit()
            return rec

        return await retry_on_conflict(self.session, work)

    async def revoke(self, ward_id: str, guardian_id: str, consent_type: str | ConsentType,
                     note: str | None = None) -> ConsentRecord | None:
        ctype = _normalize(consent_type)

        async def work():
            rec = await self.repo.get(ward_id, guardian_id, ctype)
            if rec is None:
                raise ConsentNotFound(ward_id=ward_id, guardian_id=guardian_id, consent_type=ctype)
            await self._apply_revoke(rec, note, None)
            await self.session.commit()
            return rec

        try:
            return await retry_on_conflict(self.session, work)
        except ConsentNotFound:
            log.debug("No %s consent for ward=%s guardian=%s; revoke is a no-op", ctype, ward_id, guardian_id)
            return None

    async def revoke_all(self, ward_id: str, guardian_id: str, note: str | None = None,
                         relationship_id: str | None = None) -> list[str]:
        """Withdraw every grant for the pair in one commit; returns the types that flipped."""

        async def work():
            flipped = []
            for rec in await self.repo.list_for_pair(ward_id, guardian_id):
                if await self._apply_revoke(rec, note, relationship_id):
                    flipped.append(rec.consent_type)
            await self.session.commit()
            return flipped

        return await retry_on_conflict(self.session, work)

    async def seed_defaults(self, ward_id: str, guardian_id: str, relationship_id: str,
                            types: Iterable[str] | None = None) -> list[str]:
        """Grant the default set once per relationship activation.

        A type already seeded for ``relationship_id`` is left alone, so a
        retried activation neither duplicates history nor re-grants a type
        the ward withdrew in the meantime.
        """
        wanted = [_normalize(t) for t in (types if types is not None else default_consent_types())]

        async def work():
            seeded = []
            for ctype in wanted:
                rec = await self.repo.get(ward_id, guardian_id, ctype)
                if rec is not None and any(h.get("relationship_id") == relationship_id for h in rec.history or []):
                    continue
                if rec is not None and rec.is_granted:
                    continue
                await self._apply_grant(ward_id, guardian_id, ctype, "Granted on connection", relationship_id)
                seeded.append(ctype)
            await self.session.commit()
            return seeded

        return await retry_on_conflict(self.session, work)

    async def list_granted(self, ward_id: str, guardian_id: str) -> set[str]:
        return await self.repo.granted_types(ward_id, guardian_id)

    async def has_consent(self, ward_id: str, guardian_id: str, consent_type: str | ConsentType) -> bool:
        return _normalize(consent_type) in await self.list_granted(ward_id, guardian_id)

    async def guardians_holding(self, ward_id: str, guardian_ids: list[str],
                                consent_type: str | ConsentType) -> set[str]:
        return await self.repo.guardians_holding(ward_id, guardian_ids, _normalize(consent_type))

    async def list_records(self, ward_id: str, guardian_id: str) -> Sequence[ConsentRecord]:
        return await self.repo.list_for_pair(ward_id, guardian_id)
