import uuid
import logging
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from carenet.core.base import utcnow
from carenet.core.errors import (
    AlreadyConnected, InvalidRequest, NotAuthorized, NotPending,
    RelationshipNotFound, RequestPending, StoreConflict,
)
from carenet.core.retry import retry_on_conflict, is_unique_violation
from carenet.modules.consent.models import ConsentRecord
from carenet.modules.consent.service import ConsentLedger
from carenet.modules.consent.types import ConsentType
from carenet.modules.profiles.service import ProfileDirectory, UNKNOWN_USER
from carenet.modules.relationships.models import Relationship
from carenet.modules.relationships.repository import RelationshipRepository, PENDING, ACTIVE, REVOKED
from carenet.modules.relationships.schemas import RelationshipView, CounterpartOut
from carenet.platform.ports.profiles import ProfileDirectoryPort

log = logging.getLogger(__name__)

ROLES = ("ward", "guardian")
REJECTED_REASON = "rejected"

def _raise_for_open(existing: Relationship):
    if existing.status == ACTIVE:
        raise AlreadyConnected(relationship_id=str(existing.id))
    raise RequestPending(relationship_id=str(existing.id))

class RelationshipService:
    """Owns the pending -> active -> revoked lifecycle of ward/guardian pairs.

    Every other component asks this service who is connected to whom; the
    consent cascade (seed on activation, withdraw on revocation) runs after
    the relationship row itself has been committed and is safe to repeat.
    """

    def __init__(self, session: AsyncSession, consents: ConsentLedger | None = None,
                 profiles: ProfileDirectoryPort | None = None):
        self.session = session
        self.repo = RelationshipRepository(session)
        self.consents = consents or ConsentLedger(session)
        self.profiles = profiles or ProfileDirectory(session)

    # ---- Lifecycle ----
    async def request_connection(self, initiator_id: str, initiator_role: str, target_id: str,
                                 relationship_type: str = "family", relationship_detail: str = "",
                                 primary_guardian: bool = False) -> Relationship:
        if initiator_role not in ROLES:
            raise InvalidRequest(f"Unknown role: {initiator_role}")
        if not target_id or target_id == initiator_id:
            raise InvalidRequest("Cannot connect with yourself")
        ward_id = initiator_id if initiator_role == "ward" else target_id
        guardian_id = target_id if initiator_role == "ward" else initiator_id

        async def work():
            existing = await self.repo.open_for_pair(ward_id, guardian_id)
            if existing:
                _raise_for_open(existing)
            try:
                rel = await self.repo.create(
                    ward_id=ward_id,
                    guardian_id=guardian_id,
                    initiator_id=initiator_id,
                    relationship_type=relationship_type or "family",
                    relationship_detail=relationship_detail or "",
                    primary_guardian=primary_guardian,
                    status=PENDING,
                    permissions=[],
                )
            except IntegrityError as e:
                if not is_unique_violation(e):
                    raise
                # lost the race against a concurrent request for the same pair
                await self.session.rollback()
                existing = await self.repo.open_for_pair(ward_id, guardian_id)
                if existing:
                    _raise_for_open(existing)
                raise StoreConflict() from e
            await self.session.commit()
            return rel

        rel = await retry_on_conflict(self.session, work)
        log.info("Connection requested %s: ward=%s guardian=%s by=%s", rel.id, ward_id, guardian_id, initiator_id)
        return rel

    async def _get_for_party(self, relationship_id: uuid.UUID, acting_user_id: str) -> Relationship:
        rel = await self.repo.get(relationship_id)
        if not rel:
            raise RelationshipNotFound(relationship_id=str(relationship_id))
        if acting_user_id not in (rel.ward_id, rel.guardian_id):
            raise NotAuthorized()
        return rel

    async def accept(self, relationship_id: uuid.UUID, acting_user_id: str) -> Relationship:
        async def work():
            rel = await self._get_for_party(relationship_id, acting_user_id)
            if acting_user_id == rel.initiator_id:
                raise NotAuthorized("Only the invited person can accept this request")
            if rel.status == ACTIVE:
                return rel
            if rel.status != PENDING:
                raise NotPending(relationship_id=str(rel.id), status=rel.status)
            rel.status = ACTIVE
            rel.activated_at = utcnow()
            await self.session.commit()
            log.info("Relationship %s activated by %s", rel.id, acting_user_id)
            return rel

        rel = await retry_on_conflict(self.session, work)
        # seeding is keyed on the relationship id, so repeating it on a
        # retried accept only fills in what a failed first attempt missed
        ward_id, guardian_id = rel.ward_id, rel.guardian_id
        await self.consents.seed_defaults(ward_id, guardian_id, str(rel.id))
        await self.sync_permissions(ward_id, guardian_id)
        await self._withdraw_if_closed(rel)
        return rel

    async def reject(self, relationship_id: uuid.UUID, acting_user_id: str) -> Relationship:
        async def work():
            rel = await self._get_for_party(relationship_id, acting_user_id)
            if rel.status == REVOKED:
                return rel
            if rel.status != PENDING:
                raise NotPending(relationship_id=str(rel.id), status=rel.status)
            if acting_user_id == rel.initiator_id:
                raise NotAuthorized("Cancel your own request instead of rejecting it")
            rel.status = REVOKED
            rel.revoked_at = utcnow()
            rel.revoke_reason = REJECTED_REASON
            await self.session.commit()
            log.info("Relationship %s rejected by %s", rel.id, acting_user_id)
            return rel

        return await retry_on_conflict(self.session, work)

    async def revoke(self, relationship_id: uuid.UUID, acting_user_id: str,
                     reason: str = "Revoked by user") -> Relationship:
        async def work():
            rel = await self._get_for_party(relationship_id, acting_user_id)
            if rel.status == REVOKED:
                return rel
            rel.status = REVOKED
            rel.revoked_at = utcnow()
            rel.revoke_reason = reason
            rel.permissions = []
            await self.session.commit()
            log.info("Relationship %s revoked by %s: %s", rel.id, acting_user_id, reason)
            return rel

        rel = await retry_on_conflict(self.session, work)
        # a newer request for the same pair owns the consents from here on
        ward_id, guardian_id = rel.ward_id, rel.guardian_id
        if await self.repo.open_for_pair(ward_id, guardian_id) is None:
            await self.consents.revoke_all(ward_id, guardian_id, note=f"Connection revoked: {rel.revoke_reason}",
                                           relationship_id=str(rel.id))
        await self.session.refresh(rel)
        return rel

    async def _withdraw_if_closed(self, rel: Relationship) -> None:
        # a revoke that committed between activation and seeding found nothing to withdraw
        await self.session.refresh(rel)
        if rel.status == ACTIVE:
            return
        if await self.repo.open_for_pair(rel.ward_id, rel.guardian_id) is None:
            log.warning("Relationship %s closed while its consents were being granted; withdrawing", rel.id)
            await self.consents.revoke_all(rel.ward_id, rel.guardian_id,
                                           note=f"Connection revoked: {rel.revoke_reason}",
                                           relationship_id=str(rel.id))
            await self.session.refresh(rel)

    async def get(self, relationship_id: uuid.UUID, acting_user_id: str) -> Relationship:
        return await self._get_for_party(relationship_id, acting_user_id)

    # ---- Projections ----
    async def _decorate(self, rows, role: str) -> list[RelationshipView]:
        views = []
        for rel in rows:
            other_id = rel.guardian_id if role == "ward" else rel.ward_id
            profile = await self.profiles.get_profile(other_id)
            counterpart = CounterpartOut(
                id=other_id,
                display_name=profile.display_name if profile else UNKNOWN_USER,
                email=profile.email if profile else "",
            )
            base = RelationshipView.model_validate({
                **{k: getattr(rel, k) for k in RelationshipView.model_fields if k != "counterpart"},
                "counterpart": counterpart,
            })
            views.append(base)
        return views

    async def list_active(self, user_id: str, role: str) -> list[RelationshipView]:
        return await self._decorate(await self.repo.list_for_user(user_id, role, ACTIVE), role)

    async def list_pending(self, user_id: str, role: str) -> list[RelationshipView]:
        return await self._decorate(await self.repo.list_for_user(user_id, role, PENDING), role)

    async def active_guardian_ids(self, ward_id: str) -> list[str]:
        rows = await self.repo.list_for_user(ward_id, "ward", ACTIVE)
        return list(dict.fromkeys(r.guardian_id for r in rows))

    async def active_ward_ids(self, guardian_id: str) -> list[str]:
        rows = await self.repo.list_for_user(guardian_id, "guardian", ACTIVE)
        return list(dict.fromkeys(r.ward_id for r in rows))

    async def is_active_pair(self, ward_id: str, guardian_id: str) -> bool:
        rel = await self.repo.open_for_pair(ward_id, guardian_id)
        return rel is not None and rel.status == ACTIVE

    # ---- Consent, ward-directed ----
    async def sync_permissions(self, ward_id: str, guardian_id: str) -> None:
        async def work():
            rel = await self.repo.open_for_pair(ward_id, guardian_id)
            if rel is None:
                return
            granted = sorted(await self.consents.list_granted(ward_id, guardian_id))
            if rel.status == ACTIVE and list(rel.permissions or []) != granted:
                rel.permissions = granted
                await self.session.commit()

        await retry_on_conflict(self.session, work)

    async def grant_consent(self, acting_user_id: str, ward_id: str, guardian_id: str,
                            consent_type: str | ConsentType) -> ConsentRecord:
        if acting_user_id != ward_id:
            raise NotAuthorized("Only the ward can grant consent")
        if not await self.is_active_pair(ward_id, guardian_id):
            raise RelationshipNotFound(ward_id=ward_id, guardian_id=guardian_id)
        rec = await self.consents.grant(ward_id, guardian_id, consent_type, note="Granted by ward")
        # revoked while granting: the cascade already ran and missed this grant
        if not await self.is_active_pair(ward_id, guardian_id):
            await self.consents.revoke_all(ward_id, guardian_id, note="Connection revoked")
            raise RelationshipNotFound(ward_id=ward_id, guardian_id=guardian_id)
        await self.sync_permissions(ward_id, guardian_id)
        await self.session.refresh(rec)
        return rec

    async def revoke_consent(self, acting_user_id: str, ward_id: str, guardian_id: str,
                             consent_type: str | ConsentType) -> ConsentRecord | None:
        if acting_user_id != ward_id:
            raise NotAuthorized("Only the ward can revoke consent")
        rec = await self.consents.revoke(ward_id, guardian_id, consent_type, note="Revoked by ward")
        await self.sync_permissions(ward_id, guardian_id)
        if rec is not None:
            await self.session.refresh(rec)
        return rec

    async def ensure_access(self, ward_id: str, actor_id: str, *consent_types: str | ConsentType) -> None:
        """Raise NotAuthorized unless ``actor_id`` is the ward or an active guardian holding one of the consents."""
        if actor_id == ward_id:
            return
        if not await self.is_active_pair(ward_id, actor_id):
            raise NotAuthorized()
        granted = await self.consents.list_granted(ward_id, actor_id)
        wanted = [ConsentType(c).value for c in consent_types]
        if not any(c in granted for c in wanted):
            raise NotAuthorized(f"Missing {' or '.join(wanted)} consent")
