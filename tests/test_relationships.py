import uuid
import pytest
from carenet.core.errors import (
    AlreadyConnected, InvalidRequest, NotAuthorized, NotPending,
    RelationshipNotFound, RequestPending, StoreConflict,
)
from carenet.modules.relationships.models import Relationship
from conftest import WARD, GUARDIAN, OTHER_GUARDIAN, STRANGER, connect

DEFAULTS = ["activity_monitoring", "location_tracking", "reminder_management"]


async def test_ward_initiated_request_is_pending(relationships):
    rel = await relationships.request_connection(WARD, "ward", GUARDIAN, "family", "son")
    assert rel.status == "pending"
    assert (rel.ward_id, rel.guardian_id, rel.initiator_id) == (WARD, GUARDIAN, WARD)
    assert rel.relationship_detail == "son"
    assert rel.permissions == []


async def test_guardian_initiated_request_orients_pair(relationships):
    rel = await relationships.request_connection(GUARDIAN, "guardian", WARD)
    assert (rel.ward_id, rel.guardian_id, rel.initiator_id) == (WARD, GUARDIAN, GUARDIAN)


async def test_cannot_connect_with_self(relationships):
    with pytest.raises(InvalidRequest):
        await relationships.request_connection(WARD, "ward", WARD)


async def test_unknown_role_rejected(relationships):
    with pytest.raises(InvalidRequest):
        await relationships.request_connection(WARD, "admin", GUARDIAN)


async def test_second_request_while_pending(relationships):
    await relationships.request_connection(WARD, "ward", GUARDIAN)
    with pytest.raises(RequestPending):
        await relationships.request_connection(GUARDIAN, "guardian", WARD)


async def test_second_request_while_active(relationships, active_pair):
    with pytest.raises(AlreadyConnected):
        await relationships.request_connection(WARD, "ward", GUARDIAN)


async def test_only_invited_party_can_accept(relationships):
    rel = await relationships.request_connection(WARD, "ward", GUARDIAN)
    with pytest.raises(NotAuthorized):
        await relationships.accept(rel.id, WARD)
    with pytest.raises(NotAuthorized):
        await relationships.accept(rel.id, STRANGER)


async def test_accept_unknown_relationship(relationships):
    with pytest.raises(RelationshipNotFound):
        await relationships.accept(uuid.uuid4(), GUARDIAN)


async def test_accept_activates_and_seeds_consents(relationships):
    rel = await relationships.request_connection(WARD, "ward", GUARDIAN)
    rel = await relationships.accept(rel.id, GUARDIAN)
    assert rel.status == "active"
    assert rel.activated_at is not None
    assert rel.permissions == DEFAULTS
    assert sorted(await relationships.consents.list_granted(WARD, GUARDIAN)) == DEFAULTS


async def test_accept_twice_is_a_noop(relationships):
    rel = await relationships.request_connection(WARD, "ward", GUARDIAN)
    first = await relationships.accept(rel.id, GUARDIAN)
    activated_at = first.activated_at
    second = await relationships.accept(rel.id, GUARDIAN)
    assert second.status == "active"
    assert second.activated_at == activated_at
    records = await relationships.consents.list_records(WARD, GUARDIAN)
    assert len(records) == 3
    assert all(len(r.history) == 1 for r in records)


async def test_reject_by_invited_party(relationships):
    rel = await relationships.request_connection(WARD, "ward", GUARDIAN)
    rel = await relationships.reject(rel.id, GUARDIAN)
    assert rel.status == "revoked"
    assert rel.revoke_reason == "rejected"
    assert await relationships.consents.list_records(WARD, GUARDIAN) == []


async def test_initiator_cannot_reject(relationships):
    rel = await relationships.request_connection(WARD, "ward", GUARDIAN)
    with pytest.raises(NotAuthorized):
        await relationships.reject(rel.id, WARD)


async def test_reject_active_is_not_pending(relationships, active_pair):
    with pytest.raises(NotPending):
        await relationships.reject(active_pair.id, GUARDIAN)


async def test_accept_after_reject_is_not_pending(relationships):
    rel = await relationships.request_connection(WARD, "ward", GUARDIAN)
    await relationships.reject(rel.id, GUARDIAN)
    with pytest.raises(NotPending):
        await relationships.accept(rel.id, GUARDIAN)


async def test_revoke_withdraws_all_consents(relationships, active_pair):
    rel = await relationships.revoke(active_pair.id, WARD, "moved away")
    assert rel.status == "revoked"
    assert rel.revoke_reason == "moved away"
    assert rel.permissions == []
    assert await relationships.consents.list_granted(WARD, GUARDIAN) == set()
    assert not await relationships.is_active_pair(WARD, GUARDIAN)


async def test_revoke_is_idempotent(relationships, active_pair):
    first = await relationships.revoke(active_pair.id, GUARDIAN)
    revoked_at = first.revoked_at
    second = await relationships.revoke(active_pair.id, WARD, "again")
    assert second.revoked_at == revoked_at
    assert second.revoke_reason == "Revoked by user"
    records = await relationships.consents.list_records(WARD, GUARDIAN)
    assert all([h["status"] for h in r.history] == ["granted", "revoked"] for r in records)


async def test_pending_request_can_be_cancelled_by_initiator(relationships):
    rel = await relationships.request_connection(WARD, "ward", GUARDIAN)
    rel = await relationships.revoke(rel.id, WARD, "changed my mind")
    assert rel.status == "revoked"


async def test_revoke_by_stranger(relationships, active_pair):
    with pytest.raises(NotAuthorized):
        await relationships.revoke(active_pair.id, STRANGER)


async def test_reconnect_after_revoke_starts_new_row(relationships, active_pair):
    await relationships.revoke(active_pair.id, WARD)
    fresh = await connect(relationships)
    assert fresh.id != active_pair.id
    assert sorted(await relationships.consents.list_granted(WARD, GUARDIAN)) == DEFAULTS
    records = await relationships.consents.list_records(WARD, GUARDIAN)
    assert all([h["status"] for h in r.history] == ["granted", "revoked", "granted"] for r in records)


async def test_list_active_and_pending_projection(relationships, active_pair):
    await relationships.request_connection(WARD, "ward", OTHER_GUARDIAN)
    await relationships.request_connection(WARD, "ward", "guardian-no-profile")

    active = await relationships.list_active(WARD, "ward")
    assert [v.counterpart.id for v in active] == [GUARDIAN]
    assert active[0].counterpart.display_name == "Bob"

    pending = await relationships.list_pending(WARD, "ward")
    names = {v.counterpart.id: v.counterpart.display_name for v in pending}
    assert names == {OTHER_GUARDIAN: "Carol", "guardian-no-profile": "Unknown User"}

    from_guardian = await relationships.list_active(GUARDIAN, "guardian")
    assert [v.counterpart.display_name for v in from_guardian] == ["Alice"]


async def test_active_id_projections(relationships, active_pair):
    await connect(relationships, guardian_id=OTHER_GUARDIAN)
    assert sorted(await relationships.active_guardian_ids(WARD)) == [GUARDIAN, OTHER_GUARDIAN]
    assert await relationships.active_ward_ids(GUARDIAN) == [WARD]


async def test_primary_guardian_flag_is_stored(relationships):
    rel = await relationships.request_connection(WARD, "ward", GUARDIAN, "family", "daughter", primary_guardian=True)
    assert rel.primary_guardian
    other = await relationships.request_connection(WARD, "ward", OTHER_GUARDIAN)
    assert not other.primary_guardian


async def test_revoke_during_activation_leaves_no_consents(relationships, monkeypatch):
    rel = await relationships.request_connection(WARD, "ward", GUARDIAN)
    seed = relationships.consents.seed_defaults

    async def revoke_then_seed(*args, **kwargs):
        # the ward revokes right after the row turned active, before seeding ran
        await relationships.revoke(rel.id, WARD)
        return await seed(*args, **kwargs)

    monkeypatch.setattr(relationships.consents, "seed_defaults", revoke_then_seed)
    result = await relationships.accept(rel.id, GUARDIAN)
    assert result.status == "revoked"
    assert await relationships.consents.list_granted(WARD, GUARDIAN) == set()

    # a later reconnection seeds the full default set again
    monkeypatch.undo()
    fresh = await connect(relationships)
    assert fresh.permissions == DEFAULTS


# ---- Concurrent requests for the same pair ----
def _insert_open_row_first(relationships, session_factory, status, calls):
    """Makes the first open-pair check miss a row another writer inserts right after it."""
    original = relationships.repo.open_for_pair

    async def racing_open_for_pair(ward_id, guardian_id):
        calls.append(1)
        if len(calls) == 1:
            async with session_factory() as other:
                other.add(Relationship(
                    ward_id=ward_id, guardian_id=guardian_id, initiator_id=guardian_id,
                    status=status, permissions=[],
                ))
                await other.commit()
            return None
        return await original(ward_id, guardian_id)

    return racing_open_for_pair


@pytest.mark.parametrize("status, error", [("pending", RequestPending), ("active", AlreadyConnected)])
async def test_lost_insert_race_reports_winner(relationships, session_factory, monkeypatch, status, error):
    calls = []
    monkeypatch.setattr(relationships.repo, "open_for_pair",
                        _insert_open_row_first(relationships, session_factory, status, calls))
    with pytest.raises(error):
        await relationships.request_connection(WARD, "ward", GUARDIAN)
    assert len(calls) == 2
    rows = await relationships.repo.list_for_user(WARD, "ward", status)
    assert [r.initiator_id for r in rows] == [GUARDIAN]


async def test_unresolvable_insert_race_is_store_conflict(relationships, session_factory, monkeypatch):
    racing = _insert_open_row_first(relationships, session_factory, "pending", [])

    async def never_sees_row(ward_id, guardian_id):
        await racing(ward_id, guardian_id)
        return None

    monkeypatch.setattr(relationships.repo, "open_for_pair", never_sees_row)
    with pytest.raises(StoreConflict):
        await relationships.request_connection(WARD, "ward", GUARDIAN)
