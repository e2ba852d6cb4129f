import pytest
from sqlalchemy import update
from sqlalchemy.orm.exc import StaleDataError
from carenet.core.config import settings
from carenet.core.errors import StoreConflict, NotAuthorized
from carenet.core.retry import retry_on_conflict
from carenet.modules.consent.models import ConsentRecord
from carenet.modules.consent.service import ConsentLedger
from conftest import WARD, GUARDIAN


class CountingSession:
    def __init__(self):
        self.rollbacks = 0

    async def rollback(self):
        self.rollbacks += 1


def failing(times: int, exc=StaleDataError):
    calls = []

    async def work():
        calls.append(1)
        if len(calls) <= times:
            raise exc("row changed underneath")
        return "done"

    return work, calls


async def test_retries_until_work_succeeds():
    session = CountingSession()
    work, calls = failing(2)
    assert await retry_on_conflict(session, work, base_delay=0) == "done"
    assert len(calls) == 3
    assert session.rollbacks == 2


async def test_store_conflict_is_retried_too():
    session = CountingSession()
    work, calls = failing(1, exc=StoreConflict)
    assert await retry_on_conflict(session, work, base_delay=0) == "done"
    assert len(calls) == 2


async def test_gives_up_after_configured_attempts():
    session = CountingSession()
    work, calls = failing(100)
    with pytest.raises(StoreConflict) as exc_info:
        await retry_on_conflict(session, work, base_delay=0)
    assert len(calls) == settings.STORE_CONFLICT_RETRIES
    assert session.rollbacks == settings.STORE_CONFLICT_RETRIES
    assert isinstance(exc_info.value.__cause__, StaleDataError)


async def test_other_errors_are_not_retried():
    session = CountingSession()
    work, calls = failing(1, exc=NotAuthorized)
    with pytest.raises(NotAuthorized):
        await retry_on_conflict(session, work, base_delay=0)
    assert len(calls) == 1
    assert session.rollbacks == 0


async def test_version_mismatch_rereads_and_applies(session, monkeypatch):
    ledger = ConsentLedger(session)
    await ledger.grant(WARD, GUARDIAN, "location_tracking")
    get = ledger.repo.get
    calls = []

    async def bump_version_after_read(*args):
        calls.append(1)
        rec = await get(*args)
        if len(calls) == 1:
            # another writer moves the row on after we read it
            await session.execute(
                update(ConsentRecord)
                .where(ConsentRecord.id == rec.id)
                .values(version=ConsentRecord.version + 1)
                .execution_options(synchronize_session=False)
            )
        return rec

    monkeypatch.setattr(ledger.repo, "get", bump_version_after_read)
    rec = await ledger.revoke(WARD, GUARDIAN, "location_tracking")
    assert len(calls) == 2
    assert not rec.is_granted
    assert [h["status"] for h in rec.history] == ["granted", "revoked"]
