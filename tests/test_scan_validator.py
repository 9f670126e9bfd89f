import asyncio
import uuid

import pytest
from sqlalchemy import select, func

from shared.database.models import Guest, ScanRecord
from services.scan_validation.services.errors import (
    AlreadyCheckedIn,
    EventMismatch,
    EventNotActive,
    EventNotFound,
    GuestNotFound,
    InvalidToken,
    NoRemainingScans,
    ScanNotPermitted,
    Unauthorized,
)
from services.scan_validation.services.ledger import GuestLedger
from services.scan_validation.services.validator import ScanValidator

pytestmark = pytest.mark.anyio


async def _validate(database, guest, operator, scanned_event_id=None, token=None, event_id=None):
    async with database.async_session_maker() as s:
        return await ScanValidator(s).validate(
            guest_id=str(guest.id),
            event_id=event_id or str(guest.event_id),
            qr_token=token or guest.qr_token,
            operator=operator,
            scanned_event_id=scanned_event_id or str(guest.event_id),
        )


async def _consumed(database, guest) -> int:
    async with database.async_session_maker() as s:
        return (await s.execute(select(Guest.consumed_scans).where(Guest.id == guest.id))).scalar_one()


async def _records(database, guest) -> int:
    async with database.async_session_maker() as s:
        stmt = select(func.count(ScanRecord.id)).where(ScanRecord.guest_id == guest.id)
        return (await s.execute(stmt)).scalar_one()


async def test_single_ticket_accepts_once(database, seed, as_principal):
    admin = await seed.user("admin")
    event = await seed.event()
    guest = await seed.guest(event, "single")

    result = await _validate(database, guest, as_principal(admin))

    assert result.state == "FullyConsumed"
    assert result.remaining_scans == 0
    assert result.consumed_scans == 1
    assert result.status == "Completed"
    assert result.guest_name == "Ana Pérez"

    with pytest.raises(AlreadyCheckedIn) as exc_info:
        await _validate(database, guest, as_principal(admin))
    assert not isinstance(exc_info.value, NoRemainingScans)

    assert await _consumed(database, guest) == 1
    assert await _records(database, guest) == 1


async def test_double_ticket_progression(database, seed, as_principal):
    admin = await seed.user("admin")
    event = await seed.event()
    guest = await seed.guest(event, "double")

    first = await _validate(database, guest, as_principal(admin))
    assert first.state == "PartiallyConsumed"
    assert first.remaining_scans == 1
    assert first.status == "1 remaining"

    second = await _validate(database, guest, as_principal(admin))
    assert second.state == "FullyConsumed"
    assert second.remaining_scans == 0

    with pytest.raises(NoRemainingScans) as exc_info:
        await _validate(database, guest, as_principal(admin))
    assert exc_info.value.status_code == 409

    assert await _consumed(database, guest) == 2
    assert await _records(database, guest) == 2


async def test_missing_operator_is_unauthorized(database, seed):
    event = await seed.event()
    guest = await seed.guest(event)

    with pytest.raises(Unauthorized):
        await _validate(database, guest, None)
    assert await _consumed(database, guest) == 0


async def test_deactivated_operator_is_unauthorized(database, seed, as_principal):
    admin = await seed.user("admin")
    event = await seed.event()
    guest = await seed.guest(event)
    admin.is_active = False
    await seed.session.commit()

    with pytest.raises(Unauthorized):
        await _validate(database, guest, as_principal(admin))
    assert await _consumed(database, guest) == 0
    assert await _records(database, guest) == 0


async def test_deleted_operator_is_unauthorized(database, seed, as_principal):
    admin = await seed.user("admin")
    event = await seed.event()
    guest = await seed.guest(event)
    operator = as_principal(admin)
    await seed.session.delete(admin)
    await seed.session.commit()

    with pytest.raises(Unauthorized):
        await _validate(database, guest, operator)
    assert await _consumed(database, guest) == 0


async def test_role_comes_from_stored_user(database, seed, as_principal):
    scanner = await seed.user("scanner")
    event = await seed.event()
    guest = await seed.guest(event)
    operator = dict(as_principal(scanner), role="admin")

    with pytest.raises(ScanNotPermitted):
        await _validate(database, guest, operator)
    assert await _consumed(database, guest) == 0


async def test_cross_event_scan_is_rejected_before_lookup(database, seed, as_principal):
    admin = await seed.user("admin")
    event_a = await seed.event("Evento A")
    event_b = await seed.event("Evento B")
    guest = await seed.guest(event_a)

    with pytest.raises(EventMismatch):
        await _validate(database, guest, as_principal(admin), scanned_event_id=str(event_b.id))

    # Aunque el evento del scanner no exista, el mismatch gana
    with pytest.raises(EventMismatch):
        await _validate(database, guest, as_principal(admin), scanned_event_id=str(uuid.uuid4()))

    assert await _consumed(database, guest) == 0


async def test_event_id_formatting_is_tolerated(database, seed, as_principal):
    admin = await seed.user("admin")
    event = await seed.event()
    guest = await seed.guest(event)

    result = await _validate(
        database, guest, as_principal(admin),
        scanned_event_id=str(event.id).upper().replace("-", "")
    )
    assert result.state == "FullyConsumed"


async def test_unknown_event(database, seed, as_principal):
    admin = await seed.user("admin")
    event = await seed.event()
    guest = await seed.guest(event)
    missing = str(uuid.uuid4())

    with pytest.raises(EventNotFound):
        await _validate(database, guest, as_principal(admin), scanned_event_id=missing, event_id=missing)


@pytest.mark.parametrize("flags", [
    {"active": False},
    {"cancelled": True},
    {"completed": True},
])
async def test_inactive_event_rejects(database, seed, as_principal, flags):
    admin = await seed.user("admin")
    event = await seed.event(**flags)
    guest = await seed.guest(event)

    with pytest.raises(EventNotActive):
        await _validate(database, guest, as_principal(admin))
    assert await _consumed(database, guest) == 0


async def test_guest_must_belong_to_event(database, seed, as_principal):
    admin = await seed.user("admin")
    event_a = await seed.event("Evento A")
    event_b = await seed.event("Evento B")
    guest = await seed.guest(event_a)

    with pytest.raises(GuestNotFound):
        await _validate(
            database, guest, as_principal(admin),
            event_id=str(event_b.id), scanned_event_id=str(event_b.id)
        )


async def test_invalid_token(database, seed, as_principal):
    admin = await seed.user("admin")
    event = await seed.event()
    guest = await seed.guest(event)

    with pytest.raises(InvalidToken):
        await _validate(database, guest, as_principal(admin), token="not-the-token")
    assert await _consumed(database, guest) == 0
    assert await _records(database, guest) == 0


async def test_scanner_needs_permission_for_event(database, seed, as_principal):
    scanner = await seed.user("scanner")
    event = await seed.event()
    guest = await seed.guest(event)

    with pytest.raises(ScanNotPermitted):
        await _validate(database, guest, as_principal(scanner))

    await seed.permission(event, scanner)
    result = await _validate(database, guest, as_principal(scanner))
    assert result.consumed_scans == 1


async def test_scan_record_keeps_operator(database, seed, as_principal):
    admin = await seed.user("admin")
    event = await seed.event()
    guest = await seed.guest(event, "double")

    await _validate(database, guest, as_principal(admin))

    async with database.async_session_maker() as s:
        history = await GuestLedger(s).scan_history(event.id, guest.id)
    assert len(history) == 1
    assert history[0].scanned_by_user_id == admin.id
    assert history[0].type == "double"


async def test_rotated_token_invalidates_previous(database, seed, as_principal):
    admin = await seed.user("admin")
    event = await seed.event()
    guest = await seed.guest(event)
    old_token = guest.qr_token

    async with database.async_session_maker() as s:
        new_token = await GuestLedger(s).rotate_token(event.id, guest.id)
    assert new_token and new_token != old_token

    with pytest.raises(InvalidToken):
        await _validate(database, guest, as_principal(admin), token=old_token)

    result = await _validate(database, guest, as_principal(admin), token=new_token)
    assert result.state == "FullyConsumed"


async def test_concurrent_scans_single_ticket_only_one_wins(database, seed, as_principal):
    admin = await seed.user("admin")
    event = await seed.event()
    guest = await seed.guest(event, "single")

    results = await asyncio.gather(
        *[_validate(database, guest, as_principal(admin)) for _ in range(4)],
        return_exceptions=True
    )

    accepted = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, Exception)]
    assert len(accepted) == 1
    assert len(rejected) == 3
    assert all(isinstance(r, AlreadyCheckedIn) for r in rejected)

    assert await _consumed(database, guest) == 1
    assert await _records(database, guest) == 1


async def test_concurrent_scans_double_ticket_caps_at_two(database, seed, as_principal):
    admin = await seed.user("admin")
    event = await seed.event()
    guest = await seed.guest(event, "double")

    results = await asyncio.gather(
        *[_validate(database, guest, as_principal(admin)) for _ in range(3)],
        return_exceptions=True
    )

    accepted = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, Exception)]
    assert len(accepted) == 2
    assert len(rejected) == 1
    assert isinstance(rejected[0], NoRemainingScans)
    assert sorted(r.remaining_scans for r in accepted) == [0, 1]

    assert await _consumed(database, guest) == 2
    assert await _records(database, guest) == 2


@pytest.mark.parametrize("ticket_type, expected", [
    ("single", AlreadyCheckedIn),
    ("double", NoRemainingScans),
])
async def test_lost_races_map_to_ticket_type_rejection(database, seed, as_principal, monkeypatch, ticket_type, expected):
    admin = await seed.user("admin")
    event = await seed.event()
    guest = await seed.guest(event, ticket_type)

    async def always_stale(self, event_id, guest_id, expected_consumed_scans):
        return False

    monkeypatch.setattr(GuestLedger, "try_consume_scan", always_stale)

    with pytest.raises(expected) as excinfo:
        async with database.async_session_maker() as s:
            await ScanValidator(s, max_attempts=2).validate(
                guest_id=str(guest.id),
                event_id=str(event.id),
                qr_token=guest.qr_token,
                operator=as_principal(admin),
                scanned_event_id=str(event.id),
            )
    assert type(excinfo.value) is expected
    assert await _consumed(database, guest) == 0
    assert await _records(database, guest) == 0
