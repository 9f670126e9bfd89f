import uuid

import pytest
from sqlalchemy import select, func

from shared.database.models import Guest, ScanRecord

pytestmark = pytest.mark.anyio

GUEST_CSV = (
    "firstName,lastName,phone,type\n"
    "Ana,Pérez,+56911111111,single\n"
    "Luis,Soto,+56922222222,double\n"
    "Marta,Ríos,,single\n"
).encode("utf-8")


async def _create_event(client, headers, csv_content=GUEST_CSV, **fields):
    data = {
        "name": "Matrimonio",
        "date": "2026-12-31",
        "time": "20:00:00",
        "endTime": "23:59:00",
        "location": "Viña del Mar",
        "description": "Fiesta",
        "category": "wedding",
    }
    data.update(fields)
    files = {"excelFile": ("invitados.csv", csv_content, "text/csv")} if csv_content else None
    return await client.post("/api/events", data=data, files=files, headers=headers)


async def test_create_event_with_guest_list(client, seed, headers_for, database):
    admin = await seed.user("admin")

    response = await _create_event(client, headers_for(admin))

    assert response.status_code == 201
    event = response.json()["event"]
    assert event["name"] == "Matrimonio"
    assert event["date"] == "2026-12-31"
    assert event["totalGuests"] == 3
    assert event["scannedGuestsCount"] == 0
    assert event["status"] == "active"

    async with database.async_session_maker() as s:
        tokens = (await s.execute(
            select(Guest.qr_token).where(Guest.event_id == uuid.UUID(event["id"]))
        )).scalars().all()
    assert len(tokens) == 3
    assert len(set(tokens)) == 3


async def test_create_event_requires_admin(client, seed, headers_for):
    scanner = await seed.user("scanner")
    response = await _create_event(client, headers_for(scanner))
    assert response.status_code == 403


async def test_create_event_with_invalid_guest_type(client, seed, headers_for):
    admin = await seed.user("admin")
    bad_csv = b"firstName,type\nAna,vip\n"

    response = await _create_event(client, headers_for(admin), csv_content=bad_csv)

    assert response.status_code == 400
    assert "Fila 2" in response.json()["detail"]


async def test_create_event_with_invalid_date(client, seed, headers_for):
    admin = await seed.user("admin")
    response = await _create_event(client, headers_for(admin), csv_content=None, date="31/12/2026")
    assert response.status_code == 400


async def test_list_and_search_events(client, seed, headers_for):
    admin = await seed.user("admin")
    scanner = await seed.user("scanner")
    event = await seed.event("Concierto", location="Santiago")
    await seed.event("Congreso", location="Valparaíso")
    guest = await seed.guest(event)
    await seed.guest(event, first_name="Beto")
    await client.post("/api/events/validate-scan", json={
        "guestId": str(guest.id), "eventId": str(event.id),
        "qrToken": guest.qr_token, "scannedEventId": str(event.id),
    }, headers=headers_for(admin))

    response = await client.get("/api/events", headers=headers_for(scanner))
    assert response.status_code == 200
    assert response.json()["total"] == 2

    response = await client.get("/api/getallevents/", params={"search": "santiago"}, headers=headers_for(scanner))
    data = response.json()
    assert data["total"] == 1
    assert data["events"][0]["name"] == "Concierto"
    assert data["events"][0]["totalGuests"] == 2
    assert data["events"][0]["scannedGuestsCount"] == 1


async def test_list_events_requires_login(client):
    response = await client.get("/api/events")
    assert response.status_code == 401


async def test_event_details_lists_guests(client, seed, headers_for):
    admin = await seed.user("admin")
    event = await seed.event()
    await seed.guest(event, "double", first_name="Luis", last_name="Soto", consumed_scans=1)
    await seed.guest(event, first_name="Ana", last_name="Alvarez")

    response = await client.get(f"/api/events/eventdetails/{event.id}", headers=headers_for(admin))

    assert response.status_code == 200
    data = response.json()
    assert [g["firstName"] for g in data["guests"]] == ["Ana", "Luis"]
    assert data["guests"][1]["status"] == "1 remaining"
    assert data["scannedGuestsCount"] == 1


async def test_event_details_not_found(client, seed, headers_for):
    admin = await seed.user("admin")
    response = await client.get(f"/api/events/eventdetails/{uuid.uuid4()}", headers=headers_for(admin))
    assert response.status_code == 404
    response = await client.get("/api/events/eventdetails/not-a-uuid", headers=headers_for(admin))
    assert response.status_code == 404


async def test_update_event_fields_and_replace_guest_list(client, seed, headers_for, database):
    admin = await seed.user("admin")
    event = await seed.event("Viejo nombre")
    await seed.guest(event)

    response = await client.put(
        f"/api/events/{event.id}",
        data={"name": "Nuevo nombre", "location": "Concepción"},
        headers=headers_for(admin)
    )
    assert response.status_code == 200
    assert response.json()["event"]["name"] == "Nuevo nombre"
    assert response.json()["event"]["location"] == "Concepción"
    assert response.json()["event"]["totalGuests"] == 1

    response = await client.put(
        f"/api/events/update/{event.id}",
        files={"excelFile": ("nueva.csv", GUEST_CSV, "text/csv")},
        headers=headers_for(admin)
    )
    assert response.status_code == 200
    assert response.json()["event"]["totalGuests"] == 3


async def test_complete_and_cancel(client, seed, headers_for):
    admin = await seed.user("admin")
    event = await seed.event()
    other = await seed.event("Otro")

    response = await client.put(f"/api/events/complete/{event.id}", headers=headers_for(admin))
    assert response.status_code == 200
    assert response.json()["event"]["status"] == "completed"
    assert response.json()["event"]["active"] is False

    response = await client.put(f"/api/events/cancel/{event.id}", headers=headers_for(admin))
    assert response.status_code == 409

    response = await client.put(f"/api/events/cancel/{other.id}", headers=headers_for(admin))
    assert response.status_code == 200
    assert response.json()["event"]["status"] == "cancelled"


async def test_delete_event_cascades(client, seed, headers_for, database):
    admin = await seed.user("admin")
    event = await seed.event()
    guest = await seed.guest(event)
    await client.post("/api/events/validate-scan", json={
        "guestId": str(guest.id), "eventId": str(event.id),
        "qrToken": guest.qr_token, "scannedEventId": str(event.id),
    }, headers=headers_for(admin))

    response = await client.delete(f"/api/events/delete/{event.id}", headers=headers_for(admin))
    assert response.status_code == 200

    async with database.async_session_maker() as s:
        guests = (await s.execute(select(func.count(Guest.id)))).scalar_one()
        records = (await s.execute(select(func.count(ScanRecord.id)))).scalar_one()
    assert guests == 0
    assert records == 0

    response = await client.delete(f"/api/events/delete/{event.id}", headers=headers_for(admin))
    assert response.status_code == 404


async def test_checkins_and_report(client, seed, headers_for):
    admin = await seed.user("admin", email="door@example.com")
    event = await seed.event("Gala")
    single = await seed.guest(event, "single", first_name="Ana", last_name="A")
    double = await seed.guest(event, "double", first_name="Beto", last_name="B")
    await seed.guest(event, "double", first_name="Cata", last_name="C")

    for guest in (single, double):
        response = await client.post("/api/events/validate-scan", json={
            "guestId": str(guest.id), "eventId": str(event.id),
            "qrToken": guest.qr_token, "scannedEventId": str(event.id),
        }, headers=headers_for(admin))
        assert response.status_code == 200

    response = await client.get(f"/api/events/checkins/{event.id}", headers=headers_for(admin))
    assert response.status_code == 200
    logs = {row["name"]: row for row in response.json()["guests"]}
    assert logs["Ana A"]["remainednumberofscans"] == 0
    assert logs["Ana A"]["status"] == "Completed"
    assert logs["Ana A"]["lastScannedBy"] == "door@example.com"
    assert logs["Beto B"]["remainednumberofscans"] == 1
    assert logs["Beto B"]["type"] == "double"
    assert logs["Cata C"]["status"] == "Pending"
    assert logs["Cata C"]["lastScannedAt"] is None

    response = await client.get(f"/api/events/reports/{event.id}", headers=headers_for(admin))
    report = response.json()
    assert report["eventName"] == "Gala"
    assert report["totalInvited"] == 3
    assert report["totalCheckedIn"] == 2
    assert report["singleInvites"] == 1
    assert report["doubleInvites"] == 2
    assert report["singleCheckedIn"] == 1
    assert report["doubleCheckedIn"] == 0
    assert report["doublePartial"] == 1
    assert report["totalScans"] == 2
    assert report["totalAllowedScans"] == 5
    assert report["attendanceRate"] == pytest.approx(66.7)


async def test_report_pdf(client, seed, headers_for):
    admin = await seed.user("admin")
    event = await seed.event()
    await seed.guest(event)

    response = await client.get(f"/api/events/report/pdf/{event.id}", headers=headers_for(admin))

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert response.content.startswith(b"%PDF")


async def test_scan_permissions_lifecycle(client, seed, headers_for):
    admin = await seed.user("admin")
    scanner = await seed.user("scanner", email="gate1@example.com")
    event = await seed.event()

    response = await client.post(
        f"/api/events/{event.id}/scan-permissions",
        json={"tenant_id": str(scanner.id)},
        headers=headers_for(admin)
    )
    assert response.status_code == 201
    data = response.json()
    assert data["success"] is True
    assert data["message"] == "Scanner added successfully"
    permission = data["permission"]
    assert permission["tenant_id"] == str(scanner.id)
    assert permission["grantedBy"] == str(admin.id)

    again = await client.post(
        f"/api/events/{event.id}/scan-permissions",
        json={"email": "GATE1@example.com"},
        headers=headers_for(admin)
    )
    assert again.status_code == 200
    assert again.json()["success"] is True
    assert again.json()["permission"]["id"] == permission["id"]

    listing = await client.get(f"/api/events/{event.id}/scan-permissions", headers=headers_for(admin))
    scanners = listing.json()["scanners"]
    assert [(s["tenant_id"], s["email"]) for s in scanners] == [(str(scanner.id), "gate1@example.com")]

    response = await client.delete(
        f"/api/events/{event.id}/scan-permissions/{permission['id']}", headers=headers_for(admin)
    )
    assert response.status_code == 200
    assert response.json() == {
        "success": True, "message": "Scanner removed successfully", "permission": None,
    }

    listing = await client.get(f"/api/events/{event.id}/scan-permissions", headers=headers_for(admin))
    assert listing.json() == {"success": True, "scanners": []}

    response = await client.delete(
        f"/api/events/{event.id}/scan-permissions/{permission['id']}", headers=headers_for(admin)
    )
    assert response.status_code == 404
    assert response.json()["success"] is False


async def test_grant_permission_to_unknown_user(client, seed, headers_for):
    admin = await seed.user("admin")
    event = await seed.event()
    response = await client.post(
        f"/api/events/{event.id}/scan-permissions",
        json={"tenant_id": str(uuid.uuid4())},
        headers=headers_for(admin)
    )
    assert response.status_code == 400
    assert response.json() == {"success": False, "message": "Usuario no encontrado"}

    response = await client.post(
        f"/api/events/{uuid.uuid4()}/scan-permissions",
        json={"tenant_id": str(admin.id)},
        headers=headers_for(admin)
    )
    assert response.status_code == 404
    assert response.json()["success"] is False


async def test_rotate_token_and_qr_image(client, seed, headers_for):
    admin = await seed.user("admin")
    event = await seed.event()
    guest = await seed.guest(event)

    response = await client.post(
        f"/api/events/{event.id}/guests/{guest.id}/rotate-token", headers=headers_for(admin)
    )
    assert response.status_code == 200
    data = response.json()
    assert data["qrToken"] != guest.qr_token
    assert data["qrUrl"].startswith("https://checkin.test/scan?guestId=")

    old = await client.post("/api/events/validate-scan", json={
        "guestId": str(guest.id), "eventId": str(event.id),
        "qrToken": guest.qr_token, "scannedEventId": str(event.id),
    }, headers=headers_for(admin))
    assert old.status_code == 403

    image = await client.get(f"/api/events/{event.id}/guests/{guest.id}/qr", headers=headers_for(admin))
    assert image.status_code == 200
    assert image.headers["content-type"] == "image/png"
    assert image.content.startswith(b"\x89PNG")

    missing = await client.post(
        f"/api/events/{event.id}/guests/{uuid.uuid4()}/rotate-token", headers=headers_for(admin)
    )
    assert missing.status_code == 404
