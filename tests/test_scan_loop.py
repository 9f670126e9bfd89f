import asyncio
import json
from datetime import timedelta

import httpx
import pytest

from client.scan_loop import CredentialStore, ScanLoop
from shared.auth.jwt_handler import create_access_token
from services.scan_validation.services.payload_decoder import build_qr_payload_url

pytestmark = pytest.mark.anyio

EVENT_ID = "6f1c1c56-2a3b-4a55-9a67-1f0e8c0d4b11"
OTHER_EVENT_ID = "0b0e6a8e-7d0c-4b1e-8f57-8a8a0c6a2f22"
GUEST_ID = "3d5e2f10-9c1a-4b7e-8f3d-2a1b0c9d8e77"


def _qr(event_id=EVENT_ID, token="tok"):
    return build_qr_payload_url("https://checkin.test/scan", GUEST_ID, event_id, token)


def _credentials(expires=timedelta(minutes=5)):
    store = CredentialStore()
    store.acquire(create_access_token({"sub": "operator-1", "role": "scanner"}, expires_delta=expires))
    return store


def _loop(handler, credentials=None):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://backend")
    return ScanLoop("http://backend", EVENT_ID, credentials or _credentials(), http_client=client)


def _ok(request):
    return httpx.Response(200, json={
        "success": True,
        "guestName": "Ana Pérez",
        "status": "1 remaining",
        "state": "PartiallyConsumed",
        "remainingScans": 1,
        "consumedScans": 1,
    })


def test_credential_store_drops_expired_token():
    store = _credentials(expires=timedelta(seconds=-1))
    assert store.get() is None
    assert store.get() is None


def test_credential_store_roundtrip():
    store = _credentials()
    assert store.get() is not None
    store.expire()
    assert store.get() is None


def test_credential_store_rejects_garbage():
    store = CredentialStore()
    store.acquire("garbage")
    assert store.get() is None


async def test_successful_scan_posts_decoded_payload():
    seen = []

    def handler(request):
        seen.append(request)
        return _ok(request)

    loop = _loop(handler)
    outcome = await loop.on_code_scanned(_qr())

    assert outcome.success is True
    assert outcome.guest_name == "Ana Pérez"
    assert outcome.remaining_scans == 1
    assert len(seen) == 1
    request = seen[0]
    assert request.url.path == "/api/events/validate-scan"
    assert request.headers["Authorization"].startswith("Bearer ")
    assert json.loads(request.content) == {
        "guestId": GUEST_ID,
        "eventId": EVENT_ID,
        "qrToken": "tok",
        "scannedEventId": EVENT_ID,
    }


async def test_codes_are_ignored_until_dismissed():
    calls = []

    def handler(request):
        calls.append(request)
        return _ok(request)

    loop = _loop(handler)
    assert await loop.on_code_scanned(_qr()) is not None
    assert await loop.on_code_scanned(_qr()) is None
    assert len(calls) == 1

    loop.dismiss()
    assert await loop.on_code_scanned(_qr()) is not None
    assert len(calls) == 2


async def test_codes_are_ignored_while_processing():
    release = asyncio.Event()
    calls = []

    async def handler(request):
        calls.append(request)
        await release.wait()
        return _ok(request)

    loop = _loop(handler)
    first = asyncio.create_task(loop.on_code_scanned(_qr()))
    await asyncio.sleep(0)
    while not loop.processing:
        await asyncio.sleep(0)

    loop.dismiss()
    assert await loop.on_code_scanned(_qr()) is None

    release.set()
    outcome = await first
    assert outcome.success is True
    assert loop.processing is False
    assert len(calls) == 1


async def test_malformed_code_never_reaches_backend():
    def handler(request):
        raise AssertionError("no debería llamar al backend")

    loop = _loop(handler)
    outcome = await loop.on_code_scanned("hola")

    assert outcome.success is False
    assert outcome.code == "MALFORMED_PAYLOAD"
    assert loop.scanned is True


async def test_other_event_code_is_rejected_locally():
    def handler(request):
        raise AssertionError("no debería llamar al backend")

    loop = _loop(handler)
    outcome = await loop.on_code_scanned(_qr(event_id=OTHER_EVENT_ID))

    assert outcome.success is False
    assert outcome.code == "EVENT_MISMATCH"


async def test_rejection_is_shown_with_backend_message():
    def handler(request):
        return httpx.Response(409, json={
            "success": False, "message": "El invitado ya realizó check-in", "code": "ALREADY_CHECKED_IN",
        })

    outcome = await _loop(handler).on_code_scanned(_qr())

    assert outcome.success is False
    assert outcome.code == "ALREADY_CHECKED_IN"
    assert outcome.message == "El invitado ya realizó check-in"


async def test_unauthorized_expires_credential():
    credentials = _credentials()

    def handler(request):
        return httpx.Response(401, json={"success": False, "message": "x", "code": "UNAUTHORIZED"})

    loop = _loop(handler, credentials)
    outcome = await loop.on_code_scanned(_qr())

    assert outcome.requires_login is True
    assert loop.requires_login is True
    assert credentials.get() is None


async def test_missing_credential_requires_login_without_calling_backend():
    def handler(request):
        raise AssertionError("no debería llamar al backend")

    loop = _loop(handler, CredentialStore())
    outcome = await loop.on_code_scanned(_qr())

    assert outcome.requires_login is True
    assert outcome.code == "UNAUTHORIZED"


async def test_server_error_is_generic():
    def handler(request):
        return httpx.Response(500, text="boom")

    outcome = await _loop(handler).on_code_scanned(_qr())

    assert outcome.success is False
    assert outcome.code == "SERVER_ERROR"


async def test_network_error_is_generic():
    def handler(request):
        raise httpx.ConnectError("sin red", request=request)

    loop = _loop(handler)
    outcome = await loop.on_code_scanned(_qr())

    assert outcome.success is False
    assert outcome.code == "NETWORK_ERROR"
    assert loop.processing is False
