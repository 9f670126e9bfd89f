"""Rutas de validación de escaneos QR"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Dict, Optional
from shared.database.session import get_db
from shared.auth.dependencies import get_optional_user
from shared.utils.rate_limiter import limiter, RATE_LIMITS
from services.scan_validation.models.scan import (
    ScanValidationRequest,
    ScanValidationResponse
)
from services.scan_validation.services.errors import MalformedPayload, Unauthorized
from services.scan_validation.services.payload_decoder import ScanPayload, decode_qr_payload
from services.scan_validation.services.validator import ScanValidator


router = APIRouter()


def _payload_from_request(data: ScanValidationRequest) -> ScanPayload:
    """Campos explícitos o, si vienen, el texto crudo del QR"""
    if data.qrData:
        return decode_qr_payload(data.qrData)

    if not data.guestId or not data.eventId or not data.qrToken:
        raise MalformedPayload("Faltan datos requeridos: guestId, eventId y qrToken")
    return ScanPayload(
        guest_id=data.guestId.strip(),
        event_id=data.eventId.strip(),
        qr_token=data.qrToken.strip()
    )


@router.post("/validate-scan", response_model=ScanValidationResponse)
@limiter.limit(RATE_LIMITS["validation"])
async def validate_scan(
    request: Request,
    data: ScanValidationRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Optional[Dict] = Depends(get_optional_user)
):
    """
    Validar un escaneo y registrar el check-in

    Requiere token de operador. Los rechazos se responden como
    {success: false, message, code} por el handler de ScanValidationError.

    Compatible con: ScannerScreen
    """
    if current_user is None:
        raise Unauthorized()

    payload = _payload_from_request(data)

    validator = ScanValidator(db)
    result = await validator.validate(
        guest_id=payload.guest_id,
        event_id=payload.event_id,
        qr_token=payload.qr_token,
        operator=current_user,
        scanned_event_id=data.scannedEventId
    )

    return ScanValidationResponse(
        guestId=result.guest_id,
        eventId=result.event_id,
        guestName=result.guest_name,
        ticketType=result.ticket_type,
        status=result.status,
        state=result.state,
        consumedScans=result.consumed_scans,
        remainingScans=result.remaining_scans,
        scannedAt=result.scanned_at
    )
