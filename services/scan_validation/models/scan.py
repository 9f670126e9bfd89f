"""Modelos Pydantic para validación de escaneos"""
from pydantic import BaseModel
from typing import Optional
from datetime import datetime


class ScanValidationRequest(BaseModel):
    """
    Solicitud de validación

    La app envía los campos ya decodificados o el texto crudo del QR en qrData.
    """
    guestId: Optional[str] = None
    eventId: Optional[str] = None
    qrToken: Optional[str] = None
    scannedEventId: Optional[str] = None
    qrData: Optional[str] = None


class ScanValidationResponse(BaseModel):
    success: bool = True
    message: str = "Check-in registrado"
    guestId: str
    eventId: str
    guestName: str
    ticketType: str
    status: str
    state: str
    consumedScans: int
    remainingScans: int
    scannedAt: Optional[datetime] = None
