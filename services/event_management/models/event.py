"""Modelos Pydantic para eventos, permisos de escaneo e invitados"""
from pydantic import BaseModel, field_serializer
from typing import Optional, List
from datetime import date as date_type, datetime, timezone


class EventResponse(BaseModel):
    """Evento tal como lo listan las pantallas de la app (campos camelCase)"""
    id: str
    name: str
    date: Optional[date_type] = None
    time: Optional[str] = None
    endTime: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = "general"
    active: bool = True
    cancelled: bool = False
    completed: bool = False
    status: str = "active"
    totalGuests: int = 0
    scannedGuestsCount: int = 0
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None

    @field_serializer('createdAt', 'updatedAt')
    def serialize_datetime_utc(self, dt: Optional[datetime], _info) -> Optional[str]:
        """Serializar datetime a ISO 8601 con timezone UTC explícito"""
        if dt is None:
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        elif dt.tzinfo != timezone.utc:
            dt = dt.astimezone(timezone.utc)
        return dt.isoformat()


class GuestResponse(BaseModel):
    id: str
    firstName: str
    lastName: str = ""
    phone: Optional[str] = None
    email: Optional[str] = None
    type: str
    consumedScans: int = 0
    remainingScans: int = 0
    status: str = "Pending"
    invitationStatus: str = "not_sent"


class EventDetailResponse(EventResponse):
    guests: List[GuestResponse] = []


class EventListResponse(BaseModel):
    events: List[EventResponse]
    total: int


class EventMessageResponse(BaseModel):
    message: str
    event: Optional[EventResponse] = None


class ScanPermissionCreate(BaseModel):
    """La app envía tenant_id (ID del usuario); userId y email también se aceptan"""
    tenant_id: Optional[str] = None
    userId: Optional[str] = None
    email: Optional[str] = None


class ScanPermissionResponse(BaseModel):
    id: str
    eventId: str
    tenant_id: str
    userId: str
    email: Optional[str] = None
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    grantedBy: Optional[str] = None
    createdAt: Optional[datetime] = None


class ScanPermissionListResponse(BaseModel):
    success: bool = True
    scanners: List[ScanPermissionResponse]


class ScanPermissionMessageResponse(BaseModel):
    success: bool = True
    message: str
    permission: Optional[ScanPermissionResponse] = None


class TokenRotationResponse(BaseModel):
    guestId: str
    eventId: str
    qrToken: str
    qrUrl: str
