"""Rutas de gestión de eventos, reportes y permisos de escaneo"""
from fastapi import APIRouter, Depends, HTTPException, status, Query, Form, File, UploadFile, Request
from fastapi.responses import StreamingResponse, Response, JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional, Dict
import logging

from shared.database.session import get_db
from shared.database.models import Event
from shared.auth.dependencies import get_current_scanner, get_current_admin
from shared.utils.qr_generator import render_qr_png
from shared.utils.rate_limiter import limiter, RATE_LIMITS
from app.core.config import settings
from services.event_management.models.event import (
    EventResponse,
    EventDetailResponse,
    EventListResponse,
    EventMessageResponse,
    GuestResponse,
    ScanPermissionCreate,
    ScanPermissionListResponse,
    ScanPermissionMessageResponse,
    ScanPermissionResponse,
    TokenRotationResponse,
)
from services.event_management.services.event_service import EventService
from services.event_management.services.guest_import import GuestImportError, read_guest_file
from services.event_management.services.report_service import ReportService, event_status
from services.scan_validation.services.payload_decoder import build_qr_payload_url

logger = logging.getLogger(__name__)

router = APIRouter()
# Rutas heredadas de la app móvil fuera de /api/events
catalog_router = APIRouter()


def _to_event_response(event: Event, counts: Optional[Dict] = None) -> EventResponse:
    counts = counts or {}
    return EventResponse(
        id=str(event.id),
        name=event.name,
        date=event.event_date,
        time=event.start_time,
        endTime=event.end_time,
        location=event.location,
        description=event.description,
        category=event.category,
        active=bool(event.active),
        cancelled=bool(event.cancelled),
        completed=bool(event.completed),
        status=event_status(event),
        totalGuests=counts.get("total", 0),
        scannedGuestsCount=counts.get("scanned", 0),
        createdAt=event.created_at,
        updatedAt=event.updated_at,
    )


async def _event_or_404(db: AsyncSession, event_id: str, with_guests: bool = False) -> Event:
    event = await EventService.get_event_by_id(db, event_id, with_guests=with_guests)
    if not event:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Evento no encontrado"
        )
    return event


async def _read_upload(upload: Optional[UploadFile]):
    """Lista de invitados del archivo subido, None si no se envió archivo"""
    if upload is None or not upload.filename:
        return None
    content = await upload.read()
    try:
        return read_guest_file(upload.filename, content)
    except GuestImportError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


async def _list_events(db: AsyncSession, search: Optional[str], limit: int, offset: int) -> EventListResponse:
    events, total = await EventService.get_events(db, search=search, limit=limit, offset=offset)
    counts = await ReportService.guest_counts(db, [event.id for event in events])
    return EventListResponse(
        events=[_to_event_response(event, counts.get(event.id)) for event in events],
        total=total
    )


@router.get("", response_model=EventListResponse)
async def get_events(
    search: Optional[str] = Query(None, description="Búsqueda por nombre o ubicación"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_scanner)
):
    """
    Listar eventos con conteo de invitados y escaneados

    Compatible con: HomeScreen
    """
    return await _list_events(db, search, limit, offset)


@catalog_router.get("/getallevents/", response_model=EventListResponse)
async def get_all_events(
    search: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_scanner)
):
    """Compatible con: EventsScreen (getallevents)"""
    return await _list_events(db, search, limit, offset)


@router.post("", response_model=EventMessageResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(RATE_LIMITS["admin"])
async def create_event(
    request: Request,
    name: str = Form(...),
    date: Optional[str] = Form(None),
    time: Optional[str] = Form(None),
    endTime: Optional[str] = Form(None),
    location: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    excelFile: Optional[UploadFile] = File(None),
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_admin)
):
    """
    Crear evento e importar su lista de invitados (Excel/CSV)

    Requiere: admin role
    Compatible con: AddEventScreen (multipart)
    """
    guests = await _read_upload(excelFile) or []
    event_data = {
        "name": name,
        "date": date,
        "time": time,
        "endTime": endTime,
        "location": location,
        "description": description,
        "category": category,
    }

    try:
        event = await EventService.create_event(
            db=db,
            event_data=event_data,
            guests=guests,
            user_id=current_user.get("user_id")
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    counts = await ReportService.guest_counts(db, [event.id])
    return EventMessageResponse(
        message="Event created successfully",
        event=_to_event_response(event, counts.get(event.id))
    )


@router.get("/eventdetails/{event_id}", response_model=EventDetailResponse)
async def get_event_details(
    event_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_scanner)
):
    """Detalle del evento con su lista de invitados"""
    event = await _event_or_404(db, event_id, with_guests=True)
    guests = sorted(event.guests, key=lambda g: (g.last_name or "", g.first_name))

    base = _to_event_response(event, {
        "total": len(guests),
        "scanned": sum(1 for g in guests if g.consumed_scans > 0),
    })
    return EventDetailResponse(
        **base.model_dump(),
        guests=[
            GuestResponse(
                id=str(g.id),
                firstName=g.first_name,
                lastName=g.last_name or "",
                phone=g.phone,
                email=g.email,
                type=g.type,
                consumedScans=g.consumed_scans,
                remainingScans=g.remaining_scans,
                status=g.status_label,
                invitationStatus=g.invitation_status,
            )
            for g in guests
        ]
    )


@router.put("/complete/{event_id}", response_model=EventMessageResponse)
async def complete_event(
    event_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_admin)
):
    """Finalizar evento (deja de aceptar escaneos)"""
    try:
        event = await EventService.complete_event(db, event_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if not event:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Evento no encontrado")
    return EventMessageResponse(message="Event marked as completed", event=_to_event_response(event))


@router.put("/cancel/{event_id}", response_model=EventMessageResponse)
async def cancel_event(
    event_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_admin)
):
    try:
        event = await EventService.cancel_event(db, event_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if not event:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Evento no encontrado")
    return EventMessageResponse(message="Event cancelled", event=_to_event_response(event))


@router.put("/update/{event_id}", response_model=EventMessageResponse)
@router.put("/{event_id}", response_model=EventMessageResponse)
async def update_event(
    event_id: str,
    name: Optional[str] = Form(None),
    date: Optional[str] = Form(None),
    time: Optional[str] = Form(None),
    endTime: Optional[str] = Form(None),
    location: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    excelFile: Optional[UploadFile] = File(None),
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_admin)
):
    """
    Actualizar evento; si se adjunta archivo, reemplaza la lista de invitados

    Requiere: admin role
    """
    guests = await _read_upload(excelFile)
    event_data = {
        "name": name,
        "date": date,
        "time": time,
        "endTime": endTime,
        "location": location,
        "description": description,
        "category": category,
    }

    try:
        event = await EventService.update_event(db, event_id, event_data, guests=guests)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if not event:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Evento no encontrado")

    counts = await ReportService.guest_counts(db, [event.id])
    return EventMessageResponse(
        message="Event updated successfully",
        event=_to_event_response(event, counts.get(event.id))
    )


@router.delete("/delete/{event_id}")
async def delete_event(
    event_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_admin)
):
    """
    Eliminar evento con sus invitados y escaneos

    Requiere: admin role
    """
    success = await EventService.delete_event(db, event_id)
    if not success:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Evento no encontrado")
    return {"message": "Event deleted successfully"}


@router.get("/checkins/{event_id}")
async def get_event_checkins(
    event_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_scanner)
):
    """
    Log de check-ins del evento

    Compatible con: EventLogsScreen
    """
    event = await _event_or_404(db, event_id)
    logs = await ReportService.get_checkin_logs(db, event.id)
    return {"eventId": str(event.id), "eventName": event.name, "guests": logs}


@router.get("/reports/{event_id}")
async def get_event_report(
    event_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_scanner)
):
    """
    Reporte de asistencia

    Compatible con: ReportsScreen
    """
    event = await _event_or_404(db, event_id)
    return await ReportService.get_event_report(db, event)


@router.get("/report/pdf/{event_id}")
async def get_event_report_pdf(
    event_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_scanner)
):
    """Reporte de asistencia en PDF"""
    event = await _event_or_404(db, event_id)
    report = await ReportService.get_event_report(db, event)
    pdf_buffer = ReportService.render_report_pdf(report)

    return StreamingResponse(
        pdf_buffer,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="event-report-{event.id}.pdf"'}
    )


def _to_permission_response(permission, user) -> ScanPermissionResponse:
    return ScanPermissionResponse(
        id=str(permission.id),
        eventId=str(permission.event_id),
        tenant_id=str(permission.user_id),
        userId=str(permission.user_id),
        email=user.email,
        firstName=user.first_name,
        lastName=user.last_name,
        grantedBy=str(permission.granted_by_user_id) if permission.granted_by_user_id else None,
        createdAt=permission.created_at,
    )


def _permission_error(status_code: int, message: str) -> JSONResponse:
    """La pantalla de permisos lee {success, message} también en los errores"""
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


@router.get("/{event_id}/scan-permissions", response_model=ScanPermissionListResponse)
async def list_scan_permissions(
    event_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_admin)
):
    """
    Operadores habilitados para escanear en el evento

    Compatible con: ScanPermissionScreen
    """
    event = await EventService.get_event_by_id(db, event_id)
    if not event:
        return _permission_error(status.HTTP_404_NOT_FOUND, "Evento no encontrado")

    permissions = await EventService.list_scan_permissions(db, event.id)
    return ScanPermissionListResponse(
        scanners=[_to_permission_response(permission, user) for permission, user in permissions]
    )


@router.post(
    "/{event_id}/scan-permissions",
    response_model=ScanPermissionMessageResponse,
    status_code=status.HTTP_201_CREATED
)
async def grant_scan_permission(
    event_id: str,
    data: ScanPermissionCreate,
    response: Response,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_admin)
):
    """Habilitar a un operador para escanear en el evento"""
    event = await EventService.get_event_by_id(db, event_id)
    if not event:
        return _permission_error(status.HTTP_404_NOT_FOUND, "Evento no encontrado")

    try:
        permission, user, created = await EventService.grant_scan_permission(
            db,
            event,
            user_id=data.tenant_id or data.userId,
            email=data.email,
            granted_by=current_user.get("user_id")
        )
    except ValueError as e:
        return _permission_error(status.HTTP_400_BAD_REQUEST, str(e))

    if not created:
        response.status_code = status.HTTP_200_OK
    return ScanPermissionMessageResponse(
        message="Scanner added successfully" if created else "User already has scan permission",
        permission=_to_permission_response(permission, user)
    )


@router.delete("/{event_id}/scan-permissions/{permission_id}", response_model=ScanPermissionMessageResponse)
async def revoke_scan_permission(
    event_id: str,
    permission_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_admin)
):
    if not await EventService.revoke_scan_permission(db, event_id, permission_id):
        return _permission_error(status.HTTP_404_NOT_FOUND, "Permiso no encontrado")
    return ScanPermissionMessageResponse(message="Scanner removed successfully")


@router.post("/{event_id}/guests/{guest_id}/rotate-token", response_model=TokenRotationResponse)
async def rotate_guest_token(
    event_id: str,
    guest_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_admin)
):
    """
    Reemitir el QR de un invitado (p. ej. invitación reenviada o filtrada)

    El QR anterior queda inválido de inmediato.
    """
    token = await EventService.rotate_guest_token(db, event_id, guest_id)
    if token is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invitado no encontrado")

    return TokenRotationResponse(
        guestId=guest_id,
        eventId=event_id,
        qrToken=token,
        qrUrl=build_qr_payload_url(settings.QR_BASE_URL, guest_id, event_id, token)
    )


@router.get("/{event_id}/guests/{guest_id}/qr")
async def get_guest_qr(
    event_id: str,
    guest_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_admin)
):
    """Imagen PNG del QR vigente del invitado"""
    guest = await EventService.get_guest(db, event_id, guest_id)
    if guest is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invitado no encontrado")

    url = build_qr_payload_url(settings.QR_BASE_URL, str(guest.id), str(guest.event_id), guest.qr_token)
    return Response(content=render_qr_png(url), media_type="image/png")
