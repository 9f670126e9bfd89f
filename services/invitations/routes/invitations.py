"""Rutas de envío y estado de invitaciones"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from kombu.exceptions import OperationalError
from typing import Dict
import logging

from shared.database.session import get_db
from shared.auth.dependencies import get_current_admin
from services.invitations.models.invitation import (
    SendInvitationsRequest,
    SendInvitationsResponse,
    InvitationStatusResponse,
)
from services.invitations.services.invitation_service import InvitationService
from services.invitations.tasks.invitation_tasks import send_event_invitations_task

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/send", response_model=SendInvitationsResponse, status_code=status.HTTP_202_ACCEPTED)
async def send_invitations(
    data: SendInvitationsRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_admin)
):
    """
    Encolar el envío de invitaciones a todos los invitados del evento

    Requiere: admin role
    Compatible con: SendInvitationsScreen
    """
    try:
        channel = InvitationService.validate_request(data.message, data.method)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    event = await InvitationService.get_event(db, data.eventId)
    if event is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Evento no encontrado")

    total = await InvitationService.count_guests(db, event)
    if total == 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="El evento no tiene invitados")

    try:
        task = send_event_invitations_task.delay(str(event.id), data.message, channel)
    except OperationalError as e:
        logger.error(f"No se pudo encolar invitaciones del evento {event.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Cola de invitaciones no disponible, intenta nuevamente"
        )

    logger.info(f"Invitaciones encoladas: evento {event.id}, {total} invitados, tarea {task.id}")
    return SendInvitationsResponse(
        message="Invitations queued",
        eventId=str(event.id),
        queued=total,
        taskId=task.id
    )


@router.get("/status/{event_id}", response_model=InvitationStatusResponse)
async def get_invitation_status(
    event_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_admin)
):
    """Estado de invitación de cada invitado"""
    result = await InvitationService.get_status(db, event_id)
    if result is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Evento no encontrado")
    return result
