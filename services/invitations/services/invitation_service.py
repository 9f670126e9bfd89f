"""Servicio de invitaciones: mensaje por invitado, token QR y registro del envío"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from typing import Dict, List, Optional
from datetime import datetime, timezone
import logging

from app.core.config import settings
from shared.database.models import Event, Guest, Invitation
from shared.utils.qr_generator import generate_qr_token
from services.scan_validation.services.ledger import parse_uuid
from services.scan_validation.services.payload_decoder import build_qr_payload_url

logger = logging.getLogger(__name__)

INVITATION_CHANNELS = ("sms", "whatsapp")


def render_message(template: str, guest: Guest, qr_url: str) -> str:
    """
    Reemplazar {name} por el nombre del invitado y adjuntar el link del QR

    Si la plantilla incluye {link}, el link va en esa posición.
    """
    text = template.replace("{name}", guest.full_name)
    if "{link}" in text:
        return text.replace("{link}", qr_url)
    return f"{text}\n{qr_url}"


class InvitationService:
    """Prepara y registra invitaciones; el transporte SMS/WhatsApp es externo"""

    @staticmethod
    def validate_request(message: Optional[str], channel: Optional[str]) -> str:
        """
        Raises:
            ValueError: mensaje vacío o canal no soportado
        """
        if not message or not message.strip():
            raise ValueError("El mensaje de la invitación es obligatorio")
        channel = (channel or "").strip().lower()
        if channel not in INVITATION_CHANNELS:
            raise ValueError(f"Método inválido. Debe ser uno de: {', '.join(INVITATION_CHANNELS)}")
        return channel

    @staticmethod
    async def get_event(db: AsyncSession, event_id) -> Optional[Event]:
        event_uuid = parse_uuid(event_id)
        if event_uuid is None:
            return None
        result = await db.execute(select(Event).where(Event.id == event_uuid))
        return result.scalar_one_or_none()

    @staticmethod
    async def count_guests(db: AsyncSession, event: Event) -> int:
        stmt = select(func.count(Guest.id)).where(Guest.event_id == event.id)
        return (await db.execute(stmt)).scalar() or 0

    @staticmethod
    async def dispatch_invitations(
        db: AsyncSession,
        event_id: str,
        message: str,
        channel: str
    ) -> Dict:
        """
        Generar una invitación por invitado del evento

        Cada invitado recibe su link QR (se emite token si no tiene uno).
        Invitados sin teléfono quedan registrados como failed.

        Returns:
            {"eventId", "queued", "failed"}
        """
        event = await InvitationService.get_event(db, event_id)
        if event is None:
            raise ValueError(f"Evento {event_id} no encontrado")

        result = await db.execute(
            select(Guest).where(Guest.event_id == event.id).order_by(Guest.created_at.asc())
        )
        guests = list(result.scalars().all())

        queued = failed = 0
        now = datetime.now(timezone.utc)
        for guest in guests:
            if not guest.qr_token:
                guest.qr_token = generate_qr_token()
                guest.token_issued_at = now

            qr_url = build_qr_payload_url(settings.QR_BASE_URL, str(guest.id), str(event.id), guest.qr_token)
            invitation = Invitation(
                event_id=event.id,
                guest_id=guest.id,
                channel=channel,
                message=render_message(message, guest, qr_url),
                qr_url=qr_url,
            )

            if guest.phone:
                invitation.status = "queued"
                guest.invitation_status = "queued"
                queued += 1
            else:
                invitation.status = "failed"
                invitation.error = "Invitado sin teléfono"
                guest.invitation_status = "failed"
                failed += 1

            db.add(invitation)

        await db.commit()
        logger.info(
            f"Invitaciones del evento {event.id} por {channel}: "
            f"{queued} encoladas, {failed} fallidas"
        )
        return {"eventId": str(event.id), "queued": queued, "failed": failed}

    @staticmethod
    async def get_status(db: AsyncSession, event_id: str) -> Optional[Dict]:
        """Estado de invitación por invitado con totales por estado"""
        event = await InvitationService.get_event(db, event_id)
        if event is None:
            return None

        last_sent = (
            select(
                Invitation.guest_id.label("guest_id"),
                func.max(Invitation.created_at).label("last_invited_at")
            )
            .where(Invitation.event_id == event.id)
            .group_by(Invitation.guest_id)
            .subquery()
        )
        stmt = (
            select(Guest, last_sent.c.last_invited_at)
            .outerjoin(last_sent, last_sent.c.guest_id == Guest.id)
            .where(Guest.event_id == event.id)
            .order_by(Guest.last_name.asc(), Guest.first_name.asc())
        )
        rows = (await db.execute(stmt)).all()

        guests: List[Dict] = []
        counts: Dict[str, int] = {}
        for guest, last_invited_at in rows:
            counts[guest.invitation_status] = counts.get(guest.invitation_status, 0) + 1
            guests.append({
                "guestId": str(guest.id),
                "name": guest.full_name,
                "phone": guest.phone,
                "status": guest.invitation_status,
                "lastInvitedAt": last_invited_at.isoformat() if last_invited_at else None,
            })

        return {
            "eventId": str(event.id),
            "eventName": event.name,
            "total": len(guests),
            "counts": counts,
            "guests": guests,
        }
