"""Servicio de gestión de eventos, listas de invitados y permisos de escaneo"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, or_, func, delete
from sqlalchemy.orm import selectinload
from typing import Dict, List, Optional, Tuple
from datetime import date, datetime, timezone
import logging

from shared.cache.redis_client import cache_delete
from shared.database.models import Event, Guest, ScanPermission, User
from shared.utils.qr_generator import generate_qr_token
from services.event_management.services.guest_import import GuestRow
from services.event_management.services.report_service import report_cache_key
from services.scan_validation.services.ledger import GuestLedger, parse_uuid

logger = logging.getLogger(__name__)

# Campos editables del evento (clave del formulario -> columna)
EVENT_FIELDS = {
    "name": "name",
    "date": "event_date",
    "time": "start_time",
    "endTime": "end_time",
    "location": "location",
    "description": "description",
    "category": "category",
}


def _parse_date(value) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        raise ValueError(f"Fecha inválida: '{value}' (formato esperado YYYY-MM-DD)")


def _build_guests(rows: List[GuestRow]) -> List[Guest]:
    """Invitados nuevos, cada uno con su propio token QR"""
    now = datetime.now(timezone.utc)
    return [
        Guest(
            first_name=row.first_name,
            last_name=row.last_name,
            phone=row.phone,
            email=row.email,
            type=row.type,
            consumed_scans=0,
            qr_token=generate_qr_token(),
            token_issued_at=now,
        )
        for row in rows
    ]


class EventService:
    """Servicio para gestionar eventos"""

    @staticmethod
    async def get_events(
        db: AsyncSession,
        search: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> Tuple[List[Event], int]:
        """
        Obtener eventos (más recientes primero) y el total que cumple el filtro

        Compatible con: HomeScreen / getallevents
        """
        conditions = []
        if search:
            conditions.append(
                or_(
                    Event.name.ilike(f"%{search}%"),
                    Event.location.ilike(f"%{search}%")
                )
            )

        count_stmt = select(func.count(Event.id))
        stmt = select(Event)
        if conditions:
            count_stmt = count_stmt.where(*conditions)
            stmt = stmt.where(*conditions)

        total = (await db.execute(count_stmt)).scalar() or 0

        stmt = stmt.order_by(Event.event_date.desc(), Event.created_at.desc())
        stmt = stmt.limit(limit).offset(offset)
        result = await db.execute(stmt)
        return list(result.scalars().all()), total

    @staticmethod
    async def get_event_by_id(
        db: AsyncSession,
        event_id: str,
        with_guests: bool = False
    ) -> Optional[Event]:
        event_uuid = parse_uuid(event_id)
        if event_uuid is None:
            return None
        stmt = select(Event).where(Event.id == event_uuid)
        if with_guests:
            stmt = stmt.options(selectinload(Event.guests))
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create_event(
        db: AsyncSession,
        event_data: Dict,
        guests: List[GuestRow],
        user_id: Optional[str]
    ) -> Event:
        """
        Crear evento con su lista de invitados en una sola transacción

        Requiere: admin role
        """
        name = (event_data.get("name") or "").strip()
        if not name:
            raise ValueError("El nombre del evento es obligatorio")

        event = Event(
            name=name,
            event_date=_parse_date(event_data.get("date")),
            start_time=event_data.get("time"),
            end_time=event_data.get("endTime"),
            location=event_data.get("location"),
            description=event_data.get("description"),
            category=event_data.get("category") or "general",
            active=True,
            cancelled=False,
            completed=False,
            created_by_user_id=parse_uuid(user_id),
        )
        event.guests = _build_guests(guests)

        db.add(event)
        await db.commit()
        await db.refresh(event)

        logger.info(f"Evento creado: {event.id} '{event.name}' con {len(guests)} invitados")
        return event

    @staticmethod
    async def update_event(
        db: AsyncSession,
        event_id: str,
        event_data: Dict,
        guests: Optional[List[GuestRow]] = None
    ) -> Optional[Event]:
        """
        Actualizar datos del evento

        Si se entrega una lista de invitados, reemplaza la anterior
        (los invitados anteriores y sus escaneos se eliminan).
        """
        event = await EventService.get_event_by_id(db, event_id)
        if not event:
            return None

        for key, column in EVENT_FIELDS.items():
            if key not in event_data or event_data[key] is None:
                continue
            value = event_data[key]
            if key == "date":
                value = _parse_date(value)
            elif key == "name":
                value = value.strip()
                if not value:
                    raise ValueError("El nombre del evento es obligatorio")
            setattr(event, column, value)

        if guests is not None:
            await db.execute(delete(Guest).where(Guest.event_id == event.id))
            for guest in _build_guests(guests):
                guest.event_id = event.id
                db.add(guest)
            logger.info(f"Lista de invitados del evento {event.id} reemplazada ({len(guests)} invitados)")

        await db.commit()
        await db.refresh(event)
        await cache_delete(report_cache_key(event.id))
        return event

    @staticmethod
    async def delete_event(db: AsyncSession, event_id: str) -> bool:
        """Eliminar evento; invitados, escaneos, permisos e invitaciones caen en cascada"""
        event = await EventService.get_event_by_id(db, event_id)
        if not event:
            return False

        await db.delete(event)
        await db.commit()
        await cache_delete(report_cache_key(event_id))
        logger.info(f"Evento eliminado: {event_id}")
        return True

    @staticmethod
    async def complete_event(db: AsyncSession, event_id: str) -> Optional[Event]:
        """Marcar evento como completado; deja de aceptar escaneos"""
        event = await EventService.get_event_by_id(db, event_id)
        if not event:
            return None
        if event.cancelled:
            raise ValueError("No se puede completar un evento cancelado")

        event.completed = True
        event.active = False
        await db.commit()
        await db.refresh(event)
        await cache_delete(report_cache_key(event.id))
        logger.info(f"Evento completado: {event.id}")
        return event

    @staticmethod
    async def cancel_event(db: AsyncSession, event_id: str) -> Optional[Event]:
        event = await EventService.get_event_by_id(db, event_id)
        if not event:
            return None
        if event.completed:
            raise ValueError("No se puede cancelar un evento completado")

        event.cancelled = True
        event.active = False
        await db.commit()
        await db.refresh(event)
        await cache_delete(report_cache_key(event.id))
        logger.info(f"Evento cancelado: {event.id}")
        return event

    @staticmethod
    async def get_guest(db: AsyncSession, event_id: str, guest_id: str) -> Optional[Guest]:
        return await GuestLedger(db).read_guest(event_id, guest_id)

    @staticmethod
    async def rotate_guest_token(db: AsyncSession, event_id: str, guest_id: str) -> Optional[str]:
        """Reemitir el token QR del invitado (invalida el QR anterior)"""
        return await GuestLedger(db).rotate_token(event_id, guest_id)

    # ---- Permisos de escaneo ----

    @staticmethod
    async def list_scan_permissions(db: AsyncSession, event_id: str) -> List[Tuple[ScanPermission, User]]:
        event_uuid = parse_uuid(event_id)
        if event_uuid is None:
            return []
        stmt = (
            select(ScanPermission, User)
            .join(User, User.id == ScanPermission.user_id)
            .where(ScanPermission.event_id == event_uuid)
            .order_by(ScanPermission.created_at.asc())
        )
        result = await db.execute(stmt)
        return [(permission, user) for permission, user in result.all()]

    @staticmethod
    async def grant_scan_permission(
        db: AsyncSession,
        event: Event,
        user_id: Optional[str] = None,
        email: Optional[str] = None,
        granted_by: Optional[str] = None
    ) -> Tuple[ScanPermission, User, bool]:
        """
        Habilitar a un operador para escanear en el evento (idempotente)

        Returns:
            (permiso, usuario, creado) donde creado es False si ya existía

        Raises:
            ValueError: si no se indica usuario o el usuario no existe
        """
        if user_id:
            user_uuid = parse_uuid(user_id)
            stmt = select(User).where(User.id == user_uuid) if user_uuid else None
        elif email:
            stmt = select(User).where(func.lower(User.email) == email.strip().lower())
        else:
            raise ValueError("Debe indicar tenant_id, userId o email")

        user = (await db.execute(stmt)).scalar_one_or_none() if stmt is not None else None
        if not user:
            raise ValueError("Usuario no encontrado")

        existing = (await db.execute(
            select(ScanPermission).where(
                ScanPermission.event_id == event.id,
                ScanPermission.user_id == user.id
            )
        )).scalar_one_or_none()
        if existing:
            return existing, user, False

        permission = ScanPermission(
            event_id=event.id,
            user_id=user.id,
            granted_by_user_id=parse_uuid(granted_by),
        )
        db.add(permission)
        await db.commit()
        await db.refresh(permission)
        logger.info(f"Permiso de escaneo otorgado: usuario {user.id} en evento {event.id}")
        return permission, user, True

    @staticmethod
    async def revoke_scan_permission(db: AsyncSession, event_id: str, permission_id: str) -> bool:
        event_uuid = parse_uuid(event_id)
        permission_uuid = parse_uuid(permission_id)
        if event_uuid is None or permission_uuid is None:
            return False

        permission = (await db.execute(
            select(ScanPermission).where(
                ScanPermission.id == permission_uuid,
                ScanPermission.event_id == event_uuid
            )
        )).scalar_one_or_none()
        if not permission:
            return False

        await db.delete(permission)
        await db.commit()
        logger.info(f"Permiso de escaneo revocado: {permission_id} (evento {event_id})")
        return True
