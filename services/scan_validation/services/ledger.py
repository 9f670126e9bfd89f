"""Ledger de invitados: lectura, consumo atómico de escaneos e historial"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, case, func
from typing import List, Optional
from uuid import UUID
from datetime import datetime, timezone
import logging

from shared.database.models import Guest, ScanRecord, ScanPermission, Event, User
from shared.utils.qr_generator import generate_qr_token

logger = logging.getLogger(__name__)


def parse_uuid(value) -> Optional[UUID]:
    """UUID desde str/UUID; None si el identificador no tiene formato válido"""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


class GuestLedger:
    """
    Único punto de escritura del estado de check-in.

    El invariante 0 <= consumed_scans <= total_allowed_scans se aplica en el
    UPDATE condicional de try_consume_scan (y como check constraint en la tabla).
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def read_event(self, event_id) -> Optional[Event]:
        event_uuid = parse_uuid(event_id)
        if event_uuid is None:
            return None
        stmt = select(Event).where(Event.id == event_uuid)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def read_guest(self, event_id, guest_id) -> Optional[Guest]:
        """Obtener invitado por ID, siempre acotado al evento"""
        event_uuid = parse_uuid(event_id)
        guest_uuid = parse_uuid(guest_id)
        if event_uuid is None or guest_uuid is None:
            return None

        stmt = select(Guest).where(
            Guest.id == guest_uuid,
            Guest.event_id == event_uuid
        ).execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def read_operator(self, user_id) -> Optional[User]:
        """Operador dueño del token; None si fue eliminado o el ID no es válido"""
        user_uuid = parse_uuid(user_id)
        if user_uuid is None:
            return None
        result = await self.db.execute(select(User).where(User.id == user_uuid))
        return result.scalar_one_or_none()

    async def has_scan_permission(self, event_id, user_id) -> bool:
        event_uuid = parse_uuid(event_id)
        user_uuid = parse_uuid(user_id)
        if event_uuid is None or user_uuid is None:
            return False
        stmt = select(ScanPermission.id).where(
            ScanPermission.event_id == event_uuid,
            ScanPermission.user_id == user_uuid
        )
        result = await self.db.execute(stmt)
        return result.first() is not None

    async def try_consume_scan(self, event_id, guest_id, expected_consumed_scans: int) -> bool:
        """
        Compare-and-swap sobre consumed_scans

        Incrementa en 1 solo si el valor actual es el esperado y quedan
        escaneos. No hace commit: el llamador confirma junto con el ScanRecord.

        Returns:
            True si se consumió un escaneo, False si la expectativa quedó obsoleta
        """
        event_uuid = parse_uuid(event_id)
        guest_uuid = parse_uuid(guest_id)
        if event_uuid is None or guest_uuid is None:
            return False

        allowed = case((Guest.type == "double", 2), else_=1)
        stmt = (
            update(Guest)
            .where(
                Guest.id == guest_uuid,
                Guest.event_id == event_uuid,
                Guest.consumed_scans == expected_consumed_scans,
                Guest.consumed_scans < allowed,
            )
            .values(
                consumed_scans=Guest.consumed_scans + 1,
                updated_at=func.now()
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def append_scan_record(self, guest: Guest, operator_id) -> ScanRecord:
        """Agregar registro de escaneo (append-only) dentro de la transacción actual"""
        record = ScanRecord(
            guest_id=guest.id,
            event_id=guest.event_id,
            scanned_by_user_id=parse_uuid(operator_id),
            scanned_at=datetime.now(timezone.utc),
            type=guest.type
        )
        self.db.add(record)
        await self.db.flush()
        return record

    async def rotate_token(self, event_id, guest_id) -> Optional[str]:
        """
        Emitir un nuevo token QR para el invitado; el anterior deja de ser válido

        Returns:
            Nuevo token, o None si el invitado no existe en el evento
        """
        guest = await self.read_guest(event_id, guest_id)
        if guest is None:
            return None

        guest.qr_token = generate_qr_token()
        guest.token_issued_at = datetime.now(timezone.utc)
        await self.db.commit()
        logger.info(f"Token QR rotado para invitado {guest.id} (evento {guest.event_id})")
        return guest.qr_token

    async def scan_history(self, event_id, guest_id) -> List[ScanRecord]:
        event_uuid = parse_uuid(event_id)
        guest_uuid = parse_uuid(guest_id)
        if event_uuid is None or guest_uuid is None:
            return []
        stmt = select(ScanRecord).where(
            ScanRecord.event_id == event_uuid,
            ScanRecord.guest_id == guest_uuid
        ).order_by(ScanRecord.scanned_at.asc())
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def commit(self):
        await self.db.commit()

    async def rollback(self):
        await self.db.rollback()
