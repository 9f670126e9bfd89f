"""Servicio de validación de escaneos QR (check-in de invitados)"""
from sqlalchemy.ext.asyncio import AsyncSession
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple
from uuid import UUID
import logging

from app.core.config import settings
from shared.cache.redis_client import cache_delete
from shared.database.models import (
    Guest,
    SCANS_PER_TYPE,
    STATE_FULLY_CONSUMED,
    STATE_PARTIALLY_CONSUMED,
    STATE_NOT_STARTED,
)
from shared.utils.qr_generator import verify_qr_token
from shared.utils.retry import retry_with_backoff
from services.event_management.services.report_service import report_cache_key
from services.scan_validation.services.errors import (
    AlreadyCheckedIn,
    ConcurrencyConflict,
    EventMismatch,
    EventNotActive,
    EventNotFound,
    GuestNotFound,
    InvalidToken,
    NoRemainingScans,
    ScanNotPermitted,
    ScanValidationError,
    Unauthorized,
)
from services.scan_validation.services.ledger import GuestLedger, parse_uuid

logger = logging.getLogger(__name__)


@dataclass
class ScanResult:
    guest_id: str
    event_id: str
    guest_name: str
    ticket_type: str
    state: str
    consumed_scans: int
    remaining_scans: int
    status: str
    scanned_at: datetime

    def to_dict(self) -> Dict:
        return asdict(self)


def _same_event(event_id: str, scanned_event_id: str) -> bool:
    """Comparar IDs de evento tolerando formato (UUID con o sin guiones, mayúsculas)"""
    left, right = parse_uuid(event_id), parse_uuid(scanned_event_id)
    if left is not None and right is not None:
        return left == right
    return str(event_id).strip() == str(scanned_event_id).strip()


def _state_for(consumed: int, allowed: int) -> str:
    if consumed <= 0:
        return STATE_NOT_STARTED
    if consumed >= allowed:
        return STATE_FULLY_CONSUMED
    return STATE_PARTIALLY_CONSUMED


def _status_for(consumed: int, allowed: int) -> str:
    remaining = allowed - consumed
    if consumed == 0:
        return "Pending"
    if remaining == 0:
        return "Completed"
    return f"{remaining} remaining"


def _exhausted(ticket_type: str) -> AlreadyCheckedIn:
    """Rechazo para una invitación sin escaneos disponibles"""
    if ticket_type == "double":
        return NoRemainingScans()
    return AlreadyCheckedIn()


class ScanValidator:
    """
    Decisión autoritativa de aceptar/rechazar un escaneo.

    Estados por (guest, event): NotStarted -> PartiallyConsumed (solo dobles)
    -> FullyConsumed (terminal). Un escaneo sobre FullyConsumed se rechaza
    sin tocar el ledger.
    """

    def __init__(self, db: AsyncSession, max_attempts: Optional[int] = None):
        self.ledger = GuestLedger(db)
        self.max_attempts = max(1, max_attempts or settings.SCAN_MAX_ATTEMPTS)

    async def validate(
        self,
        guest_id: str,
        event_id: str,
        qr_token: str,
        operator: Optional[Dict],
        scanned_event_id: str
    ) -> ScanResult:
        """
        Validar un escaneo y, si corresponde, consumir un escaneo del invitado

        Args:
            guest_id: ID del invitado leído del QR
            event_id: ID del evento leído del QR (autoritativo para lookups)
            qr_token: token leído del QR
            operator: usuario autenticado ({user_id, role}) o None
            scanned_event_id: evento en el que está parado el scanner

        Raises:
            ScanValidationError: cualquier rechazo de la taxonomía
        """
        try:
            guest, operator_id = await self._check_request(
                guest_id, event_id, qr_token, operator, scanned_event_id
            )
            ticket_type = guest.type

            try:
                result = await retry_with_backoff(
                    lambda: self._consume(guest_id, event_id, qr_token, operator_id),
                    max_retries=self.max_attempts - 1,
                    initial_delay=0.01,
                    max_delay=0.1,
                    exceptions=(ConcurrencyConflict,)
                )
            except ConcurrencyConflict as e:
                # Reintentos agotados: otra puerta se llevó el último cupo
                logger.warning(
                    f"Compare-and-swap agotado para invitado {guest_id} "
                    f"tras {self.max_attempts} intentos"
                )
                raise _exhausted(ticket_type) from e

        except ScanValidationError as e:
            logger.info(
                f"Escaneo rechazado [{e.code}] guest={guest_id} event={event_id} "
                f"scanner_event={scanned_event_id} operator={(operator or {}).get('user_id')}"
            )
            raise

        logger.info(
            f"Escaneo aceptado guest={result.guest_id} event={result.event_id} "
            f"state={result.state} remaining={result.remaining_scans} "
            f"operator={operator_id}"
        )
        await cache_delete(report_cache_key(result.event_id))
        return result

    async def _check_request(
        self,
        guest_id: str,
        event_id: str,
        qr_token: str,
        operator: Optional[Dict],
        scanned_event_id: str
    ) -> Tuple[Guest, UUID]:
        """Pasos 1-5: autenticación, evento, permiso, invitado y token"""
        if not operator or not operator.get("user_id"):
            raise Unauthorized()

        # El token puede sobrevivir al operador: se exige la cuenta vigente
        user = await self.ledger.read_operator(operator["user_id"])
        if user is None or not user.is_active:
            raise Unauthorized()

        if not scanned_event_id or not _same_event(event_id, scanned_event_id):
            raise EventMismatch()

        event = await self.ledger.read_event(scanned_event_id)
        if event is None:
            raise EventNotFound()

        if user.role != "admin":
            if not await self.ledger.has_scan_permission(event.id, user.id):
                raise ScanNotPermitted()

        if not event.accepts_scans:
            raise EventNotActive()

        guest = await self.ledger.read_guest(event.id, guest_id)
        if guest is None:
            raise GuestNotFound()

        if not verify_qr_token(qr_token, guest.qr_token):
            raise InvalidToken()

        return guest, user.id

    async def _consume(self, guest_id: str, event_id: str, qr_token: str, operator_id) -> ScanResult:
        """Pasos 6-7: lectura fresca, compare-and-swap y ScanRecord en una transacción"""
        guest = await self.ledger.read_guest(event_id, guest_id)
        if guest is None:
            raise GuestNotFound()

        # El token pudo rotarse entre la verificación y este intento
        if not verify_qr_token(qr_token, guest.qr_token):
            raise InvalidToken()

        ticket_type = guest.type
        allowed = SCANS_PER_TYPE[ticket_type]
        expected = guest.consumed_scans
        guest_name = guest.full_name
        guest_uuid: UUID = guest.id
        event_uuid: UUID = guest.event_id

        if expected >= allowed:
            raise _exhausted(ticket_type)

        consumed = await self.ledger.try_consume_scan(event_uuid, guest_uuid, expected)
        if not consumed:
            await self.ledger.rollback()
            raise ConcurrencyConflict()

        record = await self.ledger.append_scan_record(guest, operator_id)
        scanned_at = record.scanned_at or datetime.now(timezone.utc)
        await self.ledger.commit()

        new_consumed = expected + 1
        return ScanResult(
            guest_id=str(guest_uuid),
            event_id=str(event_uuid),
            guest_name=guest_name,
            ticket_type=ticket_type,
            state=_state_for(new_consumed, allowed),
            consumed_scans=new_consumed,
            remaining_scans=allowed - new_consumed,
            status=_status_for(new_consumed, allowed),
            scanned_at=scanned_at
        )
