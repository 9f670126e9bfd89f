"""Taxonomía de errores del validador de escaneos"""
from typing import Dict


class ScanValidationError(Exception):
    """Base de todos los rechazos del validador"""

    code = "SCAN_VALIDATION_ERROR"
    status_code = 400
    default_message = "No se pudo validar el código QR"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_response(self) -> Dict:
        return {"success": False, "message": self.message, "code": self.code}


class MalformedPayload(ScanValidationError):
    code = "MALFORMED_PAYLOAD"
    status_code = 400
    default_message = "Formato de código QR inválido"


class Unauthorized(ScanValidationError):
    code = "UNAUTHORIZED"
    status_code = 401
    default_message = "Credenciales del operador ausentes o inválidas"


class ScanNotPermitted(ScanValidationError):
    code = "SCAN_NOT_PERMITTED"
    status_code = 403
    default_message = "El operador no tiene permiso de escaneo para este evento"


class EventMismatch(ScanValidationError):
    code = "EVENT_MISMATCH"
    status_code = 409
    default_message = "Este código QR no es válido para el evento actual"


class EventNotFound(ScanValidationError):
    code = "EVENT_NOT_FOUND"
    status_code = 404
    default_message = "Evento no encontrado"


class EventNotActive(ScanValidationError):
    code = "EVENT_NOT_ACTIVE"
    status_code = 409
    default_message = "El evento no está activo (cancelado o finalizado)"


class GuestNotFound(ScanValidationError):
    code = "GUEST_NOT_FOUND"
    status_code = 404
    default_message = "Invitado no encontrado para este evento"


class InvalidToken(ScanValidationError):
    code = "INVALID_TOKEN"
    status_code = 403
    default_message = "Token QR inválido o expirado"


class AlreadyCheckedIn(ScanValidationError):
    code = "ALREADY_CHECKED_IN"
    status_code = 409
    default_message = "El invitado ya realizó check-in"


class NoRemainingScans(AlreadyCheckedIn):
    """Variante para invitaciones dobles ya consumidas por completo"""
    code = "NO_REMAINING_SCANS"
    default_message = "La invitación no tiene escaneos disponibles"


class ConcurrencyConflict(ScanValidationError):
    """Compare-and-swap perdido en el ledger; interno, nunca llega al cliente"""
    code = "CONCURRENCY_CONFLICT"
    status_code = 409
    default_message = "Conflicto de concurrencia al consumir el escaneo"
