"""
Cliente del scanner: credencial del operador y ciclo de escaneo

Un código a la vez: mientras hay una validación en curso o un resultado
en pantalla, los códigos leídos por la cámara se ignoran.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional
from uuid import UUID
import logging
import threading

import httpx
from jose import jwt, JWTError

from services.scan_validation.services.errors import EventMismatch, MalformedPayload, Unauthorized
from services.scan_validation.services.payload_decoder import decode_qr_payload

logger = logging.getLogger(__name__)

VALIDATE_SCAN_PATH = "/api/events/validate-scan"
GENERIC_FAILURE_MESSAGE = "No se pudo validar el código, intenta nuevamente"


def _normalize_id(value) -> str:
    try:
        return str(UUID(str(value).strip()))
    except ValueError:
        return str(value).strip()


class CredentialStore:
    """Token del operador compartido por el proceso"""

    def __init__(self):
        self._token: Optional[str] = None
        self._lock = threading.Lock()

    def acquire(self, token: str):
        with self._lock:
            self._token = token

    def get(self) -> Optional[str]:
        """Token vigente; None si no hay o si su exp ya pasó"""
        with self._lock:
            if self._token is None:
                return None
            if self._is_expired(self._token):
                logger.info("Token del operador expirado, se requiere login")
                self._token = None
            return self._token

    def expire(self):
        with self._lock:
            self._token = None

    @staticmethod
    def _is_expired(token: str) -> bool:
        try:
            claims = jwt.get_unverified_claims(token)
        except JWTError:
            return True
        exp = claims.get("exp")
        if exp is None:
            return False
        return datetime.now(timezone.utc).timestamp() >= float(exp)


@dataclass
class ScanOutcome:
    """Resultado que muestra la pantalla del scanner"""
    success: bool
    message: str
    code: Optional[str] = None
    guest_name: Optional[str] = None
    status: Optional[str] = None
    remaining_scans: Optional[int] = None
    requires_login: bool = False

    @classmethod
    def failure(cls, message: str, code: Optional[str] = None, requires_login: bool = False) -> "ScanOutcome":
        return cls(success=False, message=message, code=code, requires_login=requires_login)


class ScanLoop:
    """
    Ciclo de escaneo de una puerta para un evento

    Args:
        base_url: URL del backend
        event_id: evento en el que está parado el scanner
        credentials: almacén del token del operador
        http_client: cliente httpx opcional (si no, se crea uno propio)
    """

    def __init__(
        self,
        base_url: str,
        event_id: str,
        credentials: CredentialStore,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0
    ):
        self.event_id = event_id
        self.credentials = credentials
        self.processing = False
        self.scanned = False
        self.requires_login = False
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def on_code_scanned(self, raw: str) -> Optional[ScanOutcome]:
        """
        Procesar un código leído por la cámara

        Returns:
            Resultado a mostrar, o None si el código se ignoró
        """
        if self.processing or self.scanned:
            return None
        self.scanned = True

        try:
            payload = decode_qr_payload(raw)
        except MalformedPayload as e:
            return ScanOutcome.failure(e.message, e.code)

        if _normalize_id(payload.event_id) != _normalize_id(self.event_id):
            error = EventMismatch()
            return ScanOutcome.failure(error.message, error.code)

        token = self.credentials.get()
        if token is None:
            self.requires_login = True
            error = Unauthorized()
            return ScanOutcome.failure(error.message, error.code, requires_login=True)

        self.processing = True
        try:
            return await self._validate(payload.guest_id, payload.event_id, payload.qr_token, token)
        finally:
            self.processing = False

    def dismiss(self):
        """Cerrar el resultado en pantalla y volver a escanear"""
        self.scanned = False

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()

    async def _validate(self, guest_id: str, event_id: str, qr_token: str, token: str) -> ScanOutcome:
        body = {
            "guestId": guest_id,
            "eventId": event_id,
            "qrToken": qr_token,
            "scannedEventId": self.event_id,
        }
        try:
            response = await self._client.post(
                VALIDATE_SCAN_PATH,
                json=body,
                headers={"Authorization": f"Bearer {token}"}
            )
        except httpx.HTTPError as e:
            logger.warning(f"Error de red validando escaneo: {type(e).__name__}: {e}")
            return ScanOutcome.failure(GENERIC_FAILURE_MESSAGE, "NETWORK_ERROR")

        if response.status_code >= 500:
            logger.warning(f"Backend respondió {response.status_code} al validar escaneo")
            return ScanOutcome.failure(GENERIC_FAILURE_MESSAGE, "SERVER_ERROR")

        data = self._json(response)

        if response.status_code == 401:
            self.credentials.expire()
            self.requires_login = True
            return ScanOutcome.failure(
                data.get("message") or Unauthorized.default_message,
                data.get("code") or Unauthorized.code,
                requires_login=True
            )

        if response.status_code != 200 or not data.get("success"):
            return ScanOutcome.failure(
                data.get("message") or GENERIC_FAILURE_MESSAGE,
                data.get("code")
            )

        return ScanOutcome(
            success=True,
            message=data.get("message") or "Check-in registrado",
            guest_name=data.get("guestName"),
            status=data.get("status"),
            remaining_scans=data.get("remainingScans"),
        )

    @staticmethod
    def _json(response: httpx.Response) -> Dict:
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}
