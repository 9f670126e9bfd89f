"""Decodificador del contenido de los códigos QR de invitación"""
import json
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit

from services.scan_validation.services.errors import MalformedPayload


# Claves aceptadas por campo, en orden de preferencia
GUEST_ID_KEYS: Tuple[str, ...] = ("guestId", "guestid")
EVENT_ID_KEYS: Tuple[str, ...] = ("eventId", "eventid")
TOKEN_KEYS: Tuple[str, ...] = ("token", "qrToken")


@dataclass(frozen=True)
class ScanPayload:
    guest_id: str
    event_id: str
    qr_token: str


def _params_from_url(raw: str) -> Optional[Dict[str, str]]:
    """Parámetros de query si el texto es una URL absoluta, None si no lo es"""
    try:
        parts = urlsplit(raw)
    except ValueError:
        return None

    if not parts.scheme or not parts.netloc:
        return None

    params: Dict[str, str] = {}
    for key, value in parse_qsl(parts.query, keep_blank_values=True):
        # Primera aparición gana
        params.setdefault(key, value)
    return params


def _params_from_json(raw: str) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, ValueError):
        return None

    if not isinstance(data, dict):
        return None
    return data


def _pick(params: Mapping[str, Any], keys: Tuple[str, ...]) -> Optional[str]:
    for key in keys:
        value = params.get(key)
        if value is None or isinstance(value, (dict, list, bool)):
            continue
        value = str(value).strip()
        if value:
            return value
    return None


def decode_qr_payload(raw: str) -> ScanPayload:
    """
    Convertir el texto leído por la cámara en una solicitud de escaneo

    Acepta una URL con query params o un objeto JSON con las mismas claves.
    Las claves se aceptan en ambas variantes de mayúsculas
    (guestId/guestid, eventId/eventid, token/qrToken).

    Raises:
        MalformedPayload: si no se puede parsear o falta algún campo
    """
    if not isinstance(raw, str) or not raw.strip():
        raise MalformedPayload("Código QR vacío")

    raw = raw.strip()
    params = _params_from_url(raw)
    if params is None:
        params = _params_from_json(raw)
    if params is None:
        raise MalformedPayload("Formato de código QR inválido")

    guest_id = _pick(params, GUEST_ID_KEYS)
    event_id = _pick(params, EVENT_ID_KEYS)
    qr_token = _pick(params, TOKEN_KEYS)

    if not guest_id or not event_id or not qr_token:
        raise MalformedPayload("Faltan datos requeridos en el código QR")

    return ScanPayload(guest_id=guest_id, event_id=event_id, qr_token=qr_token)


def build_qr_payload_url(base_url: str, guest_id: str, event_id: str, token: str) -> str:
    """URL que se imprime en el QR de la invitación (inversa de decode_qr_payload)"""
    query = urlencode({"guestId": str(guest_id), "eventId": str(event_id), "token": token})
    separator = "&" if "?" in base_url else "?"
    return f"{base_url}{separator}{query}"
