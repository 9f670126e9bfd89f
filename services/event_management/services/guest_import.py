"""Lectura de la lista de invitados subida al crear/editar un evento (Excel o CSV)"""
import csv
import io
import logging
import zipfile
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

logger = logging.getLogger(__name__)

# Alias de columnas aceptados (normalizados a minúsculas sin espacios/guiones)
COLUMN_ALIASES = {
    "first_name": {"firstname", "first", "givenname", "nombre"},
    "last_name": {"lastname", "last", "surname", "familyname", "apellido"},
    "name": {"name", "fullname", "guestname", "guest"},
    "phone": {"phone", "phonenumber", "mobile", "telephone", "tel", "telefono"},
    "email": {"email", "emailaddress", "mail", "correo"},
    "type": {"type", "invitationtype", "invitetype", "tickettype", "tipo"},
}

VALID_TYPES = ("single", "double")


class GuestImportError(ValueError):
    """Archivo de invitados inválido"""


@dataclass
class GuestRow:
    first_name: str
    last_name: str
    phone: Optional[str]
    email: Optional[str]
    type: str


def _normalize_header(value) -> str:
    text = str(value or "").strip().lower()
    for ch in (" ", "_", "-", "."):
        text = text.replace(ch, "")
    return text


def _map_headers(headers: Sequence) -> Dict[str, int]:
    mapping: Dict[str, int] = {}
    for index, header in enumerate(headers):
        normalized = _normalize_header(header)
        for field, aliases in COLUMN_ALIASES.items():
            if normalized in aliases and field not in mapping:
                mapping[field] = index
    return mapping


def _cell(row: Sequence, index: Optional[int]) -> Optional[str]:
    if index is None or index >= len(row):
        return None
    value = row[index]
    if value is None:
        return None
    # Excel guarda teléfonos como números
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def parse_guest_rows(rows: Iterable[Sequence]) -> List[GuestRow]:
    """
    Convertir filas crudas (la primera es el encabezado) en invitados

    Raises:
        GuestImportError: si faltan columnas de nombre o hay un tipo inválido
    """
    iterator = iter(rows)
    try:
        headers = next(iterator)
    except StopIteration:
        raise GuestImportError("El archivo de invitados está vacío")

    columns = _map_headers(headers)
    if "first_name" not in columns and "name" not in columns:
        raise GuestImportError("El archivo debe tener una columna 'firstName' o 'name'")

    guests: List[GuestRow] = []
    for line_number, row in enumerate(iterator, start=2):
        if not any(_cell(row, i) for i in range(len(row))):
            continue

        first_name = _cell(row, columns.get("first_name"))
        last_name = _cell(row, columns.get("last_name"))
        if not first_name:
            full_name = _cell(row, columns.get("name"))
            if full_name:
                first_name, _, rest = full_name.partition(" ")
                last_name = last_name or rest.strip() or None
        if not first_name:
            raise GuestImportError(f"Fila {line_number}: falta el nombre del invitado")

        guest_type = (_cell(row, columns.get("type")) or "single").lower()
        if guest_type not in VALID_TYPES:
            raise GuestImportError(
                f"Fila {line_number}: tipo de invitación inválido '{guest_type}' "
                f"(debe ser {' o '.join(VALID_TYPES)})"
            )

        guests.append(GuestRow(
            first_name=first_name,
            last_name=last_name or "",
            phone=_cell(row, columns.get("phone")),
            email=_cell(row, columns.get("email")),
            type=guest_type,
        ))

    return guests


def read_guest_file(filename: str, content: bytes) -> List[GuestRow]:
    """
    Leer la lista de invitados desde un .xlsx o .csv

    Args:
        filename: nombre original del archivo (define el formato)
        content: bytes del archivo subido
    """
    name = (filename or "").lower()

    if name.endswith(".csv"):
        try:
            text = content.decode("utf-8-sig")
        except UnicodeDecodeError:
            text = content.decode("latin-1")
        rows = list(csv.reader(io.StringIO(text)))
    elif name.endswith((".xlsx", ".xlsm")):
        try:
            workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
        except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
            raise GuestImportError(f"No se pudo leer el archivo Excel: {e}") from e
        try:
            sheet = workbook.active
            rows = [list(row) for row in sheet.iter_rows(values_only=True)]
        finally:
            workbook.close()
    else:
        raise GuestImportError("Formato no soportado: sube un archivo .xlsx o .csv")

    guests = parse_guest_rows(rows)
    logger.info(f"Lista de invitados '{filename}' leída: {len(guests)} invitados")
    return guests
