import io
import zipfile

import pytest
from openpyxl import Workbook

from services.event_management.services.guest_import import (
    GuestImportError,
    parse_guest_rows,
    read_guest_file,
)


def _xlsx(rows) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def test_reads_xlsx_with_separate_name_columns():
    content = _xlsx([
        ["First Name", "Last Name", "Phone Number", "Email", "Invitation Type"],
        ["Ana", "Pérez", 56911111111, "ana@test.local", "double"],
        ["Luis", "Soto", None, None, None],
    ])

    guests = read_guest_file("invitados.xlsx", content)

    assert len(guests) == 2
    assert guests[0].first_name == "Ana"
    assert guests[0].last_name == "Pérez"
    assert guests[0].phone == "56911111111"
    assert guests[0].email == "ana@test.local"
    assert guests[0].type == "double"
    assert guests[1].type == "single"
    assert guests[1].phone is None


def test_reads_csv_with_single_name_column():
    content = "name,phone,type\nMaría José Rojas,+56922222222,Single\n,,\nPedro,,\n".encode("utf-8")

    guests = read_guest_file("lista.csv", content)

    assert [(g.first_name, g.last_name) for g in guests] == [("María", "José Rojas"), ("Pedro", "")]
    assert guests[0].type == "single"


def test_csv_with_bom_and_snake_case_headers():
    content = "\ufefffirst_name,last_name\nAna,Perez\n".encode("utf-8")
    guests = read_guest_file("lista.CSV", content)
    assert guests[0].first_name == "Ana"
    assert guests[0].last_name == "Perez"


def test_invalid_type_names_the_row():
    rows = [["firstName", "type"], ["Ana", "single"], ["Luis", "vip"]]
    with pytest.raises(GuestImportError) as exc_info:
        parse_guest_rows(rows)
    assert "Fila 3" in str(exc_info.value)
    assert "vip" in str(exc_info.value)


def test_missing_name_column():
    with pytest.raises(GuestImportError):
        parse_guest_rows([["phone", "type"], ["+569", "single"]])


def test_row_without_name_is_rejected():
    with pytest.raises(GuestImportError) as exc_info:
        parse_guest_rows([["firstName", "phone"], ["", "+569"]])
    assert "Fila 2" in str(exc_info.value)


def test_empty_file():
    with pytest.raises(GuestImportError):
        parse_guest_rows([])


def test_unsupported_extension():
    with pytest.raises(GuestImportError):
        read_guest_file("invitados.pdf", b"%PDF")


def test_corrupt_xlsx():
    with pytest.raises(GuestImportError):
        read_guest_file("invitados.xlsx", b"not a zip file")


def test_zip_without_workbook_parts():
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("notas.txt", "sin hojas")

    with pytest.raises(GuestImportError):
        read_guest_file("invitados.xlsx", buffer.getvalue())
