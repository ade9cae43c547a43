"""
Exportación de libros de IVA a CSV con las columnas del libro registro AEAT
"""

import csv
import io
import re
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List

from fastapi import Response

from app.modules.company.schemas import CompanyData
from app.modules.vat_book.schemas import BookType, FiscalEntry, VATBookResult


COMMON_HEADERS = {
    "registry_number": "N. REGISTRO",
    "invoice_date": "FECHA FACTURA",
    "invoice_number": "NUMERO FACTURA",
    "tax_id": "NIF/CIF",
    "name": "NOMBRE/RAZÓN SOCIAL",
    "tax_base": "BASE IMPONIBLE",
    "vat_rate": "TIPO IVA",
    "vat_amount": "CUOTA IVA",
    "irpf_rate": "TIPO IRPF",
    "irpf_amount": "CUOTA IRPF",
    "total_amount": "IMPORTE TOTAL",
}

AEAT_HEADERS = {
    BookType.IVA_SOPORTADO: {
        **COMMON_HEADERS,
        "deductible": "DEDUCIBLE",
        "received_date": "FECHA RECEPCIÓN",
        "concept": "CONCEPTO",
    },
    BookType.IVA_REPERCUTIDO: {
        **COMMON_HEADERS,
        "invoice_type": "TIPO FACTURA",
        "due_date": "FECHA VENCIMIENTO",
        "collection_status": "ESTADO COBRO",
    },
}


def format_csv_value(value: Any) -> str:
    """Formatear un valor para CSV"""
    if value is None:
        return ""
    elif isinstance(value, bool):
        return "S" if value else "N"
    elif isinstance(value, Decimal):
        return f"{value:.2f}"
    elif isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def _entry_row(position: int, entry: FiscalEntry, book_type: BookType) -> Dict[str, Any]:
    row = {
        "registry_number": position,
        "invoice_date": entry.entry_date,
        "invoice_number": entry.invoice_number,
        "tax_id": entry.counterparty_tax_id,
        "name": entry.counterparty_name,
        "tax_base": entry.tax_base,
        "vat_rate": entry.vat_rate,
        "vat_amount": entry.vat_amount,
        "irpf_rate": entry.irpf_rate,
        "irpf_amount": entry.irpf_amount,
        "total_amount": entry.total_amount,
    }

    if book_type == BookType.IVA_SOPORTADO:
        row.update({
            "deductible": entry.is_deductible,
            "received_date": entry.entry_date,
            "concept": entry.description or entry.category,
        })
    else:
        row.update({
            "invoice_type": entry.invoice_type,
            "due_date": entry.due_date,
            "collection_status": entry.status,
        })
    return row


def prepare_vat_book_csv(book: VATBookResult) -> List[Dict[str, Any]]:
    """Filas del libro numeradas en orden de registro"""
    return [
        _entry_row(position, entry, book.book_type)
        for position, entry in enumerate(book.entries, start=1)
    ]


def build_export_filename(book: VATBookResult, company: CompanyData, extension: str = "csv") -> str:
    """Nombre de archivo AEAT: AAAA_NIF_TIPO_NombreEmpresa"""
    company_name = re.sub(r"\s+", "_", company.name.strip())
    return f"{book.year}_{company.nif}_{book.book_code}_{company_name}.{extension}"


def create_csv_response(
    data: List[Dict[str, Any]],
    filename: str,
    headers: Dict[str, str]
) -> Response:
    """
    Crear una respuesta CSV a partir de una lista de diccionarios.

    Args:
        data: Filas del informe
        filename: Nombre del archivo descargado
        headers: Mapeo de campo -> cabecera de columna
    """
    output = io.StringIO()
    fieldnames = list(headers.keys())

    writer = csv.DictWriter(output, fieldnames=fieldnames, extrasaction="ignore")
    writer.writerow(headers)
    for row in data:
        writer.writerow({key: format_csv_value(value) for key, value in row.items()})

    csv_content = output.getvalue()
    output.close()

    return Response(
        content=csv_content,
        media_type="text/csv",
        headers={
            "Content-Disposition": f"attachment; filename={filename}",
            "Content-Type": "text/csv; charset=utf-8"
        }
    )


def export_vat_book_csv(book: VATBookResult, company: CompanyData) -> Response:
    """Respuesta CSV de un libro de IVA con cabeceras AEAT"""
    return create_csv_response(
        data=prepare_vat_book_csv(book),
        filename=build_export_filename(book, company),
        headers=AEAT_HEADERS[book.book_type]
    )
