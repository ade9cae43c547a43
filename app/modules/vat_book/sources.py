"""
Filas de origen de los registros fiscales

Cada origen (facturas recibidas, facturas emitidas, gastos internos)
llega del repositorio con nombres de campo distintos. Aquí se modela
como una unión etiquetada por `source_type` y cada variante sabe
convertirse en un FiscalEntry; a partir del agregador ninguna etapa
vuelve a distinguir el origen.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Annotated, Any, Literal, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from app.modules.vat_book.calculator import calculate_vat_amount, round_currency
from app.modules.vat_book.schemas import FiscalEntry, SourceType

logger = logging.getLogger(__name__)


def _proportional_range(
    source_type: SourceType,
    row_id: int,
    is_proportional: bool,
    start: Optional[date],
    end: Optional[date]
) -> Tuple[bool, Optional[date], Optional[date]]:
    """
    Validar el rango de una entrada proporcional.

    Si falta alguna de las fechas, o el rango está invertido, la entrada
    se trata como no proporcional (importe completo) y se deja constancia
    en el log.
    """
    if not is_proportional:
        return False, start, end

    if start is None or end is None or end < start:
        logger.warning(
            f"{source_type.value} {row_id} marcada como proporcional sin rango válido "
            f"({start} - {end}); se incluye por su importe completo"
        )
        return False, start, end

    return True, start, end


def _warn_mismatch(
    source_type: SourceType,
    row_id: int,
    label: str,
    stored: Optional[Decimal],
    derived: Decimal
) -> None:
    if stored is not None and round_currency(stored) != derived:
        logger.warning(
            f"{source_type.value} {row_id}: cuota {label} guardada {round_currency(stored)} "
            f"distinta de base por tipo ({derived})"
        )


def _amounts(
    source_type: SourceType,
    row_id: int,
    tax_base: Decimal,
    vat_rate: Decimal,
    vat_amount: Optional[Decimal],
    irpf_rate: Decimal,
    irpf_amount: Optional[Decimal]
) -> dict:
    base = round_currency(tax_base)
    # La cuota de IVA siempre es base por tipo; la de IRPF guardada se respeta
    vat = calculate_vat_amount(base, vat_rate)
    _warn_mismatch(source_type, row_id, "IVA", vat_amount, vat)

    derived_irpf = calculate_vat_amount(base, irpf_rate)
    _warn_mismatch(source_type, row_id, "IRPF", irpf_amount, derived_irpf)
    irpf = round_currency(irpf_amount) if irpf_amount is not None else derived_irpf
    return {
        "tax_base": base,
        "vat_rate": round_currency(vat_rate),
        "vat_amount": vat,
        "irpf_rate": round_currency(irpf_rate) if irpf_rate else None,
        "irpf_amount": irpf,
        "total_amount": base + vat - irpf,
    }


class _SourceRow(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int

    def to_fiscal_entry(self) -> FiscalEntry:
        raise NotImplementedError


class ReceivedInvoiceRow(_SourceRow):
    """Factura recibida de proveedor (tabla invoices_received)"""
    source_type: Literal[SourceType.RECEIVED_INVOICE] = SourceType.RECEIVED_INVOICE

    invoice_number: Optional[str] = None
    invoice_date: date
    due_date: Optional[date] = None
    supplier_name: Optional[str] = None
    supplier_company: Optional[str] = None
    supplier_tax_id: Optional[str] = None

    tax_base: Decimal = Decimal("0")
    iva_percentage: Decimal = Decimal("0")
    iva_amount: Optional[Decimal] = None
    irpf_percentage: Decimal = Decimal("0")
    irpf_amount: Optional[Decimal] = None

    category: Optional[str] = None
    description: Optional[str] = None
    collection_status: Optional[str] = None
    is_refund: bool = False
    is_proportional: bool = False
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    property_id: Optional[int] = None

    def to_fiscal_entry(self) -> FiscalEntry:
        is_proportional, start, end = _proportional_range(
            self.source_type, self.id, self.is_proportional, self.start_date, self.end_date
        )
        return FiscalEntry(
            id=self.id,
            source_type=self.source_type,
            entry_date=self.invoice_date,
            due_date=self.due_date,
            invoice_number=self.invoice_number or "N/A",
            counterparty_name=self.supplier_name or self.supplier_company or "Proveedor",
            counterparty_tax_id=self.supplier_tax_id or "",
            category=self.category or "",
            description=self.description or self.category,
            status=self.collection_status or "pending",
            is_refund=self.is_refund,
            is_proportional=is_proportional,
            period_start=start,
            period_end=end,
            estate_id=self.property_id,
            **_amounts(self.source_type, self.id, self.tax_base, self.iva_percentage, self.iva_amount,
                       self.irpf_percentage, self.irpf_amount)
        )


class IssuedInvoiceRow(_SourceRow):
    """Factura emitida a cliente (tabla invoices_issued)"""
    source_type: Literal[SourceType.ISSUED_INVOICE] = SourceType.ISSUED_INVOICE

    invoice_number: Optional[str] = None
    invoice_date: date
    due_date: Optional[date] = None
    client_name: Optional[str] = None
    client_nif: Optional[str] = None

    tax_base: Decimal = Decimal("0")
    iva: Decimal = Decimal("0")
    irpf: Decimal = Decimal("0")

    collection_status: Optional[str] = None
    is_refund: bool = False
    is_proportional: bool = False
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    estate_id: Optional[int] = None

    def to_fiscal_entry(self) -> FiscalEntry:
        is_proportional, start, end = _proportional_range(
            self.source_type, self.id, self.is_proportional, self.start_date, self.end_date
        )
        # Las emitidas no guardan cuotas: se calculan sobre la base
        return FiscalEntry(
            id=self.id,
            source_type=self.source_type,
            entry_date=self.invoice_date,
            due_date=self.due_date,
            invoice_number=self.invoice_number or "",
            counterparty_name=self.client_name or "Cliente",
            counterparty_tax_id=self.client_nif or "",
            category="Servicios profesionales",
            status=self.collection_status or "pending",
            is_refund=self.is_refund,
            is_proportional=is_proportional,
            period_start=start,
            period_end=end,
            estate_id=self.estate_id,
            **_amounts(self.source_type, self.id, self.tax_base, self.iva, None, self.irpf, None)
        )


class InternalExpenseRow(_SourceRow):
    """Gasto interno de la empresa (tabla internal_expenses)"""
    source_type: Literal[SourceType.INTERNAL_EXPENSE] = SourceType.INTERNAL_EXPENSE

    expense_date: date
    receipt_number: Optional[str] = None
    supplier_name: Optional[str] = None
    supplier_nif: Optional[str] = None

    amount: Decimal = Decimal("0")
    iva_percentage: Decimal = Decimal("0")
    iva_amount: Optional[Decimal] = None

    category: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    is_deductible: bool = True
    property_id: Optional[int] = None

    def to_fiscal_entry(self) -> FiscalEntry:
        # Los gastos internos no se facturan por días ni tienen abonos
        return FiscalEntry(
            id=self.id,
            source_type=self.source_type,
            entry_date=self.expense_date,
            invoice_number=self.receipt_number or f"INT-{self.id}",
            counterparty_name=self.supplier_name or "Proveedor interno",
            counterparty_tax_id=self.supplier_nif or "",
            category=self.category or "",
            description=self.description or self.category,
            status=self.status or "pending",
            is_deductible=self.is_deductible,
            estate_id=self.property_id,
            **_amounts(self.source_type, self.id, self.amount, self.iva_percentage, self.iva_amount,
                       Decimal("0"), Decimal("0"))
        )


SourceRow = Annotated[
    Union[ReceivedInvoiceRow, IssuedInvoiceRow, InternalExpenseRow],
    Field(discriminator="source_type")
]

_source_row_adapter = TypeAdapter(SourceRow)


def parse_source_row(source_type: SourceType, raw: Mapping[str, Any]) -> SourceRow:
    """Validar una fila del repositorio como la variante de su origen"""
    return _source_row_adapter.validate_python({**raw, "source_type": source_type})


def normalize_row(source_type: SourceType, raw: Mapping[str, Any]) -> FiscalEntry:
    """Convertir una fila del repositorio en un FiscalEntry"""
    return parse_source_row(source_type, raw).to_fiscal_entry()
