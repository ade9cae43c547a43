"""
Esquemas del Libro de IVA

Los atributos Python van en snake_case; la serialización JSON usa los
nombres del formato de libro de registro (camelCase y términos AEAT como
`baseImponible`, `cuotaIVA`, `desgloseIVA`) mediante alias.

Todos los importes son Decimal con 2 decimales.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel


VALID_VAT_RATES = (0, 4, 10, 21)
SIMPLIFIED_INVOICE_LIMIT = Decimal("400")
ZERO = Decimal("0.00")


class SourceType(str, Enum):
    RECEIVED_INVOICE = "ReceivedInvoice"   # Facturas recibidas de proveedores
    ISSUED_INVOICE = "IssuedInvoice"       # Facturas emitidas a clientes
    INTERNAL_EXPENSE = "InternalExpense"   # Gastos internos de la empresa


class BookType(str, Enum):
    IVA_SOPORTADO = "IVA_SOPORTADO"      # Facturas recibidas + gastos internos
    IVA_REPERCUTIDO = "IVA_REPERCUTIDO"  # Facturas emitidas


# Código AEAT: R = Recibidas, E = Expedidas
BOOK_CODES = {
    BookType.IVA_SOPORTADO: "R",
    BookType.IVA_REPERCUTIDO: "E",
}

BOOK_SOURCES = {
    BookType.IVA_SOPORTADO: (SourceType.RECEIVED_INVOICE, SourceType.INTERNAL_EXPENSE),
    BookType.IVA_REPERCUTIDO: (SourceType.ISSUED_INVOICE,),
}


class LiquidationStatus(str, Enum):
    A_PAGAR = "A_PAGAR"
    A_DEVOLVER = "A_DEVOLVER"
    SIN_ACTIVIDAD = "SIN_ACTIVIDAD"


class OperationKey(str, Enum):
    GENERAL = "01"   # Operación general
    REFUND = "02"    # Abono / rectificativa
    EXEMPT = "03"    # Operación exenta


class CamelModel(BaseModel):
    """Base de los esquemas serializados con alias camelCase"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ===== PERIODO =====

MONTH_NAMES = [
    "enero", "febrero", "marzo", "abril", "mayo", "junio",
    "julio", "agosto", "septiembre", "octubre", "noviembre", "diciembre"
]


class Period(CamelModel):
    """Periodo de declaración con límites [start_date, end_date)"""
    model_config = ConfigDict(frozen=True)

    year: int
    quarter: Optional[int] = None
    month: Optional[int] = None
    start_date: date
    end_date: date

    @property
    def last_day(self) -> date:
        """Último día incluido en el periodo"""
        return date.fromordinal(self.end_date.toordinal() - 1)

    @computed_field(alias="description")
    @property
    def description(self) -> str:
        if self.month:
            return f"{MONTH_NAMES[self.month - 1].capitalize()} {self.year}"
        if self.quarter:
            return f"T{self.quarter} {self.year}"
        return f"Año {self.year}"

    def contains(self, day: date) -> bool:
        return self.start_date <= day < self.end_date

    def overlaps(self, start: date, end: date) -> bool:
        """True si el rango cerrado [start, end] comparte al menos un día"""
        return start <= self.last_day and end >= self.start_date


# ===== REPARTO ENTRE PROPIETARIOS =====

class OwnershipShare(CamelModel):
    """Porcentaje de propiedad de un propietario sobre un inmueble"""
    model_config = ConfigDict(frozen=True)

    owner_id: int
    owner_name: str = ""
    percentage: Decimal = Field(..., ge=0, le=100)


# ===== ENTRADAS DEL LIBRO =====

class Apportionment(CamelModel):
    """Detalle del prorrateo por días de una entrada proporcional"""
    model_config = ConfigDict(frozen=True)

    overlap_days: int
    total_days: int
    proportion_percentage: Decimal


class FiscalEntry(CamelModel):
    """
    Registro fiscal normalizado, independiente de su origen.

    Se crea en el agregador a partir de las filas del repositorio y no
    se modifica después; las etapas posteriores producen copias.
    """
    model_config = ConfigDict(frozen=True)

    id: int
    source_type: SourceType
    entry_date: date = Field(..., alias="date")
    due_date: Optional[date] = None
    invoice_number: str = ""
    counterparty_name: str = ""
    counterparty_tax_id: str = ""

    tax_base: Decimal
    vat_rate: Decimal
    vat_amount: Decimal
    irpf_rate: Optional[Decimal] = None
    irpf_amount: Decimal = ZERO
    total_amount: Decimal

    category: str = ""
    description: Optional[str] = None
    status: Optional[str] = None
    is_deductible: bool = True
    is_refund: bool = False

    is_proportional: bool = False
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    apportionment: Optional[Apportionment] = None

    estate_id: Optional[int] = None
    owner_shares: Optional[List[OwnershipShare]] = None

    @property
    def has_billing_range(self) -> bool:
        """Proporcional con rango [period_start, period_end] completo y ordenado"""
        return (
            self.is_proportional
            and self.period_start is not None
            and self.period_end is not None
            and self.period_end >= self.period_start
        )

    @computed_field(alias="operationKey")
    @property
    def operation_key(self) -> OperationKey:
        if self.is_refund:
            return OperationKey.REFUND
        if self.vat_rate == 0:
            return OperationKey.EXEMPT
        return OperationKey.GENERAL

    @computed_field(alias="invoiceType")
    @property
    def invoice_type(self) -> str:
        if self.is_refund:
            return "F4"  # Factura rectificativa
        if self.total_amount < SIMPLIFIED_INVOICE_LIMIT:
            return "F2"  # Factura simplificada
        return "F1"      # Factura completa


# ===== TOTALES Y DESGLOSE =====

class VATBreakdownBucket(CamelModel):
    """Acumulado por tipo de IVA"""
    rate: Decimal
    base_imponible: Decimal
    cuota_iva: Decimal = Field(..., alias="cuotaIVA")
    invoice_count: int


class VATBookTotals(CamelModel):
    base_imponible_total: Decimal
    total_cuota_iva: Decimal = Field(..., alias="totalCuotaIVA")
    cuota_iva_deducible: Optional[Decimal] = Field(None, alias="cuotaIVADeducible")
    total_cuota_irpf: Decimal = Field(ZERO, alias="totalCuotaIRPF")
    total_facturas: Decimal
    desglose_iva: List[VATBreakdownBucket] = Field(default_factory=list, alias="desgloseIVA")


class VATBookSummary(CamelModel):
    total_counterparties: int
    entries_by_status: Dict[str, int]
    entries_by_vat_rate: Dict[str, int] = Field(..., alias="entriesByVATRate")
    average_amount: Decimal


class VATBookResult(CamelModel):
    """Libro de IVA soportado o repercutido de un periodo"""
    book_type: BookType
    book_code: str
    year: int
    quarter: Optional[int] = None
    month: Optional[int] = None
    period: Period
    entries: List[FiscalEntry]
    totals: VATBookTotals
    summary: VATBookSummary
    entry_count: int
    generated_at: datetime


# ===== LIQUIDACIÓN =====

class LiquidationResult(CamelModel):
    """Liquidación trimestral (Modelo 303)"""
    period: Period
    iva_repercutido: Decimal = Field(..., alias="ivaRepercutido")
    iva_soportado: Decimal = Field(..., alias="ivaSoportado")
    importe_resultado: Decimal
    resultado_liquidacion: LiquidationStatus
    total_retenciones: Decimal = ZERO


class QuarterlyLiquidationReport(CamelModel):
    year: int
    quarter: int
    period: Period
    supported_book: VATBookResult
    charged_book: VATBookResult
    liquidation: LiquidationResult
    generated_at: datetime


class VATPositionSummary(CamelModel):
    total_vat_supported: Decimal = Field(..., alias="totalVATSupported")
    total_vat_charged: Decimal = Field(..., alias="totalVATCharged")
    net_vat_position: Decimal = Field(..., alias="netVATPosition")


class CompleteVATBooksReport(CamelModel):
    period: Period
    total_entries: int
    vat_summary: VATPositionSummary = Field(..., alias="vatSummary")
    supported_book: VATBookResult
    charged_book: VATBookResult
    generated_at: datetime


# ===== REPARTO POR PROPIETARIO =====

class OwnerAllocation(CamelModel):
    owner_id: int
    owner_name: str
    ownership_percentage: Decimal
    base_supported: Decimal
    base_charged: Decimal
    vat_supported: Decimal
    vat_charged: Decimal
    net_position: Decimal
    entry_count: int


class OwnerAllocationTotals(CamelModel):
    base_supported: Decimal
    base_charged: Decimal
    vat_supported: Decimal
    vat_charged: Decimal
    net_position: Decimal


class OwnerAllocationResult(CamelModel):
    allocations: List[OwnerAllocation]
    overall_total: OwnerAllocationTotals


class VATBookByOwnerReport(CamelModel):
    book_type: str = "IVA_CONSOLIDADO_POR_PROPIETARIO"
    year: int
    quarter: Optional[int] = None
    month: Optional[int] = None
    period: Period
    summary_by_owner: List[OwnerAllocation]
    overall_total: OwnerAllocationTotals
    generated_at: datetime


# ===== ESTADÍSTICAS =====

class QuarterSummary(CamelModel):
    quarter: int
    period: Period
    invoices_received: int
    invoices_issued: int
    vat_supported: Decimal = Field(..., alias="vatSupported")
    vat_charged: Decimal = Field(..., alias="vatCharged")
    importe_resultado: Decimal
    resultado_liquidacion: LiquidationStatus


class AnnualSummary(CamelModel):
    total_vat_supported: Decimal = Field(..., alias="totalVATSupported")
    total_vat_charged: Decimal = Field(..., alias="totalVATCharged")
    net_vat_position: Decimal = Field(..., alias="netVATPosition")
    total_invoices_received: int
    total_invoices_issued: int


class AnnualVATStats(CamelModel):
    year: int
    summary: AnnualSummary
    quarterly_breakdown: List[QuarterSummary]
    supported_vat_breakdown: List[VATBreakdownBucket] = Field(..., alias="supportedVATBreakdown")
    charged_vat_breakdown: List[VATBreakdownBucket] = Field(..., alias="chargedVATBreakdown")
    generated_at: datetime


class QuarterlyComparison(CamelModel):
    year: int
    quarterly_comparison: List[QuarterSummary]
    generated_at: datetime


# ===== FACTURACIÓN PROPORCIONAL =====

class BillCalculation(BaseModel):
    """Detalle del cálculo de una factura normal o proporcional"""
    calculation_type: str  # 'normal' | 'proportional'
    original_base: Decimal
    final_base: Decimal
    days_billed: int = 0
    days_in_month: int = 0
    proportion_percentage: Decimal = Decimal("100.00")
    iva_amount: Decimal
    irpf_amount: Decimal
    total: Decimal


# ===== CONFIGURACIÓN =====

class QuarterOption(CamelModel):
    value: int
    label: str
    months: List[int]


class BookTypeOption(CamelModel):
    value: BookType
    code: str
    label: str


class VATRateOption(CamelModel):
    value: int
    label: str


class OperationKeyOption(CamelModel):
    value: OperationKey
    label: str


class VATBookConfig(CamelModel):
    """Opciones disponibles para generar libros de IVA"""
    quarters: List[QuarterOption]
    book_types: List[BookTypeOption]
    vat_rates: List[VATRateOption] = Field(..., alias="vatRates")
    operation_keys: List[OperationKeyOption]
