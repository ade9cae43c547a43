"""
Cálculo de desglose por tipo de IVA y totales del libro

Toda la acumulación se hace con Decimal redondeado a céntimos, de modo
que la suma de los desgloses coincide exactamente con los totales.
"""

from collections import Counter
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional

from app.modules.vat_book.schemas import (
    BOOK_CODES, BookType, FiscalEntry, Period,
    VATBookResult, VATBookSummary, VATBookTotals, VATBreakdownBucket, ZERO
)


CENT = Decimal("0.01")


def round_currency(amount) -> Decimal:
    """Redondear a 2 decimales usando ROUND_HALF_UP (redondeo comercial)"""
    if amount is None:
        return ZERO
    if not isinstance(amount, Decimal):
        amount = Decimal(str(amount))
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_vat_amount(base_amount: Decimal, vat_rate: Decimal) -> Decimal:
    """
    Calcular la cuota de un impuesto expresado en porcentaje

    Args:
        base_amount: Base imponible
        vat_rate: Tipo en porcentaje (ej. 21 para 21%)

    Returns:
        Cuota redondeada a céntimos
    """
    return round_currency(Decimal(base_amount) * Decimal(vat_rate) / Decimal(100))


class VATBookCalculator:
    """Agrupación por tipo de IVA y totales de un libro"""

    @staticmethod
    def calculate_breakdown(entries: Iterable[FiscalEntry]) -> List[VATBreakdownBucket]:
        """
        Agrupar entradas por tipo de IVA

        Returns:
            Un bucket por tipo distinto, ordenados de menor a mayor tipo
        """
        grouped: Dict[Decimal, Dict] = {}

        for entry in entries:
            rate = entry.vat_rate
            if rate not in grouped:
                grouped[rate] = {
                    "rate": rate,
                    "base_imponible": ZERO,
                    "cuota_iva": ZERO,
                    "invoice_count": 0
                }

            grouped[rate]["base_imponible"] += entry.tax_base
            grouped[rate]["cuota_iva"] += entry.vat_amount
            grouped[rate]["invoice_count"] += 1

        return [
            VATBreakdownBucket(**grouped[rate])
            for rate in sorted(grouped)
        ]

    @staticmethod
    def calculate_totals(book_type: BookType, entries: List[FiscalEntry]) -> VATBookTotals:
        """
        Calcular totales del libro

        La base total se obtiene sumando los buckets del desglose para que
        ambos coincidan al céntimo.
        """
        breakdown = VATBookCalculator.calculate_breakdown(entries)

        base_total = sum((bucket.base_imponible for bucket in breakdown), ZERO)
        vat_total = sum((bucket.cuota_iva for bucket in breakdown), ZERO)
        irpf_total = sum((entry.irpf_amount for entry in entries), ZERO)
        invoices_total = sum((entry.total_amount for entry in entries), ZERO)

        deductible: Optional[Decimal] = None
        if book_type == BookType.IVA_SOPORTADO:
            deductible = sum(
                (entry.vat_amount for entry in entries if entry.is_deductible),
                ZERO
            )

        return VATBookTotals(
            base_imponible_total=base_total,
            total_cuota_iva=vat_total,
            cuota_iva_deducible=deductible,
            total_cuota_irpf=irpf_total,
            total_facturas=invoices_total,
            desglose_iva=breakdown
        )

    @staticmethod
    def calculate_summary(entries: List[FiscalEntry]) -> VATBookSummary:
        """Resumen de contrapartes, estados y tipos de IVA"""
        counterparties = {
            entry.counterparty_tax_id or entry.counterparty_name
            for entry in entries
        }
        by_status = Counter(entry.status or "Sin especificar" for entry in entries)
        by_rate = Counter(str(entry.vat_rate) for entry in entries)

        average = ZERO
        if entries:
            total = sum((entry.total_amount for entry in entries), ZERO)
            average = round_currency(total / len(entries))

        return VATBookSummary(
            total_counterparties=len(counterparties),
            entries_by_status=dict(sorted(by_status.items())),
            entries_by_vat_rate=dict(sorted(by_rate.items(), key=lambda item: Decimal(item[0]))),
            average_amount=average
        )

    @staticmethod
    def build_book(
        book_type: BookType,
        period: Period,
        entries: List[FiscalEntry],
        generated_at: datetime
    ) -> VATBookResult:
        """
        Construir el libro de IVA a partir de entradas ya filtradas y
        prorrateadas para el periodo.
        """
        return VATBookResult(
            book_type=book_type,
            book_code=BOOK_CODES[book_type],
            year=period.year,
            quarter=period.quarter,
            month=period.month,
            period=period,
            entries=entries,
            totals=VATBookCalculator.calculate_totals(book_type, entries),
            summary=VATBookCalculator.calculate_summary(entries),
            entry_count=len(entries),
            generated_at=generated_at
        )
