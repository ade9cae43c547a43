"""
Facturación proporcional por días

Una entrada proporcional cubre el rango [period_start, period_end] y su
importe corresponde al mes completo de period_start. Al consultar un
periodo solo se imputa la parte de días que cae dentro de él.

Los importes se calculan por redondeo acumulado sobre el desplazamiento
en días desde period_start: la parte imputada a [lo, hi) es
R(importe * hi / T) - R(importe * lo / T). Así la suma de los céntimos
imputados a periodos contiguos coincide siempre con la de su unión.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from app.modules.vat_book.calculator import calculate_vat_amount, round_currency
from app.modules.vat_book.period import days_in_month
from app.modules.vat_book.schemas import (
    MONTH_NAMES, Apportionment, BillCalculation, FiscalEntry, Period
)

logger = logging.getLogger(__name__)


def _cumulative_share(amount: Decimal, lo: int, hi: int, total_days: int) -> Decimal:
    upper = round_currency(amount * min(hi, total_days) / total_days)
    lower = round_currency(amount * min(lo, total_days) / total_days)
    return upper - lower


def _overlap_offsets(entry: FiscalEntry, period: Period) -> Tuple[int, int]:
    """Desplazamientos [lo, hi) en días, desde period_start, del solape con el periodo"""
    overlap_start = max(entry.period_start, period.start_date)
    overlap_end = min(entry.period_end, period.last_day)
    overlap_days = max(0, (overlap_end - overlap_start).days + 1)
    lo = (overlap_start - entry.period_start).days
    return lo, lo + overlap_days


def apportion_entry(entry: FiscalEntry, period: Period) -> Optional[FiscalEntry]:
    """
    Imputar una entrada al periodo.

    Returns:
        La propia entrada si no es proporcional, una copia con importes
        prorrateados si lo es, o None si no le corresponde ningún día.
    """
    if not entry.is_proportional:
        return entry

    if not entry.has_billing_range:
        logger.warning(
            f"{entry.source_type.value} {entry.id} marcada como proporcional sin rango válido "
            f"({entry.period_start} - {entry.period_end}); se incluye por su importe completo"
        )
        return entry

    total_days = days_in_month(entry.period_start)
    lo, hi = _overlap_offsets(entry, period)

    # Días que caen más allá del mes de period_start no aportan importe
    effective_days = min(hi, total_days) - min(lo, total_days)
    if effective_days <= 0:
        return None

    if effective_days == total_days:
        tax_base, vat_amount, irpf_amount = entry.tax_base, entry.vat_amount, entry.irpf_amount
    else:
        tax_base = _cumulative_share(entry.tax_base, lo, hi, total_days)
        vat_amount = _cumulative_share(entry.vat_amount, lo, hi, total_days)
        irpf_amount = _cumulative_share(entry.irpf_amount, lo, hi, total_days)

    return entry.model_copy(update={
        "tax_base": tax_base,
        "vat_amount": vat_amount,
        "irpf_amount": irpf_amount,
        "total_amount": tax_base + vat_amount - irpf_amount,
        "apportionment": Apportionment(
            overlap_days=effective_days,
            total_days=total_days,
            proportion_percentage=round_currency(Decimal(effective_days) * 100 / total_days)
        )
    })


def apportion_entries(entries: Iterable[FiscalEntry], period: Period) -> List[FiscalEntry]:
    """Prorratear una lista de entradas descartando las que quedan a cero días"""
    result = []
    for entry in entries:
        apportioned = apportion_entry(entry, period)
        if apportioned is not None:
            result.append(apportioned)
    return result


def calculate_bill_total(
    tax_base,
    iva,
    irpf,
    is_proportional: bool = False,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None
) -> BillCalculation:
    """
    Calcular el total de una factura normal o proporcional.

    Sin fechas, o si no es proporcional, se factura el mes completo.
    Los días facturados son inclusivos y la proporción se mide sobre los
    días del mes de start_date.
    """
    base = round_currency(tax_base or 0)
    iva_rate = Decimal(str(iva or 0))
    irpf_rate = Decimal(str(irpf or 0))

    if not is_proportional or not start_date or not end_date:
        iva_amount = calculate_vat_amount(base, iva_rate)
        irpf_amount = calculate_vat_amount(base, irpf_rate)
        return BillCalculation(
            calculation_type="normal",
            original_base=base,
            final_base=base,
            iva_amount=iva_amount,
            irpf_amount=irpf_amount,
            total=base + iva_amount - irpf_amount
        )

    days_billed = (end_date - start_date).days + 1
    month_days = days_in_month(start_date)
    final_base = round_currency(base * days_billed / month_days)
    iva_amount = calculate_vat_amount(final_base, iva_rate)
    irpf_amount = calculate_vat_amount(final_base, irpf_rate)

    return BillCalculation(
        calculation_type="proportional",
        original_base=base,
        final_base=final_base,
        days_billed=days_billed,
        days_in_month=month_days,
        proportion_percentage=round_currency(Decimal(days_billed) * 100 / month_days),
        iva_amount=iva_amount,
        irpf_amount=irpf_amount,
        total=final_base + iva_amount - irpf_amount
    )


def validate_proportional_fields(
    is_proportional: bool,
    start_date: Optional[date],
    end_date: Optional[date]
) -> Tuple[bool, str]:
    """
    Validar los campos de facturación proporcional

    Returns:
        (es_valido, mensaje)
    """
    if not is_proportional:
        return True, ""

    if not start_date or not end_date:
        return False, "Las facturas proporcionales requieren fecha de inicio y fin"

    if start_date >= end_date:
        return False, "La fecha de inicio debe ser anterior a la fecha de fin"

    return True, ""


def describe_billed_period(start_date: Optional[date], end_date: Optional[date]) -> str:
    """Descripción legible del periodo facturado, ej. 'Del 17 al 31 de julio de 2024'"""
    if not start_date or not end_date:
        return "Mes completo"

    month_name = MONTH_NAMES[start_date.month - 1]
    return f"Del {start_date.day} al {end_date.day} de {month_name} de {start_date.year}"
