"""
Liquidación trimestral de IVA (Modelo 303)
"""

from typing import Optional

from app.modules.vat_book.errors import MissingBookError
from app.modules.vat_book.schemas import (
    BookType, LiquidationResult, LiquidationStatus, Period, VATBookResult, ZERO
)


def _require_book(book: Optional[VATBookResult], book_type: BookType, period: Period) -> VATBookResult:
    if book is None or book.book_type != book_type:
        raise MissingBookError(book_type.value, period=period.description)
    return book


def calculate_liquidation(
    period: Period,
    supported_book: Optional[VATBookResult],
    charged_book: Optional[VATBookResult]
) -> LiquidationResult:
    """
    Calcular el resultado de la liquidación del periodo.

    importe_resultado = IVA repercutido - IVA soportado deducible

    - Positivo (o cero con actividad): A_PAGAR
    - Negativo: A_DEVOLVER
    - Ningún libro con entradas: SIN_ACTIVIDAD

    Raises:
        MissingBookError: falta alguno de los dos libros o no es del tipo esperado
    """
    supported = _require_book(supported_book, BookType.IVA_SOPORTADO, period)
    charged = _require_book(charged_book, BookType.IVA_REPERCUTIDO, period)

    iva_repercutido = charged.totals.total_cuota_iva
    iva_soportado = supported.totals.cuota_iva_deducible
    if iva_soportado is None:
        iva_soportado = supported.totals.total_cuota_iva

    importe = iva_repercutido - iva_soportado

    if supported.entry_count == 0 and charged.entry_count == 0:
        status = LiquidationStatus.SIN_ACTIVIDAD
    elif importe < ZERO:
        status = LiquidationStatus.A_DEVOLVER
    else:
        status = LiquidationStatus.A_PAGAR

    return LiquidationResult(
        period=period,
        iva_repercutido=iva_repercutido,
        iva_soportado=iva_soportado,
        importe_resultado=importe,
        resultado_liquidacion=status,
        total_retenciones=supported.totals.total_cuota_irpf + charged.totals.total_cuota_irpf
    )
