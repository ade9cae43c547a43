"""
Resolución de periodos de declaración (año / trimestre / mes)
"""

import calendar
from datetime import date
from typing import Optional

from app.modules.vat_book.errors import InvalidPeriodError
from app.modules.vat_book.schemas import Period


QUARTER_MONTHS = {
    1: (1, 2, 3),
    2: (4, 5, 6),
    3: (7, 8, 9),
    4: (10, 11, 12),
}


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _first_day_after(year: int, month: int) -> date:
    if month == 12:
        return date(year + 1, 1, 1)
    return date(year, month + 1, 1)


def resolve_period(year: int, quarter: Optional[int] = None, month: Optional[int] = None) -> Period:
    """
    Convierte (año, trimestre, mes) en un periodo con fechas concretas.

    Args:
        year: Año fiscal de 4 dígitos
        quarter: Trimestre 1-4 o None
        month: Mes 1-12 o None

    Returns:
        Period con límites [start_date, end_date)

    Raises:
        InvalidPeriodError: año, trimestre o mes fuera de rango, o trimestre
            y mes indicados a la vez
    """
    if not _is_int(year) or not 1000 <= year <= 9999:
        raise InvalidPeriodError("El año debe ser un entero positivo de 4 dígitos", year=year, quarter=quarter, month=month)

    if quarter is not None and month is not None:
        raise InvalidPeriodError("Trimestre y mes son excluyentes: indique solo uno", year=year, quarter=quarter, month=month)

    if quarter is not None:
        if not _is_int(quarter) or not 1 <= quarter <= 4:
            raise InvalidPeriodError("Trimestre debe estar entre 1 y 4", year=year, quarter=quarter)
        first_month = QUARTER_MONTHS[quarter][0]
        last_month = QUARTER_MONTHS[quarter][-1]
        return Period(
            year=year,
            quarter=quarter,
            start_date=date(year, first_month, 1),
            end_date=_first_day_after(year, last_month)
        )

    if month is not None:
        if not _is_int(month) or not 1 <= month <= 12:
            raise InvalidPeriodError("Mes debe estar entre 1 y 12", year=year, month=month)
        return Period(
            year=year,
            month=month,
            start_date=date(year, month, 1),
            end_date=_first_day_after(year, month)
        )

    return Period(year=year, start_date=date(year, 1, 1), end_date=date(year + 1, 1, 1))


def quarter_of(day: date) -> int:
    """Trimestre natural al que pertenece una fecha"""
    return (day.month - 1) // 3 + 1


def days_in_month(day: date) -> int:
    """Número de días del mes de la fecha indicada"""
    return calendar.monthrange(day.year, day.month)[1]
