"""
Errores del motor de Libro de IVA

Todos los errores llevan un `kind` estable y un `context` con los datos
que permiten al llamante distinguir entre:
- petición incorrecta (periodo inválido)
- problema de datos en origen (fallo de un repositorio)
- problema de integridad (libro ausente, reparto incompleto)
"""

from typing import Any, Dict, Optional


class VATBookError(Exception):
    """Error base del motor de Libro de IVA"""

    kind = "VAT_BOOK_ERROR"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "context": {k: str(v) for k, v in self.context.items()},
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, context={self.context!r})"


class InvalidPeriodError(VATBookError, ValueError):
    """Combinación año/trimestre/mes inválida (error de entrada del usuario)"""

    kind = "INVALID_PERIOD"

    def __init__(
        self,
        message: str,
        year: Any = None,
        quarter: Any = None,
        month: Any = None
    ):
        super().__init__(message, year=year, quarter=quarter, month=month)


class SourceFetchError(VATBookError):
    """Un colaborador (repositorio) falló al obtener registros fiscales"""

    kind = "SOURCE_FETCH_FAILED"

    def __init__(
        self,
        source: str,
        cause: Optional[BaseException] = None,
        period: Any = None,
        estate_id: Any = None
    ):
        detail = f": {cause}" if cause is not None else ""
        super().__init__(
            f"Error obteniendo datos de {source}{detail}",
            source=source,
            period=period,
            estate_id=estate_id
        )
        self.source = source
        self.cause = cause


class MissingBookError(VATBookError):
    """Se pidió una liquidación sin los dos libros que la componen"""

    kind = "MISSING_BOOK"

    def __init__(self, book_type: str, period: Any = None):
        super().__init__(
            f"Falta el libro {book_type} para calcular la liquidación",
            book_type=book_type,
            period=period
        )
        self.book_type = book_type


class IncompleteOwnershipError(VATBookError):
    """Un inmueble no tiene tabla de reparto (porcentajes que suman 0%)"""

    kind = "INCOMPLETE_OWNERSHIP"

    def __init__(self, estate_id: Any, entry_id: Any = None):
        super().__init__(
            f"El inmueble {estate_id} no tiene propietarios con porcentaje asignado",
            estate_id=estate_id,
            entry_id=entry_id
        )
        self.estate_id = estate_id
