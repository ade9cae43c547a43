"""
Agregador de registros fiscales

Obtiene en paralelo las filas de cada origen que compone un libro, las
normaliza a FiscalEntry y se queda con las que caen en el periodo. Si un
origen falla se cancelan los demás y no se devuelve nada parcial.
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Union

from pydantic import ValidationError

from app.modules.vat_book.allocation import DEFAULT_OWNERSHIP_KEY
from app.modules.vat_book.errors import SourceFetchError
from app.modules.vat_book.schemas import (
    BOOK_SOURCES, BookType, FiscalEntry, OwnershipShare, Period, SourceType
)
from app.modules.vat_book.sources import normalize_row

logger = logging.getLogger(__name__)

EstateKey = Union[int, str]


class FiscalRecordSource(Protocol):
    """Capacidad de lectura que implementa la capa de persistencia"""

    async def fetch_entries(self, source_type: SourceType, period: Period) -> Sequence[Mapping[str, Any]]:
        ...

    async def fetch_ownership_shares(self, estate_id: EstateKey) -> Sequence[Union[OwnershipShare, Mapping[str, Any]]]:
        ...


def _unwrap_fetch_error(group: BaseExceptionGroup) -> SourceFetchError:
    """Primer SourceFetchError de un grupo de excepciones del TaskGroup"""
    for exc in group.exceptions:
        if isinstance(exc, SourceFetchError):
            return exc
        if isinstance(exc, BaseExceptionGroup):
            return _unwrap_fetch_error(exc)
    return SourceFetchError("desconocido", cause=group)


def in_period(entry: FiscalEntry, period: Period) -> bool:
    """Fecha de la entrada dentro del periodo, o rango proporcional que lo solapa"""
    if entry.has_billing_range:
        return period.overlaps(entry.period_start, entry.period_end)
    return period.contains(entry.entry_date)


def sort_entries(entries: Iterable[FiscalEntry]) -> List[FiscalEntry]:
    return sorted(entries, key=lambda entry: (entry.entry_date, entry.source_type.value, entry.id))


class FiscalEntryAggregator:
    """Obtención concurrente y normalización de registros fiscales"""

    def __init__(self, source: FiscalRecordSource):
        self.source = source

    async def _fetch_source(self, source_type: SourceType, period: Period) -> List[FiscalEntry]:
        try:
            rows = await self.source.fetch_entries(source_type, period)
            entries = [normalize_row(source_type, row) for row in rows]
        except asyncio.CancelledError:
            raise
        except ValidationError as e:
            logger.error(f"Fila inválida en {source_type.value} para {period.description}: {e}")
            raise SourceFetchError(source_type.value, cause=e, period=period.description)
        except Exception as e:
            logger.error(f"Error obteniendo {source_type.value} para {period.description}: {e}")
            raise SourceFetchError(source_type.value, cause=e, period=period.description)

        return [entry for entry in entries if in_period(entry, period)]

    async def fetch_sources(
        self,
        source_types: Sequence[SourceType],
        period: Period
    ) -> Dict[SourceType, List[FiscalEntry]]:
        """
        Obtener varios orígenes en paralelo.

        Raises:
            SourceFetchError: el primero de los orígenes que falle; el resto
                de peticiones en curso se cancela
        """
        try:
            async with asyncio.TaskGroup() as group:
                tasks = {
                    source_type: group.create_task(self._fetch_source(source_type, period))
                    for source_type in source_types
                }
        except* SourceFetchError as eg:
            raise _unwrap_fetch_error(eg) from None

        return {source_type: task.result() for source_type, task in tasks.items()}

    async def fetch_book_entries(self, book_type: BookType, period: Period) -> List[FiscalEntry]:
        """Entradas de todos los orígenes de un libro, ordenadas por fecha"""
        by_source = await self.fetch_sources(BOOK_SOURCES[book_type], period)
        entries = [entry for source_entries in by_source.values() for entry in source_entries]
        return sort_entries(entries)

    async def _fetch_shares(self, estate_id: EstateKey) -> List[OwnershipShare]:
        try:
            raw_shares = await self.source.fetch_ownership_shares(estate_id)
            return [
                share if isinstance(share, OwnershipShare) else OwnershipShare.model_validate(share)
                for share in raw_shares
            ]
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error obteniendo reparto de propiedad del inmueble {estate_id}: {e}")
            raise SourceFetchError("OwnershipShares", cause=e, estate_id=estate_id)

    async def fetch_ownership(self, estate_ids: Iterable[EstateKey]) -> Dict[EstateKey, List[OwnershipShare]]:
        """Tablas de propiedad de varios inmuebles, consultadas en paralelo"""
        estate_ids = sorted(set(estate_ids), key=str)
        try:
            async with asyncio.TaskGroup() as group:
                tasks = {
                    estate_id: group.create_task(self._fetch_shares(estate_id))
                    for estate_id in estate_ids
                }
        except* SourceFetchError as eg:
            raise _unwrap_fetch_error(eg) from None

        return {estate_id: task.result() for estate_id, task in tasks.items()}

    async def fetch_default_shares(self) -> List[OwnershipShare]:
        shares = await self.fetch_ownership([DEFAULT_OWNERSHIP_KEY])
        return shares[DEFAULT_OWNERSHIP_KEY]

    async def attach_ownership(self, entries: Sequence[FiscalEntry]) -> List[FiscalEntry]:
        """Copias de las entradas con la tabla de propiedad de su inmueble"""
        estate_ids = {entry.estate_id for entry in entries if entry.estate_id is not None}
        if not estate_ids:
            return list(entries)

        shares = await self.fetch_ownership(estate_ids)
        return [
            entry.model_copy(update={"owner_shares": shares[entry.estate_id]})
            if entry.estate_id is not None else entry
            for entry in entries
        ]


def default_shares_from_config(raw_shares: Optional[Sequence[Mapping[str, Any]]]) -> List[OwnershipShare]:
    """Tabla de propiedad por defecto a partir de la configuración"""
    return [OwnershipShare.model_validate(share) for share in raw_shares or []]
