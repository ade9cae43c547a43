"""
Servicio de Libros de IVA

Orquesta la obtención de registros, el prorrateo, los totales, la
liquidación y el reparto por propietario. Cada informe se genera de una
sola vez: cualquier error descarta el trabajo hecho.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from app.modules.vat_book.aggregator import (
    FiscalEntryAggregator, FiscalRecordSource, in_period, sort_entries
)
from app.modules.vat_book.allocation import allocate_to_owners
from app.modules.vat_book.calculator import VATBookCalculator
from app.modules.vat_book.errors import InvalidPeriodError
from app.modules.vat_book.liquidation import calculate_liquidation
from app.modules.vat_book.period import QUARTER_MONTHS, resolve_period
from app.modules.vat_book.proportional import apportion_entries
from app.modules.vat_book.schemas import (
    BOOK_CODES, BOOK_SOURCES, VALID_VAT_RATES,
    AnnualSummary, AnnualVATStats, BookType, BookTypeOption, CompleteVATBooksReport,
    FiscalEntry, OperationKey, OperationKeyOption, OwnershipShare, Period,
    QuarterOption, QuarterSummary, QuarterlyComparison, QuarterlyLiquidationReport,
    VATBookByOwnerReport, VATBookConfig, VATBookResult, VATPositionSummary,
    VATRateOption, ZERO
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
RawBooks = Dict[BookType, List[FiscalEntry]]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class VATBookService:
    """Generación de libros de IVA, liquidaciones y estadísticas"""

    def __init__(
        self,
        source: FiscalRecordSource,
        default_shares: Optional[Sequence[OwnershipShare]] = None,
        clock: Optional[Clock] = None
    ):
        self.aggregator = FiscalEntryAggregator(source)
        self.default_shares = list(default_shares) if default_shares else None
        self.clock = clock or utc_now

    # ===== CONSTRUCCIÓN INTERNA =====

    async def _fetch_raw_books(self, period: Period, book_types: Sequence[BookType]) -> RawBooks:
        """Obtener en una sola tanda todos los orígenes de los libros pedidos"""
        source_types = [source for book_type in book_types for source in BOOK_SOURCES[book_type]]
        by_source = await self.aggregator.fetch_sources(source_types, period)
        return {
            book_type: [
                entry
                for source in BOOK_SOURCES[book_type]
                for entry in by_source[source]
            ]
            for book_type in book_types
        }

    @staticmethod
    def _build_book(
        book_type: BookType,
        period: Period,
        raw_entries: Sequence[FiscalEntry],
        generated_at: datetime
    ) -> VATBookResult:
        entries = [entry for entry in raw_entries if in_period(entry, period)]
        entries = sort_entries(apportion_entries(entries, period))
        return VATBookCalculator.build_book(book_type, period, entries, generated_at)

    async def _generate_books(self, period: Period, generated_at: datetime) -> Tuple[VATBookResult, VATBookResult]:
        raw = await self._fetch_raw_books(period, (BookType.IVA_SOPORTADO, BookType.IVA_REPERCUTIDO))
        supported = self._build_book(BookType.IVA_SOPORTADO, period, raw[BookType.IVA_SOPORTADO], generated_at)
        charged = self._build_book(BookType.IVA_REPERCUTIDO, period, raw[BookType.IVA_REPERCUTIDO], generated_at)
        return supported, charged

    async def _generate_book(
        self,
        book_type: BookType,
        year: int,
        quarter: Optional[int],
        month: Optional[int]
    ) -> VATBookResult:
        period = resolve_period(year, quarter, month)
        logger.info(f"Generando libro {book_type.value} ({BOOK_CODES[book_type]}) para {period.description}")

        raw = await self._fetch_raw_books(period, (book_type,))
        book = self._build_book(book_type, period, raw[book_type], self.clock())

        logger.info(f"Libro {book_type.value} {period.description}: {book.entry_count} entradas")
        return book

    async def _resolve_default_shares(self, entries: Sequence[FiscalEntry]) -> Optional[List[OwnershipShare]]:
        """Tabla por defecto: configuración explícita o, si no hay, la del repositorio"""
        if self.default_shares:
            return self.default_shares
        if all(entry.estate_id is not None for entry in entries):
            return None
        return await self.aggregator.fetch_default_shares()

    # ===== LIBROS =====

    async def generate_supported_book(
        self,
        year: int,
        quarter: Optional[int] = None,
        month: Optional[int] = None
    ) -> VATBookResult:
        """Libro de IVA soportado: facturas recibidas y gastos internos"""
        return await self._generate_book(BookType.IVA_SOPORTADO, year, quarter, month)

    async def generate_charged_book(
        self,
        year: int,
        quarter: Optional[int] = None,
        month: Optional[int] = None
    ) -> VATBookResult:
        """Libro de IVA repercutido: facturas emitidas"""
        return await self._generate_book(BookType.IVA_REPERCUTIDO, year, quarter, month)

    async def generate_complete_books(
        self,
        year: int,
        quarter: Optional[int] = None,
        month: Optional[int] = None
    ) -> CompleteVATBooksReport:
        """Ambos libros del periodo con la posición neta de IVA"""
        period = resolve_period(year, quarter, month)
        logger.info(f"Generando libros completos de IVA para {period.description}")

        generated_at = self.clock()
        supported, charged = await self._generate_books(period, generated_at)

        total_supported = supported.totals.cuota_iva_deducible
        total_charged = charged.totals.total_cuota_iva

        return CompleteVATBooksReport(
            period=period,
            total_entries=supported.entry_count + charged.entry_count,
            vat_summary=VATPositionSummary(
                total_vat_supported=total_supported,
                total_vat_charged=total_charged,
                net_vat_position=total_charged - total_supported
            ),
            supported_book=supported,
            charged_book=charged,
            generated_at=generated_at
        )

    # ===== LIQUIDACIÓN =====

    async def generate_quarterly_liquidation(self, year: int, quarter: Optional[int]) -> QuarterlyLiquidationReport:
        """
        Liquidación trimestral (Modelo 303)

        Raises:
            InvalidPeriodError: si no se indica trimestre o es inválido
        """
        if quarter is None:
            raise InvalidPeriodError("El trimestre es obligatorio para la liquidación", year=year)

        period = resolve_period(year, quarter)
        logger.info(f"Generando liquidación trimestral {period.description}")

        generated_at = self.clock()
        supported, charged = await self._generate_books(period, generated_at)
        liquidation = calculate_liquidation(period, supported, charged)

        logger.info(
            f"Liquidación {period.description}: {liquidation.resultado_liquidacion.value} "
            f"{liquidation.importe_resultado}"
        )

        return QuarterlyLiquidationReport(
            year=year,
            quarter=quarter,
            period=period,
            supported_book=supported,
            charged_book=charged,
            liquidation=liquidation,
            generated_at=generated_at
        )

    # ===== REPARTO POR PROPIETARIO =====

    async def generate_book_by_owner(
        self,
        year: int,
        quarter: Optional[int] = None,
        month: Optional[int] = None
    ) -> VATBookByOwnerReport:
        """Libro consolidado repartido entre propietarios según su porcentaje"""
        period = resolve_period(year, quarter, month)
        logger.info(f"Generando libro de IVA por propietario para {period.description}")

        generated_at = self.clock()
        supported, charged = await self._generate_books(period, generated_at)

        entries = await self.aggregator.attach_ownership(supported.entries + charged.entries)
        supported_entries = entries[:supported.entry_count]
        charged_entries = entries[supported.entry_count:]

        default_shares = await self._resolve_default_shares(entries)
        result = allocate_to_owners(supported_entries, charged_entries, default_shares)

        return VATBookByOwnerReport(
            year=period.year,
            quarter=period.quarter,
            month=period.month,
            period=period,
            summary_by_owner=result.allocations,
            overall_total=result.overall_total,
            generated_at=generated_at
        )

    # ===== ESTADÍSTICAS =====

    def _quarter_summaries(self, year: int, raw: RawBooks, generated_at: datetime) -> List[QuarterSummary]:
        summaries = []
        for quarter in QUARTER_MONTHS:
            period = resolve_period(year, quarter)
            supported = self._build_book(BookType.IVA_SOPORTADO, period, raw[BookType.IVA_SOPORTADO], generated_at)
            charged = self._build_book(BookType.IVA_REPERCUTIDO, period, raw[BookType.IVA_REPERCUTIDO], generated_at)
            liquidation = calculate_liquidation(period, supported, charged)

            summaries.append(QuarterSummary(
                quarter=quarter,
                period=period,
                invoices_received=supported.entry_count,
                invoices_issued=charged.entry_count,
                vat_supported=liquidation.iva_soportado,
                vat_charged=liquidation.iva_repercutido,
                importe_resultado=liquidation.importe_resultado,
                resultado_liquidacion=liquidation.resultado_liquidacion
            ))
        return summaries

    async def generate_annual_stats(self, year: int) -> AnnualVATStats:
        """
        Estadísticas anuales: libros del año completo y liquidación de cada
        trimestre. Los registros del año se obtienen una sola vez y se
        reparten después por trimestre.
        """
        period = resolve_period(year)
        logger.info(f"Generando estadísticas anuales de IVA {year}")

        generated_at = self.clock()
        raw = await self._fetch_raw_books(period, (BookType.IVA_SOPORTADO, BookType.IVA_REPERCUTIDO))
        supported = self._build_book(BookType.IVA_SOPORTADO, period, raw[BookType.IVA_SOPORTADO], generated_at)
        charged = self._build_book(BookType.IVA_REPERCUTIDO, period, raw[BookType.IVA_REPERCUTIDO], generated_at)

        quarters = self._quarter_summaries(year, raw, generated_at)

        total_supported = supported.totals.cuota_iva_deducible or ZERO
        total_charged = charged.totals.total_cuota_iva

        return AnnualVATStats(
            year=year,
            summary=AnnualSummary(
                total_vat_supported=total_supported,
                total_vat_charged=total_charged,
                net_vat_position=total_charged - total_supported,
                total_invoices_received=supported.entry_count,
                total_invoices_issued=charged.entry_count
            ),
            quarterly_breakdown=quarters,
            supported_vat_breakdown=supported.totals.desglose_iva,
            charged_vat_breakdown=charged.totals.desglose_iva,
            generated_at=generated_at
        )

    async def generate_quarterly_comparison(self, year: int) -> QuarterlyComparison:
        """Comparativa de los cuatro trimestres del año"""
        period = resolve_period(year)
        logger.info(f"Generando comparativa trimestral de IVA {year}")

        generated_at = self.clock()
        raw = await self._fetch_raw_books(period, (BookType.IVA_SOPORTADO, BookType.IVA_REPERCUTIDO))

        return QuarterlyComparison(
            year=year,
            quarterly_comparison=self._quarter_summaries(year, raw, generated_at),
            generated_at=generated_at
        )

    # ===== CONFIGURACIÓN =====

    @staticmethod
    def get_vat_book_config() -> VATBookConfig:
        """Trimestres, tipos de libro, tipos de IVA y claves de operación disponibles"""
        return VATBookConfig(
            quarters=[
                QuarterOption(value=quarter, label=f"T{quarter}", months=list(months))
                for quarter, months in QUARTER_MONTHS.items()
            ],
            book_types=[
                BookTypeOption(value=BookType.IVA_SOPORTADO, code=BOOK_CODES[BookType.IVA_SOPORTADO],
                               label="IVA Soportado (Facturas recibidas)"),
                BookTypeOption(value=BookType.IVA_REPERCUTIDO, code=BOOK_CODES[BookType.IVA_REPERCUTIDO],
                               label="IVA Repercutido (Facturas emitidas)"),
            ],
            vat_rates=[
                VATRateOption(value=rate, label=f"{rate}%")
                for rate in VALID_VAT_RATES
            ],
            operation_keys=[
                OperationKeyOption(value=OperationKey.GENERAL, label="Operación general"),
                OperationKeyOption(value=OperationKey.REFUND, label="Abono o rectificativa"),
                OperationKeyOption(value=OperationKey.EXEMPT, label="Operación exenta"),
            ]
        )
