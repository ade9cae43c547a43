"""
Tests para el módulo de Libro de IVA

Tests que cubren:
- Resolución de periodos (año / trimestre / mes)
- Normalización de filas de origen a FiscalEntry
- Prorrateo por días de la facturación proporcional
- Desglose por tipo de IVA y totales
- Liquidación trimestral (Modelo 303)
- Reparto entre propietarios con el método del resto mayor
- Obtención concurrente con cancelación ante fallos
- Endpoints HTTP y exportación CSV

Los importes se comparan siempre como Decimal exacto.
"""

import asyncio
import logging
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.modules.company.schemas import CompanyData
from app.modules.company.service import get_company_data
from app.modules.vat_book.aggregator import FiscalEntryAggregator, default_shares_from_config, in_period
from app.modules.vat_book.allocation import allocate_to_owners, distribute_largest_remainder
from app.modules.vat_book.calculator import VATBookCalculator, calculate_vat_amount, round_currency
from app.modules.vat_book.dependencies import get_vat_book_service
from app.modules.vat_book.errors import (
    IncompleteOwnershipError, InvalidPeriodError, MissingBookError, SourceFetchError
)
from app.modules.vat_book.export import build_export_filename, prepare_vat_book_csv
from app.modules.vat_book.liquidation import calculate_liquidation
from app.modules.vat_book.period import days_in_month, quarter_of, resolve_period
from app.modules.vat_book.proportional import (
    apportion_entry, calculate_bill_total, describe_billed_period, validate_proportional_fields
)
from app.modules.vat_book.schemas import (
    BookType, FiscalEntry, LiquidationStatus, OperationKey, OwnershipShare, SourceType
)
from app.modules.vat_book.service import VATBookService
from app.modules.vat_book.sources import normalize_row


client = TestClient(app)

FIXED_NOW = datetime(2024, 4, 1, 12, 0, tzinfo=timezone.utc)


def fixed_clock():
    return FIXED_NOW


class FakeFiscalRecordSource:
    """Repositorio en memoria con fallos configurables por origen"""

    def __init__(self, rows=None, shares=None, failing=None):
        self.rows = rows or {}
        self.shares = shares or {}
        self.failing = failing or {}
        self.calls = []

    async def fetch_entries(self, source_type, period):
        self.calls.append((source_type, period.description))
        if source_type in self.failing:
            raise self.failing[source_type]
        return self.rows.get(source_type, [])

    async def fetch_ownership_shares(self, estate_id):
        self.calls.append(("shares", estate_id))
        if estate_id in self.failing:
            raise self.failing[estate_id]
        return self.shares.get(estate_id, [])


class SlowReceivedSource(FakeFiscalRecordSource):
    """Las facturas recibidas tardan; sirve para comprobar la cancelación"""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.cancelled = False

    async def fetch_entries(self, source_type, period):
        if source_type == SourceType.RECEIVED_INVOICE:
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                self.cancelled = True
                raise
        return await super().fetch_entries(source_type, period)


def make_entry(**overrides) -> FiscalEntry:
    data = {
        "id": 1,
        "source_type": SourceType.RECEIVED_INVOICE,
        "entry_date": date(2024, 1, 15),
        "tax_base": Decimal("100.00"),
        "vat_rate": Decimal("21.00"),
        "vat_amount": Decimal("21.00"),
        "irpf_amount": Decimal("0.00"),
        "total_amount": Decimal("121.00"),
    }
    data.update(overrides)
    return FiscalEntry(**data)


# ===== FIXTURES =====

@pytest.fixture
def received_row():
    """Factura recibida de 100 € al 21% sobre el inmueble 1"""
    return {
        "id": 1,
        "invoice_number": "F-2024-001",
        "invoice_date": date(2024, 1, 15),
        "supplier_name": "Reparaciones Norte SL",
        "supplier_tax_id": "B11111111",
        "tax_base": Decimal("100"),
        "iva_percentage": Decimal("21"),
        "iva_amount": Decimal("21.00"),
        "irpf_percentage": Decimal("0"),
        "collection_status": "paid",
        "property_id": 1,
    }


@pytest.fixture
def expense_row():
    """Gasto interno de 50 € al 10% sin inmueble"""
    return {
        "id": 1,
        "expense_date": date(2024, 2, 10),
        "receipt_number": "T-77",
        "supplier_name": "Papelería Centro",
        "amount": Decimal("50"),
        "iva_percentage": Decimal("10"),
        "iva_amount": None,
        "is_deductible": True,
        "status": "paid",
    }


@pytest.fixture
def issued_row():
    """Factura emitida de 1000 € al 21% sobre el inmueble 1"""
    return {
        "id": 1,
        "invoice_number": "E-2024-001",
        "invoice_date": date(2024, 3, 1),
        "client_name": "Inquilino Uno",
        "client_nif": "12345678Z",
        "tax_base": Decimal("1000"),
        "iva": Decimal("21"),
        "irpf": Decimal("0"),
        "collection_status": "pending",
        "estate_id": 1,
    }


@pytest.fixture
def fake_source(received_row, expense_row, issued_row):
    return FakeFiscalRecordSource(
        rows={
            SourceType.RECEIVED_INVOICE: [received_row],
            SourceType.INTERNAL_EXPENSE: [expense_row],
            SourceType.ISSUED_INVOICE: [issued_row],
        },
        shares={
            1: [
                {"owner_id": 1, "owner_name": "Ana García", "percentage": Decimal("60")},
                {"owner_id": 2, "owner_name": "Luis Pérez", "percentage": Decimal("40")},
            ],
            "default": [
                {"owner_id": 1, "owner_name": "Ana García", "percentage": Decimal("50")},
                {"owner_id": 3, "owner_name": "Marta Ruiz", "percentage": Decimal("50")},
            ],
        }
    )


@pytest.fixture
def service(fake_source):
    return VATBookService(fake_source, clock=fixed_clock)


@pytest.fixture
def override_service():
    """Sustituye el servicio de los endpoints por uno con repositorio en memoria"""
    def _override(source):
        app.dependency_overrides[get_vat_book_service] = lambda: VATBookService(source, clock=fixed_clock)
    yield _override
    app.dependency_overrides.clear()


# ===== TESTS DE PERIODOS =====

class TestPeriodResolution:
    """Tests para la resolución de periodos de declaración"""

    def test_quarter_period(self):
        period = resolve_period(2024, quarter=1)
        assert period.start_date == date(2024, 1, 1)
        assert period.end_date == date(2024, 4, 1)
        assert period.last_day == date(2024, 3, 31)
        assert period.description == "T1 2024"

    def test_fourth_quarter_crosses_year(self):
        period = resolve_period(2024, quarter=4)
        assert period.start_date == date(2024, 10, 1)
        assert period.end_date == date(2025, 1, 1)

    def test_month_period(self):
        period = resolve_period(2024, month=2)
        assert period.start_date == date(2024, 2, 1)
        assert period.last_day == date(2024, 2, 29)
        assert period.description == "Febrero 2024"

    def test_full_year(self):
        period = resolve_period(2024)
        assert period.start_date == date(2024, 1, 1)
        assert period.end_date == date(2025, 1, 1)
        assert period.description == "Año 2024"

    @pytest.mark.parametrize("quarter,month", [(1, 1), (4, 12), (2, 7)])
    def test_quarter_and_month_are_exclusive(self, quarter, month):
        with pytest.raises(InvalidPeriodError) as exc_info:
            resolve_period(2024, quarter=quarter, month=month)
        assert exc_info.value.kind == "INVALID_PERIOD"
        assert exc_info.value.context["quarter"] == quarter

    @pytest.mark.parametrize("year", [999, 10000, -2024, 0])
    def test_invalid_year(self, year):
        with pytest.raises(InvalidPeriodError):
            resolve_period(year)

    @pytest.mark.parametrize("quarter", [0, 5, -1])
    def test_invalid_quarter(self, quarter):
        with pytest.raises(InvalidPeriodError):
            resolve_period(2024, quarter=quarter)

    @pytest.mark.parametrize("month", [0, 13])
    def test_invalid_month(self, month):
        with pytest.raises(InvalidPeriodError):
            resolve_period(2024, month=month)

    def test_invalid_period_is_value_error(self):
        with pytest.raises(ValueError):
            resolve_period(2024, quarter=9)

    def test_helpers(self):
        assert quarter_of(date(2024, 8, 15)) == 3
        assert days_in_month(date(2024, 2, 10)) == 29
        assert days_in_month(date(2023, 2, 10)) == 28

    def test_overlaps(self):
        period = resolve_period(2024, month=7)
        assert period.overlaps(date(2024, 6, 20), date(2024, 7, 1))
        assert not period.overlaps(date(2024, 6, 1), date(2024, 6, 30))
        assert not period.overlaps(date(2024, 8, 1), date(2024, 8, 31))


# ===== TESTS DE NORMALIZACIÓN =====

class TestSourceNormalization:
    """Tests para el mapeo de filas de cada origen"""

    def test_received_invoice(self, received_row):
        entry = normalize_row(SourceType.RECEIVED_INVOICE, received_row)

        assert entry.source_type == SourceType.RECEIVED_INVOICE
        assert entry.entry_date == date(2024, 1, 15)
        assert entry.counterparty_name == "Reparaciones Norte SL"
        assert entry.tax_base == Decimal("100.00")
        assert entry.vat_rate == Decimal("21.00")
        assert entry.vat_amount == Decimal("21.00")
        assert entry.total_amount == Decimal("121.00")
        assert entry.estate_id == 1

    def test_expense_computes_vat_when_missing(self, expense_row):
        entry = normalize_row(SourceType.INTERNAL_EXPENSE, expense_row)

        assert entry.tax_base == Decimal("50.00")
        assert entry.vat_amount == Decimal("5.00")
        assert entry.total_amount == Decimal("55.00")
        assert entry.invoice_number == "T-77"
        assert entry.estate_id is None

    def test_issued_invoice_computes_vat_and_irpf(self, issued_row):
        issued_row["irpf"] = Decimal("19")
        entry = normalize_row(SourceType.ISSUED_INVOICE, issued_row)

        assert entry.vat_amount == Decimal("210.00")
        assert entry.irpf_amount == Decimal("190.00")
        assert entry.total_amount == Decimal("1020.00")
        assert entry.counterparty_tax_id == "12345678Z"

    def test_total_is_rederived(self, received_row):
        received_row["total_amount"] = Decimal("999.99")
        received_row["irpf_amount"] = Decimal("15.00")
        entry = normalize_row(SourceType.RECEIVED_INVOICE, received_row)
        assert entry.total_amount == Decimal("106.00")

    def test_operation_key_and_invoice_type(self):
        assert make_entry().operation_key == OperationKey.GENERAL
        assert make_entry().invoice_type == "F2"
        assert make_entry(is_refund=True).operation_key == OperationKey.REFUND
        assert make_entry(is_refund=True).invoice_type == "F4"
        assert make_entry(vat_rate=Decimal("0")).operation_key == OperationKey.EXEMPT
        assert make_entry(total_amount=Decimal("1210.00")).invoice_type == "F1"

    def test_proportional_without_dates_falls_back_with_warning(self, issued_row, caplog):
        issued_row["is_proportional"] = True
        issued_row["start_date"] = date(2024, 3, 10)

        with caplog.at_level(logging.WARNING, logger="app.modules.vat_book.sources"):
            entry = normalize_row(SourceType.ISSUED_INVOICE, issued_row)

        assert not entry.is_proportional
        assert entry.tax_base == Decimal("1000.00")
        assert "proporcional" in caplog.text

    def test_stored_vat_disagreeing_with_rate_is_replaced(self, received_row, caplog):
        received_row["iva_amount"] = Decimal("25.00")

        with caplog.at_level(logging.WARNING, logger="app.modules.vat_book.sources"):
            entry = normalize_row(SourceType.RECEIVED_INVOICE, received_row)

        assert entry.vat_amount == Decimal("21.00")
        assert entry.total_amount == Decimal("121.00")
        assert "cuota IVA guardada 25.00" in caplog.text

    def test_matching_stored_vat_logs_nothing(self, received_row, caplog):
        with caplog.at_level(logging.WARNING, logger="app.modules.vat_book.sources"):
            normalize_row(SourceType.RECEIVED_INVOICE, received_row)
        assert caplog.text == ""

    def test_expense_is_never_proportional(self, expense_row):
        expense_row.update({
            "is_proportional": True,
            "is_refund": True,
            "start_date": date(2024, 2, 10),
            "end_date": date(2024, 2, 20),
        })
        entry = normalize_row(SourceType.INTERNAL_EXPENSE, expense_row)

        assert not entry.is_proportional
        assert not entry.is_refund
        assert entry.period_start is None

    def test_json_uses_book_names(self, received_row):
        data = normalize_row(SourceType.RECEIVED_INVOICE, received_row).model_dump(mode="json", by_alias=True)
        assert data["date"] == "2024-01-15"
        assert data["taxBase"] == "100.00"
        assert data["operationKey"] == "01"
        assert data["sourceType"] == "ReceivedInvoice"


# ===== TESTS DE PRORRATEO =====

class TestProportionalApportionment:
    """Tests para facturación proporcional por días"""

    def _proportional(self, start, end, base="1000.00", vat="210.00"):
        return make_entry(
            source_type=SourceType.ISSUED_INVOICE,
            entry_date=start,
            tax_base=Decimal(base),
            vat_amount=Decimal(vat),
            total_amount=Decimal(base) + Decimal(vat),
            is_proportional=True,
            period_start=start,
            period_end=end
        )

    def test_partial_month(self):
        entry = self._proportional(date(2024, 7, 17), date(2024, 7, 31))
        apportioned = apportion_entry(entry, resolve_period(2024, month=7))

        assert apportioned.tax_base == Decimal("483.87")
        assert apportioned.vat_amount == Decimal("101.61")
        assert apportioned.total_amount == Decimal("585.48")
        assert apportioned.apportionment.overlap_days == 15
        assert apportioned.apportionment.total_days == 31
        assert apportioned.apportionment.proportion_percentage == Decimal("48.39")

    def test_no_overlap_is_excluded(self):
        entry = self._proportional(date(2024, 7, 17), date(2024, 7, 31))
        assert apportion_entry(entry, resolve_period(2024, month=6)) is None

    def test_quarter_containing_range(self):
        entry = self._proportional(date(2024, 7, 17), date(2024, 7, 31))
        apportioned = apportion_entry(entry, resolve_period(2024, quarter=3))
        assert apportioned.tax_base == Decimal("483.87")

    @pytest.mark.parametrize("start,end", [
        (None, None),
        (date(2024, 7, 17), None),
        (None, date(2024, 7, 31)),
        (date(2024, 7, 31), date(2024, 7, 17)),
    ])
    def test_missing_range_is_included_at_face_value(self, start, end, caplog):
        entry = make_entry(
            entry_date=date(2024, 7, 17),
            tax_base=Decimal("1000.00"),
            vat_amount=Decimal("210.00"),
            total_amount=Decimal("1210.00"),
            is_proportional=True,
            period_start=start,
            period_end=end
        )
        july = resolve_period(2024, month=7)

        assert in_period(entry, july)
        assert not in_period(entry, resolve_period(2024, month=6))

        with caplog.at_level(logging.WARNING, logger="app.modules.vat_book.proportional"):
            apportioned = apportion_entry(entry, july)

        assert apportioned.tax_base == Decimal("1000.00")
        assert apportioned.total_amount == Decimal("1210.00")
        assert apportioned.apportionment is None
        assert "importe completo" in caplog.text

    def test_range_longer_than_start_month(self):
        entry = self._proportional(date(2024, 7, 17), date(2024, 8, 20))

        july = apportion_entry(entry, resolve_period(2024, month=7))
        august = apportion_entry(entry, resolve_period(2024, month=8))

        assert july.tax_base == Decimal("483.87")
        # Agosto solo recibe los días que completan el mes de inicio
        assert august.apportionment.overlap_days == 16
        assert august.apportionment.total_days == 31
        assert august.tax_base == Decimal("516.13")
        assert july.tax_base + august.tax_base == Decimal("1000.00")
        assert apportion_entry(entry, resolve_period(2024, month=9)) is None

    def test_non_proportional_passes_through(self):
        entry = make_entry()
        assert apportion_entry(entry, resolve_period(2024, quarter=1)) is entry

    @pytest.mark.parametrize("base", ["1000.00", "333.33", "0.05", "1234.57"])
    def test_adjacent_periods_conserve_amounts(self, base):
        entry = self._proportional(date(2024, 1, 17), date(2024, 2, 16), base=base, vat="0.00")

        january = apportion_entry(entry, resolve_period(2024, month=1))
        february = apportion_entry(entry, resolve_period(2024, month=2))

        assert january.tax_base + february.tax_base == Decimal(base)
        assert january.apportionment.overlap_days + february.apportionment.overlap_days == 31

    def test_union_matches_quarter(self):
        entry = self._proportional(date(2024, 1, 17), date(2024, 2, 16), base="777.77", vat="163.33")

        quarter = apportion_entry(entry, resolve_period(2024, quarter=1))
        january = apportion_entry(entry, resolve_period(2024, month=1))
        february = apportion_entry(entry, resolve_period(2024, month=2))

        assert quarter.tax_base == january.tax_base + february.tax_base
        assert quarter.vat_amount == january.vat_amount + february.vat_amount

    def test_bill_total_proportional(self):
        result = calculate_bill_total(1000, 21, 15, True, date(2025, 7, 17), date(2025, 7, 31))

        assert result.calculation_type == "proportional"
        assert result.days_billed == 15
        assert result.days_in_month == 31
        assert result.final_base == Decimal("483.87")
        assert result.iva_amount == Decimal("101.61")
        assert result.irpf_amount == Decimal("72.58")
        assert result.total == Decimal("512.90")

    def test_bill_total_normal(self):
        result = calculate_bill_total(1000, 21, 15)
        assert result.calculation_type == "normal"
        assert result.total == Decimal("1060.00")

    def test_validate_proportional_fields(self):
        assert validate_proportional_fields(False, None, None) == (True, "")
        assert not validate_proportional_fields(True, date(2024, 7, 17), None)[0]
        assert not validate_proportional_fields(True, date(2024, 7, 31), date(2024, 7, 17))[0]
        assert validate_proportional_fields(True, date(2024, 7, 17), date(2024, 7, 31))[0]

    def test_describe_billed_period(self):
        assert describe_billed_period(date(2024, 7, 17), date(2024, 7, 31)) == "Del 17 al 31 de julio de 2024"
        assert describe_billed_period(None, None) == "Mes completo"


# ===== TESTS DE DESGLOSE Y TOTALES =====

class TestBreakdownAndTotals:
    """Tests para el desglose por tipo de IVA"""

    def test_rounding_helpers(self):
        assert round_currency(Decimal("2.675")) == Decimal("2.68")
        assert round_currency(None) == Decimal("0.00")
        assert calculate_vat_amount(Decimal("33.33"), Decimal("21")) == Decimal("7.00")

    def test_buckets_sorted_by_rate(self):
        entries = [
            make_entry(id=1, vat_rate=Decimal("21.00")),
            make_entry(id=2, vat_rate=Decimal("4.00"), vat_amount=Decimal("4.00")),
            make_entry(id=3, vat_rate=Decimal("10.00"), vat_amount=Decimal("10.00")),
        ]
        buckets = VATBookCalculator.calculate_breakdown(entries)
        assert [bucket.rate for bucket in buckets] == [Decimal("4"), Decimal("10"), Decimal("21")]

    def test_breakdown_sums_match_totals_exactly(self):
        entries = [
            make_entry(
                id=i,
                tax_base=Decimal("0.01") * (i % 7 + 1),
                vat_rate=Decimal(str((0, 4, 10, 21)[i % 4])),
                vat_amount=Decimal("0.01") * (i % 3)
            )
            for i in range(1, 301)
        ]
        totals = VATBookCalculator.calculate_totals(BookType.IVA_SOPORTADO, entries)

        assert sum(b.base_imponible for b in totals.desglose_iva) == totals.base_imponible_total
        assert totals.base_imponible_total == sum(e.tax_base for e in entries)
        assert sum(b.invoice_count for b in totals.desglose_iva) == 300

    def test_non_deductible_excluded_from_deductible_total(self):
        entries = [make_entry(id=1), make_entry(id=2, is_deductible=False)]
        totals = VATBookCalculator.calculate_totals(BookType.IVA_SOPORTADO, entries)

        assert totals.total_cuota_iva == Decimal("42.00")
        assert totals.cuota_iva_deducible == Decimal("21.00")

    def test_charged_book_has_no_deductible_total(self):
        totals = VATBookCalculator.calculate_totals(BookType.IVA_REPERCUTIDO, [make_entry()])
        assert totals.cuota_iva_deducible is None

    def test_summary(self):
        entries = [
            make_entry(id=1, counterparty_tax_id="B1", status="paid"),
            make_entry(id=2, counterparty_tax_id="B1", status="pending"),
            make_entry(id=3, counterparty_tax_id="B2", status="paid", total_amount=Decimal("100.00")),
        ]
        summary = VATBookCalculator.calculate_summary(entries)

        assert summary.total_counterparties == 2
        assert summary.entries_by_status == {"paid": 2, "pending": 1}
        assert summary.average_amount == Decimal("114.00")


# ===== TESTS DE LIQUIDACIÓN =====

class TestQuarterlyLiquidation:
    """Tests para la liquidación trimestral"""

    def _books(self, supported_vat, charged_vat):
        period = resolve_period(2024, quarter=1)
        supported = VATBookCalculator.build_book(
            BookType.IVA_SOPORTADO, period,
            [make_entry(vat_amount=Decimal(supported_vat))], FIXED_NOW
        )
        charged = VATBookCalculator.build_book(
            BookType.IVA_REPERCUTIDO, period,
            [make_entry(source_type=SourceType.ISSUED_INVOICE, vat_amount=Decimal(charged_vat))], FIXED_NOW
        )
        return period, supported, charged

    def test_to_pay(self):
        period, supported, charged = self._books("1050.00", "1680.00")
        result = calculate_liquidation(period, supported, charged)

        assert result.importe_resultado == Decimal("630.00")
        assert result.resultado_liquidacion == LiquidationStatus.A_PAGAR

    def test_to_refund_when_swapped(self):
        period, supported, charged = self._books("1680.00", "1050.00")
        result = calculate_liquidation(period, supported, charged)

        assert result.importe_resultado == Decimal("-630.00")
        assert result.resultado_liquidacion == LiquidationStatus.A_DEVOLVER

    def test_zero_with_activity_is_to_pay(self):
        period, supported, charged = self._books("100.00", "100.00")
        result = calculate_liquidation(period, supported, charged)

        assert result.importe_resultado == Decimal("0.00")
        assert result.resultado_liquidacion == LiquidationStatus.A_PAGAR

    def test_no_activity(self):
        period = resolve_period(2024, quarter=2)
        supported = VATBookCalculator.build_book(BookType.IVA_SOPORTADO, period, [], FIXED_NOW)
        charged = VATBookCalculator.build_book(BookType.IVA_REPERCUTIDO, period, [], FIXED_NOW)

        result = calculate_liquidation(period, supported, charged)
        assert result.resultado_liquidacion == LiquidationStatus.SIN_ACTIVIDAD
        assert result.importe_resultado == Decimal("0.00")

    def test_missing_book(self):
        period, supported, _ = self._books("1.00", "1.00")
        with pytest.raises(MissingBookError) as exc_info:
            calculate_liquidation(period, supported, None)
        assert exc_info.value.book_type == "IVA_REPERCUTIDO"

    def test_wrong_book_in_slot(self):
        period, supported, charged = self._books("1.00", "1.00")
        with pytest.raises(MissingBookError):
            calculate_liquidation(period, charged, supported)


# ===== TESTS DE REPARTO POR PROPIETARIO =====

class TestOwnerAllocation:
    """Tests para el reparto con el método del resto mayor"""

    def test_half_split(self):
        result = distribute_largest_remainder(Decimal("1050.00"), [(1, Decimal("50")), (2, Decimal("50"))])
        assert result == {1: Decimal("525.00"), 2: Decimal("525.00")}

    def test_three_way_split_is_exact(self):
        weights = [(1, Decimal("33.34")), (2, Decimal("33.33")), (3, Decimal("33.33"))]
        result = distribute_largest_remainder(Decimal("1050.00"), weights)

        assert sum(result.values()) == Decimal("1050.00")
        assert result == {1: Decimal("350.07"), 2: Decimal("349.97"), 3: Decimal("349.96")}

    def test_residual_cent_ties_go_to_lowest_owner_id(self):
        weights = [(3, Decimal("1")), (1, Decimal("1")), (2, Decimal("1"))]
        result = distribute_largest_remainder(Decimal("100.00"), weights)
        assert result == {1: Decimal("33.34"), 2: Decimal("33.33"), 3: Decimal("33.33")}

    def test_negative_amount(self):
        result = distribute_largest_remainder(Decimal("-0.05"), [(1, Decimal("50")), (2, Decimal("50"))])
        assert sum(result.values()) == Decimal("-0.05")
        assert result[1] == Decimal("-0.03")

    def test_weights_summing_zero(self):
        with pytest.raises(ValueError):
            distribute_largest_remainder(Decimal("10.00"), [(1, Decimal("0"))])

    def test_allocation_reconciles_with_aggregate(self):
        shares = [
            OwnershipShare(owner_id=1, owner_name="A", percentage=Decimal("33.34")),
            OwnershipShare(owner_id=2, owner_name="B", percentage=Decimal("33.33")),
            OwnershipShare(owner_id=3, owner_name="C", percentage=Decimal("33.33")),
        ]
        supported = [
            make_entry(id=i, estate_id=7, owner_shares=shares, vat_amount=Decimal("0.07") * i)
            for i in range(1, 41)
        ]
        result = allocate_to_owners(supported, [])

        assert sum(a.vat_supported for a in result.allocations) == result.overall_total.vat_supported
        assert sum(a.base_supported for a in result.allocations) == result.overall_total.base_supported

    def test_entries_without_estate_use_default_table(self):
        default = [OwnershipShare(owner_id=9, owner_name="Empresa", percentage=Decimal("100"))]
        result = allocate_to_owners([make_entry()], [], default_shares=default)

        assert [a.owner_id for a in result.allocations] == [9]
        assert result.allocations[0].vat_supported == Decimal("21.00")
        assert result.allocations[0].ownership_percentage == Decimal("100.00")

    def test_missing_default_table(self):
        with pytest.raises(IncompleteOwnershipError) as exc_info:
            allocate_to_owners([make_entry()], [], default_shares=[])
        assert exc_info.value.estate_id == "default"

    def test_estate_without_shares(self):
        entry = make_entry(estate_id=5, owner_shares=[
            OwnershipShare(owner_id=1, percentage=Decimal("0"))
        ])
        with pytest.raises(IncompleteOwnershipError) as exc_info:
            allocate_to_owners([entry], [])
        assert exc_info.value.estate_id == 5

    def test_shares_are_normalized(self):
        shares = [
            OwnershipShare(owner_id=1, percentage=Decimal("30")),
            OwnershipShare(owner_id=2, percentage=Decimal("30")),
        ]
        result = allocate_to_owners([make_entry(estate_id=1, owner_shares=shares)], [])
        assert [a.vat_supported for a in result.allocations] == [Decimal("10.50"), Decimal("10.50")]

    def test_default_shares_from_config(self):
        shares = default_shares_from_config([{"owner_id": 1, "owner_name": "Ana", "percentage": "100"}])
        assert shares[0].percentage == Decimal("100")
        assert default_shares_from_config(None) == []


# ===== TESTS DE AGREGACIÓN CONCURRENTE =====

class TestAggregator:
    """Tests para la obtención de registros fiscales"""

    @pytest.mark.asyncio
    async def test_supported_book_pulls_received_and_expenses(self, fake_source):
        aggregator = FiscalEntryAggregator(fake_source)
        entries = await aggregator.fetch_book_entries(BookType.IVA_SOPORTADO, resolve_period(2024, quarter=1))

        assert [e.source_type for e in entries] == [SourceType.RECEIVED_INVOICE, SourceType.INTERNAL_EXPENSE]
        fetched = {call[0] for call in fake_source.calls}
        assert SourceType.ISSUED_INVOICE not in fetched

    @pytest.mark.asyncio
    async def test_entries_outside_period_are_filtered(self, fake_source):
        aggregator = FiscalEntryAggregator(fake_source)
        entries = await aggregator.fetch_book_entries(BookType.IVA_SOPORTADO, resolve_period(2024, month=1))
        assert len(entries) == 1

    @pytest.mark.asyncio
    async def test_collaborator_error_is_wrapped(self, fake_source):
        fake_source.failing[SourceType.INTERNAL_EXPENSE] = RuntimeError("conexión perdida")
        aggregator = FiscalEntryAggregator(fake_source)

        with pytest.raises(SourceFetchError) as exc_info:
            await aggregator.fetch_book_entries(BookType.IVA_SOPORTADO, resolve_period(2024, quarter=1))

        assert exc_info.value.source == "InternalExpense"
        assert isinstance(exc_info.value.cause, RuntimeError)
        assert exc_info.value.context["period"] == "T1 2024"

    @pytest.mark.asyncio
    async def test_malformed_row_is_wrapped(self, fake_source, received_row):
        del received_row["invoice_date"]
        aggregator = FiscalEntryAggregator(fake_source)

        with pytest.raises(SourceFetchError) as exc_info:
            await aggregator.fetch_book_entries(BookType.IVA_SOPORTADO, resolve_period(2024, quarter=1))
        assert exc_info.value.source == "ReceivedInvoice"

    @pytest.mark.asyncio
    async def test_failure_cancels_pending_fetches(self):
        source = SlowReceivedSource(failing={SourceType.INTERNAL_EXPENSE: RuntimeError("caído")})
        aggregator = FiscalEntryAggregator(source)

        with pytest.raises(SourceFetchError):
            await aggregator.fetch_book_entries(BookType.IVA_SOPORTADO, resolve_period(2024, quarter=1))
        assert source.cancelled

    @pytest.mark.asyncio
    async def test_attach_ownership(self, fake_source):
        aggregator = FiscalEntryAggregator(fake_source)
        entries = [make_entry(id=1, estate_id=1), make_entry(id=2)]

        attached = await aggregator.attach_ownership(entries)

        assert [s.owner_id for s in attached[0].owner_shares] == [1, 2]
        assert attached[1].owner_shares is None
        assert entries[0].owner_shares is None

    @pytest.mark.asyncio
    async def test_ownership_error_is_wrapped(self, fake_source):
        fake_source.failing[1] = RuntimeError("timeout")
        aggregator = FiscalEntryAggregator(fake_source)

        with pytest.raises(SourceFetchError) as exc_info:
            await aggregator.attach_ownership([make_entry(estate_id=1)])
        assert exc_info.value.context["estate_id"] == 1


# ===== TESTS DEL SERVICIO =====

class TestVATBookService:
    """Tests de extremo a extremo del servicio"""

    @pytest.mark.asyncio
    async def test_supported_book_end_to_end(self, service):
        book = await service.generate_supported_book(2024, quarter=1)

        assert book.book_code == "R"
        assert book.entry_count == 2
        assert book.totals.base_imponible_total == Decimal("150.00")
        assert book.totals.cuota_iva_deducible == Decimal("26.00")
        assert [(b.rate, b.base_imponible, b.cuota_iva) for b in book.totals.desglose_iva] == [
            (Decimal("10"), Decimal("50.00"), Decimal("5.00")),
            (Decimal("21"), Decimal("100.00"), Decimal("21.00")),
        ]
        assert book.generated_at == FIXED_NOW

    @pytest.mark.asyncio
    async def test_charged_book(self, service):
        book = await service.generate_charged_book(2024, month=3)

        assert book.book_code == "E"
        assert book.totals.total_cuota_iva == Decimal("210.00")
        assert book.totals.total_facturas == Decimal("1210.00")

    @pytest.mark.asyncio
    async def test_output_is_deterministic(self, service):
        first = await service.generate_complete_books(2024, quarter=1)
        second = await service.generate_complete_books(2024, quarter=1)
        assert first.model_dump_json(by_alias=True) == second.model_dump_json(by_alias=True)

    @pytest.mark.asyncio
    async def test_complete_books(self, service):
        report = await service.generate_complete_books(2024, quarter=1)

        assert report.total_entries == 3
        assert report.vat_summary.total_vat_supported == Decimal("26.00")
        assert report.vat_summary.total_vat_charged == Decimal("210.00")
        assert report.vat_summary.net_vat_position == Decimal("184.00")

    @pytest.mark.asyncio
    async def test_invalid_period_is_rejected_before_fetching(self, service, fake_source):
        with pytest.raises(InvalidPeriodError):
            await service.generate_supported_book(2024, quarter=1, month=1)
        assert fake_source.calls == []

    @pytest.mark.asyncio
    async def test_quarterly_liquidation(self, service):
        report = await service.generate_quarterly_liquidation(2024, 1)

        assert report.liquidation.iva_repercutido == Decimal("210.00")
        assert report.liquidation.iva_soportado == Decimal("26.00")
        assert report.liquidation.importe_resultado == Decimal("184.00")
        assert report.liquidation.resultado_liquidacion == LiquidationStatus.A_PAGAR

    @pytest.mark.asyncio
    async def test_liquidation_requires_quarter(self, service):
        with pytest.raises(InvalidPeriodError):
            await service.generate_quarterly_liquidation(2024, None)

    @pytest.mark.asyncio
    async def test_source_failure_aborts_report(self, service, fake_source):
        fake_source.failing[SourceType.ISSUED_INVOICE] = ConnectionError("sin conexión")
        with pytest.raises(SourceFetchError) as exc_info:
            await service.generate_quarterly_liquidation(2024, 1)
        assert exc_info.value.source == "IssuedInvoice"

    @pytest.mark.asyncio
    async def test_book_by_owner_with_repository_default(self, service, fake_source):
        report = await service.generate_book_by_owner(2024, quarter=1)
        by_owner = {a.owner_id: a for a in report.summary_by_owner}

        assert by_owner[1].base_supported == Decimal("85.00")
        assert by_owner[1].vat_supported == Decimal("15.10")
        assert by_owner[1].vat_charged == Decimal("126.00")
        assert by_owner[1].net_position == Decimal("110.90")
        assert by_owner[1].entry_count == 3
        assert by_owner[2].vat_charged == Decimal("84.00")
        assert by_owner[3].net_position == Decimal("-2.50")

        assert report.overall_total.vat_supported == Decimal("26.00")
        assert report.overall_total.net_position == Decimal("184.00")
        assert sum(a.net_position for a in report.summary_by_owner) == Decimal("184.00")
        assert ("shares", "default") in fake_source.calls

    @pytest.mark.asyncio
    async def test_configured_default_table_takes_precedence(self, fake_source):
        configured = [OwnershipShare(owner_id=4, owner_name="Sociedad", percentage=Decimal("100"))]
        service = VATBookService(fake_source, default_shares=configured, clock=fixed_clock)

        report = await service.generate_book_by_owner(2024, quarter=1)

        assert 4 in {a.owner_id for a in report.summary_by_owner}
        assert ("shares", "default") not in fake_source.calls

    @pytest.mark.asyncio
    async def test_annual_stats(self, service):
        stats = await service.generate_annual_stats(2024)

        assert stats.summary.total_invoices_received == 2
        assert stats.summary.total_invoices_issued == 1
        assert stats.summary.net_vat_position == Decimal("184.00")
        assert [q.quarter for q in stats.quarterly_breakdown] == [1, 2, 3, 4]
        assert stats.quarterly_breakdown[0].importe_resultado == Decimal("184.00")
        assert stats.quarterly_breakdown[1].resultado_liquidacion == LiquidationStatus.SIN_ACTIVIDAD

    @pytest.mark.asyncio
    async def test_annual_stats_split_proportional_across_quarters(self, fake_source):
        fake_source.rows[SourceType.ISSUED_INVOICE] = [{
            "id": 2,
            "invoice_number": "E-2024-099",
            "invoice_date": date(2024, 3, 17),
            "tax_base": Decimal("310"),
            "iva": Decimal("21"),
            "irpf": Decimal("0"),
            "is_proportional": True,
            "start_date": date(2024, 3, 17),
            "end_date": date(2024, 4, 16),
        }]
        service = VATBookService(fake_source, clock=fixed_clock)

        comparison = await service.generate_quarterly_comparison(2024)
        charged = [q.vat_charged for q in comparison.quarterly_comparison]

        assert charged[0] + charged[1] == Decimal("65.10")
        assert charged[0] == Decimal("31.50")

    def test_config(self):
        config = VATBookService.get_vat_book_config()
        assert [rate.value for rate in config.vat_rates] == [0, 4, 10, 21]
        assert config.quarters[2].months == [7, 8, 9]
        assert {option.code for option in config.book_types} == {"R", "E"}


# ===== TESTS DE EXPORTACIÓN =====

class TestExport:
    """Tests para la exportación CSV con columnas AEAT"""

    @pytest.mark.asyncio
    async def test_rows_and_filename(self, service):
        book = await service.generate_supported_book(2024, quarter=1)
        rows = prepare_vat_book_csv(book)

        assert [row["registry_number"] for row in rows] == [1, 2]
        assert rows[0]["tax_id"] == "B11111111"
        assert rows[1]["deductible"] is True

        company = CompanyData(nif="B12345678", name="Fincas del Norte SL")
        assert build_export_filename(book, company) == "2024_B12345678_R_Fincas_del_Norte_SL.csv"


# ===== TESTS DE ENDPOINTS =====

class TestVATBookEndpoints:
    """Tests de los endpoints HTTP"""

    def test_health(self):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_supported_book(self, override_service, fake_source):
        override_service(fake_source)
        response = client.get("/vat-book/supported/2024", params={"quarter": 1})

        assert response.status_code == 200
        data = response.json()
        assert data["bookCode"] == "R"
        assert data["totals"]["baseImponibleTotal"] == "150.00"
        assert data["totals"]["cuotaIVADeducible"] == "26.00"
        assert [b["rate"] for b in data["totals"]["desgloseIVA"]] == ["10.00", "21.00"]
        assert data["period"]["description"] == "T1 2024"
        assert response.headers["x-content-type-options"] == "nosniff"

    def test_quarter_and_month_returns_400(self, override_service, fake_source):
        override_service(fake_source)
        response = client.get("/vat-book/charged/2024", params={"quarter": 1, "month": 2})

        assert response.status_code == 400
        assert response.json()["detail"]["kind"] == "INVALID_PERIOD"

    def test_source_failure_returns_502(self, override_service, fake_source):
        fake_source.failing[SourceType.RECEIVED_INVOICE] = RuntimeError("db caída")
        override_service(fake_source)
        response = client.get("/vat-book/complete/2024", params={"quarter": 1})

        assert response.status_code == 502
        assert response.json()["detail"]["kind"] == "SOURCE_FETCH_FAILED"

    def test_missing_ownership_returns_422(self, override_service, fake_source):
        fake_source.shares[1] = []
        override_service(fake_source)
        response = client.get("/vat-book/by-owner/2024", params={"quarter": 1})

        assert response.status_code == 422
        assert response.json()["detail"]["kind"] == "INCOMPLETE_OWNERSHIP"

    def test_liquidation(self, override_service, fake_source):
        override_service(fake_source)
        response = client.get("/vat-book/liquidation/2024/1")

        assert response.status_code == 200
        liquidation = response.json()["liquidation"]
        assert liquidation["importeResultado"] == "184.00"
        assert liquidation["resultadoLiquidacion"] == "A_PAGAR"

    def test_liquidation_invalid_quarter(self, override_service, fake_source):
        override_service(fake_source)
        response = client.get("/vat-book/liquidation/2024/5")
        assert response.status_code == 400

    def test_csv_export(self, override_service, fake_source):
        override_service(fake_source)
        response = client.get("/vat-book/supported/2024", params={"quarter": 1, "export": "csv"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        company = get_company_data()
        assert f"2024_{company.nif}_R_" in response.headers["content-disposition"]

        lines = response.text.strip().splitlines()
        assert lines[0].startswith("N. REGISTRO,FECHA FACTURA,NUMERO FACTURA")
        assert len(lines) == 3

    def test_stats_and_comparison(self, override_service, fake_source):
        override_service(fake_source)

        stats = client.get("/vat-book/stats/2024")
        comparison = client.get("/vat-book/comparison/2024")

        assert stats.status_code == 200
        assert stats.json()["summary"]["netVATPosition"] == "184.00"
        assert len(comparison.json()["quarterlyComparison"]) == 4

    def test_config(self):
        response = client.get("/vat-book/config")
        assert response.status_code == 200
        assert [r["label"] for r in response.json()["vatRates"]] == ["0%", "4%", "10%", "21%"]

    def test_validate_company(self):
        response = client.post("/vat-book/validate-company", json={"nif": "123", "name": "Fincas SL"})
        assert response.status_code == 200
        assert response.json() == {"is_valid": False, "message": "Formato de NIF inválido"}
