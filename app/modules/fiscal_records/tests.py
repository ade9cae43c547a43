"""
Tests para el repositorio de registros fiscales

Se usa una sesión falsa que registra las sentencias ejecutadas, sin base
de datos real.
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.dialects import postgresql

from app.modules.fiscal_records.models import InternalExpense, InvoiceIssued
from app.modules.fiscal_records.repository import SQLAlchemyFiscalRecordSource, _period_filter
from app.modules.vat_book.aggregator import FiscalEntryAggregator
from app.modules.vat_book.period import resolve_period
from app.modules.vat_book.schemas import BookType, SourceType


class FakeResult:
    def __init__(self, rows):
        self._rows = rows

    def mappings(self):
        return self

    def all(self):
        return self._rows


class FakeSession:
    def __init__(self, rows):
        self.rows = rows
        self.statements = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def execute(self, stmt):
        self.statements.append(stmt)
        return FakeResult(self.rows)


def compile_sql(clause) -> str:
    return str(clause.compile(dialect=postgresql.dialect()))


# ===== FIXTURES =====

@pytest.fixture
def issued_rows():
    return [{
        "id": 7,
        "invoice_number": "E-7",
        "invoice_date": date(2024, 5, 2),
        "due_date": None,
        "tax_base": Decimal("800.00"),
        "iva": Decimal("21.00"),
        "irpf": Decimal("19.00"),
        "collection_status": "paid",
        "is_refund": False,
        "is_proportional": False,
        "start_date": None,
        "end_date": None,
        "estate_id": 3,
        "client_name": "Inquilino",
        "client_nif": "12345678Z",
    }]


# ===== TESTS =====

class TestPeriodFilter:
    """Tests para el filtro de periodo de las consultas"""

    def test_proportional_tables_include_overlap(self):
        sql = compile_sql(_period_filter(InvoiceIssued, InvoiceIssued.invoice_date, resolve_period(2024, quarter=2)))
        assert "invoices_issued.is_proportional" in sql
        assert "invoices_issued.start_date" in sql

    def test_expenses_filter_by_date_only(self):
        sql = compile_sql(_period_filter(InternalExpense, InternalExpense.expense_date, resolve_period(2024, month=5)))
        assert "internal_expenses.expense_date" in sql
        assert "is_proportional" not in sql


class TestSQLAlchemyFiscalRecordSource:
    """Tests para la lectura de filas y su normalización"""

    @pytest.mark.asyncio
    async def test_fetch_entries_returns_plain_rows(self, issued_rows):
        session = FakeSession(issued_rows)
        source = SQLAlchemyFiscalRecordSource(lambda: session)

        rows = await source.fetch_entries(SourceType.ISSUED_INVOICE, resolve_period(2024, quarter=2))

        assert rows == issued_rows
        assert "invoices_issued" in compile_sql(session.statements[0])

    @pytest.mark.asyncio
    async def test_rows_normalize_through_aggregator(self, issued_rows):
        source = SQLAlchemyFiscalRecordSource(lambda: FakeSession(issued_rows))
        aggregator = FiscalEntryAggregator(source)

        entries = await aggregator.fetch_book_entries(BookType.IVA_REPERCUTIDO, resolve_period(2024, quarter=2))

        assert len(entries) == 1
        assert entries[0].vat_amount == Decimal("168.00")
        assert entries[0].irpf_amount == Decimal("152.00")
        assert entries[0].estate_id == 3

    @pytest.mark.asyncio
    async def test_default_ownership_table(self):
        session = FakeSession([{"owner_id": 1, "owner_name": "Ana", "percentage": Decimal("100.00")}])
        source = SQLAlchemyFiscalRecordSource(lambda: session)

        shares = await source.fetch_ownership_shares("default")

        assert shares[0]["owner_id"] == 1
        assert "owners.default_share" in compile_sql(session.statements[0])

    @pytest.mark.asyncio
    async def test_estate_ownership_table(self):
        session = FakeSession([])
        source = SQLAlchemyFiscalRecordSource(lambda: session)

        assert await source.fetch_ownership_shares(3) == []
        assert "estate_owners" in compile_sql(session.statements[0])
