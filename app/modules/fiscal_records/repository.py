"""
Repositorio de registros fiscales sobre SQLAlchemy async

Implementa la capacidad de lectura que usa el agregador del libro de IVA.
Cada consulta abre su propia sesión, de modo que el agregador puede
lanzarlas en paralelo sin compartir sesión.
"""

import logging
from typing import Any, Dict, List, Union

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.modules.fiscal_records.models import (
    Client, EstateOwner, InternalExpense, InvoiceIssued, InvoiceReceived, Owner, Supplier
)
from app.modules.vat_book.allocation import DEFAULT_OWNERSHIP_KEY
from app.modules.vat_book.schemas import Period, SourceType

logger = logging.getLogger(__name__)


def _period_filter(model, date_column, period: Period):
    """Fecha dentro del periodo o rango proporcional que lo solapa"""
    in_range = and_(date_column >= period.start_date, date_column < period.end_date)
    if not hasattr(model, "is_proportional"):
        return in_range
    overlaps = and_(
        model.is_proportional.is_(True),
        model.start_date <= period.last_day,
        model.end_date >= period.start_date
    )
    return or_(in_range, overlaps)


class SQLAlchemyFiscalRecordSource:
    """Lectura de facturas, gastos y tablas de propiedad"""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    def _received_query(self, period: Period):
        return (
            select(
                InvoiceReceived.id,
                InvoiceReceived.invoice_number,
                InvoiceReceived.invoice_date,
                InvoiceReceived.due_date,
                InvoiceReceived.tax_base,
                InvoiceReceived.iva_percentage,
                InvoiceReceived.iva_amount,
                InvoiceReceived.irpf_percentage,
                InvoiceReceived.irpf_amount,
                InvoiceReceived.category,
                InvoiceReceived.description,
                InvoiceReceived.collection_status,
                InvoiceReceived.is_refund,
                InvoiceReceived.is_proportional,
                InvoiceReceived.start_date,
                InvoiceReceived.end_date,
                InvoiceReceived.property_id,
                Supplier.name.label("supplier_name"),
                Supplier.company_name.label("supplier_company"),
                Supplier.tax_id.label("supplier_tax_id"),
            )
            .join(Supplier, InvoiceReceived.supplier_id == Supplier.id)
            .where(_period_filter(InvoiceReceived, InvoiceReceived.invoice_date, period))
            .order_by(InvoiceReceived.invoice_date, InvoiceReceived.id)
        )

    def _issued_query(self, period: Period):
        return (
            select(
                InvoiceIssued.id,
                InvoiceIssued.invoice_number,
                InvoiceIssued.invoice_date,
                InvoiceIssued.due_date,
                InvoiceIssued.tax_base,
                InvoiceIssued.iva,
                InvoiceIssued.irpf,
                InvoiceIssued.collection_status,
                InvoiceIssued.is_refund,
                InvoiceIssued.is_proportional,
                InvoiceIssued.start_date,
                InvoiceIssued.end_date,
                InvoiceIssued.estate_id,
                Client.name.label("client_name"),
                Client.identification.label("client_nif"),
            )
            .join(Client, InvoiceIssued.client_id == Client.id)
            .where(_period_filter(InvoiceIssued, InvoiceIssued.invoice_date, period))
            .order_by(InvoiceIssued.invoice_date, InvoiceIssued.id)
        )

    def _expenses_query(self, period: Period):
        return (
            select(
                InternalExpense.id,
                InternalExpense.expense_date,
                InternalExpense.receipt_number,
                InternalExpense.supplier_name,
                InternalExpense.supplier_nif,
                InternalExpense.amount,
                InternalExpense.iva_percentage,
                InternalExpense.iva_amount,
                InternalExpense.category,
                InternalExpense.description,
                InternalExpense.status,
                InternalExpense.is_deductible,
                InternalExpense.property_id,
            )
            .where(_period_filter(InternalExpense, InternalExpense.expense_date, period))
            .order_by(InternalExpense.expense_date, InternalExpense.id)
        )

    async def fetch_entries(self, source_type: SourceType, period: Period) -> List[Dict[str, Any]]:
        queries = {
            SourceType.RECEIVED_INVOICE: self._received_query,
            SourceType.ISSUED_INVOICE: self._issued_query,
            SourceType.INTERNAL_EXPENSE: self._expenses_query,
        }
        stmt = queries[source_type](period)

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            rows = [dict(row) for row in result.mappings().all()]

        logger.debug(f"{len(rows)} filas de {source_type.value} para {period.description}")
        return rows

    async def fetch_ownership_shares(self, estate_id: Union[int, str]) -> List[Dict[str, Any]]:
        if estate_id == DEFAULT_OWNERSHIP_KEY:
            stmt = (
                select(
                    Owner.id.label("owner_id"),
                    Owner.name.label("owner_name"),
                    Owner.default_share.label("percentage"),
                )
                .where(Owner.default_share.is_not(None), Owner.default_share > 0)
                .order_by(Owner.id)
            )
        else:
            stmt = (
                select(
                    EstateOwner.owner_id,
                    Owner.name.label("owner_name"),
                    EstateOwner.ownership_percentage.label("percentage"),
                )
                .join(Owner, EstateOwner.owner_id == Owner.id)
                .where(EstateOwner.estate_id == estate_id)
                .order_by(EstateOwner.owner_id)
            )

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [dict(row) for row in result.mappings().all()]
