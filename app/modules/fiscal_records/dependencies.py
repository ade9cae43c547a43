from app.database.database import AsyncSessionLocal
from app.modules.fiscal_records.repository import SQLAlchemyFiscalRecordSource


def get_fiscal_record_source() -> SQLAlchemyFiscalRecordSource:
    """Repositorio de registros fiscales para los endpoints"""
    return SQLAlchemyFiscalRecordSource(AsyncSessionLocal)
