from typing import Annotated

from fastapi import Depends

from app.core.config import settings
from app.modules.fiscal_records.dependencies import get_fiscal_record_source
from app.modules.vat_book.aggregator import FiscalRecordSource, default_shares_from_config
from app.modules.vat_book.service import VATBookService


def get_vat_book_service(
    source: FiscalRecordSource = Depends(get_fiscal_record_source)
) -> VATBookService:
    """Servicio de libros de IVA con la tabla de propiedad por defecto configurada"""
    return VATBookService(
        source,
        default_shares=default_shares_from_config(settings.DEFAULT_OWNERSHIP_SHARES)
    )


vat_book_service_dependency = Annotated[VATBookService, Depends(get_vat_book_service)]
