"""
Libro de IVA Router

Endpoints para libros de IVA soportado y repercutido, liquidación
trimestral, reparto por propietario y estadísticas anuales.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Path, Query

from app.modules.company.schemas import CompanyData, CompanyValidationResult
from app.modules.company.service import get_company_data, validate_company_data
from app.modules.vat_book.dependencies import vat_book_service_dependency
from app.modules.vat_book.errors import (
    IncompleteOwnershipError, InvalidPeriodError, MissingBookError, SourceFetchError, VATBookError
)
from app.modules.vat_book.export import export_vat_book_csv
from app.modules.vat_book.schemas import (
    AnnualVATStats, CompleteVATBooksReport, QuarterlyComparison, QuarterlyLiquidationReport,
    VATBookByOwnerReport, VATBookConfig
)
from app.modules.vat_book.service import VATBookService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/vat-book", tags=["Libro de IVA"])

ERROR_STATUS_CODES = {
    InvalidPeriodError: 400,
    SourceFetchError: 502,
    MissingBookError: 422,
    IncompleteOwnershipError: 422,
}


def vat_book_http_error(error: VATBookError) -> HTTPException:
    """Traducir un error del libro de IVA a HTTPException"""
    status_code = ERROR_STATUS_CODES.get(type(error), 500)
    if status_code >= 500:
        logger.error(f"Error generando libro de IVA: {error!r}")
    return HTTPException(status_code=status_code, detail=error.to_dict())


@router.get("/supported/{year}", response_model=None)
async def get_vat_supported_book(
    service: vat_book_service_dependency,
    year: int = Path(..., description="Año fiscal (4 dígitos)"),
    quarter: Optional[int] = Query(None, description="Trimestre 1-4"),
    month: Optional[int] = Query(None, description="Mes 1-12 (excluyente con trimestre)"),
    export: Optional[str] = Query(None, pattern="^(csv)$", description="Formato de exportación: csv")
):
    """
    Libro de IVA soportado (facturas recibidas y gastos internos).

    Con export=csv devuelve el libro con las columnas AEAT.
    """
    try:
        book = await service.generate_supported_book(year, quarter, month)
        if export == "csv":
            return export_vat_book_csv(book, get_company_data())
        return book
    except VATBookError as e:
        raise vat_book_http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Error inesperado en libro de IVA soportado")
        raise HTTPException(status_code=500, detail=f"Error generando libro de IVA soportado: {str(e)}")


@router.get("/charged/{year}", response_model=None)
async def get_vat_charged_book(
    service: vat_book_service_dependency,
    year: int = Path(..., description="Año fiscal (4 dígitos)"),
    quarter: Optional[int] = Query(None, description="Trimestre 1-4"),
    month: Optional[int] = Query(None, description="Mes 1-12 (excluyente con trimestre)"),
    export: Optional[str] = Query(None, pattern="^(csv)$", description="Formato de exportación: csv")
):
    """
    Libro de IVA repercutido (facturas emitidas).

    Con export=csv devuelve el libro con las columnas AEAT.
    """
    try:
        book = await service.generate_charged_book(year, quarter, month)
        if export == "csv":
            return export_vat_book_csv(book, get_company_data())
        return book
    except VATBookError as e:
        raise vat_book_http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Error inesperado en libro de IVA repercutido")
        raise HTTPException(status_code=500, detail=f"Error generando libro de IVA repercutido: {str(e)}")


@router.get("/complete/{year}", response_model=CompleteVATBooksReport)
async def get_complete_vat_books(
    service: vat_book_service_dependency,
    year: int = Path(..., description="Año fiscal (4 dígitos)"),
    quarter: Optional[int] = Query(None, description="Trimestre 1-4"),
    month: Optional[int] = Query(None, description="Mes 1-12 (excluyente con trimestre)")
):
    """Ambos libros del periodo y la posición neta de IVA"""
    try:
        return await service.generate_complete_books(year, quarter, month)
    except VATBookError as e:
        raise vat_book_http_error(e)
    except Exception as e:
        logger.exception("Error inesperado en libros completos de IVA")
        raise HTTPException(status_code=500, detail=f"Error generando libros de IVA: {str(e)}")


@router.get("/by-owner/{year}", response_model=VATBookByOwnerReport)
async def get_vat_book_by_owner(
    service: vat_book_service_dependency,
    year: int = Path(..., description="Año fiscal (4 dígitos)"),
    quarter: Optional[int] = Query(None, description="Trimestre 1-4"),
    month: Optional[int] = Query(None, description="Mes 1-12 (excluyente con trimestre)")
):
    """Libro consolidado repartido entre propietarios"""
    try:
        return await service.generate_book_by_owner(year, quarter, month)
    except VATBookError as e:
        raise vat_book_http_error(e)
    except Exception as e:
        logger.exception("Error inesperado en libro de IVA por propietario")
        raise HTTPException(status_code=500, detail=f"Error generando libro por propietario: {str(e)}")


@router.get("/liquidation/{year}/{quarter}", response_model=QuarterlyLiquidationReport)
async def get_quarterly_liquidation(
    service: vat_book_service_dependency,
    year: int = Path(..., description="Año fiscal (4 dígitos)"),
    quarter: int = Path(..., description="Trimestre 1-4")
):
    """Liquidación trimestral de IVA (Modelo 303)"""
    try:
        return await service.generate_quarterly_liquidation(year, quarter)
    except VATBookError as e:
        raise vat_book_http_error(e)
    except Exception as e:
        logger.exception("Error inesperado en liquidación trimestral")
        raise HTTPException(status_code=500, detail=f"Error generando liquidación: {str(e)}")


@router.get("/stats/{year}", response_model=AnnualVATStats)
async def get_annual_vat_stats(
    service: vat_book_service_dependency,
    year: int = Path(..., description="Año fiscal (4 dígitos)")
):
    """Estadísticas anuales con el desglose de cada trimestre"""
    try:
        return await service.generate_annual_stats(year)
    except VATBookError as e:
        raise vat_book_http_error(e)
    except Exception as e:
        logger.exception("Error inesperado en estadísticas anuales de IVA")
        raise HTTPException(status_code=500, detail=f"Error generando estadísticas: {str(e)}")


@router.get("/comparison/{year}", response_model=QuarterlyComparison)
async def get_quarterly_comparison(
    service: vat_book_service_dependency,
    year: int = Path(..., description="Año fiscal (4 dígitos)")
):
    """Comparativa de los cuatro trimestres del año"""
    try:
        return await service.generate_quarterly_comparison(year)
    except VATBookError as e:
        raise vat_book_http_error(e)
    except Exception as e:
        logger.exception("Error inesperado en comparativa trimestral")
        raise HTTPException(status_code=500, detail=f"Error generando comparativa: {str(e)}")


@router.get("/config", response_model=VATBookConfig)
async def get_vat_book_config():
    """Trimestres, tipos de libro, tipos de IVA y claves de operación"""
    return VATBookService.get_vat_book_config()


@router.post("/validate-company", response_model=CompanyValidationResult)
async def validate_company(company: Optional[CompanyData] = None):
    """
    Validar los datos de empresa para la exportación AEAT.

    Sin cuerpo se validan los datos configurados.
    """
    return validate_company_data(company)
