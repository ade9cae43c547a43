"""
Datos de la empresa para la exportación de libros de IVA
"""

import logging
from typing import Optional

from app.common.validators import validate_spanish_tax_id
from app.core.config import settings
from app.modules.company.schemas import CompanyData, CompanyValidationResult

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("nif", "name")


def get_company_data() -> CompanyData:
    """
    Obtener los datos de la empresa desde la configuración.

    Returns:
        CompanyData: NIF, razón social y domicilio fiscal
    """
    return CompanyData(
        nif=settings.COMPANY_NIF,
        name=settings.COMPANY_NAME,
        address=settings.COMPANY_ADDRESS,
        postal_code=settings.COMPANY_POSTAL_CODE,
        city=settings.COMPANY_CITY,
        province=settings.COMPANY_PROVINCE,
        country=settings.COMPANY_COUNTRY
    )


def validate_company_data(company_data: Optional[CompanyData] = None) -> CompanyValidationResult:
    """
    Validar que los datos de empresa están completos para la AEAT.

    Comprueba los campos obligatorios (nif, name) y el formato del NIF,
    que puede ser NIF (12345678Z), NIE (X1234567L) o CIF (B12345678).
    """
    data = company_data or get_company_data()

    missing_fields = [field for field in REQUIRED_FIELDS if not getattr(data, field)]
    if missing_fields:
        return CompanyValidationResult(
            is_valid=False,
            message=f"Campos obligatorios faltantes: {', '.join(missing_fields)}"
        )

    if not validate_spanish_tax_id(data.nif):
        logger.warning(f"NIF de empresa con formato inválido: {data.nif}")
        return CompanyValidationResult(is_valid=False, message="Formato de NIF inválido")

    return CompanyValidationResult(is_valid=True, message="Datos de empresa válidos")
